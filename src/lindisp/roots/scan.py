"""Follow roots along a path through wavevector space.

Each scan moves the solver's wavevector in small steps and re-refines every
live root from its value at the previous step.  Roots that become non-finite
or land on top of an earlier root are retired.  A double scan runs the
second axis from every point of the first.
"""

from __future__ import annotations

import cmath
import logging
import math
from dataclasses import dataclass
from typing import Iterator, Sequence

from lindisp.config import ScanConfig, SecantConfig
from lindisp.dispersion import DispersionSolver
from lindisp.roots.secant import secant

logger = logging.getLogger(__name__)


@dataclass
class ScanStep:
    """Roots after one scan step.

    Attributes:
        step: Step number, starting at 1.
        kperp: Perpendicular wavenumber of this step.
        kpar: Parallel wavenumber of this step.
        roots: Current root values (0 for retired roots).
        active: Which roots are still followed.
        output: True every ``n_res`` steps.
    """

    step: int
    kperp: float
    kpar: float
    roots: list[complex]
    active: list[bool]
    output: bool


def _stepped(start: float, end: float, frac: float, log: bool) -> float:
    if log:
        if start <= 0.0:
            raise ValueError(f"logarithmic scan needs a positive start value, got {start}")
        return 10.0 ** (math.log10(start) + (math.log10(end) - math.log10(start)) * frac)
    return start + (end - start) * frac


def scan_path(kperp: float, kpar: float, scan: ScanConfig) -> list[tuple[float, float]]:
    """Wavevectors ``(kperp, kpar)`` visited by ``scan``, excluding the start.

    Raises:
        ValueError: The path leaves ``kperp > 0`` or crosses ``kpar == 0``.
    """
    theta0 = math.atan2(kperp, kpar)
    k0 = math.hypot(kperp, kpar)
    n_steps = scan.n_steps
    path = []
    for it in range(1, n_steps + 1):
        frac = it / n_steps
        if scan.kind == "k1_k2":
            kp = _stepped(kperp, scan.range_end, frac, scan.log_scan)
            kz = _stepped(kpar, scan.range_end_kpar, frac, scan.log_scan)
        elif scan.kind == "theta":
            theta = _stepped(theta0, math.radians(scan.range_end), frac, scan.log_scan)
            kp, kz = k0 * math.sin(theta), k0 * math.cos(theta)
        elif scan.kind == "k_magnitude":
            k = _stepped(k0, scan.range_end, frac, scan.log_scan)
            kp, kz = k * math.sin(theta0), k * math.cos(theta0)
        elif scan.kind == "kperp":
            kp, kz = _stepped(kperp, scan.range_end, frac, scan.log_scan), kpar
        else:
            kp, kz = kperp, _stepped(kpar, scan.range_end, frac, scan.log_scan)
        if kp <= 0.0 or kz == 0.0:
            raise ValueError(
                f"{scan.kind} scan reaches kperp={kp:.6g}, kpar={kz:.6g} at step {it}"
            )
        path.append((kp, kz))
    return path


def _refine_step(
    solver: DispersionSolver,
    current: list[complex],
    active: list[bool],
    cfg: SecantConfig,
    label: str,
) -> None:
    """Re-refine every live root in place, retiring lost or colliding ones."""
    quiet = not solver.cluster.is_coordinator
    for i in range(len(current)):
        if not active[i]:
            continue
        omega = secant(solver, current[i], cfg, quiet=quiet).omega
        if not cmath.isfinite(omega):
            if not quiet:
                logger.warning("Root %d became non-finite at %s; retired", i, label)
            current[i], active[i] = 0j, False
            continue
        for j in range(i):
            if active[j] and abs(omega - current[j]) < cfg.d_gap:
                if not quiet:
                    logger.warning("Root %d converged onto root %d at %s; retired", i, j, label)
                omega, active[i] = 0j, False
                break
        current[i] = omega


def follow_roots(
    solver: DispersionSolver,
    roots: Sequence[complex],
    scan: ScanConfig,
    cfg: SecantConfig,
    active: Sequence[bool] | None = None,
) -> Iterator[ScanStep]:
    """Step ``solver`` along ``scan`` and re-refine every live root.

    Yields one ``ScanStep`` per step; the solver is left at the final
    wavevector.  ``active`` marks roots already retired before the scan
    (all live by default).

    Raises:
        RuntimeError: A step starts with no live root.
    """
    path = scan_path(solver.session.kperp, solver.session.kpar, scan)
    current = [complex(r) for r in roots]
    active = [True] * len(current) if active is None else list(active)
    for it, (kperp, kpar) in enumerate(path, start=1):
        if not any(active):
            raise RuntimeError(f"all roots lost before step {it} of the {scan.kind} scan")
        solver.set_wavevector(kperp, kpar)
        _refine_step(solver, current, active, cfg, f"{scan.kind} step {it}")
        yield ScanStep(
            step=it,
            kperp=kperp,
            kpar=kpar,
            roots=list(current),
            active=list(active),
            output=it % scan.n_res == 0,
        )


@dataclass
class DoubleScanStep:
    """One point of a two-axis scan.

    ``outer`` is the step along the first axis (0 at the starting
    wavevector) and ``inner`` the step record along the second axis taken
    from that point.  ``output`` combines both axes' ``n_res`` cadences.
    """

    outer: int
    inner: ScanStep
    output: bool


def follow_roots_double(
    solver: DispersionSolver,
    roots: Sequence[complex],
    outer: ScanConfig,
    inner: ScanConfig,
    cfg: SecantConfig,
) -> Iterator[DoubleScanStep]:
    """Sweep ``inner`` from every point of ``outer``, starting at the current wavevector.

    Roots are carried along the outer axis; each inner sweep starts from
    the outer roots at its base point and does not feed back into them.

    Raises:
        ValueError: Both axes are the same kind, or either is ``k1_k2``.
        RuntimeError: All roots are lost along the outer axis.
    """
    if outer.kind == inner.kind:
        raise ValueError(f"double scan needs two different axes, got '{outer.kind}' twice")
    if "k1_k2" in (outer.kind, inner.kind):
        raise ValueError("'k1_k2' scans cannot be part of a double scan")

    base = [(solver.session.kperp, solver.session.kpar)]
    base += scan_path(solver.session.kperp, solver.session.kpar, outer)
    current = [complex(r) for r in roots]
    active = [True] * len(current)
    for it, (kperp, kpar) in enumerate(base):
        if not any(active):
            raise RuntimeError(f"all roots lost before step {it} of the {outer.kind} scan")
        if it > 0:
            solver.set_wavevector(kperp, kpar)
            _refine_step(solver, current, active, cfg, f"{outer.kind} step {it}")
        for step in follow_roots(solver, current, inner, cfg, active):
            yield DoubleScanStep(
                outer=it,
                inner=step,
                output=step.output and it % outer.n_res == 0,
            )
