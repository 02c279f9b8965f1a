"""Dispersion-tensor assembly and the dispersion function D(omega).

Every worker sums the Bessel orders it owns into a partial susceptibility
tensor per species; the partial tensors are sum-reduced to the coordinator,
which builds the dielectric and wave-equation tensors and takes the
determinant.  D(omega) is then broadcast so that every rank takes the same
root-solver path.

Tensor conventions: the wavevector lies in the x-z plane, B0 along z, and
the xy and yz entries are antisymmetric while xz is symmetric.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
from numba import njit

from lindisp.config import DispersionConfig, IntegrationConfig
from lindisp.core.bases import Cluster, RelativisticIntegrals, SusceptibilityProvider
from lindisp.core.cluster import SerialCluster
from lindisp.kinetic.bessel import BesselTable, max_bessel_order
from lindisp.kinetic.kernel import ORDER_ZERO_COMPONENTS, Component, SpeciesKernel
from lindisp.kinetic.partition import (
    WorkAssignment,
    inflate_orders,
    partition_work,
    serial_assignments,
)
from lindisp.kinetic.quadrature import ee_term, full_integrate
from lindisp.kinetic.resonance import locate_resonances
from lindisp.species import Species, SpeciesKind

logger = logging.getLogger(__name__)


@njit(cache=True)
def dispersion_determinant(wave: np.ndarray) -> complex:
    """Determinant of the wave tensor using its symmetry.

    Only the six upper-triangle entries are read; xy and yz are taken as
    antisymmetric, xz as symmetric.
    """
    w11 = wave[0, 0]
    w22 = wave[1, 1]
    w33 = wave[2, 2]
    w12 = wave[0, 1]
    w13 = wave[0, 2]
    w23 = wave[1, 2]
    return (
        w11 * (w22 * w33 + w23 * w23)
        + 2.0 * w12 * w23 * w13
        - w13 * w13 * w22
        + w12 * w12 * w33
    )


def symmetrize(tensor: np.ndarray) -> np.ndarray:
    """Fill the lower triangle from the upper one (xy, yz odd; xz even)."""
    out = np.array(tensor, dtype=np.complex128, copy=True)
    out[..., 1, 0] = -out[..., 0, 1]
    out[..., 2, 0] = out[..., 0, 2]
    out[..., 2, 1] = -out[..., 1, 2]
    return out


def wave_tensor(
    chi: np.ndarray,
    omega: complex,
    kperp: float,
    kpar: float,
    v_A: float,
) -> np.ndarray:
    """Wave-equation tensor from the per-species susceptibilities.

    Args:
        chi: Reduced susceptibility contributions, shape ``(nspec, 3, 3)``,
            upper triangle filled.
        omega: Complex frequency.
        kperp: Perpendicular wavenumber.
        kpar: Parallel wavenumber.
        v_A: Alfven speed over c.

    Returns:
        Symmetry-filled 3x3 complex tensor whose determinant is D(omega).
    """
    wave = np.sum(chi, axis=0).astype(np.complex128)
    wave[np.diag_indices(3)] += (omega * v_A) ** 2
    wave[0, 0] -= kpar**2
    wave[1, 1] -= kpar**2 + kperp**2
    wave[2, 2] -= kperp**2
    wave[0, 2] += kperp * kpar
    return symmetrize(wave)


def dispersion_from_susceptibility(
    chi: np.ndarray,
    omega: complex,
    kperp: float,
    kpar: float,
    v_A: float,
) -> complex:
    """D(omega) from an already reduced ``(nspec, 3, 3)`` contribution array."""
    wave = wave_tensor(chi, omega, kperp, kpar, v_A)
    return complex(dispersion_determinant(np.ascontiguousarray(wave)))


def order_contribution(
    kernel: SpeciesKernel,
    omega: complex,
    n: int,
    cfg: IntegrationConfig,
    relativistic: RelativisticIntegrals | None = None,
) -> np.ndarray:
    """3x3 increment (upper triangle) of Bessel order ``n`` for one species.

    Order zero touches only yy, zz and yz.  For ``n > 0`` both ``+n`` and
    ``-n`` are integrated, each with its own resonance flag.
    """
    found_plus, found_minus = locate_resonances(kernel, omega, n, cfg.positions_principal)

    if kernel.kind is SpeciesKind.RELATIVISTIC:
        def integrate(order, component, found):
            return relativistic.full_integrate(kernel, omega, order, component, found)
    else:
        def integrate(order, component, found):
            return full_integrate(kernel, omega, order, component, found, cfg)

    increment = np.zeros((3, 3), dtype=np.complex128)
    components = ORDER_ZERO_COMPONENTS if n == 0 else tuple(Component)
    for component in components:
        i, j = component.index
        increment[i, j] += integrate(n, component, found_plus)
        if n != 0:
            increment[i, j] += integrate(-n, component, found_minus)
    return increment


@dataclass
class Session:
    """Mutable per-wavevector state of a solver.

    Attributes:
        kperp: Current perpendicular wavenumber.
        kpar: Current parallel wavenumber.
        nmax: Maximum Bessel order per species (after inflation).
        assignments: Work partition over all ranks.
        tasks: This rank's assignments paired with their bound kernels.
        last_susceptibility: Coordinator only; per-species chi / (omega v_A)^2
            from the latest evaluation, shape ``(nspec, 3, 3)``, full tensor
            with chi_yx = -chi_xy, chi_zy = -chi_yz and chi_zx = +chi_xz.
        last_dispersion_tensor: Coordinator only; the latest wave tensor.
    """

    kperp: float
    kpar: float
    nmax: list[int]
    assignments: list[WorkAssignment]
    tasks: list[tuple[WorkAssignment, SpeciesKernel]] = field(default_factory=list)
    last_susceptibility: np.ndarray | None = None
    last_dispersion_tensor: np.ndarray | None = None


class DispersionSolver:
    """Evaluates D(omega) for a fixed plasma at a settable wavevector.

    Collective: on a multi-rank cluster every rank must construct the
    solver and call ``set_wavevector`` / ``dispersion`` in lockstep.

    Args:
        config: Run configuration (wavevector, v_A, quadrature parameters).
        species: Species with their grids and distributions.
        cluster: Message-passing context; defaults to ``SerialCluster``.
        bi_maxwellian: Provider for species flagged ``bi_maxwellian``.
        relativistic: Integrals for species flagged ``relativistic``.

    Raises:
        ValueError: A species needs a provider that was not supplied, or the
            cluster has fewer integrating ranks than species.
    """

    def __init__(
        self,
        config: DispersionConfig,
        species: Sequence[Species],
        cluster: Cluster | None = None,
        *,
        bi_maxwellian: SusceptibilityProvider | None = None,
        relativistic: RelativisticIntegrals | None = None,
    ) -> None:
        if not species:
            raise ValueError("at least one species is required")
        self.config = config
        self.species = list(species)
        self.cluster = cluster if cluster is not None else SerialCluster()
        self.bi_maxwellian = bi_maxwellian
        self.relativistic = relativistic

        kinds = [s.kind for s in self.species]
        if SpeciesKind.BI_MAXWELLIAN in kinds and bi_maxwellian is None:
            raise ValueError("a bi-Maxwellian species requires a SusceptibilityProvider")
        if SpeciesKind.RELATIVISTIC in kinds and relativistic is None:
            raise ValueError("a relativistic species requires a RelativisticIntegrals provider")
        if self.cluster.size > 1 and self.cluster.size - 1 < len(self.species):
            raise ValueError(
                f"{self.cluster.size} workers cannot serve {len(self.species)} species "
                "(one coordinator plus at least one worker per species)"
            )

        self.session: Session | None = None
        self.set_wavevector(config.kperp, config.kpar)

    @property
    def parallel(self) -> bool:
        return self.cluster.size > 1

    @property
    def last_susceptibility(self) -> np.ndarray | None:
        """Per-species susceptibility of the latest evaluation (coordinator only).

        The lower triangle follows the wave-tensor convention: xy and yz are
        antisymmetric, xz is symmetric (chi_zx = chi_xz).  Eigenvector
        analyses written for chi_zx = -chi_xz must flip that sign
        themselves.
        """
        return self.session.last_susceptibility

    @property
    def last_dispersion_tensor(self) -> np.ndarray | None:
        return self.session.last_dispersion_tensor

    def _max_orders(self, kperp: float) -> list[int]:
        tolerance = self.config.integration.bessel_zero
        nmax = []
        for sp in self.species:
            if sp.kind is SpeciesKind.BI_MAXWELLIAN:
                nmax.append(1)
            else:
                nmax.append(max_bessel_order(sp.grid.pperp, kperp, sp.params.charge, tolerance))
        return nmax

    def _bind(
        self,
        assignments: list[WorkAssignment],
        kperp: float,
        kpar: float,
        tables: dict[WorkAssignment, BesselTable] | None = None,
    ) -> list[tuple[WorkAssignment, SpeciesKernel]]:
        tasks = []
        for task in assignments:
            sp = self.species[task.species]
            if tables is not None and task in tables:
                table = tables[task]
            else:
                table = BesselTable.build(
                    sp.grid.pperp, kperp, sp.params.charge, task.n_min, task.n_max
                )
            kernel = SpeciesKernel(sp, kperp, kpar, self.config.v_A, table)
            tasks.append((task, kernel))
        return tasks

    def set_wavevector(self, kperp: float, kpar: float) -> None:
        """Move to a new wavevector (collective).

        A change of ``kperp`` recomputes the maximum orders, the partition
        and the Bessel tables; a change of ``kpar`` alone reuses the tables.
        """
        if kperp <= 0.0:
            raise ValueError(f"kperp must be positive, got {kperp}")
        if kpar == 0.0:
            raise ValueError("kpar must be non-zero")

        session = self.session
        if session is None or kperp != session.kperp:
            nmax = self._max_orders(kperp)
            if self.parallel:
                kinds = [s.kind for s in self.species]
                nmax = inflate_orders(nmax, kinds, self.cluster.size)
                assignments = partition_work(nmax, self.cluster.size)
                local = [a for a in assignments if a.rank == self.cluster.rank]
            else:
                assignments = serial_assignments(nmax)
                local = assignments
            tasks = self._bind(local, kperp, kpar)
            if self.cluster.is_coordinator:
                logger.info("kperp=%.6g kpar=%.6g: n_max per species %s", kperp, kpar, nmax)
        else:
            nmax = session.nmax
            assignments = session.assignments
            tables = {task: kernel.bessel for task, kernel in session.tasks}
            tasks = self._bind([task for task, _ in session.tasks], kperp, kpar, tables)

        self.session = Session(
            kperp=kperp, kpar=kpar, nmax=nmax, assignments=assignments, tasks=tasks
        )
        self.cluster.barrier()

    def _task_contribution(
        self, task: WorkAssignment, kernel: SpeciesKernel, omega: complex
    ) -> np.ndarray:
        sp = kernel.species
        if sp.kind is SpeciesKind.BI_MAXWELLIAN:
            if task.n_min != 0:
                return np.zeros((3, 3), dtype=np.complex128)
            chi = self.bi_maxwellian.susceptibility(sp, kernel.kperp, kernel.kpar, omega)
            return np.asarray(chi, dtype=np.complex128)

        cfg = self.config.integration
        schi = np.zeros((3, 3), dtype=np.complex128)
        for n in task.orders:
            schi += order_contribution(kernel, omega, n, cfg, self.relativistic)
        if task.n_min == 0:
            if sp.kind is SpeciesKind.RELATIVISTIC:
                schi[2, 2] += self.relativistic.ee_term(kernel, omega)
            else:
                schi[2, 2] += ee_term(kernel)
        return schi * sp.params.density * sp.params.charge

    def local_susceptibility(self, omega: complex) -> np.ndarray:
        """This rank's partial contributions, shape ``(nspec, 3, 3)``, upper triangle."""
        omega = complex(omega)
        chi = np.zeros((len(self.species), 3, 3), dtype=np.complex128)
        for task, kernel in self.session.tasks:
            chi[task.species] += self._task_contribution(task, kernel, omega)
        return chi

    def dispersion(self, omega: complex) -> complex:
        """D(omega) at the current wavevector (collective).

        The coordinator keeps the per-species susceptibility and the wave
        tensor of this evaluation in ``last_susceptibility`` and
        ``last_dispersion_tensor``.
        """
        omega = complex(omega)
        session = self.session
        chi = self.cluster.reduce_sum(self.local_susceptibility(omega))
        value = None
        if self.cluster.is_coordinator:
            v_A = self.config.v_A
            wave = wave_tensor(chi, omega, session.kperp, session.kpar, v_A)
            with np.errstate(divide="ignore", invalid="ignore"):
                session.last_susceptibility = symmetrize(chi) / (omega * v_A) ** 2
            session.last_dispersion_tensor = wave
            value = complex(dispersion_determinant(np.ascontiguousarray(wave)))
        value = self.cluster.bcast(value)
        self.cluster.barrier()
        return value

    __call__ = dispersion
