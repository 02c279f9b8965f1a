"""Frequency-map search: scan |D| over a complex-frequency window.

D(omega) is evaluated on a rectangular (Re omega, Im omega) grid, local
minima of |D| are taken as root candidates and each candidate is refined
with the secant solver.
"""

from __future__ import annotations

import cmath
import logging
from dataclasses import dataclass, field
from typing import Callable, Sequence

import numpy as np
from numba import njit

from lindisp.config import MapSearchConfig, SecantConfig
from lindisp.constants import NAN_SENTINEL, OVERFLOW_LIMIT, OVERFLOW_SENTINEL
from lindisp.roots.secant import secant

logger = logging.getLogger(__name__)


@dataclass
class FrequencyMap:
    """D(omega) sampled on the search window.

    Attributes:
        omega: Complex frequencies, shape ``(n_real, n_imag)``.
        values: Sanitised D values.
        magnitude: Sanitised |D|.
    """

    omega: np.ndarray
    values: np.ndarray
    magnitude: np.ndarray


@dataclass
class Root:
    """A refined root and the seed it came from."""

    omega: complex
    value: complex
    converged: bool
    iterations: int
    seed: complex


@dataclass
class MapSearchResult:
    frequency_map: FrequencyMap
    seeds: list[complex] = field(default_factory=list)
    roots: list[Root] = field(default_factory=list)


def _axis(lo: float, hi: float, n: int, log: bool) -> np.ndarray:
    if n == 1:
        return np.array([lo], dtype=np.float64)
    if log:
        return lo * (hi / lo) ** (np.arange(n) / (n - 1))
    return np.linspace(lo, hi, n)


def frequency_axes(cfg: MapSearchConfig) -> tuple[np.ndarray, np.ndarray]:
    """Real and imaginary axes of the search window (linear or logarithmic)."""
    return (
        _axis(cfg.omega_min, cfg.omega_max, cfg.n_real, cfg.log_real),
        _axis(cfg.gamma_min, cfg.gamma_max, cfg.n_imag, cfg.log_imag),
    )


def sanitize(value: complex) -> tuple[complex, float]:
    """Replace NaN by 999999 and infinite or >1e100 magnitudes by 899999."""
    if cmath.isnan(value):
        return complex(NAN_SENTINEL), NAN_SENTINEL
    magnitude = abs(value)
    if not np.isfinite(magnitude) or magnitude > OVERFLOW_LIMIT:
        return complex(OVERFLOW_SENTINEL), OVERFLOW_SENTINEL
    return value, magnitude


def evaluate_map(
    dispersion: Callable[[complex], complex],
    cfg: MapSearchConfig,
) -> FrequencyMap:
    """Evaluate D on every point of the window, real axis outermost."""
    real_axis, imag_axis = frequency_axes(cfg)
    omega = real_axis[:, None] + 1j * imag_axis[None, :]
    values = np.zeros(omega.shape, dtype=np.complex128)
    magnitude = np.zeros(omega.shape, dtype=np.float64)
    for ir in range(real_axis.size):
        for ii in range(imag_axis.size):
            values[ir, ii], magnitude[ir, ii] = sanitize(dispersion(complex(omega[ir, ii])))
        logger.debug("Map column %d/%d done (Re omega=%.4g)", ir + 1, real_axis.size, real_axis[ir])
    return FrequencyMap(omega=omega, values=values, magnitude=magnitude)


@njit(cache=True)
def find_local_minima(values):
    """Indices ``(ir, ii)`` strictly below every existing orthogonal neighbour.

    Scans imaginary index from high to low and real index from low to high;
    returns an ``(k, 2)`` integer array in that order.
    """
    nr, ni = values.shape
    found = np.empty((nr * ni, 2), dtype=np.int64)
    count = 0
    for ii in range(ni - 1, -1, -1):
        for ir in range(nr):
            v = values[ir, ii]
            if ir > 0 and not v < values[ir - 1, ii]:
                continue
            if ir < nr - 1 and not v < values[ir + 1, ii]:
                continue
            if ii > 0 and not v < values[ir, ii - 1]:
                continue
            if ii < ni - 1 and not v < values[ir, ii + 1]:
                continue
            found[count, 0] = ir
            found[count, 1] = ii
            count += 1
    return found[:count]


def refine_roots(
    dispersion: Callable[[complex], complex],
    seeds: Sequence[complex],
    cfg: SecantConfig,
    *,
    quiet: bool = False,
) -> list[Root]:
    """Secant-refine each seed, dropping non-finite roots and near-duplicates.

    ``quiet`` silences the per-root log lines (non-coordinator ranks).
    """
    roots: list[Root] = []
    for k, seed in enumerate(seeds):
        result = secant(dispersion, seed, cfg, quiet=quiet)
        if not (cmath.isfinite(result.omega) and cmath.isfinite(result.value)):
            if not quiet:
                logger.warning("Root %d (seed %s) is non-finite; discarded", k, seed)
            continue
        clash = next((r for r in roots if abs(result.omega - r.omega) < cfg.d_gap), None)
        if clash is not None:
            if not quiet:
                logger.warning(
                    "Root %d at %s lies within %.3g of %s; discarded",
                    k, result.omega, cfg.d_gap, clash.omega,
                )
            continue
        if not quiet:
            logger.info(
                "Root %d: omega=%s |D|=%.3e (%s)",
                k, result.omega, abs(result.value), result.state.value,
            )
        roots.append(
            Root(
                omega=result.omega,
                value=result.value,
                converged=result.converged,
                iterations=result.iterations,
                seed=complex(seed),
            )
        )
    return roots


def map_search(
    dispersion: Callable[[complex], complex],
    map_cfg: MapSearchConfig,
    secant_cfg: SecantConfig,
    *,
    quiet: bool = False,
) -> MapSearchResult:
    """Evaluate the map, pick up to ``n_roots`` local minima and refine them."""
    fmap = evaluate_map(dispersion, map_cfg)
    result = MapSearchResult(frequency_map=fmap)
    if not map_cfg.determine_minima:
        return result
    if map_cfg.n_real < 2 or map_cfg.n_imag < 2:
        logger.info("Map is one-dimensional; skipping the minimum search")
        return result

    minima = find_local_minima(np.ascontiguousarray(fmap.magnitude))
    logger.debug("%d possible local minima found", minima.shape[0])
    if minima.shape[0] > map_cfg.n_roots and not quiet:
        logger.info("%d possible local minima found; keeping the first %d",
                    minima.shape[0], map_cfg.n_roots)
    result.seeds = [complex(fmap.omega[ir, ii]) for ir, ii in minima[: map_cfg.n_roots]]
    result.roots = refine_roots(dispersion, result.seeds, secant_cfg, quiet=quiet)
    return result
