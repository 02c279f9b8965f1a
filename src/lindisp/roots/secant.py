"""Secant iteration for a single complex root of D(omega).

The solver only needs a callable ``dispersion(omega) -> complex``; on a
multi-rank run that callable is collective and returns the broadcast value,
so every rank follows the same iteration path.
"""

from __future__ import annotations

import cmath
import enum
import logging
from dataclasses import dataclass
from typing import Callable

from lindisp.config import SecantConfig
from lindisp.constants import SECANT_DENOM_FLOOR, SECANT_NUDGE

logger = logging.getLogger(__name__)


class SecantState(str, enum.Enum):
    """Lifecycle of one secant refinement."""

    INIT = "init"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITER_REACHED = "max_iter_reached"


@dataclass
class SecantResult:
    """Outcome of a secant refinement.

    Attributes:
        omega: Converged root, or the iterate with the smallest |D| seen.
        value: D at ``omega``.
        iterations: Number of D evaluations at iterates (seed excluded).
        state: ``CONVERGED`` or ``MAX_ITER_REACHED``.
        seed: Initial guess.
    """

    omega: complex
    value: complex
    iterations: int
    state: SecantState
    seed: complex

    @property
    def converged(self) -> bool:
        return self.state is SecantState.CONVERGED


def secant(
    dispersion: Callable[[complex], complex],
    omega0: complex,
    cfg: SecantConfig,
    *,
    quiet: bool = False,
) -> SecantResult:
    """Refine ``omega0`` until |D| < ``cfg.d_threshold``.

    The second starting point is ``omega0 * (1 - d_prec)``.  When two
    successive D values coincide to within 1e-80 the previous point is
    nudged by 1e-8 before the step.  If the iteration budget runs out, or
    the step degenerates, the iterate with the smallest |D| is returned
    flagged as not converged.

    ``quiet`` suppresses the non-convergence warnings; non-coordinator
    ranks of a multi-rank run pass it so each warning is logged once.
    """
    seed = complex(omega0)
    state = SecantState.INIT
    omega = seed
    prev = seed * (1.0 - cfg.d_prec)
    d_prev = dispersion(prev)
    best_omega, best_value = prev, d_prev

    state = SecantState.ITERATING
    iterations = 0
    while iterations < cfg.numiter:
        iterations += 1
        value = dispersion(omega)
        if abs(value) < abs(best_value) or not cmath.isfinite(best_value):
            best_omega, best_value = omega, value
        if abs(value) < cfg.d_threshold:
            state = SecantState.CONVERGED
            break

        if abs(value - d_prev) < SECANT_DENOM_FLOOR:
            prev = prev + SECANT_NUDGE
            d_prev = dispersion(prev)
        denom = value - d_prev
        if denom == 0:
            if not quiet:
                logger.warning("Secant step degenerate at omega=%s; stopping", omega)
            break
        step = value * (omega - prev) / denom
        prev, d_prev = omega, value
        omega = omega - step
        if not cmath.isfinite(omega):
            if not quiet:
                logger.warning("Secant iterate from seed %s became non-finite; stopping", seed)
            break

    if state is SecantState.CONVERGED:
        logger.debug("Converged to omega=%s in %d iterations (|D|=%.3e)", omega, iterations, abs(value))
        return SecantResult(omega, value, iterations, state, seed)

    state = SecantState.MAX_ITER_REACHED
    if not quiet:
        logger.warning(
            "No convergence from seed %s after %d iterations; best omega=%s |D|=%.3e",
            seed, iterations, best_omega, abs(best_value),
        )
    return SecantResult(best_omega, best_value, iterations, state, seed)
