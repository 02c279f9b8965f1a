"""Bessel-function cache for the velocity-space integrals.

The gyrophase average of the linear response brings in J_n(kperp pperp / q)
and its first derivative for every Bessel order a worker owns.  The values
depend only on ``kperp`` and the perpendicular grid, so they are tabulated
once per wavevector and looked up for every frequency evaluation.

Functions:
    max_bessel_order: Highest order whose peak exceeds a tolerance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from scipy.special import jv

from lindisp.constants import BESSEL_ORDER_WARN

logger = logging.getLogger(__name__)


def _parity(n: int) -> float:
    return 1.0 if n % 2 == 0 else -1.0


@dataclass
class BesselTable:
    """J_n at every perpendicular node for orders ``n_min - 1 .. n_max + 1``.

    Attributes:
        n_min: Lowest order owned by the worker.
        n_max: Highest order owned by the worker.
        argument: Bessel argument ``kperp * pperp / q`` per node.
        values: Array of shape ``(n_max - n_min + 3, nperp + 1)``; row ``k``
            holds order ``n_min - 1 + k``.
    """

    n_min: int
    n_max: int
    argument: np.ndarray
    values: np.ndarray

    @classmethod
    def build(
        cls,
        pperp: np.ndarray,
        kperp: float,
        charge: float,
        n_min: int,
        n_max: int,
    ) -> BesselTable:
        if n_min < 0 or n_max < n_min:
            raise ValueError(f"invalid order range [{n_min}, {n_max}]")
        argument = kperp * np.asarray(pperp, dtype=np.float64) / charge
        orders = np.arange(n_min - 1, n_max + 2)
        values = jv(orders[:, None], argument[None, :])
        return cls(n_min=n_min, n_max=n_max, argument=argument, values=values)

    def _row(self, order: int) -> np.ndarray:
        k = order - (self.n_min - 1)
        if k < 0 or k >= self.values.shape[0]:
            raise ValueError(
                f"Bessel order {order} outside cached range "
                f"[{self.n_min - 1}, {self.n_max + 1}]"
            )
        return self.values[k]

    def j(self, n: int) -> np.ndarray:
        """J_n per perpendicular node; negative orders via J_-n = (-1)^n J_n."""
        if n < 0:
            return _parity(n) * self._row(-n)
        return self._row(n)

    def jprime(self, n: int) -> np.ndarray:
        """dJ_n/dz per perpendicular node."""
        if n == 0:
            return -self.j(1)
        if n == -1:
            return 0.5 * (self.j(-2) - self.j(0))
        return 0.5 * (self.j(n - 1) - self.j(n + 1))


def max_bessel_order(
    pperp: np.ndarray,
    kperp: float,
    charge: float,
    tolerance: float,
) -> int:
    """Smallest order whose peak over the perpendicular nodes is <= tolerance.

    Args:
        pperp: Perpendicular momentum nodes.
        kperp: Perpendicular wavenumber.
        charge: Species charge (its magnitude sets the argument scale).
        tolerance: Peak J_n value below which higher orders are dropped.

    Returns:
        Maximum Bessel order ``n_max >= 1`` for the species.
    """
    argument = kperp * np.asarray(pperp, dtype=np.float64) / abs(charge)
    n = 0
    peak = np.inf
    while peak > tolerance:
        n += 1
        if n == BESSEL_ORDER_WARN + 1:
            logger.warning(
                "Bessel order search passed %d (kperp=%.4g, max pperp=%.4g); "
                "check the perpendicular grid extent",
                BESSEL_ORDER_WARN, kperp, float(np.max(pperp)),
            )
        peak = float(np.max(jv(n, argument)))
    return n
