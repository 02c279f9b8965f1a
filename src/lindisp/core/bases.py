"""Core abstract base classes.

Defines the interface contracts the dispersion solver is written against:
- ``Cluster``: collective sum-reduce / broadcast / barrier primitives
- ``SusceptibilityProvider``: closed-form per-species tensor (bi-Maxwellian)
- ``RelativisticIntegrals``: relativistic variant of the quadrature engine
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from lindisp.kinetic.kernel import Component, SpeciesKernel
    from lindisp.species import Species


class Cluster(ABC):
    """Message-passing context shared by all ranks of a run.

    Every method is collective: all ranks must call it in the same order.
    """

    @property
    @abstractmethod
    def rank(self) -> int:
        """Index of this worker (0 is the coordinator)."""

    @property
    @abstractmethod
    def size(self) -> int:
        """Total number of workers including the coordinator."""

    @property
    def is_coordinator(self) -> bool:
        return self.rank == 0

    @abstractmethod
    def reduce_sum(self, array: np.ndarray, root: int = 0) -> np.ndarray | None:
        """Element-wise sum over ranks, delivered to ``root`` (None elsewhere)."""

    @abstractmethod
    def bcast(self, value: Any, root: int = 0) -> Any:
        """Return ``root``'s value on every rank."""

    @abstractmethod
    def barrier(self) -> None:
        """Block until every rank arrives."""


class SusceptibilityProvider(ABC):
    """Analytic susceptibility for species flagged ``bi_maxwellian``."""

    @abstractmethod
    def susceptibility(
        self,
        species: Species,
        kperp: float,
        kpar: float,
        omega: complex,
    ) -> np.ndarray:
        """Full 3x3 contribution of the species, already scaled by density and charge.

        Only the upper triangle (xx, yy, zz, xy, xz, yz) is read.
        """


class RelativisticIntegrals(ABC):
    """Quadrature engine for species flagged ``relativistic``.

    Same contract as ``lindisp.kinetic.quadrature.full_integrate`` and
    ``ee_term``; the resonance flag comes from the relativistic locator.
    """

    @abstractmethod
    def full_integrate(
        self,
        kernel: SpeciesKernel,
        omega: complex,
        n: int,
        component: Component,
        found: bool,
    ) -> complex:
        """Integral of one tensor entry at Bessel order ``n``."""

    @abstractmethod
    def ee_term(self, kernel: SpeciesKernel, omega: complex) -> complex:
        """Order-independent zz correction."""
