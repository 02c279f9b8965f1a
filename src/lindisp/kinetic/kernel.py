"""Tensor-element kernel of the kinetic susceptibility integrand.

For Bessel order n the susceptibility integrand factorises into a resonant
weight U (the distribution gradients over the resonant denominator) and a
T tensor built from Bessel functions.  ``SpeciesKernel`` binds one species
to a wavevector so that both factors can be evaluated on the grid, at
off-grid parallel momenta and at complex resonance momenta.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

import numpy as np

from lindisp.kinetic.bessel import BesselTable

if TYPE_CHECKING:
    from lindisp.species import Species


class Component(enum.Enum):
    """Independent entries of the 3x3 susceptibility tensor."""

    XX = (0, 0)
    YY = (1, 1)
    ZZ = (2, 2)
    XY = (0, 1)
    XZ = (0, 2)
    YZ = (1, 2)

    @property
    def index(self) -> tuple[int, int]:
        return self.value


# Order zero contributes only to these entries.
ORDER_ZERO_COMPONENTS = (Component.YY, Component.ZZ, Component.YZ)


def tensor_element(component, n, bessel, bessel_prime, pperp, ppar, z):
    """One entry of the T tensor.

    Args:
        component: Which tensor entry.
        n: Signed Bessel order.
        bessel: J_n values (broadcastable against ``pperp``).
        bessel_prime: J_n' values.
        pperp: Perpendicular momentum.
        ppar: Parallel momentum; real grid values or a complex momentum.
        z: ``kperp / q`` for the species.

    Returns:
        The entry, broadcast over the inputs.
    """
    if component is Component.XX:
        return (n * n) * bessel**2 / z**2
    if component is Component.YY:
        return pperp**2 * bessel_prime**2
    if component is Component.ZZ:
        return bessel**2 * ppar**2
    if component is Component.XY:
        return 1j * n * pperp * bessel * bessel_prime / z
    if component is Component.XZ:
        return n * bessel**2 * ppar / z
    return -1j * bessel * bessel_prime * ppar * pperp


class SpeciesKernel:
    """One species at a fixed wavevector, ready for frequency evaluations.

    Args:
        species: The species (grid, distribution, parameters).
        kperp: Perpendicular wavenumber.
        kpar: Parallel wavenumber (non-zero).
        v_A: Alfven speed over c.
        bessel: Bessel table covering every order this kernel is asked for.
    """

    def __init__(
        self,
        species: Species,
        kperp: float,
        kpar: float,
        v_A: float,
        bessel: BesselTable,
    ) -> None:
        if kpar == 0.0:
            raise ValueError("kpar must be non-zero")
        self.species = species
        self.grid = species.grid
        self.kperp = kperp
        self.kpar = kpar
        self.v_A = v_A
        self.bessel = bessel
        self.mass = species.params.mass
        self.charge = species.params.charge
        self.z = kperp / self.charge

        field = species.field
        self.pperp = self.grid.pperp[:, None]
        self.ppar = self.grid.ppar[None, :]
        # U numerator = omega * A + B
        self._num_a = field.df0_dpperp
        self._num_b = (kpar / self.mass) * (
            self.pperp * field.df0_dppar - self.ppar * field.df0_dpperp
        )

    @property
    def kind(self):
        return self.species.kind

    def resonance_momentum(self, omega: complex, n: int) -> complex:
        """Parallel momentum where m omega - kpar p - n q vanishes."""
        return (self.mass * omega - n * self.charge) / self.kpar

    def numerator(self, omega: complex) -> np.ndarray:
        return omega * self._num_a + self._num_b

    def tensor(self, n: int, component: Component) -> np.ndarray:
        """T entry on the grid, shape ``(nperp + 1, 1)`` or the full grid."""
        return tensor_element(
            component, n,
            self.bessel.j(n)[:, None], self.bessel.jprime(n)[:, None],
            self.pperp, self.ppar, self.z,
        )

    def tensor_at(self, n: int, component: Component, ppar: complex) -> np.ndarray:
        """T entry at a single (possibly complex) parallel momentum, per perp node."""
        value = tensor_element(
            component, n,
            self.bessel.j(n), self.bessel.jprime(n),
            self.grid.pperp, ppar, self.z,
        )
        return np.broadcast_to(value, self.grid.pperp.shape)

    def resonant_weight(self, omega: complex, n: int) -> np.ndarray:
        """U = q N / (m omega - kpar ppar - n q) on the grid."""
        denom = self.mass * omega - self.kpar * self.ppar - n * self.charge
        return self.charge * self.numerator(omega) / denom

    def integrand(self, omega: complex, n: int, component: Component) -> np.ndarray:
        return self.resonant_weight(omega, n) * self.tensor(n, component)

    def regular_part(self, omega: complex, n: int, component: Component) -> np.ndarray:
        """Pole-free factor g with U T = g / (ppar - p_res) on the grid."""
        return -self.charge * self.numerator(omega) * self.tensor(n, component) / self.kpar

    def linearized(self, g: np.ndarray, ppar) -> np.ndarray:
        """First-order Taylor expansion of grid values ``g`` at real momenta.

        Uses the node at or below each momentum and a central-difference
        slope; the node index is clipped to the interior.

        Returns:
            Array of shape ``(nperp + 1, len(ppar))``.
        """
        ppar = np.atleast_1d(np.asarray(ppar, dtype=np.float64))
        nodes = self.grid.ppar
        dppar = self.grid.dppar
        j = np.floor((ppar - nodes[0]) / dppar).astype(np.int64)
        j = np.clip(j, 1, nodes.size - 2)
        slope = 0.5 * (g[:, j + 1] - g[:, j - 1]) / dppar
        return g[:, j] + slope * (ppar - nodes[j])

    def derivatives_at(self, ppar: complex) -> tuple[np.ndarray, np.ndarray]:
        """(df0/dpperp, df0/dppar) continued linearly to a complex momentum."""
        nodes = self.grid.ppar
        dppar = self.grid.dppar
        j = int(np.floor((ppar.real - nodes[0]) / dppar))
        j = min(max(j, 0), nodes.size - 2)
        offset = (ppar - nodes[j]) / dppar
        field = self.species.field
        out = []
        for d in (field.df0_dpperp, field.df0_dppar):
            out.append(d[:, j] + offset * (d[:, j + 1] - d[:, j]))
        return out[0], out[1]
