"""Resonance locator: does the n-th order pole fall on the parallel grid?"""

from __future__ import annotations

import numpy as np

from lindisp.kinetic.kernel import SpeciesKernel
from lindisp.species import SpeciesKind


def _on_grid(kernel: SpeciesKernel, p_res: float, margin: int) -> bool:
    ppar = kernel.grid.ppar
    lo, hi = ppar[0], ppar[-1]
    width = margin * kernel.grid.dppar
    if lo <= p_res < hi:
        return True
    return (lo - width <= p_res < lo) or (hi <= p_res < hi + width)


def _relativistic_on_grid(kernel: SpeciesKernel, omega: complex, n: int) -> bool:
    pperp, ppar = kernel.grid.mesh()
    m, q = kernel.mass, kernel.charge
    gamma = np.sqrt((pperp**2 + ppar**2) * kernel.v_A**2 / m**2 + 1.0)
    p_res = ((gamma * m * omega - n * q) / kernel.kpar).real
    hit = (ppar[:, :-1] <= p_res[:, :-1]) & (p_res[:, :-1] < ppar[:, 1:])
    return bool(np.any(hit))


def locate_resonances(
    kernel: SpeciesKernel,
    omega: complex,
    n: int,
    margin: int,
) -> tuple[bool, bool]:
    """Resonance flags for orders ``+n`` and ``-n``.

    Non-relativistic species: Re p_res lies inside the parallel grid or
    within ``margin`` grid steps beyond either end.  Relativistic species:
    some grid cell brackets the Lorentz-factor-dependent Re p_res.

    Returns:
        ``(found_plus, found_minus)``.
    """
    if kernel.kind is SpeciesKind.RELATIVISTIC:
        return (
            _relativistic_on_grid(kernel, omega, n),
            _relativistic_on_grid(kernel, omega, -n),
        )
    return (
        _on_grid(kernel, kernel.resonance_momentum(omega, n).real, margin),
        _on_grid(kernel, kernel.resonance_momentum(omega, -n).real, margin),
    )
