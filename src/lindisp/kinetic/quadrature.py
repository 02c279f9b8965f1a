"""Velocity-space quadrature of the susceptibility integrand.

Three integration modes, chosen per (species, omega, n, component):

* plain: composite trapezoid over a range of parallel columns, used when
  no resonance touches the grid;
* resonant: principal-value treatment of the pole at p_res with an
  exclusion window, mirrored pole subtraction and an analytic branch for
  poles that sit close to the real axis;
* Landau: the 1-D perpendicular integral along the residue that analytic
  continuation adds for Im(omega) <= 0.

All 2-D integrals carry the 2 pi gyrophase factor.
"""

from __future__ import annotations

import numpy as np
from numba import njit

from lindisp.config import IntegrationConfig
from lindisp.constants import pi
from lindisp.kinetic.kernel import Component, SpeciesKernel


def trapezoid_weights(n_nodes: int, lo: int, hi: int) -> np.ndarray:
    """Composite-trapezoid weights over nodes ``lo..hi`` (zero elsewhere).

    Interior nodes weigh 1, the two end nodes 1/2.  An empty range
    (``lo >= hi``) gives all-zero weights.
    """
    w = np.zeros(n_nodes)
    lo = max(lo, 0)
    hi = min(hi, n_nodes - 1)
    if hi <= lo:
        return w
    w[lo:hi + 1] = 1.0
    w[lo] = 0.5
    w[hi] = 0.5
    return w


@njit(cache=True)
def _weighted_sum(values, w_perp, w_par):
    total = values[0, 0] * 0.0
    for i in range(values.shape[0]):
        wi = w_perp[i]
        if wi == 0.0:
            continue
        for j in range(values.shape[1]):
            wj = w_par[j]
            if wj != 0.0:
                total += wi * wj * values[i, j]
    return total


def trapezoid_2d(values: np.ndarray, dpperp: float, dppar: float, lo: int, hi: int):
    """2-D trapezoid over all perpendicular nodes and parallel columns ``lo..hi``.

    Args:
        values: Real or complex integrand on the grid, ``[iperp, ipar]``.
        dpperp: Perpendicular grid spacing.
        dppar: Parallel grid spacing.
        lo: First parallel column.
        hi: Last parallel column (inclusive).

    Returns:
        The integral (no 2 pi factor); zero when ``lo >= hi``.
    """
    values = np.ascontiguousarray(values)
    nperp, npar = values.shape
    w_perp = trapezoid_weights(nperp, 0, nperp - 1)
    w_par = trapezoid_weights(npar, lo, hi)
    return _weighted_sum(values, w_perp, w_par) * dpperp * dppar


def _plain(kernel: SpeciesKernel, values: np.ndarray, lo: int, hi: int) -> complex:
    grid = kernel.grid
    return 2.0 * pi * complex(trapezoid_2d(values, grid.dpperp, grid.dppar, lo, hi))


def integrate_plain(
    kernel: SpeciesKernel,
    omega: complex,
    n: int,
    component: Component,
    lo: int,
    hi: int,
) -> complex:
    """Trapezoidal integral of U T over parallel columns ``lo..hi``."""
    if lo >= hi:
        return 0j
    values = np.broadcast_to(kernel.integrand(omega, n, component), kernel.grid.shape)
    return _plain(kernel, values, lo, hi)


def integrate_resonant(
    kernel: SpeciesKernel,
    omega: complex,
    n: int,
    component: Component,
    cfg: IntegrationConfig,
) -> complex:
    """Principal-value integral of U T around the pole at p_res.

    The grid is integrated plainly outside ``[lower, upper]``.  Between
    ``lower`` and ``Re p_res + Delta`` the integrand g/(ppar - p_res) is
    folded onto itself, g(Re p + x)/(x - i Im p) - g(Re p - x)/(x + i Im p),
    which cancels the pole.  For |Im p_res| <= t_lim the fold is replaced
    by its analytic limit, a Lorentzian-weighted derivative of g plus the
    half-residue sign(Im p) i pi g(Re p).  The leftover stretch up to
    ``upper`` is integrated directly on a fine grid.

    If the window would reach within one node of a grid edge, the window
    is dropped and the truncated domain on the far side is integrated
    plainly.
    """
    grid = kernel.grid
    ppar = grid.ppar
    last = ppar.size - 1
    dppar = grid.dppar
    width = cfg.positions_principal

    p_res = kernel.resonance_momentum(omega, n)
    p_r, p_i = p_res.real, p_res.imag
    j_res = int(np.floor((p_r - ppar[0]) / dppar))

    values = np.broadcast_to(kernel.integrand(omega, n, component), grid.shape)

    if j_res - width <= 1:
        lo = max(j_res + width, 0)
        return _plain(kernel, values, lo, last) if lo < last else 0j
    if j_res + width >= last - 1:
        hi = min(j_res - width, last)
        return _plain(kernel, values, 0, hi) if hi > 0 else 0j

    lower = j_res - width
    if abs(p_r - ppar[j_res]) < 0.5 * dppar:
        upper = j_res + width + 1
    else:
        upper = j_res + width + 2
    outside = _plain(kernel, values, 0, lower) + _plain(kernel, values, upper, last)

    g = kernel.regular_part(omega, n, component)
    g = np.broadcast_to(g, grid.shape)
    delta = p_r - ppar[lower]
    step = delta / cfg.n_resonance_interval
    x = step * np.arange(cfg.n_resonance_interval + 1)
    w_x = trapezoid_weights(x.size, 0, x.size - 1)

    if abs(p_i) > cfg.t_lim:
        folded = (
            kernel.linearized(g, p_r + x) / (x - 1j * p_i)
            - kernel.linearized(g, p_r - x) / (x + 1j * p_i)
        )
        window = step * (folded @ w_x)
    else:
        g_prime = (
            kernel.linearized(g, p_r + dppar) - kernel.linearized(g, p_r - dppar)
        )[:, 0] / (2.0 * dppar)
        if p_i != 0.0:
            lorentz = x**2 / (x**2 + p_i**2)
        else:
            lorentz = np.ones_like(x)
        window = step * (2.0 * g_prime) * (lorentz @ w_x)
        window = window + np.sign(p_i) * 1j * pi * kernel.linearized(g, p_r)[:, 0]

    start = p_r + delta
    stop = ppar[upper]
    n_tiny = int((stop - start) / step)
    if n_tiny > 0:
        xs = np.linspace(start, stop, n_tiny + 1)
        h = (stop - start) / n_tiny
        tail = kernel.linearized(g, xs) / (xs - p_res)
        window = window + h * (tail @ trapezoid_weights(xs.size, 0, xs.size - 1))

    w_perp = trapezoid_weights(grid.pperp.size, 0, grid.pperp.size - 1)
    return complex(2.0 * pi * grid.dpperp * (w_perp @ window)) + outside


def landau_contour(
    kernel: SpeciesKernel,
    omega: complex,
    n: int,
    component: Component,
) -> complex:
    """Residue contribution along the perpendicular axis at p_res.

    The distribution gradients are continued linearly from the grid to the
    complex resonance momentum.
    """
    grid = kernel.grid
    p_res = kernel.resonance_momentum(omega, n)
    dfperp, dfpar = kernel.derivatives_at(p_res)
    pperp = grid.pperp
    tensor = kernel.tensor_at(n, component, p_res)
    numer = (pperp * dfpar - p_res * dfperp) * kernel.kpar / kernel.mass + omega * dfperp
    integrand = -tensor * (kernel.charge / abs(kernel.kpar)) * numer
    w_perp = trapezoid_weights(pperp.size, 0, pperp.size - 1)
    return complex((w_perp @ integrand) * 1j * grid.dpperp * pi * 2.0 * pi)


def full_integrate(
    kernel: SpeciesKernel,
    omega: complex,
    n: int,
    component: Component,
    found: bool,
    cfg: IntegrationConfig,
) -> complex:
    """Integral of one tensor entry for order ``n`` with the right contour.

    No resonance on the grid: plain quadrature.  Otherwise the principal
    value, plus the Landau residue once for Im(omega) == 0 and twice for
    Im(omega) < 0.
    """
    if not found:
        return integrate_plain(kernel, omega, n, component, 0, kernel.grid.ppar.size - 1)
    value = integrate_resonant(kernel, omega, n, component, cfg)
    if omega.imag < 0.0:
        value += 2.0 * landau_contour(kernel, omega, n, component)
    elif omega.imag == 0.0:
        value += landau_contour(kernel, omega, n, component)
    return value


def ee_term(kernel: SpeciesKernel) -> complex:
    """Order-independent zz correction 2 pi (q/m) Int ppar (pperp df/dppar - ppar df/dpperp)."""
    grid = kernel.grid
    field = kernel.species.field
    pperp, ppar = grid.mesh()
    values = ppar * (pperp * field.df0_dppar - ppar * field.df0_dpperp)
    last = grid.ppar.size - 1
    integral = trapezoid_2d(values, grid.dpperp, grid.dppar, 0, last)
    return complex(2.0 * pi * (kernel.charge / kernel.mass) * integral)
