"""Tests for the kernel, resonance locator and quadrature engine."""

from __future__ import annotations

import numpy as np
import pytest

from conftest import maxwellian
from lindisp.config import IntegrationConfig, SpeciesParams
from lindisp.kinetic.kernel import Component, tensor_element
from lindisp.kinetic.quadrature import (
    ee_term,
    full_integrate,
    integrate_plain,
    integrate_resonant,
    landau_contour,
    trapezoid_2d,
    trapezoid_weights,
)
from lindisp.kinetic.resonance import locate_resonances
from lindisp.species import Species


def _close(a: complex, b: complex, rtol: float) -> bool:
    return abs(a - b) <= rtol * abs(b)


class TestTrapezoid:
    """Composite trapezoid weights and 2-D convergence."""

    def test_weights(self):
        np.testing.assert_allclose(trapezoid_weights(6, 1, 4), [0, 0.5, 1, 1, 0.5, 0])

    def test_empty_range(self):
        assert not np.any(trapezoid_weights(5, 3, 3))
        assert trapezoid_2d(np.ones((4, 5)), 1.0, 1.0, 3, 2) == 0.0

    def test_constant_exact(self):
        assert trapezoid_2d(np.ones((5, 9)), 0.25, 0.5, 0, 8) == pytest.approx(4.0)

    def test_complex_values(self):
        values = (1.0 + 2.0j) * np.ones((3, 3))
        assert trapezoid_2d(values, 1.0, 1.0, 0, 2) == pytest.approx(4.0 + 8.0j)

    def test_second_order_convergence(self):
        """Halving both spacings divides the error by about four."""
        exact = 0.5 * (1.0 - np.exp(-4.0)) * np.sin(1.0)
        errors = []
        for n in (16, 32, 64):
            pperp = np.linspace(0.0, 2.0, n + 1)
            ppar = np.linspace(0.0, 1.0, n + 1)
            P, Z = np.meshgrid(pperp, ppar, indexing="ij")
            values = P * np.exp(-P**2) * np.cos(Z)
            errors.append(abs(trapezoid_2d(values, pperp[1], ppar[1], 0, n) - exact))
        for coarse, fine in zip(errors, errors[1:]):
            assert 3.5 < coarse / fine < 4.5


class TestKernel:
    """T-tensor entries and the pole factorisation."""

    def test_tensor_entries(self):
        J, Jp, pperp, ppar, z = 0.3, -0.2, 1.5, 0.7, 0.4
        n = 2
        assert tensor_element(Component.XX, n, J, Jp, pperp, ppar, z) == pytest.approx(n**2 * J**2 / z**2)
        assert tensor_element(Component.YY, n, J, Jp, pperp, ppar, z) == pytest.approx(pperp**2 * Jp**2)
        assert tensor_element(Component.ZZ, n, J, Jp, pperp, ppar, z) == pytest.approx(J**2 * ppar**2)
        assert tensor_element(Component.XY, n, J, Jp, pperp, ppar, z) == pytest.approx(1j * n * pperp * J * Jp / z)
        assert tensor_element(Component.XZ, n, J, Jp, pperp, ppar, z) == pytest.approx(n * J**2 * ppar / z)
        assert tensor_element(Component.YZ, n, J, Jp, pperp, ppar, z) == pytest.approx(-1j * J * Jp * ppar * pperp)

    @pytest.mark.parametrize("kpar", [0.5, -0.5])
    def test_pole_factorisation(self, ions, kernel_factory, kpar):
        kernel = kernel_factory(ions, kpar=kpar)
        omega = 0.3 + 0.05j
        n = 1
        p_res = kernel.resonance_momentum(omega, n)
        lhs = kernel.integrand(omega, n, Component.XZ)
        rhs = kernel.regular_part(omega, n, Component.XZ) / (kernel.ppar - p_res)
        np.testing.assert_allclose(lhs, rhs, rtol=1e-10, atol=1e-14)

    def test_linearized_exact_for_linear(self, ions, kernel_factory):
        kernel = kernel_factory(ions)
        g = np.broadcast_to(2.0 + 3.0 * kernel.ppar, kernel.grid.shape)
        x = np.array([-1.234, 0.0, 0.5, 2.71])
        np.testing.assert_allclose(kernel.linearized(g, x), np.broadcast_to(2.0 + 3.0 * x, (g.shape[0], 4)))

    def test_tensor_at_grid_node(self, ions, kernel_factory):
        kernel = kernel_factory(ions)
        j = 30
        at_node = kernel.tensor_at(2, Component.ZZ, complex(kernel.grid.ppar[j]))
        np.testing.assert_allclose(at_node, kernel.tensor(2, Component.ZZ)[:, j])


class TestResonanceLocator:
    """Resonance inside, near and beyond the parallel grid."""

    def test_inside(self, ions, kernel_factory):
        kernel = kernel_factory(ions)
        # p_res(+0) = omega / kpar = 1.0
        assert locate_resonances(kernel, 0.5 + 0.1j, 0, 5) == (True, True)

    def test_plus_and_minus_independent(self, ions, kernel_factory):
        kernel = kernel_factory(ions)
        # p_res(+1) = (0.5 - 1) / 0.5 = -1, p_res(-1) = 3
        assert locate_resonances(kernel, 0.5, 1, 5) == (True, True)
        # p_res(+3) = -5, p_res(-3) = 7
        assert locate_resonances(kernel, 0.5, 3, 5) == (True, False)

    def test_margin(self, ions, kernel_factory):
        kernel = kernel_factory(ions)
        dppar = kernel.grid.dppar
        edge = kernel.grid.ppar[-1]
        omega_in = 0.5 * (edge + 2.0 * dppar)
        omega_out = 0.5 * (edge + 6.0 * dppar)
        assert locate_resonances(kernel, omega_in, 0, 5)[0]
        assert not locate_resonances(kernel, omega_in, 0, 1)[0]
        assert not locate_resonances(kernel, omega_out, 0, 5)[0]

    def test_lower_margin(self, ions, kernel_factory):
        kernel = kernel_factory(ions)
        dppar = kernel.grid.dppar
        edge = kernel.grid.ppar[0]
        omega_in = 0.5 * (edge - 2.0 * dppar)
        omega_out = 0.5 * (edge - 6.0 * dppar)
        assert locate_resonances(kernel, omega_in, 0, 5)[0]
        assert not locate_resonances(kernel, omega_in, 0, 1)[0]
        assert not locate_resonances(kernel, omega_out, 0, 5)[0]

    def test_relativistic_variant(self, kernel_factory):
        sp = maxwellian(relativistic=True)
        kernel = kernel_factory(sp, v_A=0.1)
        assert locate_resonances(kernel, 0.5, 0, 0)[0]
        assert not locate_resonances(kernel, 10.0, 0, 0)[0]


class TestResonantIntegration:
    """Principal value, analytic continuation and edge policy."""

    def test_plain_matches_resonant_far_from_axis(self, fine_ions, kernel_factory):
        kernel = kernel_factory(fine_ions)
        cfg = IntegrationConfig()
        omega = 0.25 + 0.5j
        last = kernel.grid.ppar.size - 1
        for component in (Component.ZZ, Component.YY, Component.YZ):
            plain = integrate_plain(kernel, omega, 0, component, 0, last)
            resonant = integrate_resonant(kernel, omega, 0, component, cfg)
            assert _close(resonant, plain, 1e-2)

    def test_continuous_across_real_axis(self, fine_ions, kernel_factory):
        kernel = kernel_factory(fine_ions)
        cfg = IntegrationConfig(t_lim=1e-3)
        x = 0.3
        eps = 1e-5
        for component in (Component.ZZ, Component.YY):
            above = full_integrate(kernel, complex(x, eps), 0, component, True, cfg)
            on_axis = full_integrate(kernel, complex(x, 0.0), 0, component, True, cfg)
            below = full_integrate(kernel, complex(x, -eps), 0, component, True, cfg)
            assert _close(above, on_axis, 1e-2)
            assert _close(below, on_axis, 1e-2)

    def test_continuation_with_regular_branch(self, fine_ions, kernel_factory):
        """Above and below t_lim the two near-pole treatments agree."""
        kernel = kernel_factory(fine_ions)
        omega = complex(0.3, 0.001)
        analytic = integrate_resonant(kernel, omega, 0, Component.ZZ, IntegrationConfig(t_lim=1.0))
        fine = IntegrationConfig(t_lim=0.0, n_resonance_interval=4000)
        folded = integrate_resonant(kernel, omega, 0, Component.ZZ, fine)
        assert _close(analytic, folded, 5e-2)

    def test_landau_adds_twice_below_axis(self, fine_ions, kernel_factory):
        kernel = kernel_factory(fine_ions)
        cfg = IntegrationConfig()
        omega = complex(0.3, -0.05)
        resonant = integrate_resonant(kernel, omega, 0, Component.ZZ, cfg)
        landau = landau_contour(kernel, omega, 0, Component.ZZ)
        total = full_integrate(kernel, omega, 0, Component.ZZ, True, cfg)
        assert total == pytest.approx(resonant + 2.0 * landau)

    def test_no_resonance_is_plain(self, ions, kernel_factory):
        kernel = kernel_factory(ions)
        cfg = IntegrationConfig()
        omega = 0.3 + 0.1j
        last = kernel.grid.ppar.size - 1
        assert full_integrate(kernel, omega, 1, Component.XX, False, cfg) == pytest.approx(
            integrate_plain(kernel, omega, 1, Component.XX, 0, last)
        )

    def test_edge_policy_truncates(self, ions, kernel_factory):
        kernel = kernel_factory(ions)
        cfg = IntegrationConfig(positions_principal=5)
        ppar = kernel.grid.ppar
        last = ppar.size - 1
        # Resonance two cells above the lower edge
        omega = 0.5 * (ppar[2] + 0.1 * kernel.grid.dppar) + 0.01j
        value = integrate_resonant(kernel, omega, 0, Component.ZZ, cfg)
        assert value == pytest.approx(integrate_plain(kernel, omega, 0, Component.ZZ, 7, last))

    def test_edge_policy_truncates_upper(self, ions, kernel_factory):
        kernel = kernel_factory(ions)
        cfg = IntegrationConfig(positions_principal=5)
        ppar = kernel.grid.ppar
        last = ppar.size - 1
        # Resonance two cells below the upper edge
        omega = 0.5 * (ppar[last - 2] + 0.1 * kernel.grid.dppar) + 0.01j
        value = integrate_resonant(kernel, omega, 0, Component.ZZ, cfg)
        assert value == pytest.approx(integrate_plain(kernel, omega, 0, Component.ZZ, 0, last - 7))

    def test_ee_term_isotropic_small(self, ions, kernel_factory):
        """pperp df/dppar = ppar df/dpperp for an isotropic Maxwellian."""
        assert abs(ee_term(kernel_factory(ions))) < 2e-2

    def test_ee_term_anisotropic(self, kernel_factory):
        """exp(-pperp^2/a^2 - ppar^2/b^2) gives (q/m)(b^2/a^2 - 1)."""
        a, b = 1.0, 1.5
        pperp = np.linspace(0.0, 5.0 * a, 81)
        ppar = np.linspace(-5.0 * b, 5.0 * b, 161)
        P, Z = np.meshgrid(pperp, ppar, indexing="ij")
        f0 = np.exp(-P**2 / a**2 - Z**2 / b**2) / (np.pi**1.5 * a**2 * b)
        sp = Species.from_values(SpeciesParams(mass=2.0, charge=1.0, density=1.0), pperp, ppar, f0)
        expected = (1.0 / 2.0) * (b**2 / a**2 - 1.0)
        assert ee_term(kernel_factory(sp)).real == pytest.approx(expected, rel=2e-2)
