"""Tests for tensor assembly, the dispersion solver and parallel equivalence."""

from __future__ import annotations

import numpy as np
import pytest

from conftest import StubCluster, maxwellian
from lindisp.config import IntegrationConfig
from lindisp.core.bases import RelativisticIntegrals, SusceptibilityProvider
from lindisp.core.cluster import SerialCluster
from lindisp.dispersion import (
    DispersionSolver,
    dispersion_determinant,
    dispersion_from_susceptibility,
    order_contribution,
    symmetrize,
    wave_tensor,
)


class FixedProvider(SusceptibilityProvider):
    def __init__(self, chi):
        self.chi = np.asarray(chi, dtype=complex)
        self.calls = 0

    def susceptibility(self, species, kperp, kpar, omega):
        self.calls += 1
        return self.chi


class CountingRelativistic(RelativisticIntegrals):
    def __init__(self):
        self.orders = []
        self.ee_calls = 0

    def full_integrate(self, kernel, omega, n, component, found):
        self.orders.append(n)
        return 1.0 + 0j

    def ee_term(self, kernel, omega):
        self.ee_calls += 1
        return 0.5 + 0j


def _random_upper(rng):
    return rng.normal(size=(3, 3)) + 1j * rng.normal(size=(3, 3))


class TestTensorAlgebra:
    """Symmetry fill and closed-form determinant."""

    def test_symmetrize(self):
        upper = np.triu(np.arange(1, 10).reshape(3, 3)).astype(complex)
        full = symmetrize(upper)
        assert full[1, 0] == -full[0, 1]
        assert full[2, 0] == full[0, 2]
        assert full[2, 1] == -full[1, 2]

    def test_determinant_matches_numpy(self):
        rng = np.random.default_rng(3)
        for _ in range(5):
            wave = symmetrize(_random_upper(rng))
            det = dispersion_determinant(np.ascontiguousarray(wave))
            assert det == pytest.approx(np.linalg.det(wave), rel=1e-10)

    def test_vacuum_wave_tensor(self):
        """No plasma: D is the vacuum light-wave determinant."""
        chi = np.zeros((1, 3, 3), dtype=complex)
        omega, kperp, kpar, v_A = 0.7, 0.3, 0.4, 0.5
        wave = wave_tensor(chi, omega, kperp, kpar, v_A)
        w2 = (omega * v_A) ** 2
        k2 = kperp**2 + kpar**2
        expected = w2 * (w2 - k2) ** 2
        assert dispersion_from_susceptibility(chi, omega, kperp, kpar, v_A) == pytest.approx(
            expected, rel=1e-10
        )
        assert wave[2, 0] == pytest.approx(kperp * kpar)

    def test_order_zero_entries(self, ions, kernel_factory):
        kernel = kernel_factory(ions)
        increment = order_contribution(kernel, 0.3 + 0.05j, 0, IntegrationConfig())
        assert increment[0, 0] == 0
        assert increment[0, 1] == 0
        assert increment[0, 2] == 0
        assert increment[2, 2] != 0
        assert not np.any(np.tril(increment, -1))


class TestDispersionSolver:
    """Solver sessions, providers and coordinator bookkeeping."""

    def test_dispersion_is_finite(self, small_config, ions, electrons):
        solver = DispersionSolver(small_config, [ions, electrons])
        value = solver(0.4 - 0.01j)
        assert np.isfinite(value)
        assert solver.last_susceptibility.shape == (2, 3, 3)
        assert solver.last_dispersion_tensor.shape == (3, 3)

    def test_susceptibility_sign_convention(self, small_config, ions, electrons):
        """Stored chi has xy and yz antisymmetric, xz symmetric."""
        solver = DispersionSolver(small_config, [ions, electrons])
        solver(0.4 - 0.01j)
        chi = solver.last_susceptibility
        np.testing.assert_array_equal(chi[:, 1, 0], -chi[:, 0, 1])
        np.testing.assert_array_equal(chi[:, 2, 1], -chi[:, 1, 2])
        np.testing.assert_array_equal(chi[:, 2, 0], chi[:, 0, 2])

    def test_kpar_change_reuses_tables(self, small_config, ions, electrons):
        solver = DispersionSolver(small_config, [ions, electrons])
        tables = [k.bessel for _, k in solver.session.tasks]
        solver.set_wavevector(small_config.kperp, 0.3)
        assert all(k.bessel is t for (_, k), t in zip(solver.session.tasks, tables))
        assert all(k.kpar == 0.3 for _, k in solver.session.tasks)
        solver.set_wavevector(0.5, 0.3)
        assert all(k.bessel is not t for (_, k), t in zip(solver.session.tasks, tables))

    def test_serial_assignments_cover_all_orders(self, small_config, ions, electrons):
        solver = DispersionSolver(small_config, [ions, electrons])
        for s, nmax in enumerate(solver.session.nmax):
            (task,) = [a for a in solver.session.assignments if a.species == s]
            assert (task.n_min, task.n_max) == (0, nmax)

    def test_missing_providers(self, small_config, ions):
        with pytest.raises(ValueError, match="bi-Maxwellian"):
            DispersionSolver(small_config, [maxwellian(bi_maxwellian=True)])
        with pytest.raises(ValueError, match="relativistic"):
            DispersionSolver(small_config, [ions, maxwellian(relativistic=True)])

    def test_too_few_workers(self, small_config, ions, electrons):
        with pytest.raises(ValueError, match="workers"):
            DispersionSolver(small_config, [ions, electrons], StubCluster(0, 2))

    def test_bi_maxwellian_provider(self, small_config):
        chi = np.triu(np.full((3, 3), 0.25 + 0.5j))
        provider = FixedProvider(chi)
        solver = DispersionSolver(
            small_config, [maxwellian(bi_maxwellian=True)], bi_maxwellian=provider
        )
        local = solver.local_susceptibility(0.5)
        np.testing.assert_allclose(local[0], chi)
        assert provider.calls == 1
        assert solver.session.nmax == [1]

    def test_relativistic_dispatch(self, small_config):
        rel = CountingRelativistic()
        sp = maxwellian(relativistic=True)
        solver = DispersionSolver(small_config, [sp], relativistic=rel)
        nmax = solver.session.nmax[0]
        local = solver.local_susceptibility(0.5 + 0.01j)
        assert rel.ee_calls == 1
        # 3 components at n = 0, 6 components for +n and -n otherwise
        assert len(rel.orders) == 3 + 12 * nmax
        assert set(rel.orders) == set(range(-nmax, nmax + 1))
        assert local[0, 2, 2] == pytest.approx((1.0 + 2.0 * nmax + 0.5) * sp.params.density)

    def test_explicit_serial_cluster(self, small_config, ions):
        a = DispersionSolver(small_config, [ions])
        b = DispersionSolver(small_config, [ions], SerialCluster())
        assert a(0.5 + 0.02j) == b(0.5 + 0.02j)


class TestParallelEquivalence:
    """Partitioned evaluation reproduces the single-worker determinant."""

    @pytest.mark.parametrize("n_workers", [3, 4, 6])
    def test_partitioned_matches_serial(self, small_config, ions, electrons, n_workers):
        species = [ions, electrons]
        serial = DispersionSolver(small_config, species)
        omega = 0.35 - 0.02j

        partial = np.zeros((2, 3, 3), dtype=complex)
        covered = []
        for rank in range(n_workers):
            worker = DispersionSolver(small_config, species, StubCluster(rank, n_workers))
            assert worker.session.nmax == serial.session.nmax
            partial += worker.local_susceptibility(omega)
            covered += [(t.species, n) for t, _ in worker.session.tasks for n in t.orders]

        expected = sorted((s, n) for s, nmax in enumerate(serial.session.nmax) for n in range(nmax + 1))
        assert sorted(covered) == expected

        d_parallel = dispersion_from_susceptibility(
            partial, omega, small_config.kperp, small_config.kpar, small_config.v_A
        )
        assert d_parallel == pytest.approx(serial(omega), rel=1e-10)

    def test_coordinator_integrates_nothing(self, small_config, ions, electrons):
        worker = DispersionSolver(small_config, [ions, electrons], StubCluster(0, 4))
        assert worker.session.tasks == []
        assert not np.any(worker.local_susceptibility(0.4))
