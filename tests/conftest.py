"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import numpy as np
import pytest

from lindisp.config import DispersionConfig, SpeciesParams
from lindisp.core.bases import Cluster
from lindisp.kinetic.bessel import BesselTable
from lindisp.kinetic.kernel import SpeciesKernel
from lindisp.species import Species

PROTON_ELECTRON_MASS_RATIO = 1836.152673


def maxwellian(
    mass: float = 1.0,
    charge: float = 1.0,
    density: float = 1.0,
    beta: float = 1.0,
    nperp: int = 40,
    npar: int = 80,
    extent: float = 5.0,
    **flags,
) -> Species:
    """Isotropic Maxwellian normalised to 2 pi Int pperp f0 = 1.

    The thermal momentum is w = sqrt(beta * m) in units of m_p v_A.
    """
    w = np.sqrt(beta * mass)
    pperp = np.linspace(0.0, extent * w, nperp + 1)
    ppar = np.linspace(-extent * w, extent * w, npar + 1)
    P, Z = np.meshgrid(pperp, ppar, indexing="ij")
    f0 = np.exp(-(P**2 + Z**2) / w**2) / (np.pi**1.5 * w**3)
    params = SpeciesParams(mass=mass, charge=charge, density=density, **flags)
    return Species.from_values(params, pperp, ppar, f0)


class StubCluster(Cluster):
    """One rank of a multi-rank run whose collectives are no-ops."""

    def __init__(self, rank: int, size: int) -> None:
        self._rank = rank
        self._size = size

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self._size

    def reduce_sum(self, array, root=0):
        return np.array(array, copy=True)

    def bcast(self, value, root=0):
        return value

    def barrier(self) -> None:
        pass


@pytest.fixture
def ions():
    """Warm protons, beta = 1."""
    return maxwellian()


@pytest.fixture
def fine_ions():
    """Warm protons on a finer parallel grid."""
    return maxwellian(nperp=50, npar=200)


@pytest.fixture
def electrons():
    """Warm electrons, beta = 1, equal density."""
    return maxwellian(mass=1.0 / PROTON_ELECTRON_MASS_RATIO, charge=-1.0)


@pytest.fixture
def cold_plasma():
    """Cold proton-electron plasma; resonances stay off grid near the Alfvenic roots."""
    return [
        maxwellian(beta=0.01),
        maxwellian(mass=1.0 / PROTON_ELECTRON_MASS_RATIO, charge=-1.0, beta=1.0e-6),
    ]


@pytest.fixture
def sample_config_dict():
    """Minimal two-species configuration as a dictionary."""
    return {
        "kperp": 0.1,
        "kpar": 0.5,
        "v_A": 1.0e-4,
        "species": [
            {"mass": 1.0, "charge": 1.0, "density": 1.0, "distribution": "ions.npz"},
            {
                "mass": 1.0 / PROTON_ELECTRON_MASS_RATIO,
                "charge": -1.0,
                "density": 1.0,
                "distribution": "electrons.npz",
            },
        ],
        "integration": {"bessel_zero": 1.0e-6, "t_lim": 1.0e-3},
    }


@pytest.fixture
def small_config(sample_config_dict):
    """Small DispersionConfig for fast unit tests."""
    return DispersionConfig(**sample_config_dict)


@pytest.fixture
def kernel_factory():
    """Build a SpeciesKernel covering orders 0..n_max."""

    def make(species, kperp=0.1, kpar=0.5, v_A=1.0e-4, n_max=4):
        table = BesselTable.build(species.grid.pperp, kperp, species.params.charge, 0, n_max)
        return SpeciesKernel(species, kperp, kpar, v_A, table)

    return make
