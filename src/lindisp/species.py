"""Grid and species store for the velocity-space integrals.

Each species carries a uniform momentum grid in (p_perp, p_par), the
background distribution f0 on that grid together with its two partial
derivatives, and the scalar ``SpeciesParams``.  All of it is built once
upstream and treated as read-only by the dispersion solver.

Grid conventions:
    * ``pperp`` has ``nperp + 1`` nodes, ``ppar`` has ``npar + 1`` nodes.
    * 2-D arrays are indexed ``[iperp, ipar]``.
    * Derivatives use central differences in the interior and one-sided
      differences on the domain edges.

Units: momenta in m_p v_A, masses in m_p, charges in q_p, densities in n_p.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from lindisp.config import SpeciesParams
from lindisp.constants import pi
from lindisp.kinetic.quadrature import trapezoid_2d

_UNIFORM_RTOL = 1e-6


class SpeciesKind(enum.Enum):
    """Which tensor-contribution strategy a species is routed to."""

    NONRELATIVISTIC = "nonrelativistic"
    RELATIVISTIC = "relativistic"
    BI_MAXWELLIAN = "bi_maxwellian"


def _check_axis(name: str, axis: np.ndarray) -> float:
    if axis.ndim != 1:
        raise ValueError(f"{name} must be one-dimensional, got shape {axis.shape}")
    if axis.size < 3:
        raise ValueError(f"{name} needs at least 3 nodes, got {axis.size}")
    steps = np.diff(axis)
    if np.any(steps <= 0.0):
        raise ValueError(f"{name} must be strictly increasing")
    step = float(steps.mean())
    if not np.allclose(steps, step, rtol=_UNIFORM_RTOL, atol=0.0):
        raise ValueError(f"{name} must be uniformly spaced")
    return step


@dataclass(frozen=True)
class MomentumGrid:
    """Uniform (p_perp, p_par) grid.

    Attributes:
        pperp: Perpendicular momentum nodes, shape ``(nperp + 1,)``.
        ppar: Parallel momentum nodes, shape ``(npar + 1,)``.
    """

    pperp: np.ndarray
    ppar: np.ndarray

    def __post_init__(self) -> None:
        pperp = np.array(self.pperp, dtype=np.float64)
        ppar = np.array(self.ppar, dtype=np.float64)
        _check_axis("pperp", pperp)
        _check_axis("ppar", ppar)
        if pperp[0] < 0.0:
            raise ValueError("pperp must be non-negative")
        pperp.setflags(write=False)
        ppar.setflags(write=False)
        object.__setattr__(self, "pperp", pperp)
        object.__setattr__(self, "ppar", ppar)

    @property
    def dpperp(self) -> float:
        return float(self.pperp[1] - self.pperp[0])

    @property
    def dppar(self) -> float:
        return float(self.ppar[1] - self.ppar[0])

    @property
    def shape(self) -> tuple[int, int]:
        return (self.pperp.size, self.ppar.size)

    def mesh(self) -> tuple[np.ndarray, np.ndarray]:
        """Return the 2-D node coordinates ``(PPERP, PPAR)``."""
        return np.meshgrid(self.pperp, self.ppar, indexing="ij")


@dataclass(frozen=True)
class DistributionField:
    """Background distribution and its partial derivatives on a grid.

    Attributes:
        f0: Distribution values, shape ``grid.shape``.
        df0_dpperp: df0/dp_perp at every node.
        df0_dppar: df0/dp_par at every node.
    """

    f0: np.ndarray
    df0_dpperp: np.ndarray
    df0_dppar: np.ndarray

    def __post_init__(self) -> None:
        shape = np.shape(self.f0)
        for name in ("f0", "df0_dpperp", "df0_dppar"):
            arr = np.array(getattr(self, name), dtype=np.float64)
            if arr.shape != shape:
                raise ValueError(f"{name} has shape {arr.shape}, expected {shape}")
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @classmethod
    def from_values(cls, grid: MomentumGrid, f0: np.ndarray) -> DistributionField:
        """Differentiate ``f0`` on ``grid`` (central inside, one-sided on edges)."""
        f0 = np.asarray(f0, dtype=np.float64)
        if f0.shape != grid.shape:
            raise ValueError(f"f0 has shape {f0.shape}, grid expects {grid.shape}")
        d_perp, d_par = np.gradient(f0, grid.dpperp, grid.dppar, edge_order=1)
        return cls(f0=f0, df0_dpperp=d_perp, df0_dppar=d_par)

    @classmethod
    def zeros(cls, grid: MomentumGrid) -> DistributionField:
        """All-zero field (bi-Maxwellian species need no grid derivatives)."""
        z = np.zeros(grid.shape)
        return cls(f0=z, df0_dpperp=z.copy(), df0_dppar=z.copy())


@dataclass(frozen=True)
class Species:
    """One particle species: parameters, momentum grid and distribution."""

    params: SpeciesParams
    grid: MomentumGrid
    field: DistributionField

    def __post_init__(self) -> None:
        if self.field.f0.shape != self.grid.shape:
            raise ValueError(
                f"distribution shape {self.field.f0.shape} does not match grid {self.grid.shape}"
            )

    @property
    def kind(self) -> SpeciesKind:
        if self.params.bi_maxwellian:
            return SpeciesKind.BI_MAXWELLIAN
        if self.params.relativistic:
            return SpeciesKind.RELATIVISTIC
        return SpeciesKind.NONRELATIVISTIC

    @classmethod
    def from_values(
        cls,
        params: SpeciesParams,
        pperp: np.ndarray,
        ppar: np.ndarray,
        f0: np.ndarray,
    ) -> Species:
        grid = MomentumGrid(pperp, ppar)
        if params.bi_maxwellian:
            field = DistributionField.zeros(grid)
        else:
            field = DistributionField.from_values(grid, f0)
        return cls(params=params, grid=grid, field=field)

    @classmethod
    def from_npz(cls, path: str | Path, params: SpeciesParams) -> Species:
        """Load ``pperp``, ``ppar`` and ``f0`` arrays from an ``.npz`` archive."""
        with np.load(Path(path)) as data:
            missing = {"pperp", "ppar", "f0"} - set(data.files)
            if missing:
                raise ValueError(f"{path}: missing arrays {sorted(missing)}")
            return cls.from_values(params, data["pperp"], data["ppar"], data["f0"])


def distribution_moments(species: Species) -> dict[str, float]:
    """Trapezoidal moments of f0 over the full grid.

    Returns:
        Dictionary with ``"integral"`` (2 pi Int p_perp f0, unity for a
        normalised distribution), ``"charge_density"`` (n q times the
        integral) and ``"parallel_current"`` (n q / m Int p_par f0).
        Bi-Maxwellian species report the analytic values: integral 1 and
        current n q p_drift / m.
    """
    p = species.params
    if species.kind is SpeciesKind.BI_MAXWELLIAN:
        return {
            "integral": 1.0,
            "charge_density": p.density * p.charge,
            "parallel_current": p.density * p.charge * p.drift / p.mass,
        }
    grid = species.grid
    pperp, ppar = grid.mesh()
    last = grid.shape[1] - 1
    f0 = species.field.f0
    integral = 2.0 * pi * trapezoid_2d(pperp * f0, grid.dpperp, grid.dppar, 0, last).real
    current = 2.0 * pi * trapezoid_2d(pperp * ppar * f0, grid.dpperp, grid.dppar, 0, last).real
    return {
        "integral": float(integral),
        "charge_density": float(p.density * p.charge * integral),
        "parallel_current": float(p.density * p.charge / p.mass * current),
    }
