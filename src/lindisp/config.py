"""Pydantic v2 configuration system for dispersion-relation runs.

Provides validated, typed configuration with submodels for the
quadrature engine, the secant root solver, the frequency-map search and
wavevector scans. Supports JSON I/O and cross-field validation.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

SCAN_KINDS = ("k1_k2", "theta", "k_magnitude", "kperp", "kpar")


class SpeciesParams(BaseModel):
    """Scalar parameters of one particle species (normalised units)."""

    model_config = ConfigDict(frozen=True)

    mass: float = Field(..., gt=0, description="Mass m_s / m_p")
    charge: float = Field(..., description="Charge q_s / q_p (non-zero)")
    density: float = Field(..., gt=0, description="Density n_s / n_p")
    relativistic: bool = Field(False, description="Use the relativistic integral provider")
    bi_maxwellian: bool = Field(
        False, description="Use the analytic bi-Maxwellian susceptibility provider"
    )
    drift: float = Field(
        0.0, description="Parallel drift momentum p_drift / (m_p v_A), bi-Maxwellian species only"
    )

    @model_validator(mode="after")
    def check_charge(self) -> SpeciesParams:
        if self.charge == 0.0:
            raise ValueError("species charge must be non-zero")
        if self.drift != 0.0 and not self.bi_maxwellian:
            raise ValueError("drift applies to bi-Maxwellian species only; gridded f0 carries its own")
        return self


class SpeciesEntry(SpeciesParams):
    """Species parameters plus the location of its discretised distribution."""

    distribution: str = Field(
        ...,
        description="Path to an .npz file holding 'pperp', 'ppar' and 'f0' arrays",
    )

    def params(self) -> SpeciesParams:
        """Strip the file reference and return the bare species parameters."""
        return SpeciesParams(**self.model_dump(exclude={"distribution"}))


class IntegrationConfig(BaseModel):
    """Velocity-space quadrature parameters."""

    positions_principal: int = Field(
        5, ge=1,
        description="Half-width (grid steps) of the exclusion window around a resonance",
    )
    n_resonance_interval: int = Field(
        100, ge=1, description="Sub-steps used inside the resonance window"
    )
    t_lim: float = Field(
        0.01, ge=0,
        description="|Im p_res| at or below which the analytic near-pole branch is used",
    )
    bessel_zero: float = Field(
        1.0e-45, gt=0,
        description="Peak Bessel value below which higher orders are dropped",
    )


class SecantConfig(BaseModel):
    """Secant root-solver parameters."""

    numiter: int = Field(50, ge=1, description="Maximum number of secant iterations")
    d_threshold: float = Field(1.0e-5, gt=0, description="Convergence threshold on |D|")
    d_prec: float = Field(
        1.0e-5, gt=0, lt=1, description="Relative offset of the second seed point"
    )
    d_gap: float = Field(
        1.0e-5, ge=0, description="Minimum separation between two accepted roots"
    )


class MapSearchConfig(BaseModel):
    """Complex-frequency map over which |D| is evaluated."""

    omega_min: float = Field(..., description="Lower bound of Re(omega)")
    omega_max: float = Field(..., description="Upper bound of Re(omega)")
    gamma_min: float = Field(..., description="Lower bound of Im(omega)")
    gamma_max: float = Field(..., description="Upper bound of Im(omega)")
    n_real: int = Field(..., ge=1, description="Number of points along Re(omega)")
    n_imag: int = Field(..., ge=1, description="Number of points along Im(omega)")
    log_real: bool = Field(False, description="Logarithmic spacing along Re(omega)")
    log_imag: bool = Field(False, description="Logarithmic spacing along Im(omega)")
    n_roots: int = Field(10, ge=1, description="Maximum number of seeds refined")
    determine_minima: bool = Field(True, description="Search the map for local minima")

    @model_validator(mode="after")
    def check_bounds(self) -> MapSearchConfig:
        if self.omega_max < self.omega_min:
            raise ValueError("omega_max must not be smaller than omega_min")
        if self.gamma_max < self.gamma_min:
            raise ValueError("gamma_max must not be smaller than gamma_min")
        if self.log_real and (self.omega_min <= 0 or self.omega_max <= 0):
            raise ValueError("logarithmic Re(omega) axis requires positive bounds")
        if self.log_imag and self.gamma_min * self.gamma_max <= 0:
            raise ValueError("logarithmic Im(omega) axis requires non-zero bounds of one sign")
        return self


class ScanConfig(BaseModel):
    """One path through wavevector space along which roots are followed."""

    kind: str = Field(
        ...,
        description="Scan axis: 'k1_k2', 'theta', 'k_magnitude', 'kperp' or 'kpar'",
    )
    range_end: float = Field(
        ...,
        description=(
            "Final value of the scanned quantity (kperp for 'k1_k2', "
            "angle in degrees for 'theta', |k| for 'k_magnitude')"
        ),
    )
    range_end_kpar: float | None = Field(
        None, description="Final kpar for 'k1_k2' scans"
    )
    n_out: int = Field(..., ge=1, description="Number of output points")
    n_res: int = Field(1, ge=1, description="Scan steps between output points")
    log_scan: bool = Field(False, description="Logarithmic stepping")

    @model_validator(mode="after")
    def validate_kind(self) -> ScanConfig:
        if self.kind not in SCAN_KINDS:
            raise ValueError(f"scan kind must be one of {SCAN_KINDS}, got '{self.kind}'")
        if self.kind == "k1_k2" and self.range_end_kpar is None:
            raise ValueError("'k1_k2' scans require range_end_kpar")
        if self.log_scan and self.range_end <= 0:
            raise ValueError("logarithmic scans require a positive range_end")
        if self.log_scan and self.range_end_kpar is not None and self.range_end_kpar <= 0:
            raise ValueError("logarithmic scans require a positive range_end_kpar")
        return self

    @property
    def n_steps(self) -> int:
        return self.n_out * self.n_res


class DispersionConfig(BaseModel):
    """Top-level dispersion-solver configuration."""

    kperp: float = Field(..., gt=0, description="Perpendicular wavenumber kperp d_p")
    kpar: float = Field(..., description="Parallel wavenumber kpar d_p (non-zero)")
    v_A: float = Field(..., gt=0, description="Alfven speed v_A / c")

    species: list[SpeciesEntry] = Field(..., min_length=1)
    integration: IntegrationConfig = Field(default_factory=IntegrationConfig)
    secant: SecantConfig = Field(default_factory=SecantConfig)
    map_search: MapSearchConfig | None = Field(None, description="Frequency-map search window")
    scans: list[ScanConfig] = Field(default_factory=list)
    double_scan: bool = Field(
        False, description="Run scans[1] from every point of scans[0] instead of in sequence"
    )
    initial_guesses: list[tuple[float, float]] = Field(
        default_factory=list,
        description="Initial (Re, Im) frequency guesses used when no map search is run",
    )

    @model_validator(mode="after")
    def validate_wavevector(self) -> DispersionConfig:
        if self.kpar == 0.0:
            raise ValueError("kpar must be non-zero")
        return self

    @model_validator(mode="after")
    def validate_scans(self) -> DispersionConfig:
        kinds = [s.kind for s in self.scans]
        duplicates = sorted({k for k in kinds if kinds.count(k) > 1})
        if duplicates:
            raise ValueError(f"duplicate scan kinds: {duplicates}")
        if self.double_scan:
            if len(self.scans) != 2:
                raise ValueError(
                    f"double_scan needs exactly two scans (outer, inner), got {len(self.scans)}"
                )
            if "k1_k2" in kinds:
                raise ValueError("'k1_k2' scans cannot be part of a double scan")
        return self

    # --- I/O helpers ---

    @classmethod
    def from_file(cls, path: str | Path) -> DispersionConfig:
        """Load configuration from a JSON file."""
        path = Path(path)
        with path.open() as f:
            data = json.load(f)
        return cls(**data)

    def to_json(self, path: str | Path | None = None) -> str:
        """Serialize to JSON string, optionally writing to file."""
        out = self.model_dump_json(indent=2)
        if path is not None:
            Path(path).write_text(out)
        return out
