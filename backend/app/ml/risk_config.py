"""
Risk engine configuration — every weight, scale and threshold in one place.

All formula constants live in frozen dataclasses so a configuration can be
shared between threads and injected into every scoring function. Defaults
reproduce the documented formula; ``RiskEngineConfig.from_settings`` applies
environment overrides from ``backend.app.core.config``.

Validation happens at construction: weight sets must sum to 1.0 and risk
bands must be ordered. Invalid configuration raises ``ConfigurationError``
so it is caught at start-up rather than during a scoring run.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional, Tuple

from backend.app.core.errors import ConfigurationError

# Tolerance when checking that a weight set sums to 1.0
WEIGHT_SUM_TOLERANCE = 1e-6

DEFAULT_LANDSLIDE_PRONE_REGIONS: Tuple[str, ...] = (
    "kerala",
    "uttarakhand",
    "himachal pradesh",
    "assam",
    "tamil nadu",
    "maharashtra",
    "karnataka",
    "goa",
    "meghalaya",
    "arunachal pradesh",
    "mizoram",
    "nagaland",
    "manipur",
    "jammu and kashmir",
    "sikkim",
    "west bengal",
)


def _check_weights(weights: Any) -> None:
    total = sum(getattr(weights, f.name) for f in fields(weights))
    if not math.isclose(total, 1.0, abs_tol=WEIGHT_SUM_TOLERANCE):
        raise ConfigurationError(
            f"{type(weights).__name__} must sum to 1.0 (got {total:.6f})",
            weights=asdict(weights),
        )
    for f in fields(weights):
        if getattr(weights, f.name) < 0:
            raise ConfigurationError(
                f"{type(weights).__name__}.{f.name} must be non-negative",
            )


# ═══════════════════════════════════════════════════════════════════════════
# Long-horizon formula
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FloodWeights:
    """Linear weights of the flood sub-indices."""
    intensity: float = 0.30
    persistence: float = 0.18
    saturation: float = 0.14
    reservoir_stress: float = 0.14
    anomaly: float = 0.10
    seismic: float = 0.08
    lowland: float = 0.06

    def __post_init__(self) -> None:
        _check_weights(self)


@dataclass(frozen=True)
class LandslideWeights:
    """Linear weights of the landslide sub-indices."""
    intensity: float = 0.27
    duration: float = 0.24
    terrain: float = 0.16
    seismic: float = 0.10
    anomaly: float = 0.10
    reservoir_spill: float = 0.07
    prone_region: float = 0.06

    def __post_init__(self) -> None:
        _check_weights(self)


@dataclass(frozen=True)
class NormalizerScales:
    """Divisors, gains and fixed points used by the sub-index normalisers."""
    flood_intensity_divisor: float = 1.25
    flood_peak_weight: float = 2.8
    landslide_intensity_divisor: float = 1.15
    landslide_peak_weight: float = 3.1
    persistence_divisor: float = 2.0       # 72h sum
    saturation_divisor: float = 3.6        # 7d sum
    duration_divisor: float = 1.8          # 72h sum, landslide
    terrain_divisor: float = 30.0          # metres per point
    terrain_unknown: float = 50.0
    flood_seismic_weight: float = 18.0     # points per significant event
    landslide_seismic_weight: float = 20.0
    anomaly_gain: float = 50.0
    anomaly_neutral: float = 50.0
    lowland_low_elevation_m: float = 300.0
    lowland_low_value: float = 12.0
    lowland_mid_elevation_m: float = 600.0
    lowland_mid_value: float = 6.0
    reservoir_level_reference: float = 60.0
    reservoir_level_gain: float = 2.5
    reservoir_flow_gain: float = 45.0
    reservoir_level_share: float = 0.7     # remaining share goes to flow stress
    reservoir_spill_factor: float = 0.55   # heuristic: share of reservoir stress felt on slopes
    prone_region_boost: float = 12.0


@dataclass(frozen=True)
class LogisticParams:
    center: float
    steepness: float

    def __post_init__(self) -> None:
        if self.steepness <= 0:
            raise ConfigurationError("Logistic steepness must be positive")


@dataclass(frozen=True)
class ConfidenceParams:
    """confidence = base + completeness_weight·completeness + source_weight·sources"""
    base: float = 45.0
    completeness_weight: float = 40.0
    source_weight: float = 3.0


@dataclass(frozen=True)
class RiskBands:
    """LOW ≤ low_max < MEDIUM ≤ medium_max < HIGH"""
    low_max: int = 33
    medium_max: int = 66

    def __post_init__(self) -> None:
        if not (0 <= self.low_max < self.medium_max <= 100):
            raise ConfigurationError(
                "Risk bands must satisfy 0 <= low_max < medium_max <= 100",
                low_max=self.low_max,
                medium_max=self.medium_max,
            )


# ═══════════════════════════════════════════════════════════════════════════
# Nowcast
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NowcastFloodWeights:
    long_horizon: float = 0.34
    next_1h: float = 0.26
    next_3h: float = 0.16
    past_6h: float = 0.10
    acceleration: float = 0.08
    reservoir_level: float = 0.06

    def __post_init__(self) -> None:
        _check_weights(self)


@dataclass(frozen=True)
class NowcastLandslideWeights:
    long_horizon: float = 0.32
    next_1h: float = 0.22
    next_3h: float = 0.15
    acceleration: float = 0.10
    terrain: float = 0.11
    uncertainty: float = 0.10

    def __post_init__(self) -> None:
        _check_weights(self)


@dataclass(frozen=True)
class NowcastConfig:
    warning_threshold: int = 60
    emergency_threshold: int = 75
    rising_checks: int = 3
    window_size: int = 8
    next_1h_scale_mm: float = 25.0
    next_3h_scale_mm: float = 55.0
    past_6h_scale_mm: float = 70.0
    acceleration_scale_mm: float = 30.0
    uncertainty_factor: float = 0.2
    flood_weights: NowcastFloodWeights = field(default_factory=NowcastFloodWeights)
    landslide_weights: NowcastLandslideWeights = field(default_factory=NowcastLandslideWeights)

    def __post_init__(self) -> None:
        if not (0 <= self.warning_threshold <= self.emergency_threshold <= 100):
            raise ConfigurationError(
                "Nowcast thresholds must satisfy 0 <= warning <= emergency <= 100",
                warning=self.warning_threshold,
                emergency=self.emergency_threshold,
            )
        if self.rising_checks < 1:
            raise ConfigurationError("rising_checks must be at least 1")
        if self.window_size < self.rising_checks:
            raise ConfigurationError(
                "Trend window must hold at least rising_checks samples",
                window_size=self.window_size,
                rising_checks=self.rising_checks,
            )


# ═══════════════════════════════════════════════════════════════════════════
# Batch-level knobs
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Calibration:
    """Optional post-hoc score multipliers (None = disabled)."""
    flood_multiplier: Optional[float] = None
    landslide_multiplier: Optional[float] = None

    def __post_init__(self) -> None:
        for name in ("flood_multiplier", "landslide_multiplier"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ConfigurationError(f"{name} must be non-negative")


@dataclass(frozen=True)
class SeismicConfig:
    """Events at or above ``min_magnitude`` inside ±``box_degrees`` count."""
    min_magnitude: float = 4.5
    box_degrees: float = 2.0
    max_listed: int = 20


# ═══════════════════════════════════════════════════════════════════════════
# Top-level configuration
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RiskEngineConfig:
    """
    Complete, immutable configuration of the scoring engine.

    Examples
    --------
    >>> cfg = RiskEngineConfig()
    >>> cfg.nowcast.warning_threshold
    60
    """
    flood_weights: FloodWeights = field(default_factory=FloodWeights)
    landslide_weights: LandslideWeights = field(default_factory=LandslideWeights)
    scales: NormalizerScales = field(default_factory=NormalizerScales)
    flood_logistic: LogisticParams = field(
        default_factory=lambda: LogisticParams(center=50.0, steepness=0.09)
    )
    landslide_logistic: LogisticParams = field(
        default_factory=lambda: LogisticParams(center=48.0, steepness=0.085)
    )
    confidence: ConfidenceParams = field(default_factory=ConfidenceParams)
    bands: RiskBands = field(default_factory=RiskBands)
    nowcast: NowcastConfig = field(default_factory=NowcastConfig)
    calibration: Calibration = field(default_factory=Calibration)
    seismic: SeismicConfig = field(default_factory=SeismicConfig)
    landslide_prone_regions: Tuple[str, ...] = DEFAULT_LANDSLIDE_PRONE_REGIONS
    reservoir_match_min_score: float = 0.45

    def __post_init__(self) -> None:
        # Region membership is case-insensitive
        object.__setattr__(
            self,
            "landslide_prone_regions",
            tuple(r.strip().lower() for r in self.landslide_prone_regions),
        )
        if not (0.0 <= self.reservoir_match_min_score <= 1.0):
            raise ConfigurationError(
                "reservoir_match_min_score must be within [0, 1]",
                value=self.reservoir_match_min_score,
            )

    def is_landslide_prone(self, region: Optional[str]) -> bool:
        if not region:
            return False
        return region.strip().lower() in self.landslide_prone_regions

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["landslide_prone_regions"] = list(self.landslide_prone_regions)
        return d

    @classmethod
    def from_settings(cls, settings: Any = None) -> "RiskEngineConfig":
        """Build a configuration from application settings."""
        if settings is None:
            from backend.app.core.config import get_settings
            settings = get_settings()

        return cls(
            bands=RiskBands(
                low_max=settings.RISK_LOW_MAX,
                medium_max=settings.RISK_MEDIUM_MAX,
            ),
            nowcast=NowcastConfig(
                warning_threshold=settings.NOWCAST_WARNING_THRESHOLD,
                emergency_threshold=settings.NOWCAST_EMERGENCY_THRESHOLD,
                rising_checks=settings.NOWCAST_RISING_CHECKS,
                window_size=settings.TREND_WINDOW_SIZE,
            ),
            calibration=Calibration(
                flood_multiplier=settings.CALIBRATION_FLOOD_MULTIPLIER,
                landslide_multiplier=settings.CALIBRATION_LANDSLIDE_MULTIPLIER,
            ),
            seismic=SeismicConfig(
                min_magnitude=settings.SEISMIC_MIN_MAGNITUDE,
                box_degrees=settings.SEISMIC_BOX_DEGREES,
            ),
            landslide_prone_regions=tuple(settings.LANDSLIDE_PRONE_REGIONS),
            reservoir_match_min_score=settings.RESERVOIR_MATCH_MIN_SCORE,
        )


DEFAULT_CONFIG = RiskEngineConfig()
