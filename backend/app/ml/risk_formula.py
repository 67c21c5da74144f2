"""
Risk Formula — long-horizon flood and landslide scores for one location.

Pipeline
--------
1. Normalise every raw feature to a 0–100 sub-index.
2. Weighted linear fusion (weights sum to 1.0, see ``risk_config``).
3. Logistic squash to 0–100 and round.
4. Confidence from feature completeness and source diversity.

    flood_linear = 0.30·intensity + 0.18·persistence + 0.14·saturation
                 + 0.14·reservoir_stress + 0.10·anomaly + 0.08·seismic
                 + 0.06·lowland
    landslide_linear = 0.27·intensity + 0.24·duration + 0.16·terrain
                     + 0.10·seismic + 0.10·anomaly + 0.07·spill
                     + 0.06·prone_region

    flood      = round(100 / (1 + e^(−0.09  · (flood_linear − 50))))
    landslide  = round(100 / (1 + e^(−0.085 · (landslide_linear − 48))))
    confidence = round(45 + 40·completeness + 3·sources)

Confidence measures how much of the expected input was available; it is
not a historical accuracy metric.

The function is pure and total: any subset of features may be missing.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from backend.app.features.normalizers import (
    accumulation_index,
    anomaly_index,
    clamp,
    logistic_to_100,
    lowland_factor,
    normalize_level_pct,
    rain_intensity,
    reservoir_stress_index,
    round_score,
    safe_number,
    seismic_index,
    terrain_index,
)
from backend.app.ingestion.records import RainfallSummary, ReservoirRecord
from backend.app.ml.risk_config import DEFAULT_CONFIG, RiskEngineConfig

# Source labels counted towards confidence diversity
SOURCE_RAINFALL = "rainfall"
SOURCE_SEISMIC = "seismic"
SOURCE_TERRAIN = "terrain"
SOURCE_BASELINE = "climate_baseline"
SOURCE_RESERVOIR = "reservoir"


# ═══════════════════════════════════════════════════════════════════════════
# Types
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class RiskFeatures:
    """
    Everything the formula can use for one location.

    ``elevation_m`` falls back to ``rainfall.elevation_m`` when absent.
    ``earthquakes_nearby`` is the count of significant nearby events, or
    None when the seismic source contributed nothing.
    """
    rainfall: Optional[RainfallSummary] = None
    earthquakes_nearby: Optional[int] = None
    elevation_m: Optional[float] = None
    baseline_daily_mm: Optional[float] = None
    reservoir: Optional[ReservoirRecord] = None
    region: Optional[str] = None


@dataclass
class FloodComponents:
    intensity: int = 0
    persistence: int = 0
    saturation: int = 0
    reservoir_stress: int = 0
    anomaly: int = 0
    seismic: int = 0
    lowland_factor: int = 0


@dataclass
class LandslideComponents:
    intensity: int = 0
    duration: int = 0
    terrain: int = 0
    seismic: int = 0
    anomaly: int = 0
    reservoir_spill_stress: int = 0
    prone_region_boost: int = 0


@dataclass
class RiskComponents:
    flood: FloodComponents = field(default_factory=FloodComponents)
    landslide: LandslideComponents = field(default_factory=LandslideComponents)

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        return {"flood": asdict(self.flood), "landslide": asdict(self.landslide)}


@dataclass
class RiskResult:
    flood_score: int
    landslide_score: int
    confidence: int
    components: RiskComponents

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flood_score": self.flood_score,
            "landslide_score": self.landslide_score,
            "confidence": self.confidence,
            "components": self.components.to_dict(),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Confidence
# ═══════════════════════════════════════════════════════════════════════════

def _completeness(values: List[Optional[float]]) -> float:
    return sum(1 for v in values if v is not None) / len(values)


def _sources(
    rain_values: List[Optional[float]],
    seismic_count: Optional[float],
    elevation: Optional[float],
    baseline: Optional[float],
    level_pct: Optional[float],
) -> List[str]:
    sources = []
    if any(v is not None for v in rain_values):
        sources.append(SOURCE_RAINFALL)
    if seismic_count is not None:
        sources.append(SOURCE_SEISMIC)
    if elevation is not None:
        sources.append(SOURCE_TERRAIN)
    if baseline is not None:
        sources.append(SOURCE_BASELINE)
    if level_pct is not None:
        sources.append(SOURCE_RESERVOIR)
    return sources


# ═══════════════════════════════════════════════════════════════════════════
# Formula
# ═══════════════════════════════════════════════════════════════════════════

def compute_risk(
    features: RiskFeatures,
    config: Optional[RiskEngineConfig] = None,
) -> RiskResult:
    """
    Score one location.

    Parameters
    ----------
    features : RiskFeatures
        Any subset may be None.
    config : RiskEngineConfig, optional
        Defaults to the documented weights and scales.

    Returns
    -------
    RiskResult
        Integer scores and confidence in [0, 100] plus rounded components.

    Examples
    --------
    >>> r = compute_risk(RiskFeatures())
    >>> r.confidence
    45
    """
    cfg = config or DEFAULT_CONFIG
    sc = cfg.scales
    rain = features.rainfall or RainfallSummary()

    # ── Raw features (None = not supplied) ──
    r24_raw = safe_number(rain.rain_24h_mm)
    r72_raw = safe_number(rain.rain_72h_mm)
    r7d_raw = safe_number(rain.rain_7d_mm)
    peak_raw = safe_number(rain.max_hourly_mm)
    quakes_raw = safe_number(features.earthquakes_nearby)
    elevation = safe_number(features.elevation_m)
    if elevation is None:
        elevation = safe_number(rain.elevation_m)
    baseline = safe_number(features.baseline_daily_mm)
    reservoir = features.reservoir
    level_pct = normalize_level_pct(reservoir.level_pct) if reservoir else None

    r24 = r24_raw or 0.0
    r72 = r72_raw if r72_raw is not None else r24
    r7d = r7d_raw if r7d_raw is not None else r72
    peak = peak_raw or 0.0
    quakes = quakes_raw or 0.0

    # ── Shared sub-indices ──
    stress = reservoir_stress_index(reservoir, sc)
    anomaly = anomaly_index(r24, baseline, sc.anomaly_gain, sc.anomaly_neutral)

    # ── Flood ──
    f_intensity = rain_intensity(r24, peak, sc.flood_intensity_divisor, sc.flood_peak_weight)
    f_persistence = accumulation_index(r72, sc.persistence_divisor)
    f_saturation = accumulation_index(r7d, sc.saturation_divisor)
    f_seismic = seismic_index(quakes, sc.flood_seismic_weight)
    f_lowland = lowland_factor(elevation, sc)

    fw = cfg.flood_weights
    flood_linear = (
        fw.intensity * f_intensity
        + fw.persistence * f_persistence
        + fw.saturation * f_saturation
        + fw.reservoir_stress * stress
        + fw.anomaly * anomaly
        + fw.seismic * f_seismic
        + fw.lowland * f_lowland
    )
    flood_score = round_score(clamp(logistic_to_100(
        flood_linear, cfg.flood_logistic.center, cfg.flood_logistic.steepness,
    )))

    # ── Landslide ──
    l_intensity = rain_intensity(r24, peak, sc.landslide_intensity_divisor, sc.landslide_peak_weight)
    l_duration = accumulation_index(r72, sc.duration_divisor)
    l_terrain = terrain_index(elevation, sc.terrain_divisor, sc.terrain_unknown)
    l_seismic = seismic_index(quakes, sc.landslide_seismic_weight)
    l_spill = clamp(stress * sc.reservoir_spill_factor)
    l_prone = sc.prone_region_boost if cfg.is_landslide_prone(features.region) else 0.0

    lw = cfg.landslide_weights
    landslide_linear = (
        lw.intensity * l_intensity
        + lw.duration * l_duration
        + lw.terrain * l_terrain
        + lw.seismic * l_seismic
        + lw.anomaly * anomaly
        + lw.reservoir_spill * l_spill
        + lw.prone_region * l_prone
    )
    landslide_score = round_score(clamp(logistic_to_100(
        landslide_linear, cfg.landslide_logistic.center, cfg.landslide_logistic.steepness,
    )))

    # ── Confidence ──
    completeness = _completeness([
        r24_raw, r72_raw, r7d_raw, peak_raw, quakes_raw, elevation, baseline, level_pct,
    ])
    sources = _sources([r24_raw, r72_raw, r7d_raw, peak_raw], quakes_raw, elevation, baseline, level_pct)
    cp = cfg.confidence
    confidence = round_score(clamp(
        cp.base + cp.completeness_weight * completeness + cp.source_weight * len(sources)
    ))

    components = RiskComponents(
        flood=FloodComponents(
            intensity=round_score(f_intensity),
            persistence=round_score(f_persistence),
            saturation=round_score(f_saturation),
            reservoir_stress=round_score(stress),
            anomaly=round_score(anomaly),
            seismic=round_score(f_seismic),
            lowland_factor=round_score(f_lowland),
        ),
        landslide=LandslideComponents(
            intensity=round_score(l_intensity),
            duration=round_score(l_duration),
            terrain=round_score(l_terrain),
            seismic=round_score(l_seismic),
            anomaly=round_score(anomaly),
            reservoir_spill_stress=round_score(l_spill),
            prone_region_boost=round_score(l_prone),
        ),
    )

    return RiskResult(
        flood_score=flood_score,
        landslide_score=landslide_score,
        confidence=confidence,
        components=components,
    )


def describe_formula(config: Optional[RiskEngineConfig] = None) -> Dict[str, str]:
    """Human-readable formulas reflecting the active weights."""
    cfg = config or DEFAULT_CONFIG
    fw, lw = cfg.flood_weights, cfg.landslide_weights
    return {
        "flood": (
            f"sigmoid({fw.intensity:.2f}*intensity + {fw.persistence:.2f}*persistence_72h"
            f" + {fw.saturation:.2f}*saturation_7d + {fw.reservoir_stress:.2f}*reservoir_stress"
            f" + {fw.anomaly:.2f}*anomaly + {fw.seismic:.2f}*seismic + {fw.lowland:.2f}*lowland;"
            f" center={cfg.flood_logistic.center:g}, k={cfg.flood_logistic.steepness:g})"
        ),
        "landslide": (
            f"sigmoid({lw.intensity:.2f}*intensity + {lw.duration:.2f}*duration_72h"
            f" + {lw.terrain:.2f}*terrain + {lw.seismic:.2f}*seismic + {lw.anomaly:.2f}*anomaly"
            f" + {lw.reservoir_spill:.2f}*reservoir_spill + {lw.prone_region:.2f}*prone_region;"
            f" center={cfg.landslide_logistic.center:g}, k={cfg.landslide_logistic.steepness:g})"
        ),
        "confidence": (
            f"{cfg.confidence.base:g} + {cfg.confidence.completeness_weight:g}*completeness"
            f" + {cfg.confidence.source_weight:g}*source_diversity"
        ),
    }
