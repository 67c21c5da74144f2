"""
Analytics Aggregator — batch scoring, regional rollups and high-risk zones.

One batch run:
    1. Builds every location's feature bundle (secondary-rainfall blend,
       elevation / baseline fallbacks, seismic box count, reservoir match).
    2. Scores it with ``risk_formula`` and applies optional calibration.
    3. Rolls scores up per region (mean flood / landslide, mean 24h rain,
       mean predicted daily rain over the coming week).
    4. Lists every location that is not LOW on either hazard as a
       high-risk zone: HIGH severity first, then by descending max score.

Calibration is applied per location, before any averaging, so rollups and
the assessment report the same (calibrated) numbers the per-location rows do.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from backend.app.features.location_features import build_location_context
from backend.app.features.normalizers import LEVEL_ORDER, RiskLevel, risk_level, round_score
from backend.app.ingestion.records import BatchInputs, DailyForecast, MonitoredLocation, SeismicEvent
from backend.app.matching.reservoir_matcher import ReservoirMatcher
from backend.app.ml.risk_config import DEFAULT_CONFIG, RiskEngineConfig
from backend.app.ml.risk_formula import RiskComponents, compute_risk, describe_formula
from backend.app.spatial.radius_utils import significant_events

logger = logging.getLogger(__name__)

UNKNOWN_REGION = "Unknown"
FORECAST_DAYS = 7


# ═══════════════════════════════════════════════════════════════════════════
# Result types
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class LocationRisk:
    """Scored row for one location (scores already calibrated)."""
    id: str
    name: str
    region: str
    latitude: float
    longitude: float
    flood_score: int
    landslide_score: int
    flood_level: RiskLevel
    landslide_level: RiskLevel
    confidence: int
    components: RiskComponents
    rain_24h_mm: Optional[float] = None
    rain_72h_mm: Optional[float] = None
    rain_7d_mm: Optional[float] = None
    predicted_avg_rainfall_7d_mm: float = 0.0
    forecast_daily: List[DailyForecast] = field(default_factory=list)
    earthquakes_nearby: Optional[int] = None
    reservoir_level_pct: Optional[float] = None
    reservoir_match_name: Optional[str] = None
    reservoir_match_score: Optional[float] = None
    data_complete: bool = True

    @property
    def max_score(self) -> int:
        return max(self.flood_score, self.landslide_score)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "region": self.region,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "flood_risk_score": self.flood_score,
            "landslide_risk_score": self.landslide_score,
            "flood_risk_level": self.flood_level.value,
            "landslide_risk_level": self.landslide_level.value,
            "model_confidence": self.confidence,
            "model_components": self.components.to_dict(),
            "rainfall_24h_mm": self.rain_24h_mm,
            "rainfall_72h_mm": self.rain_72h_mm,
            "rainfall_7d_mm": self.rain_7d_mm,
            "predicted_avg_rainfall_7d_mm": self.predicted_avg_rainfall_7d_mm,
            "forecast_daily": [
                {"date": d.date, "precipitation_mm": d.precipitation_mm}
                for d in self.forecast_daily
            ],
            "earthquakes_nearby": self.earthquakes_nearby,
            "reservoir_level_pct": self.reservoir_level_pct,
            "reservoir_match_name": self.reservoir_match_name,
            "reservoir_match_score": self.reservoir_match_score,
            "data_complete": self.data_complete,
        }


@dataclass
class RegionRollup:
    region: str
    location_names: List[str]
    count: int
    flood_avg: int
    landslide_avg: int
    rainfall_24h_avg_mm: float
    predicted_avg_7d_mm: float
    flood_level: RiskLevel
    landslide_level: RiskLevel

    def to_dict(self) -> Dict[str, Any]:
        return {
            "locations": self.location_names,
            "count": self.count,
            "flood_avg": self.flood_avg,
            "landslide_avg": self.landslide_avg,
            "rainfall_24h_avg": self.rainfall_24h_avg_mm,
            "rainfall_pred_avg": self.predicted_avg_7d_mm,
            "flood_level": self.flood_level.value,
            "landslide_level": self.landslide_level.value,
        }


@dataclass
class HighRiskZone:
    location: str
    region: str
    flood_risk: int
    landslide_risk: int
    flood_level: RiskLevel
    landslide_level: RiskLevel
    zone_severity: RiskLevel

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location,
            "region": self.region,
            "flood_risk": self.flood_risk,
            "landslide_risk": self.landslide_risk,
            "flood_level": self.flood_level.value,
            "landslide_level": self.landslide_level.value,
            "zone_severity": self.zone_severity.value,
        }


@dataclass
class BatchAnalytics:
    timestamp: datetime
    per_location: List[LocationRisk]
    by_region: Dict[str, RegionRollup]
    high_risk_zones: List[HighRiskZone]
    rainfall_prediction: Dict[str, Dict[str, float]]
    earthquakes: List[SeismicEvent]
    formula: Dict[str, str]
    region_filter: Optional[str] = None
    fetch_errors: Dict[str, str] = field(default_factory=dict)
    provenance: Dict[str, str] = field(default_factory=dict)
    source_counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "region_filter": self.region_filter,
            "locations": [r.to_dict() for r in self.per_location],
            "by_region": {k: v.to_dict() for k, v in self.by_region.items()},
            "high_risk_zones": [z.to_dict() for z in self.high_risk_zones],
            "rainfall_prediction": self.rainfall_prediction,
            "earthquakes": [e.to_dict() for e in self.earthquakes],
            "formula": self.formula,
            "fetch_errors": self.fetch_errors,
            "provenance": self.provenance,
            "source_counts": self.source_counts,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def apply_calibration(score: int, multiplier: Optional[float]) -> int:
    """
    ``round(min(100, score × multiplier))``; unchanged when disabled.

    >>> apply_calibration(60, 1.5)
    90
    >>> apply_calibration(80, 1.5)
    100
    """
    if multiplier is None:
        return score
    return round_score(min(100.0, score * multiplier))


def predicted_daily_average(forecast: Sequence[DailyForecast]) -> float:
    """Mean daily precipitation over the first forecast week (2 decimals)."""
    days = list(forecast)[:FORECAST_DAYS]
    if not days:
        return 0.0
    return round(float(np.mean([d.precipitation_mm for d in days])), 2)


def filter_by_region(
    locations: Sequence[MonitoredLocation],
    region: Optional[str],
) -> List[MonitoredLocation]:
    """Case-insensitive exact region match; no filter when ``region`` is empty."""
    if not region:
        return list(locations)
    wanted = region.strip().lower()
    return [loc for loc in locations if (loc.region or "").strip().lower() == wanted]


def list_regions(locations: Sequence[MonitoredLocation]) -> List[str]:
    """Distinct non-empty regions, sorted."""
    return sorted({loc.region for loc in locations if loc.region})


def build_region_rollups(
    rows: Sequence[LocationRisk],
    config: Optional[RiskEngineConfig] = None,
) -> Dict[str, RegionRollup]:
    """Group rows by region and average scores and rainfall."""
    cfg = config or DEFAULT_CONFIG
    grouped: Dict[str, List[LocationRisk]] = {}
    for row in rows:
        grouped.setdefault(row.region, []).append(row)

    rollups: Dict[str, RegionRollup] = {}
    for region, members in grouped.items():
        flood_avg = round_score(float(np.mean([m.flood_score for m in members])))
        landslide_avg = round_score(float(np.mean([m.landslide_score for m in members])))
        rain_avg = float(np.mean([m.rain_24h_mm or 0.0 for m in members]))
        pred_avg = float(np.mean([m.predicted_avg_rainfall_7d_mm for m in members]))
        rollups[region] = RegionRollup(
            region=region,
            location_names=[m.name for m in members],
            count=len(members),
            flood_avg=flood_avg,
            landslide_avg=landslide_avg,
            rainfall_24h_avg_mm=round(rain_avg, 2),
            predicted_avg_7d_mm=round(pred_avg, 2),
            flood_level=risk_level(flood_avg, cfg.bands),
            landslide_level=risk_level(landslide_avg, cfg.bands),
        )
    return rollups


def rank_high_risk_zones(rows: Sequence[LocationRisk]) -> List[HighRiskZone]:
    """
    Every row that is not LOW on either hazard.

    Sorted HIGH severity before MEDIUM, then by descending max score; the
    sort is stable so equal rows keep their input order.
    """
    zones: List[HighRiskZone] = []
    for row in rows:
        if row.flood_level == RiskLevel.LOW and row.landslide_level == RiskLevel.LOW:
            continue
        severity = max(row.flood_level, row.landslide_level, key=LEVEL_ORDER.__getitem__)
        zones.append(HighRiskZone(
            location=row.name,
            region=row.region,
            flood_risk=row.flood_score,
            landslide_risk=row.landslide_score,
            flood_level=row.flood_level,
            landslide_level=row.landslide_level,
            zone_severity=severity,
        ))

    zones.sort(key=lambda z: (
        0 if z.zone_severity == RiskLevel.HIGH else 1,
        -max(z.flood_risk, z.landslide_risk),
    ))
    return zones


def rainfall_prediction(rollups: Dict[str, RegionRollup]) -> Dict[str, Dict[str, float]]:
    return {
        region: {
            "avg_24h_mm": r.rainfall_24h_avg_mm,
            "predicted_avg_7d_mm": r.predicted_avg_7d_mm,
        }
        for region, r in rollups.items()
    }


# ═══════════════════════════════════════════════════════════════════════════
# Batch run
# ═══════════════════════════════════════════════════════════════════════════

def score_location(
    location: MonitoredLocation,
    data: BatchInputs,
    config: Optional[RiskEngineConfig] = None,
    matcher: Optional[ReservoirMatcher] = None,
) -> LocationRisk:
    """Score and calibrate a single location of a batch."""
    cfg = config or DEFAULT_CONFIG
    ctx = build_location_context(location, data, cfg, matcher)
    result = compute_risk(ctx.features, cfg)

    flood = apply_calibration(result.flood_score, cfg.calibration.flood_multiplier)
    landslide = apply_calibration(result.landslide_score, cfg.calibration.landslide_multiplier)
    rain = ctx.rainfall
    match = ctx.reservoir_match

    return LocationRisk(
        id=location.id,
        name=location.name,
        region=location.region or UNKNOWN_REGION,
        latitude=location.latitude,
        longitude=location.longitude,
        flood_score=flood,
        landslide_score=landslide,
        flood_level=risk_level(flood, cfg.bands),
        landslide_level=risk_level(landslide, cfg.bands),
        confidence=result.confidence,
        components=result.components,
        rain_24h_mm=rain.rain_24h_mm if rain else None,
        rain_72h_mm=rain.rain_72h_mm if rain else None,
        rain_7d_mm=rain.rain_7d_mm if rain else None,
        predicted_avg_rainfall_7d_mm=predicted_daily_average(rain.forecast_daily) if rain else 0.0,
        forecast_daily=list(rain.forecast_daily[:FORECAST_DAYS]) if rain else [],
        earthquakes_nearby=ctx.features.earthquakes_nearby,
        reservoir_level_pct=match.record.level_pct if match else None,
        reservoir_match_name=match.record.name if match else None,
        reservoir_match_score=match.score if match else None,
        data_complete=ctx.data_complete,
    )


def run_batch_analytics(
    locations: Sequence[MonitoredLocation],
    data: BatchInputs,
    config: Optional[RiskEngineConfig] = None,
    matcher: Optional[ReservoirMatcher] = None,
    region: Optional[str] = None,
) -> BatchAnalytics:
    """
    Score every location and aggregate.

    Parameters
    ----------
    locations : Sequence[MonitoredLocation]
    data : BatchInputs
    config : RiskEngineConfig, optional
    matcher : ReservoirMatcher, optional
    region : str, optional
        Restrict the batch to one region (case-insensitive).

    Returns
    -------
    BatchAnalytics
    """
    cfg = config or DEFAULT_CONFIG
    matcher = matcher or ReservoirMatcher(min_score=cfg.reservoir_match_min_score)
    selected = filter_by_region(locations, region)

    rows: List[LocationRisk] = []
    for location in selected:
        row = score_location(location, data, cfg, matcher)
        if not row.data_complete:
            logger.warning(
                "No rainfall for %s; scored on remaining sources",
                location.id, extra={"location_id": location.id},
            )
        logger.debug(
            "Scored %s: flood=%d landslide=%d",
            location.id, row.flood_score, row.landslide_score,
            extra={
                "location_id": location.id,
                "region": row.region,
                "flood_score": row.flood_score,
                "landslide_score": row.landslide_score,
            },
        )
        rows.append(row)

    rollups = build_region_rollups(rows, cfg)

    return BatchAnalytics(
        timestamp=datetime.now(timezone.utc),
        per_location=rows,
        by_region=rollups,
        high_risk_zones=rank_high_risk_zones(rows),
        rainfall_prediction=rainfall_prediction(rollups),
        earthquakes=significant_events(data.earthquakes, cfg.seismic.min_magnitude)[: cfg.seismic.max_listed],
        formula=describe_formula(cfg),
        region_filter=region or None,
        fetch_errors=dict(data.fetch_errors),
        provenance=dict(data.provenance),
        source_counts={
            "rainfall_locations": len(data.rainfall),
            "earthquake_count": len(data.earthquakes),
            "reservoir_count": len(data.reservoirs),
        },
    )
