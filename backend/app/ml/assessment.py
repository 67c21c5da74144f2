"""
Assessment Assembler — one system-wide snapshot from a batch run.

Averages the (calibrated) per-location scores, confidence and components,
derives the overall alert level from the worse hazard, and attaches the
level-specific message and recommendations. A failed data fetch produces a
degraded assessment instead of an exception so callers always have
something to display.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import numpy as np

from backend.app.features.normalizers import RiskLevel, risk_level, round_score
from backend.app.ml.analytics_aggregator import BatchAnalytics
from backend.app.ml.risk_config import DEFAULT_CONFIG, RiskEngineConfig
from backend.app.ml.risk_formula import RiskComponents


# ═══════════════════════════════════════════════════════════════════════════
# Messages
# ═══════════════════════════════════════════════════════════════════════════

ALERT_MESSAGES: Dict[RiskLevel, str] = {
    RiskLevel.LOW: "No significant disaster risk. Continue normal monitoring.",
    RiskLevel.MEDIUM: (
        "Moderate risk: Flood {flood}, Landslide {landslide}. "
        "Stay alert and monitor updates."
    ),
    RiskLevel.HIGH: (
        "High disaster risk: Flood {flood}, Landslide {landslide}. "
        "Take preventive actions and follow authorities."
    ),
}

RECOMMENDATIONS: Dict[RiskLevel, List[str]] = {
    RiskLevel.LOW: [
        "No special action required",
        "Continue normal activities",
        "Stay informed through official channels",
    ],
    RiskLevel.MEDIUM: [
        "Stay away from riverbanks and landslide-prone slopes",
        "Monitor weather and official advisories",
        "Be prepared to move to safer locations if conditions worsen",
    ],
    RiskLevel.HIGH: [
        "Evacuate low-lying and landslide-prone areas if advised",
        "Avoid crossing flooded roads and streams",
        "Follow instructions from disaster management authorities",
        "Keep emergency kit ready",
    ],
}

DEGRADED_MESSAGE = "Data fetch failed. Retry later."
DEGRADED_RECOMMENDATIONS = ["Retry run check or check API connectivity."]

DIAGNOSTIC_NOTES = [
    "Scores use nonlinear fusion of rainfall intensity/persistence/saturation, "
    "seismic signal, terrain, and reservoir stress when a reservoir is matched.",
    "Confidence is based on feature completeness and source availability; "
    "it is not a historical accuracy metric.",
]


def alert_message(level: RiskLevel, flood: int, landslide: int) -> str:
    return ALERT_MESSAGES[level].format(flood=flood, landslide=landslide)


def make_assessment_id(ts: datetime) -> str:
    """``RISK_YYYYMMDDHHMMSS`` from the UTC timestamp."""
    return f"RISK_{ts.astimezone(timezone.utc).strftime('%Y%m%d%H%M%S')}"


# ═══════════════════════════════════════════════════════════════════════════
# Assessment
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Assessment:
    assessment_id: str
    timestamp: datetime
    success: bool
    flood_score: int
    landslide_score: int
    flood_level: RiskLevel
    landslide_level: RiskLevel
    overall_alert_level: RiskLevel
    alert_message: str
    recommendations: List[str]
    data_sources: Dict[str, str] = field(default_factory=dict)
    summary: Dict[str, int] = field(default_factory=dict)
    confidence: int = 0
    averaged_components: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: RiskComponents().to_dict()
    )
    notes: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "assessment_id": self.assessment_id,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "flood_risk_score": self.flood_score,
            "landslide_risk_score": self.landslide_score,
            "flood_risk_level": self.flood_level.value,
            "landslide_risk_level": self.landslide_level.value,
            "overall_alert_level": self.overall_alert_level.value,
            "alert_message": self.alert_message,
            "recommendations": list(self.recommendations),
            "data_sources": self.data_sources,
            "summary": self.summary,
            "model_diagnostics": {
                "confidence": self.confidence,
                "averaged_components": self.averaged_components,
                "notes": list(self.notes),
            },
        }
        if self.error:
            d["error"] = self.error
        return d


def _mean_int(values: List[float]) -> int:
    return round_score(float(np.mean(values))) if values else 0


def _average_components(batch: BatchAnalytics) -> Dict[str, Dict[str, int]]:
    """Per-hazard component means; every key is present and 0 for an empty batch."""
    totals: Dict[str, Dict[str, List[int]]] = {
        hazard: {key: [] for key in comps}
        for hazard, comps in RiskComponents().to_dict().items()
    }
    for row in batch.per_location:
        for hazard, comps in row.components.to_dict().items():
            for key, value in comps.items():
                totals[hazard][key].append(value)
    return {
        hazard: {key: _mean_int(values) for key, values in comps.items()}
        for hazard, comps in totals.items()
    }


def _data_sources(batch: BatchAnalytics) -> Dict[str, str]:
    sources = dict(batch.provenance)
    for source in batch.fetch_errors:
        sources[source] = "unavailable"
    return sources


def assemble_assessment(
    batch: BatchAnalytics,
    config: Optional[RiskEngineConfig] = None,
) -> Assessment:
    """
    Reduce a batch to a single snapshot.

    Parameters
    ----------
    batch : BatchAnalytics
        A completed batch run (scores already calibrated).
    config : RiskEngineConfig, optional

    Returns
    -------
    Assessment
        Averages are 0 and the level LOW when the batch has no locations.
    """
    cfg = config or DEFAULT_CONFIG
    rows = batch.per_location

    flood = _mean_int([r.flood_score for r in rows])
    landslide = _mean_int([r.landslide_score for r in rows])
    confidence = _mean_int([r.confidence for r in rows])
    overall = risk_level(max(flood, landslide), cfg.bands)

    summary = {"location_count": len(rows), **batch.source_counts}

    return Assessment(
        assessment_id=make_assessment_id(batch.timestamp),
        timestamp=batch.timestamp,
        success=True,
        flood_score=flood,
        landslide_score=landslide,
        flood_level=risk_level(flood, cfg.bands),
        landslide_level=risk_level(landslide, cfg.bands),
        overall_alert_level=overall,
        alert_message=alert_message(overall, flood, landslide),
        recommendations=list(RECOMMENDATIONS[overall]),
        data_sources=_data_sources(batch),
        summary=summary,
        confidence=confidence,
        averaged_components=_average_components(batch),
        notes=list(DIAGNOSTIC_NOTES),
    )


def degraded_assessment(error: str, timestamp: Optional[datetime] = None) -> Assessment:
    """Snapshot returned when no usable data could be fetched."""
    ts = timestamp or datetime.now(timezone.utc)
    return Assessment(
        assessment_id=make_assessment_id(ts),
        timestamp=ts,
        success=False,
        flood_score=0,
        landslide_score=0,
        flood_level=RiskLevel.LOW,
        landslide_level=RiskLevel.LOW,
        overall_alert_level=RiskLevel.LOW,
        alert_message=DEGRADED_MESSAGE,
        recommendations=list(DEGRADED_RECOMMENDATIONS),
        notes=list(DIAGNOSTIC_NOTES[1:]),
        error=error,
    )
