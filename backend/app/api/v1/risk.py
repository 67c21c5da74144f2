"""
FastAPI route: single-location flood & landslide scoring.

Provides a stateless call that turns one feature bundle into flood and
landslide scores (0–100), a confidence figure and the normalised
components, plus a read-only view of the active scoring configuration.
"""

from __future__ import annotations

import logging
from typing import Dict

from fastapi import APIRouter
from pydantic import BaseModel, Field

from backend.app.api.schemas import RiskComputeRequest
from backend.app.features.normalizers import risk_level
from backend.app.ml.assessment import DIAGNOSTIC_NOTES
from backend.app.ml.risk_formula import describe_formula
from backend.app.ml.risk_service import get_risk_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/risk", tags=["risk"])


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------

class RiskComputeResponse(BaseModel):
    flood_score: int = Field(..., ge=0, le=100)
    landslide_score: int = Field(..., ge=0, le=100)
    flood_level: str = Field(..., description="LOW / MEDIUM / HIGH")
    landslide_level: str = Field(..., description="LOW / MEDIUM / HIGH")
    confidence: int = Field(..., ge=0, le=100)
    components: Dict[str, Dict[str, int]]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/compute",
    response_model=RiskComputeResponse,
    summary="Score one location",
)
async def compute_risk(req: RiskComputeRequest):
    """
    Compute flood and landslide risk from one feature bundle.

    Missing features are treated as neutral; the response confidence drops
    accordingly instead of the request failing.
    """
    service = get_risk_service()
    result = service.compute_risk(req.to_features())
    bands = service.config.bands

    body = result.to_dict()
    body["flood_level"] = risk_level(result.flood_score, bands).value
    body["landslide_level"] = risk_level(result.landslide_score, bands).value
    logger.debug(
        "Computed risk flood=%d landslide=%d", result.flood_score, result.landslide_score,
        extra={
            "region": req.region,
            "flood_score": result.flood_score,
            "landslide_score": result.landslide_score,
        },
    )
    return body


@router.get(
    "/info",
    summary="Scoring configuration",
    description="Risk bands, formulas, nowcast thresholds and confidence note.",
)
async def risk_info():
    config = get_risk_service().config
    nowcast = config.nowcast
    return {
        "bands": {
            "LOW": f"0 – {config.bands.low_max}",
            "MEDIUM": f"{config.bands.low_max + 1} – {config.bands.medium_max}",
            "HIGH": f"{config.bands.medium_max + 1} – 100",
        },
        "formula": describe_formula(config),
        "nowcast": {
            "warning_threshold": nowcast.warning_threshold,
            "emergency_threshold": nowcast.emergency_threshold,
            "rising_checks": nowcast.rising_checks,
            "window_size": nowcast.window_size,
        },
        "calibration": {
            "flood_multiplier": config.calibration.flood_multiplier,
            "landslide_multiplier": config.calibration.landslide_multiplier,
        },
        "landslide_prone_regions": list(config.landslide_prone_regions),
        "confidence_note": DIAGNOSTIC_NOTES[-1],
    }
