"""
FastAPI route: system-wide risk assessment.

    POST /run       batch → assessment, stored as the current snapshot
    POST /check     fetch sources live, then as /run (degraded on upstream failure)
    GET  /current   latest snapshot
    GET  /history   snapshots from the last N hours, newest first
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query

from backend.app.api.schemas import BatchRequest, CheckRequest
from backend.app.core.errors import NotFoundError
from backend.app.ingestion.upstream import UpstreamSources
from backend.app.ml.risk_service import get_risk_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/assessment", tags=["assessment"])


@router.post("/run", summary="Run an assessment")
async def run_assessment(req: BatchRequest):
    """Score the posted batch and store the resulting assessment."""
    service = get_risk_service()
    assessment = service.assess(
        req.location_records(), req.inputs.to_record(), region=req.region,
    )
    logger.info(
        "Assessment %s: %s", assessment.assessment_id, assessment.overall_alert_level.value,
        extra={
            "flood_score": assessment.flood_score,
            "landslide_score": assessment.landslide_score,
        },
    )
    return assessment.to_dict()


@router.post("/check", summary="Run a live assessment")
async def run_live_check(req: CheckRequest):
    """
    Fetch rainfall, earthquakes, elevations and baselines from the public
    upstream APIs, then score and store the assessment.

    When no rainfall can be obtained the stored assessment is a degraded
    snapshot (``success: false``) rather than an error response.
    """
    service = get_risk_service()
    async with UpstreamSources() as sources:
        assessment = await service.run_check(
            req.location_records(), sources.fetchers(), region=req.region,
        )
    return assessment.to_dict()


@router.get("/current", summary="Latest assessment")
async def current_assessment():
    assessment = get_risk_service().current_assessment
    if assessment is None:
        raise NotFoundError("Assessment", which="current")
    return assessment.to_dict()


@router.get("/history", summary="Assessment history")
async def assessment_history(
    hours: float = Query(24.0, gt=0, le=24 * 30, description="Look-back window in hours"),
):
    items = get_risk_service().history_since(hours)
    return {
        "hours": hours,
        "count": len(items),
        "assessments": [a.to_dict() for a in items],
    }
