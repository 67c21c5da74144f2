"""
FastAPI route: multi-location batch analytics.

Scores every posted location against pre-collected source data and returns
per-location results, region rollups, the high-risk ranking and the
rainfall outlook.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter

from backend.app.api.schemas import BatchRequest, RegionsRequest
from backend.app.ml.analytics_aggregator import list_regions
from backend.app.ml.risk_service import get_risk_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/analytics", tags=["analytics"])


@router.post("/batch", summary="Batch risk analytics")
async def batch_analytics(req: BatchRequest):
    """Score a batch of locations, optionally restricted to one region."""
    service = get_risk_service()
    batch = service.run_batch_analytics(
        req.location_records(), req.inputs.to_record(), region=req.region,
    )
    logger.info(
        "Batch analytics over %d locations (region=%s)",
        len(batch.per_location), req.region or "all",
        extra={"location_count": len(batch.per_location), "region": req.region},
    )
    return batch.to_dict()


@router.post("/regions", summary="Distinct regions")
async def regions(req: RegionsRequest):
    """Sorted distinct regions of the posted locations."""
    return {"regions": list_regions(req.location_records())}
