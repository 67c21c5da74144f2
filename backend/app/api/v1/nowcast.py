"""
FastAPI route: one-hour nowcast with trend-gated escalation.

Each call appends the latest 1 h score per location to the service's trend
history, so repeated calls (e.g. every few minutes from a scheduler) are
what allows a warning or emergency to be raised.
"""

from __future__ import annotations

from fastapi import APIRouter

from backend.app.api.schemas import CheckRequest, NowcastRequest
from backend.app.ingestion.upstream import UpstreamSources
from backend.app.ml.risk_service import get_risk_service

router = APIRouter(prefix="/api/v1/nowcast", tags=["nowcast"])


@router.post("/1h", summary="One-hour nowcast")
async def nowcast_1h(req: NowcastRequest):
    service = get_risk_service()
    report = service.run_nowcast(
        req.location_records(), req.inputs.to_record(), now=req.now, region=req.region,
    )
    return report.to_dict()


@router.post("/1h/check", summary="One-hour nowcast from live sources")
async def nowcast_1h_live(req: CheckRequest):
    """Fetches rainfall upstream; 502 when none is obtainable for the batch."""
    service = get_risk_service()
    async with UpstreamSources() as sources:
        report = await service.run_nowcast_check(
            req.location_records(), sources.fetchers(), region=req.region,
        )
    return report.to_dict()
