"""
Tests for the concurrent source collector and the engine service.

Covers:
    • Chunked rainfall fetching and partial chunk failures
    • Per-source failures recorded without aborting the run
    • Whole-batch rainfall failure → BatchFetchError
    • Timeouts
    • Service: degraded assessment, history, nowcast propagation
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.core.errors import BatchFetchError
from backend.app.ingestion.collector import SourceFetchers, chunked, collect_batch_inputs
from backend.app.ingestion.records import MonitoredLocation
from backend.app.ml.assessment import degraded_assessment
from backend.app.ml.risk_service import RiskEngineService


LOCATIONS = [
    MonitoredLocation(f"D{i:03d}", f"Dam {i}", "Kerala", 9.5 + i * 0.1, 76.5)
    for i in range(5)
]


def _rain_for(chunk):
    return [{"rain_24h_mm": 20.0, "max_hourly_mm": 4.0} for _ in chunk]


async def _rainfall_ok(chunk):
    return _rain_for(chunk)


async def _rainfall_down(chunk):
    raise ConnectionError("open-meteo unreachable")


async def _earthquakes():
    return [{"mag": 5.0, "latitude": 9.8, "longitude": 76.6, "id": "eq1"}]


async def _reservoirs():
    return [{"name": "Dam 1", "State": "Kerala", "percent": 85}]


async def _elevations(chunk):
    return {loc.id: 900 for loc in chunk}


async def _broken():
    raise RuntimeError("boom")


def _collect(fetchers, **kwargs):
    kwargs.setdefault("use_cache", False)
    return asyncio.run(collect_batch_inputs(LOCATIONS, fetchers, **kwargs))


# ═══════════════════════════════════════════════════════════════════════════
# Collector
# ═══════════════════════════════════════════════════════════════════════════

class TestChunked:
    def test_sizes(self):
        assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_non_positive_size(self):
        assert chunked([1, 2], 0) == [[1], [2]]


class TestCollectBatchInputs:
    def test_all_sources(self):
        calls = []

        async def rainfall(chunk):
            calls.append(len(chunk))
            return _rain_for(chunk)

        data = _collect(
            SourceFetchers(
                rainfall=rainfall,
                earthquakes=_earthquakes,
                reservoirs=_reservoirs,
                elevations=_elevations,
                provenance={"rainfall": "open-meteo"},
            ),
            chunk_size=2,
        )
        assert calls == [2, 2, 1]
        assert len(data.rainfall) == 5
        assert data.earthquakes[0].event_id == "eq1"
        assert data.reservoirs[0].level_pct == 85
        assert data.elevations["D000"] == 900.0
        assert data.fetch_errors == {}
        assert data.provenance["rainfall"] == "open-meteo"

    def test_partial_chunk_failure(self):
        async def rainfall(chunk):
            if chunk[0].id == "D002":
                raise ConnectionError("rate limited")
            return _rain_for(chunk)

        data = _collect(SourceFetchers(rainfall=rainfall), chunk_size=2)
        assert set(data.rainfall) == {"D000", "D001", "D004"}
        assert "1/3 chunks failed" in data.fetch_errors["rainfall"]

    def test_gaps_in_list_result(self):
        async def rainfall(chunk):
            return [None if loc.id == "D003" else {"rain_24h_mm": 1.0} for loc in chunk]

        data = _collect(SourceFetchers(rainfall=rainfall))
        assert "D003" not in data.rainfall
        assert len(data.rainfall) == 4

    def test_optional_source_failure_recorded(self):
        data = _collect(SourceFetchers(rainfall=_rainfall_ok, earthquakes=_broken))
        assert len(data.rainfall) == 5
        assert data.earthquakes == []
        assert "RuntimeError" in data.fetch_errors["earthquakes"]

    def test_rainfall_failure_raises(self):
        with pytest.raises(BatchFetchError) as exc:
            _collect(SourceFetchers(rainfall=_rainfall_down))
        assert exc.value.source == "rainfall"
        assert exc.value.status_code == 502

    def test_timeout(self):
        async def slow():
            await asyncio.sleep(5)
            return []

        data = _collect(SourceFetchers(rainfall=_rainfall_ok, reservoirs=slow), timeout_s=0.05)
        assert data.fetch_errors["reservoirs"].startswith("timeout")

    def test_baseline_mean(self):
        async def baselines(chunk):
            return {loc.id: 4.0 + i for i, loc in enumerate(chunk)}

        data = _collect(SourceFetchers(rainfall=_rainfall_ok, baselines=baselines))
        assert data.baseline_daily_mm == 6.0


# ═══════════════════════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════════════════════

class TestRiskEngineService:
    def test_run_check_success(self):
        service = RiskEngineService()
        fetchers = SourceFetchers(rainfall=_rainfall_ok, earthquakes=_earthquakes, reservoirs=_reservoirs)
        assessment = asyncio.run(service.run_check(LOCATIONS, fetchers, use_cache=False))
        assert assessment.success is True
        assert assessment.summary["location_count"] == 5
        assert service.current_assessment is assessment

    def test_run_check_degrades(self):
        service = RiskEngineService()
        assessment = asyncio.run(
            service.run_check(LOCATIONS, SourceFetchers(rainfall=_rainfall_down), use_cache=False)
        )
        assert assessment.success is False
        assert assessment.error
        assert service.current_assessment is assessment

    def test_nowcast_check_propagates_fetch_error(self):
        service = RiskEngineService()
        with pytest.raises(BatchFetchError):
            asyncio.run(service.run_nowcast_check(
                LOCATIONS, SourceFetchers(rainfall=_rainfall_down), use_cache=False,
            ))

    def test_nowcast_check_region_filter(self):
        service = RiskEngineService()
        report = asyncio.run(service.run_nowcast_check(
            LOCATIONS, SourceFetchers(rainfall=_rainfall_ok), region="Odisha", use_cache=False,
        ))
        assert report.locations == []

    def test_history_window_and_bound(self):
        service = RiskEngineService(history_size=3)
        now = datetime.now(timezone.utc)
        for hours_ago in (30, 5, 2, 1):
            service.record(degraded_assessment("x", timestamp=now - timedelta(hours=hours_ago)))
        recent = service.history_since(24, now=now)
        assert [round((now - a.timestamp).total_seconds() / 3600) for a in recent] == [1, 2, 5]
        assert len(service.history_since(100, now=now)) == 3

    def test_clear_history(self):
        service = RiskEngineService()
        service.record(degraded_assessment("x"))
        service.clear_history()
        assert service.current_assessment is None
        assert service.history_since(24) == []
