"""
Tests for batch analytics and the assessment assembler.

Covers:
    • Per-location feature assembly (blend, fallbacks, seismic box, match)
    • Region filtering, listing and rollups
    • High-risk zone ranking
    • Calibration before averaging
    • Missing-rainfall handling
    • Assessment averages, levels, messages and the degraded snapshot
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from backend.app.features.location_features import blend_rainfall, build_location_context
from backend.app.features.normalizers import RiskLevel, risk_level
from backend.app.ingestion.records import (
    BatchInputs,
    DailyForecast,
    MonitoredLocation,
    RainfallSummary,
    ReservoirRecord,
    SeismicEvent,
)
from backend.app.ml.analytics_aggregator import (
    UNKNOWN_REGION,
    LocationRisk,
    apply_calibration,
    filter_by_region,
    list_regions,
    predicted_daily_average,
    rank_high_risk_zones,
    run_batch_analytics,
)
from backend.app.ml.assessment import (
    DEGRADED_MESSAGE,
    DIAGNOSTIC_NOTES,
    RECOMMENDATIONS,
    assemble_assessment,
    degraded_assessment,
    make_assessment_id,
)
from backend.app.ml.risk_config import Calibration, RiskEngineConfig
from backend.app.ml.risk_formula import RiskComponents


IDUKKI = MonitoredLocation("D001", "Idukki Dam", "Kerala", 9.84, 76.97)
TEHRI = MonitoredLocation("D002", "Tehri Dam", "Uttarakhand", 30.38, 78.48)
HIRAKUD = MonitoredLocation("D003", "Hirakud Dam", "Odisha", 21.52, 83.87)
NO_REGION = MonitoredLocation("D004", "Unnamed Weir", None, 15.0, 75.0)

HEAVY = RainfallSummary(rain_24h_mm=150.0, max_hourly_mm=20.0)
DRY = RainfallSummary(rain_24h_mm=0.0)


def _row(name, flood, landslide, region="Kerala") -> LocationRisk:
    return LocationRisk(
        id=name, name=name, region=region, latitude=0.0, longitude=0.0,
        flood_score=flood, landslide_score=landslide,
        flood_level=risk_level(flood), landslide_level=risk_level(landslide),
        confidence=60, components=RiskComponents(),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Feature assembly
# ═══════════════════════════════════════════════════════════════════════════

class TestLocationContext:
    def test_blend_rainfall(self):
        blended = blend_rainfall(
            RainfallSummary(rain_24h_mm=40.0, max_hourly_mm=5.0, rain_72h_mm=90.0),
            RainfallSummary(rain_24h_mm=60.0, max_hourly_mm=9.0),
        )
        assert blended.rain_24h_mm == 50.0
        assert blended.max_hourly_mm == 9.0
        assert blended.rain_72h_mm == 90.0

    def test_secondary_without_primary_ignored(self):
        assert blend_rainfall(None, RainfallSummary(rain_24h_mm=60.0)) is None

    def test_seismic_box_count(self):
        quakes = [
            SeismicEvent(magnitude=5.0, depth_km=10, latitude=31.0, longitude=79.0),
            SeismicEvent(magnitude=4.0, depth_km=10, latitude=30.5, longitude=78.5),   # too small
            SeismicEvent(magnitude=6.0, depth_km=10, latitude=35.0, longitude=78.5),   # outside box
            SeismicEvent(magnitude=4.5, depth_km=10, latitude=28.5, longitude=77.0),    # at threshold
        ]
        ctx = build_location_context(TEHRI, BatchInputs(rainfall={"D002": DRY}, earthquakes=quakes))
        assert ctx.features.earthquakes_nearby == 2

    def test_failed_seismic_source_is_missing(self):
        data = BatchInputs(rainfall={"D002": DRY}, fetch_errors={"earthquakes": "timeout"})
        assert build_location_context(TEHRI, data).features.earthquakes_nearby is None

    def test_elevation_and_baseline_fallbacks(self):
        data = BatchInputs(
            rainfall={"D002": RainfallSummary(rain_24h_mm=5.0, elevation_m=700.0)},
            baseline_daily_mm=6.0,
        )
        ctx = build_location_context(TEHRI, data)
        assert ctx.features.elevation_m == 700.0
        assert ctx.features.baseline_daily_mm == 6.0

        data.elevations["D002"] = 1800.0
        data.baselines["D002"] = 9.0
        ctx = build_location_context(TEHRI, data)
        assert ctx.features.elevation_m == 1800.0
        assert ctx.features.baseline_daily_mm == 9.0

    def test_reservoir_match(self):
        data = BatchInputs(
            rainfall={"D002": DRY},
            reservoirs=[ReservoirRecord(name="TEHRI", region="Uttarakhand", level_pct=91.0)],
        )
        ctx = build_location_context(TEHRI, data)
        assert ctx.reservoir_level_pct == 91.0
        assert ctx.features.reservoir.name == "TEHRI"


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

class TestHelpers:
    def test_calibration(self):
        assert apply_calibration(60, None) == 60
        assert apply_calibration(60, 1.5) == 90
        assert apply_calibration(80, 1.5) == 100
        assert apply_calibration(45, 0.5) == 23

    def test_predicted_daily_average_first_week(self):
        days = [DailyForecast(date=f"2024-07-{d:02d}", precipitation_mm=10.0) for d in range(1, 8)]
        days.append(DailyForecast(date="2024-07-08", precipitation_mm=500.0))
        assert predicted_daily_average(days) == 10.0
        assert predicted_daily_average([]) == 0.0

    def test_filter_by_region(self):
        locs = [IDUKKI, TEHRI, NO_REGION]
        assert filter_by_region(locs, "kerala") == [IDUKKI]
        assert filter_by_region(locs, None) == locs
        assert filter_by_region(locs, "Atlantis") == []

    def test_list_regions(self):
        assert list_regions([TEHRI, IDUKKI, HIRAKUD, NO_REGION, IDUKKI]) == ["Kerala", "Odisha", "Uttarakhand"]


class TestHighRiskZones:
    def test_low_rows_excluded(self):
        assert rank_high_risk_zones([_row("a", 10, 20)]) == []

    def test_ordering(self):
        rows = [
            _row("medium", 50, 60),
            _row("high-70", 70, 10),
            _row("high-90", 20, 90),
            _row("medium-40", 40, 40),
        ]
        zones = rank_high_risk_zones(rows)
        assert [z.location for z in zones] == ["high-90", "high-70", "medium", "medium-40"]
        assert zones[0].zone_severity is RiskLevel.HIGH
        assert zones[-1].zone_severity is RiskLevel.MEDIUM

    def test_stable_for_ties(self):
        zones = rank_high_risk_zones([_row("first", 70, 70), _row("second", 70, 70)])
        assert [z.location for z in zones] == ["first", "second"]


# ═══════════════════════════════════════════════════════════════════════════
# Batch run
# ═══════════════════════════════════════════════════════════════════════════

class TestRunBatchAnalytics:
    def _data(self) -> BatchInputs:
        return BatchInputs(
            rainfall={"D001": HEAVY, "D002": DRY, "D003": DRY},
            earthquakes=[SeismicEvent(magnitude=5.1, depth_km=12, latitude=10.0, longitude=77.0)],
            provenance={"rainfall": "open-meteo"},
        )

    def test_rows_and_rollups(self):
        batch = run_batch_analytics([IDUKKI, TEHRI, HIRAKUD], self._data())
        assert len(batch.per_location) == 3
        assert set(batch.by_region) == {"Kerala", "Uttarakhand", "Odisha"}
        assert batch.by_region["Kerala"].rainfall_24h_avg_mm == 150.0
        assert batch.source_counts == {"rainfall_locations": 3, "earthquake_count": 1, "reservoir_count": 0}

    def test_high_risk_zone_present(self):
        batch = run_batch_analytics([IDUKKI, TEHRI], self._data())
        assert batch.high_risk_zones[0].location == "Idukki Dam"
        assert batch.high_risk_zones[0].zone_severity is RiskLevel.HIGH

    def test_hotspot_listed_in_low_region(self):
        hotspot = MonitoredLocation("K0", "Idukki Dam", "Kerala", 9.84, 76.97)
        dry = [
            MonitoredLocation(f"K{i}", f"Kerala Weir {i}", "Kerala", 9.0 + i / 10, 76.0)
            for i in range(1, 7)
        ]
        rainfall = {loc.id: DRY for loc in dry}
        rainfall["K0"] = RainfallSummary(
            rain_24h_mm=250.0, rain_72h_mm=400.0, rain_7d_mm=600.0, max_hourly_mm=40.0,
        )
        batch = run_batch_analytics([hotspot, *dry], BatchInputs(rainfall=rainfall))
        rows = {r.id: r for r in batch.per_location}
        assert rows["K0"].flood_level is not RiskLevel.LOW
        assert batch.by_region["Kerala"].flood_level is RiskLevel.LOW
        assert "Idukki Dam" in [z.location for z in batch.high_risk_zones]

    def test_region_filter(self):
        batch = run_batch_analytics([IDUKKI, TEHRI, HIRAKUD], self._data(), region="KERALA")
        assert [r.id for r in batch.per_location] == ["D001"]
        assert batch.region_filter == "KERALA"

    def test_missing_region_grouped_as_unknown(self):
        batch = run_batch_analytics([NO_REGION], BatchInputs(rainfall={"D004": DRY}))
        assert UNKNOWN_REGION in batch.by_region

    def test_missing_rainfall_flags_row(self):
        batch = run_batch_analytics([IDUKKI, TEHRI], BatchInputs(rainfall={"D001": HEAVY}))
        rows = {r.id: r for r in batch.per_location}
        assert rows["D001"].data_complete is True
        assert rows["D002"].data_complete is False
        assert 0 <= rows["D002"].flood_score <= 100

    def test_calibration_before_averaging(self):
        cfg = RiskEngineConfig(calibration=Calibration(flood_multiplier=2.0))
        plain = run_batch_analytics([IDUKKI, TEHRI], self._data())
        calibrated = run_batch_analytics([IDUKKI, TEHRI], self._data(), config=cfg)
        for a, b in zip(plain.per_location, calibrated.per_location):
            assert b.flood_score == min(100, a.flood_score * 2)
        expected_avg = round(sum(r.flood_score for r in calibrated.per_location if r.region == "Kerala"))
        assert calibrated.by_region["Kerala"].flood_avg == expected_avg

    def test_to_dict(self):
        d = run_batch_analytics([IDUKKI], self._data()).to_dict()
        assert d["locations"][0]["landslide_risk_level"] == "HIGH"
        assert d["earthquakes"][0]["magnitude"] == 5.1
        assert set(d["formula"]) == {"flood", "landslide", "confidence"}

    def test_empty_batch(self):
        batch = run_batch_analytics([], BatchInputs())
        assert batch.per_location == []
        assert batch.by_region == {}


# ═══════════════════════════════════════════════════════════════════════════
# Assessment
# ═══════════════════════════════════════════════════════════════════════════

class TestAssessment:
    def test_assessment_id(self):
        ts = datetime(2024, 7, 15, 6, 30, 5, tzinfo=timezone.utc)
        assert make_assessment_id(ts) == "RISK_20240715063005"

    def test_averages_and_levels(self):
        batch = run_batch_analytics(
            [IDUKKI, TEHRI],
            BatchInputs(rainfall={"D001": HEAVY, "D002": HEAVY}),
        )
        a = assemble_assessment(batch)
        flood_avg = sum(r.flood_score for r in batch.per_location) / 2
        assert a.flood_score == int(flood_avg + 0.5)
        assert a.overall_alert_level is RiskLevel.HIGH
        assert a.recommendations == RECOMMENDATIONS[RiskLevel.HIGH]
        assert str(a.flood_score) in a.alert_message
        assert a.success is True

    def test_low_level_message(self):
        batch = run_batch_analytics([TEHRI], BatchInputs(rainfall={"D002": DRY}))
        a = assemble_assessment(batch)
        assert a.overall_alert_level is RiskLevel.LOW
        assert a.alert_message.startswith("No significant")

    def test_summary_and_sources(self):
        data = BatchInputs(
            rainfall={"D001": HEAVY},
            provenance={"rainfall": "open-meteo", "earthquakes": "usgs"},
            fetch_errors={"earthquakes": "timeout after 30s"},
        )
        a = assemble_assessment(run_batch_analytics([IDUKKI], data))
        assert a.summary["location_count"] == 1
        assert a.data_sources["rainfall"] == "open-meteo"
        assert a.data_sources["earthquakes"] == "unavailable"

    def test_to_dict_diagnostics(self):
        a = assemble_assessment(run_batch_analytics([IDUKKI], BatchInputs(rainfall={"D001": HEAVY})))
        d = a.to_dict()
        assert d["model_diagnostics"]["notes"] == DIAGNOSTIC_NOTES
        assert "flood" in d["model_diagnostics"]["averaged_components"]
        assert d["overall_alert_level"] == "HIGH"

    def test_empty_batch_is_low(self):
        a = assemble_assessment(run_batch_analytics([], BatchInputs()))
        assert a.flood_score == 0 and a.landslide_score == 0
        assert a.overall_alert_level is RiskLevel.LOW
        assert a.averaged_components == RiskComponents().to_dict()

    def test_degraded(self):
        a = degraded_assessment("rainfall: timeout")
        d = a.to_dict()
        assert d["success"] is False
        assert d["alert_message"] == DEGRADED_MESSAGE
        assert d["error"] == "rainfall: timeout"
        assert d["flood_risk_score"] == 0
        assert d["overall_alert_level"] == "LOW"
        components = d["model_diagnostics"]["averaged_components"]
        assert components == RiskComponents().to_dict()
        assert components["flood"]["intensity"] == 0
        assert "prone_region_boost" in components["landslide"]

    @pytest.mark.parametrize("multiplier", [0.5, 1.5])
    def test_assessment_uses_calibrated_scores(self, multiplier):
        cfg = RiskEngineConfig(calibration=Calibration(landslide_multiplier=multiplier))
        batch = run_batch_analytics([IDUKKI], BatchInputs(rainfall={"D001": HEAVY}), config=cfg)
        a = assemble_assessment(batch, cfg)
        assert a.landslide_score == batch.per_location[0].landslide_score
