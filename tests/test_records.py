"""
Tests for input records and seismic proximity helpers.

Covers:
    • Timestamp parsing (ISO, Z suffix, epoch ms, naive → UTC)
    • Case-insensitive field lookup
    • RainfallSummary from flat and collector-shaped payloads
    • SeismicEvent / MonitoredLocation / BatchInputs construction
    • Degree-box containment and significant-event counting
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from backend.app.ingestion.records import (
    BatchInputs,
    MonitoredLocation,
    RainfallSummary,
    SeismicEvent,
    parse_timestamp,
    pick_field,
)
from backend.app.spatial.radius_utils import (
    Coordinate,
    count_events_near,
    inside_degree_box,
    significant_events,
)


# ═══════════════════════════════════════════════════════════════════════════
# Parsing helpers
# ═══════════════════════════════════════════════════════════════════════════

class TestParseTimestamp:
    def test_iso_with_z(self):
        assert parse_timestamp("2024-07-15T06:00:00Z") == datetime(2024, 7, 15, 6, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        ts = parse_timestamp("2024-07-15T06:00")
        assert ts.tzinfo is not None
        assert ts.hour == 6

    def test_epoch_millis(self):
        assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw", [None, "", "yesterday"])
    def test_unusable(self, raw):
        assert parse_timestamp(raw) is None


class TestPickField:
    def test_exact_beats_substring(self):
        row = {"gross_storage": 1, "Storage": 2}
        assert pick_field(row, ("storage",)) == 2

    def test_substring(self):
        assert pick_field({"Live_Storage_BCM": 4.2}, ("storage",)) == 4.2

    def test_missing(self):
        assert pick_field({"a": 1}, ("storage",)) is None
        assert pick_field(None, ("storage",)) is None


# ═══════════════════════════════════════════════════════════════════════════
# Records
# ═══════════════════════════════════════════════════════════════════════════

class TestRainfallSummary:
    def test_flat_shape(self):
        r = RainfallSummary.from_dict({"rain_24h_mm": "12.5", "max_hourly_mm": 3})
        assert r.rain_24h_mm == 12.5
        assert r.max_hourly_mm == 3.0
        assert r.rain_72h_mm is None

    def test_collector_shape(self):
        r = RainfallSummary.from_dict({
            "summary": {
                "precipitation_sum_24h_mm": 40,
                "precipitation_sum_72h_mm": 95,
                "precipitation_sum_7d_mm": 180,
                "max_hourly_precipitation_mm": 11,
            },
            "elevation": 1250,
            "hourly": {
                "time": ["2024-07-15T06:00", "2024-07-15T07:00", "bad"],
                "precipitation": [1.2, None, 4.0],
            },
            "forecast_daily": [{"date": "2024-07-16", "precipitation_mm": 22}],
        })
        assert (r.rain_24h_mm, r.rain_72h_mm, r.rain_7d_mm, r.max_hourly_mm) == (40, 95, 180, 11)
        assert r.elevation_m == 1250
        assert [p.precipitation_mm for p in r.hourly] == [1.2, 0.0]
        assert r.forecast_daily[0].precipitation_mm == 22

    def test_hourly_list_shape(self):
        r = RainfallSummary.from_dict({
            "hourly": [{"timestamp": "2024-07-15T06:00Z", "precipitation_mm": 2.0}],
        })
        assert r.hourly[0].timestamp.tzinfo is not None

    def test_to_dict(self):
        d = RainfallSummary(rain_24h_mm=5.0).to_dict()
        assert d["rain_24h_mm"] == 5.0
        assert d["hourly_points"] == 0


class TestSeismicEvent:
    def test_usgs_style_keys(self):
        e = SeismicEvent.from_dict({
            "id": "us7000abcd", "mag": 5.2, "depth": 10, "latitude": 30.1,
            "longitude": 79.2, "time": 1721023200000, "place": "Uttarakhand, India",
        })
        assert e.magnitude == 5.2
        assert e.depth_km == 10.0
        assert e.occurred_at.year == 2024
        assert e.to_dict()["id"] == "us7000abcd"


class TestLocationsAndBatch:
    def test_location_aliases(self):
        loc = MonitoredLocation.from_dict({"id": "D9", "name": "Koyna", "state": "Maharashtra", "lat": "17.4", "lon": 73.75})
        assert loc.region == "Maharashtra"
        assert loc.latitude == 17.4

    def test_batch_from_dict(self):
        data = BatchInputs.from_dict({
            "rainfall": {"D1": {"rain_24h_mm": 10}},
            "earthquakes": [{"mag": 4.8, "latitude": 1, "longitude": 2}],
            "reservoirs": [{"name": "Koyna", "percent": 64}],
            "elevations": {"D1": "650", "D2": "unknown"},
            "baseline_daily_mm": "7.5",
        })
        assert data.rainfall["D1"].rain_24h_mm == 10
        assert data.earthquakes[0].magnitude == 4.8
        assert data.reservoirs[0].level_pct == 64
        assert data.elevations == {"D1": 650.0}
        assert data.baseline_daily_mm == 7.5


# ═══════════════════════════════════════════════════════════════════════════
# Proximity
# ═══════════════════════════════════════════════════════════════════════════

class TestProximity:
    def test_invalid_coordinate(self):
        with pytest.raises(ValueError):
            Coordinate(91.0, 0.0)

    def test_degree_box(self):
        center = Coordinate(30.0, 78.0)
        assert inside_degree_box(center, 31.5, 76.5, 2.0)
        assert not inside_degree_box(center, 32.5, 78.0, 2.0)
        assert not inside_degree_box(center, None, 78.0, 2.0)

    def test_significant_and_counted(self):
        center = Coordinate(30.0, 78.0)
        events = [
            SeismicEvent(magnitude=4.4, depth_km=5, latitude=30.1, longitude=78.1),
            SeismicEvent(magnitude=5.5, depth_km=5, latitude=31.5, longitude=79.5, event_id="far"),
            SeismicEvent(magnitude=4.5, depth_km=5, latitude=30.2, longitude=78.2, event_id="near"),
            SeismicEvent(magnitude=None, depth_km=5, latitude=30.0, longitude=78.0),
        ]
        assert len(significant_events(events, 4.5)) == 2
        assert count_events_near(center, events, min_magnitude=4.5, box_degrees=2.0) == 2
