"""
Tests for the feature normalisers.

Covers:
    • clamp / safe_number / round_score helpers
    • Rainfall intensity, accumulation and anomaly indices
    • Terrain, lowland and seismic indices
    • Reservoir level / flow stress and the blended stress index
    • Near-term index, logistic squash and risk banding
    • Total behaviour on None / NaN / garbage input
"""

from __future__ import annotations

import math

import pytest

from backend.app.features.normalizers import (
    RiskLevel,
    accumulation_index,
    anomaly_index,
    clamp,
    logistic_to_100,
    lowland_factor,
    near_term_index,
    normalize_level_pct,
    rain_intensity,
    reservoir_flow_stress,
    reservoir_level_stress,
    reservoir_stress_index,
    risk_level,
    round_score,
    safe_number,
    seismic_index,
    terrain_index,
)
from backend.app.ingestion.records import ReservoirRecord
from backend.app.ml.risk_config import RiskBands


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

class TestClamp:
    def test_inside(self):
        assert clamp(42.0) == 42.0

    def test_bounds(self):
        assert clamp(-5.0) == 0.0
        assert clamp(250.0) == 100.0

    def test_nan_collapses_to_low(self):
        assert clamp(float("nan")) == 0.0

    def test_custom_range(self):
        assert clamp(5.0, 1.0, 3.0) == 3.0


class TestSafeNumber:
    @pytest.mark.parametrize("raw,expected", [
        (12, 12.0),
        ("12.5", 12.5),
        (0, 0.0),
    ])
    def test_numeric(self, raw, expected):
        assert safe_number(raw) == expected

    @pytest.mark.parametrize("raw", [None, "n/a", "", float("nan"), float("inf"), True, [1]])
    def test_unusable(self, raw):
        assert safe_number(raw) is None


class TestRoundScore:
    def test_half_rounds_up(self):
        assert round_score(2.5) == 3
        assert round_score(0.5) == 1

    def test_below_half(self):
        assert round_score(2.49) == 2


# ═══════════════════════════════════════════════════════════════════════════
# Rainfall
# ═══════════════════════════════════════════════════════════════════════════

class TestRainIntensity:
    def test_zero_rain(self):
        assert rain_intensity(0, 0) == 0.0

    def test_formula(self):
        """25 mm / 1.25 + 5 mm · 2.8 = 20 + 14 = 34"""
        assert rain_intensity(25, 5) == pytest.approx(34.0)

    def test_saturates(self):
        assert rain_intensity(150, 20) == 100.0

    def test_missing_counts_as_zero(self):
        assert rain_intensity(None, "garbage") == 0.0

    def test_negative_ignored(self):
        assert rain_intensity(-10, -2) == 0.0


class TestAccumulationIndex:
    def test_divisor(self):
        assert accumulation_index(72, 2.0) == pytest.approx(36.0)

    def test_clamped(self):
        assert accumulation_index(1000, 2.0) == 100.0

    def test_missing(self):
        assert accumulation_index(None, 3.6) == 0.0


class TestAnomalyIndex:
    def test_missing_baseline_is_neutral(self):
        assert anomaly_index(80, None) == 50.0

    def test_non_positive_baseline_is_neutral(self):
        assert anomaly_index(80, 0) == 50.0
        assert anomaly_index(80, -3) == 50.0

    def test_at_baseline(self):
        assert anomaly_index(10, 10) == pytest.approx(50.0)

    def test_double_baseline(self):
        assert anomaly_index(20, 10) == pytest.approx(100.0)

    def test_dry_day(self):
        assert anomaly_index(0, 10) == pytest.approx(0.0)


# ═══════════════════════════════════════════════════════════════════════════
# Terrain & seismic
# ═══════════════════════════════════════════════════════════════════════════

class TestTerrainIndex:
    def test_unknown(self):
        assert terrain_index(None) == 50.0

    def test_scaled(self):
        assert terrain_index(900) == pytest.approx(30.0)

    def test_clamped(self):
        assert terrain_index(8000) == 100.0
        assert terrain_index(-20) == 0.0


class TestLowlandFactor:
    @pytest.mark.parametrize("elevation,expected", [
        (50, 12.0),
        (299.9, 12.0),
        (300, 6.0),
        (599, 6.0),
        (600, 0.0),
        (None, 0.0),
    ])
    def test_bands(self, elevation, expected):
        assert lowland_factor(elevation) == expected


class TestSeismicIndex:
    def test_counts(self):
        assert seismic_index(2, 18.0) == 36.0

    def test_clamped(self):
        assert seismic_index(10, 20.0) == 100.0

    def test_missing(self):
        assert seismic_index(None, 18.0) == 0.0


# ═══════════════════════════════════════════════════════════════════════════
# Reservoir
# ═══════════════════════════════════════════════════════════════════════════

class TestReservoirStress:
    def test_level_pct_range(self):
        assert normalize_level_pct(95) == 95.0
        assert normalize_level_pct(101) is None
        assert normalize_level_pct(-1) is None
        assert normalize_level_pct("x") is None

    def test_level_stress(self):
        """(95 − 60) · 2.5 = 87.5"""
        assert reservoir_level_stress(95) == pytest.approx(87.5)
        assert reservoir_level_stress(40) == 0.0
        assert reservoir_level_stress(None) == 0.0

    def test_flow_stress_balanced(self):
        assert reservoir_flow_stress(500, 500) == pytest.approx(50.0, abs=1e-3)

    def test_flow_stress_unusable(self):
        assert reservoir_flow_stress(None, 100) is None
        assert reservoir_flow_stress(100, -1) is None

    def test_zero_outflow_saturates(self):
        assert reservoir_flow_stress(100, 0) == 100.0

    def test_no_record(self):
        assert reservoir_stress_index(None) == 0

    def test_level_only(self):
        assert reservoir_stress_index(ReservoirRecord(name="Tehri", level_pct=95)) == 88

    def test_flow_only(self):
        rec = ReservoirRecord(name="Tehri", inflow=500, outflow=500)
        assert reservoir_stress_index(rec) == 50

    def test_blend(self):
        """0.7 · 87.5 + 0.3 · 50 = 76.25"""
        rec = ReservoirRecord(name="Tehri", level_pct=95, inflow=500, outflow=500)
        assert reservoir_stress_index(rec) == 76

    def test_nothing_usable(self):
        assert reservoir_stress_index(ReservoirRecord(name="Tehri")) == 0


# ═══════════════════════════════════════════════════════════════════════════
# Output shaping
# ═══════════════════════════════════════════════════════════════════════════

class TestNearTermIndex:
    def test_share_of_scale(self):
        assert near_term_index(12.5, 25.0) == pytest.approx(50.0)

    def test_zero_scale(self):
        assert near_term_index(10, 0) == 0.0


class TestLogistic:
    def test_midpoint(self):
        assert logistic_to_100(50, 50, 0.09) == pytest.approx(50.0)

    def test_monotonic(self):
        assert logistic_to_100(20, 50, 0.09) < logistic_to_100(80, 50, 0.09)

    def test_extreme_input_is_finite(self):
        low = logistic_to_100(-1e6, 50, 0.09)
        high = logistic_to_100(1e6, 50, 0.09)
        assert low == 0.0
        assert math.isclose(high, 100.0)


class TestRiskLevel:
    @pytest.mark.parametrize("score,level", [
        (0, RiskLevel.LOW),
        (33, RiskLevel.LOW),
        (34, RiskLevel.MEDIUM),
        (66, RiskLevel.MEDIUM),
        (67, RiskLevel.HIGH),
        (100, RiskLevel.HIGH),
    ])
    def test_default_bands(self, score, level):
        assert risk_level(score) is level

    def test_custom_bands(self):
        bands = RiskBands(low_max=20, medium_max=50)
        assert risk_level(30, bands) is RiskLevel.MEDIUM
        assert risk_level(51, bands) is RiskLevel.HIGH

    def test_missing_score_is_low(self):
        assert risk_level(None) is RiskLevel.LOW
