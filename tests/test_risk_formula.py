"""
Tests for the long-horizon flood / landslide formula and its configuration.

Covers:
    • Dry baseline and heavy-rain reference scenarios
    • Missing-feature totality and confidence behaviour
    • Component reporting
    • Monotonicity in rainfall, seismic activity and reservoir level
    • Landslide-prone region boost
    • Configuration validation (weights, bands, nowcast thresholds)
"""

from __future__ import annotations

import pytest

from backend.app.core.errors import ConfigurationError
from backend.app.features.normalizers import RiskLevel, risk_level
from backend.app.ingestion.records import RainfallSummary, ReservoirRecord
from backend.app.ml.risk_config import (
    DEFAULT_CONFIG,
    FloodWeights,
    NowcastConfig,
    RiskBands,
    RiskEngineConfig,
)
from backend.app.ml.risk_formula import RiskFeatures, compute_risk, describe_formula


def _heavy_rain(**overrides) -> RiskFeatures:
    params = dict(
        rainfall=RainfallSummary(rain_24h_mm=150.0, max_hourly_mm=20.0),
        earthquakes_nearby=2,
        reservoir=ReservoirRecord(name="Tehri", level_pct=95.0),
    )
    params.update(overrides)
    return RiskFeatures(**params)


# ═══════════════════════════════════════════════════════════════════════════
# Reference scenarios
# ═══════════════════════════════════════════════════════════════════════════

class TestReferenceScenarios:
    def test_dry_day_sits_at_formula_floor(self):
        features = RiskFeatures(
            rainfall=RainfallSummary(rain_24h_mm=0.0),
            earthquakes_nearby=0,
        )
        result = compute_risk(features)
        assert result.flood_score == 2
        assert result.landslide_score == 5
        assert result.flood_score <= 20 and result.landslide_score <= 20

    def test_dry_day_confidence(self):
        """45 + 40·(2/8) + 3·2 sources = 61"""
        features = RiskFeatures(
            rainfall=RainfallSummary(rain_24h_mm=0.0),
            earthquakes_nearby=0,
        )
        assert compute_risk(features).confidence == 61

    def test_heavy_rain_both_high(self):
        result = compute_risk(_heavy_rain())
        assert result.flood_score == 85
        assert result.landslide_score == 84
        assert risk_level(result.flood_score) is RiskLevel.HIGH
        assert risk_level(result.landslide_score) is RiskLevel.HIGH

    def test_heavy_rain_components(self):
        comps = compute_risk(_heavy_rain()).components
        assert comps.flood.intensity == 100
        assert comps.flood.persistence == 75
        assert comps.flood.reservoir_stress == 88
        assert comps.flood.seismic == 36
        assert comps.flood.anomaly == 50
        assert comps.landslide.terrain == 50
        assert comps.landslide.reservoir_spill_stress == 48
        assert comps.landslide.prone_region_boost == 0

    def test_heavy_rain_confidence(self):
        """45 + 40·(4/8) + 3·3 sources = 74"""
        assert compute_risk(_heavy_rain()).confidence == 74


# ═══════════════════════════════════════════════════════════════════════════
# Missing data
# ═══════════════════════════════════════════════════════════════════════════

class TestMissingFeatures:
    def test_empty_bundle(self):
        result = compute_risk(RiskFeatures())
        assert 0 <= result.flood_score <= 100
        assert 0 <= result.landslide_score <= 100
        assert result.confidence == 45

    def test_garbage_values_are_neutral(self):
        features = RiskFeatures(
            rainfall=RainfallSummary(rain_24h_mm=float("nan"), max_hourly_mm=float("inf")),
            earthquakes_nearby=None,
            elevation_m=float("nan"),
        )
        assert compute_risk(features).to_dict() == compute_risk(RiskFeatures()).to_dict()

    def test_72h_falls_back_to_24h(self):
        only_24 = compute_risk(RiskFeatures(rainfall=RainfallSummary(rain_24h_mm=60.0)))
        assert only_24.components.flood.persistence == 30
        assert only_24.components.flood.saturation == round(60 / 3.6)

    def test_elevation_from_rainfall_summary(self):
        features = RiskFeatures(rainfall=RainfallSummary(rain_24h_mm=10.0, elevation_m=1500.0))
        assert compute_risk(features).components.landslide.terrain == 50
        features = RiskFeatures(rainfall=RainfallSummary(rain_24h_mm=10.0, elevation_m=2400.0))
        assert compute_risk(features).components.landslide.terrain == 80

    def test_more_data_raises_confidence(self):
        sparse = compute_risk(RiskFeatures(rainfall=RainfallSummary(rain_24h_mm=10.0)))
        full = compute_risk(RiskFeatures(
            rainfall=RainfallSummary(
                rain_24h_mm=10.0, rain_72h_mm=30.0, rain_7d_mm=60.0, max_hourly_mm=3.0,
            ),
            earthquakes_nearby=0,
            elevation_m=800.0,
            baseline_daily_mm=8.0,
            reservoir=ReservoirRecord(name="Koyna", level_pct=70.0),
        ))
        assert full.confidence > sparse.confidence
        assert full.confidence == 100  # 45 + 40 + 15, clamped


# ═══════════════════════════════════════════════════════════════════════════
# Monotonicity
# ═══════════════════════════════════════════════════════════════════════════

class TestMonotonicity:
    @pytest.mark.parametrize("low,high", [(10, 40), (40, 90), (90, 200)])
    def test_rain(self, low, high):
        a = compute_risk(RiskFeatures(rainfall=RainfallSummary(rain_24h_mm=low)))
        b = compute_risk(RiskFeatures(rainfall=RainfallSummary(rain_24h_mm=high)))
        assert b.flood_score >= a.flood_score
        assert b.landslide_score >= a.landslide_score

    def test_seismic(self):
        a = compute_risk(_heavy_rain(earthquakes_nearby=0))
        b = compute_risk(_heavy_rain(earthquakes_nearby=4))
        assert b.flood_score >= a.flood_score
        assert b.landslide_score >= a.landslide_score

    def test_reservoir_level(self):
        base = dict(rainfall=RainfallSummary(rain_24h_mm=40.0))
        a = compute_risk(RiskFeatures(reservoir=ReservoirRecord(name="x", level_pct=50.0), **base))
        b = compute_risk(RiskFeatures(reservoir=ReservoirRecord(name="x", level_pct=98.0), **base))
        assert b.flood_score > a.flood_score

    def test_scores_bounded(self):
        extreme = compute_risk(RiskFeatures(
            rainfall=RainfallSummary(
                rain_24h_mm=5000, rain_72h_mm=9000, rain_7d_mm=20000, max_hourly_mm=500,
            ),
            earthquakes_nearby=50,
            elevation_m=8000,
            baseline_daily_mm=0.1,
            reservoir=ReservoirRecord(name="x", level_pct=100, inflow=1e6, outflow=0),
            region="Kerala",
        ))
        assert extreme.flood_score <= 100
        assert extreme.landslide_score <= 100


class TestProneRegion:
    def test_boost_applies_case_insensitively(self):
        plain = compute_risk(_heavy_rain(region="Rajasthan"))
        prone = compute_risk(_heavy_rain(region="  KERALA "))
        assert prone.components.landslide.prone_region_boost == 12
        assert plain.components.landslide.prone_region_boost == 0
        assert prone.landslide_score >= plain.landslide_score

    def test_flood_unaffected(self):
        plain = compute_risk(_heavy_rain(region="Rajasthan"))
        prone = compute_risk(_heavy_rain(region="Kerala"))
        assert prone.flood_score == plain.flood_score


# ═══════════════════════════════════════════════════════════════════════════
# Configuration
# ═══════════════════════════════════════════════════════════════════════════

class TestConfiguration:
    def test_weights_must_sum_to_one(self):
        with pytest.raises(ConfigurationError):
            FloodWeights(intensity=0.5)

    def test_negative_weight_rejected(self):
        with pytest.raises(ConfigurationError):
            FloodWeights(intensity=0.50, persistence=-0.02)

    def test_band_order(self):
        with pytest.raises(ConfigurationError):
            RiskBands(low_max=70, medium_max=60)

    def test_nowcast_threshold_order(self):
        with pytest.raises(ConfigurationError):
            NowcastConfig(warning_threshold=80, emergency_threshold=70)

    def test_window_must_hold_streak(self):
        with pytest.raises(ConfigurationError):
            NowcastConfig(rising_checks=5, window_size=3)

    def test_from_settings(self):
        cfg = RiskEngineConfig.from_settings()
        assert cfg.bands.low_max == 33
        assert cfg.nowcast.warning_threshold == 60
        assert cfg.is_landslide_prone("Himachal Pradesh")

    def test_describe_formula_reflects_weights(self):
        text = describe_formula(DEFAULT_CONFIG)
        assert "0.30*intensity" in text["flood"]
        assert "0.27*intensity" in text["landslide"]
        assert set(text) == {"flood", "landslide", "confidence"}

    def test_bands_do_not_change_scores(self):
        cfg = RiskEngineConfig(bands=RiskBands(low_max=10, medium_max=20))
        result = compute_risk(_heavy_rain(), cfg)
        assert result.flood_score == compute_risk(_heavy_rain()).flood_score
