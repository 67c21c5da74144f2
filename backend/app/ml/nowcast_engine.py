"""
Nowcast Engine — 1-hour early warning on top of the long-horizon scores.

For every location:
    1. Long-horizon flood / landslide scores from ``risk_formula``.
    2. Short rainfall windows around *now* from the hourly series.
    3. 1-hour scores blending (1) and (2) plus terrain, reservoir level
       and a model-uncertainty term.
    4. ``overall_1h = max(flood_1h, landslide_1h)`` is appended to the
       location's trend history.
    5. WARNING / EMERGENCY fire only when the score crosses its threshold
       AND the score has been rising for the last ``rising_checks`` samples.

    flood_1h     = 0.34·flood + 0.26·next1h + 0.16·next3h + 0.10·past6h
                 + 0.08·accel + 0.06·reservoir_level_stress
    landslide_1h = 0.32·landslide + 0.22·next1h + 0.15·next3h + 0.10·accel
                 + 0.11·terrain + 0.10·0.2·(100 − confidence)

Window scales (mm → 100): next1h 25, next3h 55, past6h 70, accel 30.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from backend.app.features.location_features import build_location_context
from backend.app.features.normalizers import (
    RiskLevel,
    clamp,
    near_term_index,
    reservoir_level_stress,
    risk_level,
    round_score,
    terrain_index,
)
from backend.app.ingestion.records import BatchInputs, HourlyPrecipitation, MonitoredLocation
from backend.app.matching.reservoir_matcher import ReservoirMatcher
from backend.app.ml.risk_config import DEFAULT_CONFIG, NowcastConfig, RiskEngineConfig
from backend.app.ml.risk_formula import RiskResult, compute_risk
from backend.app.ml.trend_tracker import (
    OutOfOrderTrendPoint,
    TrendState,
    TrendTracker,
    consecutive_rising,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Rainfall windows
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class RainfallWindows:
    next_1h_mm: float = 0.0
    next_3h_mm: float = 0.0
    past_6h_mm: float = 0.0
    acceleration_mm: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "next1h_mm": self.next_1h_mm,
            "next3h_mm": self.next_3h_mm,
            "past6h_mm": self.past_6h_mm,
            "accel_mm": self.acceleration_mm,
        }


def rainfall_windows(
    hourly: Sequence[HourlyPrecipitation],
    now: Optional[datetime] = None,
) -> RainfallWindows:
    """
    Split an hourly series around ``now`` and sum the short windows.

    Slots at or after ``now`` are future (ascending), earlier slots are past
    (most recent first). ``next_1h`` is the first future slot, ``next_3h``
    the first three; ``past_6h`` the latest six past slots. Acceleration is
    ``max(0, next_3h − previous_3h)``. All values rounded to 2 decimals;
    all zero when there is no series.
    """
    if not hourly:
        return RainfallWindows()

    now = now or datetime.now(timezone.utc)
    ts = np.array([p.timestamp.timestamp() for p in hourly], dtype=float)
    mm = np.array([p.precipitation_mm for p in hourly], dtype=float)
    mm = np.nan_to_num(mm, nan=0.0, posinf=0.0, neginf=0.0)

    future = ts >= now.timestamp()
    nxt = mm[future][np.argsort(ts[future], kind="stable")]
    past = mm[~future][np.argsort(-ts[~future], kind="stable")]

    next_1h = float(nxt[:1].sum())
    next_3h = float(nxt[:3].sum())
    prev_3h = float(past[:3].sum())
    past_6h = float(past[:6].sum())

    return RainfallWindows(
        next_1h_mm=round(next_1h, 2),
        next_3h_mm=round(next_3h, 2),
        past_6h_mm=round(past_6h, 2),
        acceleration_mm=round(max(0.0, next_3h - prev_3h), 2),
    )


# ═══════════════════════════════════════════════════════════════════════════
# 1-hour scores
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class OneHourScores:
    flood_score_1h: int
    landslide_score_1h: int

    @property
    def overall(self) -> int:
        return max(self.flood_score_1h, self.landslide_score_1h)


def one_hour_scores(
    risk: RiskResult,
    windows: RainfallWindows,
    elevation_m: Optional[float],
    reservoir_level_pct: Optional[float],
    config: Optional[RiskEngineConfig] = None,
) -> OneHourScores:
    """
    Blend long-horizon scores with the short rainfall windows.

    Examples
    --------
    >>> from backend.app.ml.risk_formula import RiskComponents
    >>> r = RiskResult(0, 0, 100, RiskComponents())
    >>> one_hour_scores(r, RainfallWindows(), 0.0, None)
    OneHourScores(flood_score_1h=0, landslide_score_1h=0)
    """
    cfg = config or DEFAULT_CONFIG
    nc = cfg.nowcast
    sc = cfg.scales

    next_1h = near_term_index(windows.next_1h_mm, nc.next_1h_scale_mm)
    next_3h = near_term_index(windows.next_3h_mm, nc.next_3h_scale_mm)
    past_6h = near_term_index(windows.past_6h_mm, nc.past_6h_scale_mm)
    accel = near_term_index(windows.acceleration_mm, nc.acceleration_scale_mm)
    terrain = terrain_index(elevation_m, sc.terrain_divisor, sc.terrain_unknown)
    level_stress = reservoir_level_stress(
        reservoir_level_pct, sc.reservoir_level_reference, sc.reservoir_level_gain,
    )
    uncertainty = (100.0 - clamp(risk.confidence)) * nc.uncertainty_factor

    fw = nc.flood_weights
    flood_1h = clamp(
        fw.long_horizon * risk.flood_score
        + fw.next_1h * next_1h
        + fw.next_3h * next_3h
        + fw.past_6h * past_6h
        + fw.acceleration * accel
        + fw.reservoir_level * level_stress
    )

    lw = nc.landslide_weights
    landslide_1h = clamp(
        lw.long_horizon * risk.landslide_score
        + lw.next_1h * next_1h
        + lw.next_3h * next_3h
        + lw.acceleration * accel
        + lw.terrain * terrain
        + lw.uncertainty * uncertainty
    )

    return OneHourScores(
        flood_score_1h=round_score(flood_1h),
        landslide_score_1h=round_score(landslide_1h),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Escalation
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Escalation:
    warning: bool
    emergency: bool
    rising: int
    required: int


def required_rising_steps(rising_checks: int) -> int:
    """
    Rising comparisons needed to escalate.

    A streak of ``rising_checks`` samples contains ``rising_checks − 1``
    increasing steps; at least one step is always required so a single
    sample can never escalate.
    """
    return max(1, rising_checks - 1)


def evaluate_escalation(overall: float, rising: int, config: NowcastConfig) -> Escalation:
    """
    Threshold crossing gated on the rising streak.

    WARNING and EMERGENCY share the same gate of
    ``required_rising_steps(rising_checks)`` increasing steps, so with
    ``rising_checks=3`` the sequence 40, 55, 70 warns on the third sample.
    Neither level uses a stricter ``rising >= rising_checks`` rule.

    >>> cfg = NowcastConfig()
    >>> e = evaluate_escalation(70, 2, cfg)
    >>> e.warning, e.emergency
    (True, False)
    """
    required = required_rising_steps(config.rising_checks)
    trending = rising >= required
    return Escalation(
        warning=trending and overall >= config.warning_threshold,
        emergency=trending and overall >= config.emergency_threshold,
        rising=rising,
        required=required,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Report
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class LocationNowcast:
    id: str
    name: str
    region: Optional[str]
    flood_score_1h: int
    landslide_score_1h: int
    overall_score_1h: int
    risk_level_1h: RiskLevel
    warning_triggered: bool
    emergency_triggered: bool
    rising_checks: int
    trend_state: TrendState
    windows: RainfallWindows
    model_confidence: int
    reservoir_level_pct: Optional[float] = None
    reservoir_match_name: Optional[str] = None
    data_complete: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "region": self.region,
            "flood_score_1h": self.flood_score_1h,
            "landslide_score_1h": self.landslide_score_1h,
            "overall_score_1h": self.overall_score_1h,
            "risk_level_1h": self.risk_level_1h.value,
            "warning_triggered": self.warning_triggered,
            "emergency_triggered": self.emergency_triggered,
            "rising_checks": self.rising_checks,
            "trend_state": self.trend_state.value,
            "hourly_windows_mm": self.windows.to_dict(),
            "model_confidence": self.model_confidence,
            "reservoir_level_pct": self.reservoir_level_pct,
            "reservoir_match_name": self.reservoir_match_name,
            "data_complete": self.data_complete,
        }


@dataclass
class NowcastReport:
    timestamp: datetime
    thresholds: Dict[str, int]
    warning_count: int
    emergency_count: int
    alert_level: RiskLevel
    locations: List[LocationNowcast] = field(default_factory=list)
    region_filter: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "region_filter": self.region_filter,
            "thresholds": self.thresholds,
            "warning_count": self.warning_count,
            "emergency_count": self.emergency_count,
            "alert_level_1h": self.alert_level.value,
            "locations": [loc.to_dict() for loc in self.locations],
        }


def system_alert_level(warning_count: int, emergency_count: int) -> RiskLevel:
    if emergency_count > 0:
        return RiskLevel.HIGH
    if warning_count > 0:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


# ═══════════════════════════════════════════════════════════════════════════
# Engine
# ═══════════════════════════════════════════════════════════════════════════

class NowcastEngine:
    """
    Stateful nowcast runner; state lives in the injected ``TrendTracker``.

    Parameters
    ----------
    config : RiskEngineConfig, optional
    tracker : TrendTracker, optional
        Defaults to a fresh tracker with the configured window size.
    matcher : ReservoirMatcher, optional
    """

    def __init__(
        self,
        config: Optional[RiskEngineConfig] = None,
        tracker: Optional[TrendTracker] = None,
        matcher: Optional[ReservoirMatcher] = None,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self.tracker = tracker or TrendTracker(window_size=self.config.nowcast.window_size)
        self.matcher = matcher or ReservoirMatcher(min_score=self.config.reservoir_match_min_score)

    def evaluate(
        self,
        location_id: str,
        overall: float,
        timestamp: Optional[datetime] = None,
    ) -> Escalation:
        """
        Record ``overall`` for a location and decide escalation.

        A sample older than the stored history is not recorded and never
        escalates.
        """
        try:
            history = self.tracker.append(location_id, overall, timestamp)
        except OutOfOrderTrendPoint as e:
            logger.warning(
                "Rejected out-of-order trend point: %s", e, extra={"location_id": location_id},
            )
            return Escalation(
                warning=False,
                emergency=False,
                rising=self.tracker.rising_streak(location_id),
                required=required_rising_steps(self.config.nowcast.rising_checks),
            )
        return evaluate_escalation(overall, consecutive_rising(history), self.config.nowcast)

    def run(
        self,
        locations: Sequence[MonitoredLocation],
        data: BatchInputs,
        now: Optional[datetime] = None,
        region: Optional[str] = None,
    ) -> NowcastReport:
        """
        Nowcast every location and aggregate the system alert level.

        Locations without a rainfall summary are scored on neutral features,
        reported with ``data_complete=False`` and never escalate; they do
        not feed the trend history.
        """
        now = now or datetime.now(timezone.utc)
        nc = self.config.nowcast
        results: List[LocationNowcast] = []

        for location in locations:
            ctx = build_location_context(location, data, self.config, self.matcher)
            risk = compute_risk(ctx.features, self.config)
            windows = rainfall_windows(ctx.rainfall.hourly if ctx.rainfall else [], now)
            scores = one_hour_scores(
                risk, windows, ctx.features.elevation_m, ctx.reservoir_level_pct, self.config,
            )
            overall = scores.overall

            if ctx.data_complete:
                escalation = self.evaluate(location.id, overall, now)
            else:
                logger.warning(
                    "No rainfall for %s; nowcast scored on neutral features",
                    location.id, extra={"location_id": location.id},
                )
                escalation = Escalation(
                    warning=False,
                    emergency=False,
                    rising=self.tracker.rising_streak(location.id),
                    required=required_rising_steps(nc.rising_checks),
                )

            if escalation.warning or escalation.emergency:
                logger.warning(
                    "Nowcast escalation for %s: overall=%d rising=%d emergency=%s",
                    location.id, overall, escalation.rising, escalation.emergency,
                    extra={"location_id": location.id, "overall_score_1h": overall},
                )

            results.append(LocationNowcast(
                id=location.id,
                name=location.name,
                region=location.region,
                flood_score_1h=scores.flood_score_1h,
                landslide_score_1h=scores.landslide_score_1h,
                overall_score_1h=overall,
                risk_level_1h=risk_level(overall, self.config.bands),
                warning_triggered=escalation.warning,
                emergency_triggered=escalation.emergency,
                rising_checks=escalation.rising,
                trend_state=self.tracker.state(location.id),
                windows=windows,
                model_confidence=risk.confidence,
                reservoir_level_pct=ctx.reservoir_level_pct,
                reservoir_match_name=ctx.reservoir_match.record.name if ctx.reservoir_match else None,
                data_complete=ctx.data_complete,
            ))

        results.sort(key=lambda r: r.overall_score_1h, reverse=True)
        warnings = sum(1 for r in results if r.warning_triggered)
        emergencies = sum(1 for r in results if r.emergency_triggered)

        return NowcastReport(
            timestamp=now,
            thresholds={
                "warning_threshold": nc.warning_threshold,
                "emergency_threshold": nc.emergency_threshold,
                "rising_checks": nc.rising_checks,
            },
            warning_count=warnings,
            emergency_count=emergencies,
            alert_level=system_alert_level(warnings, emergencies),
            locations=results,
            region_filter=region,
        )


def run_nowcast(
    locations: Sequence[MonitoredLocation],
    data: BatchInputs,
    config: Optional[RiskEngineConfig] = None,
    tracker: Optional[TrendTracker] = None,
    matcher: Optional[ReservoirMatcher] = None,
    now: Optional[datetime] = None,
) -> NowcastReport:
    """Functional entry point: one nowcast pass with the given state."""
    return NowcastEngine(config, tracker, matcher).run(locations, data, now)
