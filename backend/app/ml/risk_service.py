"""
risk_service.py — engine facade owning the configuration and run state.

Pipeline:
    collector.collect_batch_inputs()          (async fan-out, optional)
        → analytics_aggregator.run_batch_analytics()
        → assessment.assemble_assessment()
        → current assessment + bounded alert history

    collector → nowcast_engine.NowcastEngine.run()   (trend state kept here)

All state (trend history, current assessment, alert history) lives on the
service instance; nothing is module-global except the lazily created
default instance returned by ``get_risk_service()``.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Deque, List, Optional, Sequence

from backend.app.core.config import settings
from backend.app.core.errors import BatchFetchError
from backend.app.core.logging_config import run_context
from backend.app.ingestion.collector import SourceFetchers, collect_batch_inputs
from backend.app.ingestion.records import BatchInputs, MonitoredLocation
from backend.app.matching.reservoir_matcher import ReservoirMatcher
from backend.app.ml import analytics_aggregator, risk_formula
from backend.app.ml.analytics_aggregator import BatchAnalytics, filter_by_region
from backend.app.ml.assessment import Assessment, assemble_assessment, degraded_assessment
from backend.app.ml.nowcast_engine import NowcastEngine, NowcastReport
from backend.app.ml.risk_config import RiskEngineConfig
from backend.app.ml.risk_formula import RiskFeatures, RiskResult
from backend.app.ml.trend_tracker import TrendTracker

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 100


class RiskEngineService:
    """
    Stateful entry point used by the API layer.

    Parameters
    ----------
    config : RiskEngineConfig, optional
        Defaults to ``RiskEngineConfig.from_settings()``.
    tracker : TrendTracker, optional
    matcher : ReservoirMatcher, optional
    history_size : int
        Maximum number of assessments kept in the alert history.
    """

    def __init__(
        self,
        config: Optional[RiskEngineConfig] = None,
        tracker: Optional[TrendTracker] = None,
        matcher: Optional[ReservoirMatcher] = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        self.config = config or RiskEngineConfig.from_settings()
        self.tracker = tracker or TrendTracker(window_size=self.config.nowcast.window_size)
        self.matcher = matcher or ReservoirMatcher(min_score=self.config.reservoir_match_min_score)
        self.nowcast_engine = NowcastEngine(self.config, self.tracker, self.matcher)

        self._history: Deque[Assessment] = deque(maxlen=history_size)
        self._current: Optional[Assessment] = None
        self._lock = threading.Lock()

    # ── Core operations ──────────────────────────────────────────────

    def compute_risk(self, features: RiskFeatures) -> RiskResult:
        return risk_formula.compute_risk(features, self.config)

    def run_batch_analytics(
        self,
        locations: Sequence[MonitoredLocation],
        data: BatchInputs,
        region: Optional[str] = None,
    ) -> BatchAnalytics:
        return analytics_aggregator.run_batch_analytics(
            locations, data, self.config, self.matcher, region,
        )

    def run_nowcast(
        self,
        locations: Sequence[MonitoredLocation],
        data: BatchInputs,
        now: Optional[datetime] = None,
        region: Optional[str] = None,
    ) -> NowcastReport:
        selected = filter_by_region(locations, region)
        return self.nowcast_engine.run(selected, data, now=now, region=region)

    def assemble_assessment(self, batch: BatchAnalytics) -> Assessment:
        return assemble_assessment(batch, self.config)

    def assess(
        self,
        locations: Sequence[MonitoredLocation],
        data: BatchInputs,
        region: Optional[str] = None,
    ) -> Assessment:
        """Batch → assessment, stored as current and appended to history."""
        batch = self.run_batch_analytics(locations, data, region)
        assessment = self.assemble_assessment(batch)
        self.record(assessment)
        return assessment

    # ── Async runs with upstream fan-out ─────────────────────────────

    async def run_check(
        self,
        locations: Sequence[MonitoredLocation],
        fetchers: SourceFetchers,
        region: Optional[str] = None,
        **collect_kwargs,
    ) -> Assessment:
        """
        Fetch, score and assess; a whole-batch fetch failure yields a
        degraded assessment instead of an exception.
        """
        with run_context("risk_check", location_count=len(locations)):
            try:
                data = await collect_batch_inputs(locations, fetchers, **collect_kwargs)
            except BatchFetchError as e:
                logger.error(
                    "Risk check degraded: %s", e.message,
                    extra={"source": e.source, "error": e.message},
                )
                assessment = degraded_assessment(e.message)
                self.record(assessment)
                return assessment

            assessment = self.assess(locations, data, region)
            logger.info(
                "Risk check %s: flood=%d landslide=%d level=%s",
                assessment.assessment_id, assessment.flood_score,
                assessment.landslide_score, assessment.overall_alert_level.value,
                extra={
                    "flood_score": assessment.flood_score,
                    "landslide_score": assessment.landslide_score,
                },
            )
            return assessment

    async def run_nowcast_check(
        self,
        locations: Sequence[MonitoredLocation],
        fetchers: SourceFetchers,
        region: Optional[str] = None,
        now: Optional[datetime] = None,
        **collect_kwargs,
    ) -> NowcastReport:
        """Fetch and nowcast; ``BatchFetchError`` propagates to the caller."""
        selected = filter_by_region(locations, region)
        with run_context("nowcast", location_count=len(selected)):
            data = await collect_batch_inputs(selected, fetchers, **collect_kwargs)
            report = self.nowcast_engine.run(selected, data, now=now, region=region)
            logger.info(
                "Nowcast: %d warnings, %d emergencies, alert=%s",
                report.warning_count, report.emergency_count, report.alert_level.value,
            )
            return report

    # ── Assessment state ─────────────────────────────────────────────

    def record(self, assessment: Assessment) -> None:
        with self._lock:
            self._current = assessment
            self._history.append(assessment)

    @property
    def current_assessment(self) -> Optional[Assessment]:
        with self._lock:
            return self._current

    def history_since(self, hours: float, now: Optional[datetime] = None) -> List[Assessment]:
        """Assessments newer than ``hours`` ago, newest first."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=hours)
        with self._lock:
            recent = [a for a in self._history if a.timestamp >= cutoff]
        return list(reversed(recent))

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
            self._current = None


# ── Singleton ──
_service_instance: Optional[RiskEngineService] = None


def get_risk_service() -> RiskEngineService:
    """Get or create the global risk engine service."""
    global _service_instance
    if _service_instance is None:
        _service_instance = RiskEngineService(history_size=settings.ALERT_HISTORY_SIZE)
    return _service_instance
