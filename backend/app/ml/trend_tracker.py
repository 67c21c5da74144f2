"""
Trend Tracker — bounded per-location history of 1-hour nowcast scores.

Provides:
    • TrendHistoryStore: thread-safe map of location id → bounded deque
    • TrendTracker: append / inspect / reset, plus rising-streak detection
    • consecutive_rising(): the escalation signal used by the nowcast

History is process-local and is lost on restart; a fresh process needs
``rising_checks`` samples per location before it can escalate again.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Deque, Dict, List, Optional, Sequence

DEFAULT_WINDOW_SIZE = 8


@dataclass(frozen=True)
class TrendPoint:
    score: float
    timestamp: datetime

    def to_dict(self) -> dict:
        return {"score": self.score, "timestamp": self.timestamp.isoformat()}


class TrendState(str, Enum):
    NO_HISTORY = "NO_HISTORY"
    INSUFFICIENT = "INSUFFICIENT"  # fewer than two points
    ACTIVE = "ACTIVE"


def consecutive_rising(history: Sequence[TrendPoint]) -> int:
    """
    Count strictly increasing steps, walking back from the newest point.

    >>> now = datetime(2024, 7, 1, tzinfo=timezone.utc)
    >>> consecutive_rising([TrendPoint(s, now) for s in (40, 55, 70)])
    2
    >>> consecutive_rising([TrendPoint(s, now) for s in (70, 70)])
    0
    """
    if len(history) < 2:
        return 0
    rising = 0
    for i in range(len(history) - 1, 0, -1):
        if history[i].score > history[i - 1].score:
            rising += 1
        else:
            break
    return rising


class OutOfOrderTrendPoint(ValueError):
    """Raised when a point is older than the newest stored one."""


class TrendHistoryStore:
    """
    In-memory history storage.

    Each key has its own lock so concurrent appends for one location are
    serialised while different locations proceed in parallel.
    """

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE) -> None:
        if window_size < 1:
            raise ValueError(f"window_size must be positive, got {window_size}")
        self.window_size = window_size
        self._series: Dict[str, Deque[TrendPoint]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def append(self, key: str, point: TrendPoint) -> List[TrendPoint]:
        """
        Append and return the history.

        Raises ``OutOfOrderTrendPoint`` when the point is older than the
        newest stored one; the history is left unchanged.
        """
        with self._lock_for(key):
            series = self._series.get(key)
            if series is None:
                series = self._series[key] = deque(maxlen=self.window_size)
            if series and point.timestamp < series[-1].timestamp:
                raise OutOfOrderTrendPoint(
                    f"trend point for {key} at {point.timestamp.isoformat()} is older "
                    f"than {series[-1].timestamp.isoformat()}"
                )
            series.append(point)
            return list(series)

    def get(self, key: str) -> List[TrendPoint]:
        with self._lock_for(key):
            return list(self._series.get(key, ()))

    def clear(self, key: Optional[str] = None) -> None:
        if key is None:
            with self._guard:
                self._series.clear()
                self._locks.clear()
            return
        with self._lock_for(key):
            self._series.pop(key, None)

    def keys(self) -> List[str]:
        with self._guard:
            return list(self._series.keys())


class TrendTracker:
    """
    Per-location score history with a fixed window.

    Examples
    --------
    >>> t = TrendTracker(window_size=3)
    >>> for s in (10, 20, 30, 40):
    ...     _ = t.append("D1", s)
    >>> [p.score for p in t.history("D1")]
    [20, 30, 40]
    """

    def __init__(
        self,
        window_size: int = DEFAULT_WINDOW_SIZE,
        store: Optional[TrendHistoryStore] = None,
    ) -> None:
        self.store = store or TrendHistoryStore(window_size)
        self.window_size = self.store.window_size

    def append(
        self,
        location_id: str,
        score: float,
        timestamp: Optional[datetime] = None,
    ) -> List[TrendPoint]:
        ts = timestamp or datetime.now(timezone.utc)
        return self.store.append(location_id, TrendPoint(score=score, timestamp=ts))

    def history(self, location_id: str) -> List[TrendPoint]:
        return self.store.get(location_id)

    def rising_streak(self, location_id: str) -> int:
        return consecutive_rising(self.history(location_id))

    def state(self, location_id: str) -> TrendState:
        n = len(self.history(location_id))
        if n == 0:
            return TrendState.NO_HISTORY
        if n < 2:
            return TrendState.INSUFFICIENT
        return TrendState.ACTIVE

    def reset(self, location_id: Optional[str] = None) -> None:
        """Forget one location's history, or all of it."""
        self.store.clear(location_id)
