"""
collector.py — concurrent fan-out over the run's upstream sources.

The scoring core never performs I/O. A run instead receives a set of async
fetchers (one per source) and this module:

    - fetches rainfall in bounded chunks of locations (upstream rate limits)
    - runs every other source concurrently with the rainfall fetch
    - applies a per-source timeout
    - caches the reservoir listing in Redis for a short TTL
    - turns raw JSON into typed records (``ingestion.records``)

Error Handling Strategy
========================
    Single source / single chunk failure
        → recorded in ``BatchInputs.fetch_errors``; that source counts as
          missing for the affected locations, the run continues
    Rainfall unavailable for the whole batch
        → ``BatchFetchError``; the service turns this into a degraded
          assessment
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from backend.app.core.cache import cache_source
from backend.app.core.config import settings
from backend.app.core.errors import BatchFetchError
from backend.app.features.normalizers import safe_number
from backend.app.ingestion.records import (
    BatchInputs,
    MonitoredLocation,
    RainfallSummary,
    ReservoirRecord,
    SeismicEvent,
)

logger = logging.getLogger(__name__)

# A per-location fetcher returns either a list aligned with its input
# locations (None for gaps) or a mapping keyed by location id.
LocationFetcher = Callable[[Sequence[MonitoredLocation]], Awaitable[Any]]
ListFetcher = Callable[[], Awaitable[Sequence[Mapping[str, Any]]]]

RAINFALL = "rainfall"
SECONDARY_RAINFALL = "secondary_rainfall"
EARTHQUAKES = "earthquakes"
RESERVOIRS = "reservoirs"
ELEVATIONS = "elevations"
BASELINES = "baselines"


@dataclass
class SourceFetchers:
    """Async callables for every upstream source; only rainfall is required."""
    rainfall: LocationFetcher
    earthquakes: Optional[ListFetcher] = None
    reservoirs: Optional[ListFetcher] = None
    elevations: Optional[LocationFetcher] = None
    baselines: Optional[LocationFetcher] = None
    secondary_rainfall: Optional[LocationFetcher] = None
    provenance: Dict[str, str] = field(default_factory=dict)


class _ChunkedFailure(Exception):
    """Every chunk of a chunked source failed."""


def chunked(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    """
    >>> chunked([1, 2, 3, 4, 5], 2)
    [[1, 2], [3, 4], [5]]
    """
    size = max(1, size)
    return [items[i:i + size] for i in range(0, len(items), size)]


def _by_location(
    raw: Any,
    locations: Sequence[MonitoredLocation],
) -> Dict[str, Any]:
    """Key a fetcher result by location id, dropping gaps."""
    if isinstance(raw, Mapping):
        return {str(k): v for k, v in raw.items() if v is not None}
    out: Dict[str, Any] = {}
    for location, item in zip(locations, raw or []):
        if item is not None:
            out[location.id] = item
    return out


def _describe(exc: BaseException, timeout_s: float) -> str:
    if isinstance(exc, _ChunkedFailure):
        return f"all chunks failed: {exc}"
    if isinstance(exc, asyncio.TimeoutError):
        return f"timeout after {timeout_s:g}s"
    return f"{type(exc).__name__}: {exc}"


# ═══════════════════════════════════════════════════════════════════════════
# Per-source tasks
# ═══════════════════════════════════════════════════════════════════════════

async def _fetch_chunked(
    name: str,
    fetcher: LocationFetcher,
    locations: Sequence[MonitoredLocation],
    chunk_size: int,
    timeout_s: float,
) -> Tuple[Dict[str, Any], Optional[str]]:
    """
    Sequential chunks; failed chunks leave gaps, all-failed raises.

    Returns the merged results and a partial-failure note (or None).
    """
    merged: Dict[str, Any] = {}
    chunks = chunked(locations, chunk_size)
    failures: List[str] = []

    for chunk in chunks:
        try:
            raw = await asyncio.wait_for(fetcher(chunk), timeout=timeout_s)
        except Exception as e:
            reason = _describe(e, timeout_s)
            failures.append(reason)
            logger.warning(
                "%s chunk of %d locations failed: %s", name, len(chunk), reason,
                extra={"source": name},
            )
            continue
        merged.update(_by_location(raw, chunk))

    if chunks and len(failures) == len(chunks):
        raise _ChunkedFailure(failures[-1])
    if failures:
        return merged, f"{len(failures)}/{len(chunks)} chunks failed: {failures[-1]}"
    return merged, None


async def _fetch_list(name: str, fetcher: ListFetcher, timeout_s: float) -> Sequence[Mapping[str, Any]]:
    return await asyncio.wait_for(fetcher(), timeout=timeout_s)


async def _timed(name: str, coro: Awaitable[Any]) -> Any:
    start = time.monotonic()
    try:
        return await coro
    finally:
        duration_ms = round((time.monotonic() - start) * 1000, 1)
        logger.debug(
            "Source %s finished in %.1f ms", name, duration_ms,
            extra={"source": name, "duration_ms": duration_ms},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Fan-out
# ═══════════════════════════════════════════════════════════════════════════

async def collect_batch_inputs(
    locations: Sequence[MonitoredLocation],
    fetchers: SourceFetchers,
    *,
    chunk_size: Optional[int] = None,
    timeout_s: Optional[float] = None,
    use_cache: Optional[bool] = None,
) -> BatchInputs:
    """
    Fetch every source for one run and assemble ``BatchInputs``.

    Parameters
    ----------
    locations : Sequence[MonitoredLocation]
    fetchers : SourceFetchers
    chunk_size : int, optional
        Locations per rainfall request (default from settings).
    timeout_s : float, optional
        Per-request timeout (default from settings).
    use_cache : bool, optional
        Cache the reservoir listing in Redis (default from settings).

    Returns
    -------
    BatchInputs

    Raises
    ------
    BatchFetchError
        When rainfall could not be fetched for any chunk.
    """
    chunk_size = chunk_size or settings.RAINFALL_CHUNK_SIZE
    timeout_s = timeout_s or settings.SOURCE_FETCH_TIMEOUT
    use_cache = settings.SOURCE_CACHE_ENABLED if use_cache is None else use_cache

    tasks: Dict[str, Awaitable[Any]] = {
        RAINFALL: _fetch_chunked(RAINFALL, fetchers.rainfall, locations, chunk_size, timeout_s),
    }
    if fetchers.secondary_rainfall:
        tasks[SECONDARY_RAINFALL] = _fetch_chunked(
            SECONDARY_RAINFALL, fetchers.secondary_rainfall, locations, chunk_size, timeout_s,
        )
    if fetchers.earthquakes:
        tasks[EARTHQUAKES] = _fetch_list(EARTHQUAKES, fetchers.earthquakes, timeout_s)
    if fetchers.reservoirs:
        reservoir_fetcher = fetchers.reservoirs
        if use_cache:
            reservoir_fetcher = cache_source(
                ttl=settings.RESERVOIR_CACHE_TTL, prefix=RESERVOIRS,
            )(reservoir_fetcher)
        tasks[RESERVOIRS] = _fetch_list(RESERVOIRS, reservoir_fetcher, timeout_s)
    if fetchers.elevations:
        tasks[ELEVATIONS] = asyncio.wait_for(fetchers.elevations(locations), timeout=timeout_s)
    if fetchers.baselines:
        tasks[BASELINES] = asyncio.wait_for(fetchers.baselines(locations), timeout=timeout_s)

    names = list(tasks)
    results = await asyncio.gather(
        *(_timed(name, tasks[name]) for name in names),
        return_exceptions=True,
    )
    outcome = dict(zip(names, results))

    inputs = BatchInputs(provenance=dict(fetchers.provenance))
    for name, result in outcome.items():
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, Exception):
            inputs.fetch_errors[name] = _describe(result, timeout_s)
            logger.warning(
                "Source %s failed: %s", name, inputs.fetch_errors[name],
                extra={"source": name},
            )

    if RAINFALL in inputs.fetch_errors:
        raise BatchFetchError(RAINFALL, inputs.fetch_errors[RAINFALL], locations=len(locations))

    _assign(inputs, outcome, locations)

    logger.info(
        "Collected inputs for %d locations (%d rainfall, %d quakes, %d reservoirs, %d errors)",
        len(locations), len(inputs.rainfall), len(inputs.earthquakes),
        len(inputs.reservoirs), len(inputs.fetch_errors),
        extra={"location_count": len(locations)},
    )
    return inputs


def _assign(
    inputs: BatchInputs,
    outcome: Dict[str, Any],
    locations: Sequence[MonitoredLocation],
) -> None:
    """Convert successful raw results into typed records on ``inputs``."""
    for name in (RAINFALL, SECONDARY_RAINFALL):
        result = outcome.get(name)
        if not isinstance(result, tuple):
            continue
        raw, partial = result
        if partial:
            inputs.fetch_errors[name] = partial
        target = inputs.rainfall if name == RAINFALL else inputs.secondary_rainfall
        for location_id, item in raw.items():
            if isinstance(item, RainfallSummary):
                target[location_id] = item
            elif isinstance(item, Mapping):
                target[location_id] = RainfallSummary.from_dict(item)

    quakes = outcome.get(EARTHQUAKES)
    if quakes is not None and not isinstance(quakes, Exception):
        inputs.earthquakes = [
            q if isinstance(q, SeismicEvent) else SeismicEvent.from_dict(q)
            for q in quakes
        ]

    reservoirs = outcome.get(RESERVOIRS)
    if reservoirs is not None and not isinstance(reservoirs, Exception):
        label = inputs.provenance.get(RESERVOIRS)
        inputs.reservoirs = [
            r if isinstance(r, ReservoirRecord) else ReservoirRecord.from_raw(r, source=label)
            for r in reservoirs
        ]

    for name, target in ((ELEVATIONS, inputs.elevations), (BASELINES, inputs.baselines)):
        raw = outcome.get(name)
        if raw is None or isinstance(raw, Exception):
            continue
        for location_id, value in _numbers(_by_location(raw, locations)).items():
            target[location_id] = value

    if inputs.baselines:
        values = list(inputs.baselines.values())
        inputs.baseline_daily_mm = round(sum(values) / len(values), 3)


def _numbers(raw: Any) -> Dict[str, float]:
    if not isinstance(raw, Mapping):
        return {}
    out: Dict[str, float] = {}
    for key, value in raw.items():
        n = safe_number(value)
        if n is not None:
            out[str(key)] = n
    return out
