"""
upstream.py — live HTTP fetchers for the collector's sources.

═══════════════════════════════════════════════════════════════════════════
SOURCES
═══════════════════════════════════════════════════════════════════════════

    rainfall     Open-Meteo forecast API (hourly precipitation, daily sums)
                 https://open-meteo.com/en/docs
    earthquakes  USGS FDSN event service, India bounding box, GeoJSON
                 https://earthquake.usgs.gov/fdsnws/event/1/
    elevations   Open-Elevation lookup, up to 50 points per request
                 https://open-elevation.com/
    baselines    NASA POWER daily point API, PRECTOTCORR over the last
                 30 days → mean daily precipitation
                 https://power.larc.nasa.gov/docs/

No API keys are required. Reservoir listings need a provider key and are
passed in by the caller as a plain async fetcher.

Rainfall accumulation
======================
Open-Meteo returns precipitation as mm per hourly slot, covering
``past_days`` before and ``forecast_days`` after today. Windows are summed
backward from the latest slot at or before "now":

    24h = Σ precip[now-23 … now]
    72h = Σ precip[now-71 … now]
    7d  = Σ precip[now-167 … now]

Future slots stay in the hourly series for the nowcast; future daily sums
become the forecast used for the 7-day outlook.

Error Handling Strategy
========================
    429 / 5xx / network error → retry with exponential backoff
    other 4xx                 → fail immediately
    one location fails        → gap for that location
    every location fails      → SourceFetchError (collector records it)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from backend.app.core.config import settings
from backend.app.core.errors import SourceFetchError
from backend.app.features.normalizers import safe_number
from backend.app.ingestion.collector import (
    BASELINES,
    EARTHQUAKES,
    ELEVATIONS,
    RAINFALL,
    ListFetcher,
    SourceFetchers,
    chunked,
)
from backend.app.ingestion.records import MonitoredLocation, parse_timestamp

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════════════════

RETRY_BACKOFF_BASE = 1.0  # seconds; wait = base * 2^attempt
ELEVATION_CHUNK_SIZE = 50
NASA_FILL_VALUE = -999.0

PROVENANCE = {
    RAINFALL: "Open-Meteo",
    EARTHQUAKES: "USGS",
    ELEVATIONS: "Open-Elevation",
    BASELINES: "NASA POWER",
}


# ═══════════════════════════════════════════════════════════════════════════
# Response parsing
# ═══════════════════════════════════════════════════════════════════════════

def current_hour_index(timestamps: Sequence[Any], now: datetime) -> int:
    """Index of the latest slot at or before ``now``; -1 when none is."""
    best = -1
    for i, raw in enumerate(timestamps):
        ts = parse_timestamp(raw)
        if ts is not None and ts <= now:
            best = i
    return best


def summarize_open_meteo(data: Mapping[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Turn one Open-Meteo forecast response into the collector rainfall shape.

    >>> summarize_open_meteo({"hourly": {"time": [], "precipitation": []}})["summary"]["precipitation_sum_24h_mm"]
    0.0
    """
    now = now or datetime.now(timezone.utc)
    hourly = data.get("hourly") or {}
    times = list(hourly.get("time") or [])
    precip = [safe_number(v) or 0.0 for v in hourly.get("precipitation") or []]
    precip = precip[:len(times)]
    idx = current_hour_index(times[:len(precip)], now)

    def window(hours: int) -> float:
        start = max(0, idx - hours + 1)
        return round(float(sum(precip[start:idx + 1])), 2)

    last_day = precip[max(0, idx - 23):idx + 1]

    daily = data.get("daily") or {}
    today = now.date().isoformat()
    forecast_daily = [
        {"date": day, "precipitation_mm": safe_number(value) or 0.0}
        for day, value in zip(daily.get("time") or [], daily.get("precipitation_sum") or [])
        if str(day) >= today
    ]

    return {
        "summary": {
            "precipitation_sum_24h_mm": window(24),
            "precipitation_sum_72h_mm": window(72),
            "precipitation_sum_7d_mm": window(168),
            "max_hourly_precipitation_mm": round(max(last_day, default=0.0), 2),
        },
        "hourly": {"time": times[:len(precip)], "precipitation": precip},
        "forecast_daily": forecast_daily,
        "elevation": safe_number(data.get("elevation")),
    }


def parse_usgs_feature(feature: Mapping[str, Any]) -> Dict[str, Any]:
    """GeoJSON feature → flat event dict (coordinates are lon, lat, depth)."""
    props = feature.get("properties") or {}
    coords = list((feature.get("geometry") or {}).get("coordinates") or [])
    coords += [None] * (3 - len(coords))
    return {
        "id": feature.get("id"),
        "mag": props.get("mag"),
        "depth": coords[2],
        "latitude": coords[1],
        "longitude": coords[0],
        "time": props.get("time"),
        "place": props.get("place") or "",
    }


def mean_daily_precipitation(data: Mapping[str, Any]) -> Optional[float]:
    """Mean of the PRECTOTCORR series, ignoring NASA fill values."""
    series = (
        ((data.get("properties") or {}).get("parameter") or {}).get("PRECTOTCORR") or {}
    )
    values = [
        v for v in (safe_number(x) for x in series.values())
        if v is not None and v > NASA_FILL_VALUE
    ]
    if not values:
        return None
    return round(sum(values) / len(values), 3)


# ═══════════════════════════════════════════════════════════════════════════
# Sources
# ═══════════════════════════════════════════════════════════════════════════

class UpstreamSources:
    """
    Async fetchers for the public upstream APIs.

    Usage:
        async with UpstreamSources() as sources:
            assessment = await service.run_check(locations, sources.fetchers())
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        max_retries: Optional[int] = None,
        backoff_base: float = RETRY_BACKOFF_BASE,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self.max_retries = settings.UPSTREAM_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_base = backoff_base

    async def __aenter__(self) -> "UpstreamSources":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=settings.SOURCE_FETCH_TIMEOUT)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_json(self, url: str, params: Mapping[str, Any]) -> Any:
        """GET with retry on 429, 5xx and transport errors."""
        client = await self._get_client()
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                wait = self.backoff_base * (2 ** (attempt - 1))
                logger.warning(
                    "Retry %d/%d for %s in %.1fs: %s",
                    attempt, self.max_retries, url, wait, last_error,
                )
                await asyncio.sleep(wait)
            try:
                response = await client.get(url, params=params)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status != 429 and status < 500:
                    raise
                last_error = e
            except httpx.TransportError as e:
                last_error = e

        raise SourceFetchError(
            url, f"failed after {self.max_retries + 1} attempts: {last_error}",
        )

    # ── rainfall ──

    async def rainfall_for(self, location: MonitoredLocation) -> Dict[str, Any]:
        data = await self._get_json(settings.OPEN_METEO_URL, {
            "latitude": location.latitude,
            "longitude": location.longitude,
            "hourly": "precipitation",
            "daily": "precipitation_sum",
            "past_days": min(7, settings.OPEN_METEO_PAST_DAYS),
            "forecast_days": min(16, settings.OPEN_METEO_FORECAST_DAYS),
            "timezone": "UTC",
        })
        return summarize_open_meteo(data)

    async def rainfall(self, chunk: Sequence[MonitoredLocation]) -> List[Optional[Dict[str, Any]]]:
        """One request per location, concurrently; failed locations are gaps."""
        results = await asyncio.gather(
            *(self.rainfall_for(loc) for loc in chunk), return_exceptions=True,
        )
        out: List[Optional[Dict[str, Any]]] = []
        failures = 0
        for location, result in zip(chunk, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                failures += 1
                logger.warning(
                    "Rainfall fetch failed for %s: %s", location.id, result,
                    extra={"location_id": location.id, "source": RAINFALL},
                )
                out.append(None)
            else:
                out.append(result)
        if chunk and failures == len(chunk):
            raise SourceFetchError(RAINFALL, f"all {len(chunk)} locations failed")
        return out

    # ── earthquakes ──

    async def earthquakes(self) -> List[Dict[str, Any]]:
        end = datetime.now(timezone.utc)
        start = end - timedelta(hours=settings.EARTHQUAKE_LOOKBACK_HOURS)
        min_lat, max_lat, min_lon, max_lon = settings.EARTHQUAKE_BBOX
        data = await self._get_json(settings.USGS_EARTHQUAKE_URL, {
            "format": "geojson",
            "starttime": start.strftime("%Y-%m-%dT%H:%M:%S"),
            "endtime": end.strftime("%Y-%m-%dT%H:%M:%S"),
            "minmagnitude": settings.EARTHQUAKE_FETCH_MIN_MAGNITUDE,
            "minlatitude": min_lat,
            "maxlatitude": max_lat,
            "minlongitude": min_lon,
            "maxlongitude": max_lon,
            "orderby": "time-asc",
        })
        return [parse_usgs_feature(f) for f in data.get("features") or []]

    # ── elevations ──

    async def elevations(self, locations: Sequence[MonitoredLocation]) -> Dict[str, float]:
        out: Dict[str, float] = {}
        chunks = chunked(locations, ELEVATION_CHUNK_SIZE)
        failed = 0
        for chunk in chunks:
            points = "|".join(f"{loc.latitude},{loc.longitude}" for loc in chunk)
            try:
                data = await self._get_json(settings.OPEN_ELEVATION_URL, {"locations": points})
            except (httpx.HTTPError, SourceFetchError) as e:
                failed += 1
                logger.warning("Elevation chunk failed: %s", e, extra={"source": ELEVATIONS})
                continue
            for loc, row in zip(chunk, data.get("results") or []):
                value = safe_number((row or {}).get("elevation"))
                if value is not None:
                    out[loc.id] = value
        if chunks and failed == len(chunks):
            raise SourceFetchError(ELEVATIONS, "all elevation requests failed")
        return out

    # ── baselines ──

    async def baseline_for(self, location: MonitoredLocation) -> Optional[float]:
        end = datetime.now(timezone.utc).date()
        start = end - timedelta(days=settings.BASELINE_DAYS)
        data = await self._get_json(settings.NASA_POWER_URL, {
            "parameters": "PRECTOTCORR",
            "community": "AG",
            "latitude": location.latitude,
            "longitude": location.longitude,
            "start": start.strftime("%Y%m%d"),
            "end": end.strftime("%Y%m%d"),
            "format": "JSON",
        })
        return mean_daily_precipitation(data)

    async def baselines(self, locations: Sequence[MonitoredLocation]) -> Dict[str, float]:
        results = await asyncio.gather(
            *(self.baseline_for(loc) for loc in locations), return_exceptions=True,
        )
        out: Dict[str, float] = {}
        failures = 0
        for location, result in zip(locations, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                failures += 1
                logger.debug(
                    "Baseline fetch failed for %s: %s", location.id, result,
                    extra={"location_id": location.id, "source": BASELINES},
                )
            elif result is not None:
                out[location.id] = result
        if locations and failures == len(locations):
            raise SourceFetchError(BASELINES, "all baseline requests failed")
        return out

    def fetchers(self, reservoirs: Optional[ListFetcher] = None, reservoir_source: Optional[str] = None) -> SourceFetchers:
        """Bundle the live fetchers for ``collect_batch_inputs``."""
        provenance = dict(PROVENANCE)
        if reservoirs and reservoir_source:
            provenance["reservoirs"] = reservoir_source
        return SourceFetchers(
            rainfall=self.rainfall,
            earthquakes=self.earthquakes,
            reservoirs=reservoirs,
            elevations=self.elevations,
            baselines=self.baselines,
            provenance=provenance,
        )
