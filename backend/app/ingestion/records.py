"""
Typed input records for one scoring run.

Upstream collectors hand back loosely shaped JSON; the constructors here
turn it into typed records once, at the boundary, so the scoring core never
has to guess field names. Unusable values become ``None`` rather than
raising.

Provides:
    • MonitoredLocation — a dam / site being scored
    • RainfallSummary (+ hourly and daily series)
    • SeismicEvent
    • ReservoirRecord — with storage-percentage parsing
    • BatchInputs — everything one run needs, plus provenance and
      per-source fetch errors
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from backend.app.features.normalizers import safe_number

logger = logging.getLogger(__name__)

# Storage-percentage keys, tried exact-match first, then substring
PERCENT_FIELDS = (
    "level_pct", "storage_pct", "percent", "percentage",
    "live_storage_percent", "gross_storage_percent",
)
STORAGE_FIELDS = ("live_storage", "storage", "gross_storage", "current_storage")
CAPACITY_FIELDS = ("capacity", "gross_capacity", "full_reservoir_level", "frl")
# storage / capacity above this is treated as a unit mismatch
MAX_COMPUTED_PCT = 150.0

NAME_FIELDS = ("name", "dam_name", "reservoir_name", "station_name", "station", "project_name")
REGION_FIELDS = ("region", "state", "state_name")
INFLOW_FIELDS = ("inflow", "in_flow")
OUTFLOW_FIELDS = ("outflow", "out_flow")
UPDATED_FIELDS = ("updated_at", "date", "datetime", "observation_time", "timestamp")

_STATION_CODE_RE = re.compile(
    r"(?:[_\s]*(?<![A-Za-z0-9])(?:RL\d+|BBMB|ARG|CWC)|_\d+)(?![A-Za-z0-9])", re.IGNORECASE,
)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse ISO-8601 strings or epoch milliseconds into an aware UTC datetime.

    Naive values are taken to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            logger.debug("Unparseable timestamp: %r", value)
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def pick_field(record: Mapping[str, Any], candidates: Sequence[str]) -> Any:
    """
    Look up the first matching key, case-insensitively.

    Exact key matches win over substring matches; candidates are tried in
    order within each pass.
    """
    if not isinstance(record, Mapping):
        return None
    lowered = {str(k).lower(): k for k in record.keys()}
    for candidate in candidates:
        key = lowered.get(candidate.lower())
        if key is not None:
            return record[key]
    for candidate in candidates:
        c = candidate.lower()
        for low, key in lowered.items():
            if c in low:
                return record[key]
    return None


def parse_level_pct(record: Mapping[str, Any]) -> Optional[float]:
    """
    Derive a storage percentage (0–100) from a raw reservoir record.

    An explicit percentage field within [0, 100] is used as-is. Otherwise
    storage / capacity × 100 is used when it falls in [0, 150] (capped at
    100). A raw water level in metres is never read as a percentage.
    """
    pct = safe_number(pick_field(record, PERCENT_FIELDS))
    if pct is not None and 0 <= pct <= 100:
        return pct

    storage = safe_number(pick_field(record, STORAGE_FIELDS))
    capacity = safe_number(pick_field(record, CAPACITY_FIELDS))
    if storage is not None and capacity is not None and capacity > 0:
        computed = round(storage / capacity * 100.0, 2)
        if 0 <= computed <= MAX_COMPUTED_PCT:
            return min(computed, 100.0)

    return None


def clean_station_name(name: Any) -> str:
    """Strip station-code fragments such as ``RL1700_BBMB`` or ``_1``."""
    text = _STATION_CODE_RE.sub("", str(name or ""))
    return re.sub(r"\s+", " ", text.replace("_", " ")).strip()


# ═══════════════════════════════════════════════════════════════════════════
# Locations
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MonitoredLocation:
    id: str
    name: str
    region: Optional[str]
    latitude: float
    longitude: float

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "MonitoredLocation":
        lat = safe_number(d.get("latitude", d.get("lat")))
        lon = safe_number(d.get("longitude", d.get("lon")))
        return cls(
            id=str(d.get("id") or d.get("name")),
            name=str(d.get("name") or d.get("id")),
            region=d.get("region") or d.get("state") or None,
            latitude=lat if lat is not None else 0.0,
            longitude=lon if lon is not None else 0.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ═══════════════════════════════════════════════════════════════════════════
# Rainfall
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class HourlyPrecipitation:
    timestamp: datetime
    precipitation_mm: float


@dataclass
class DailyForecast:
    date: str
    precipitation_mm: float


@dataclass
class RainfallSummary:
    """Rainfall sums for one location; any field may be missing."""
    rain_24h_mm: Optional[float] = None
    rain_72h_mm: Optional[float] = None
    rain_7d_mm: Optional[float] = None
    max_hourly_mm: Optional[float] = None
    hourly: List[HourlyPrecipitation] = field(default_factory=list)
    forecast_daily: List[DailyForecast] = field(default_factory=list)
    elevation_m: Optional[float] = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "RainfallSummary":
        """
        Accept either the flat snake-case shape or the collector shape
        (``summary.precipitation_sum_24h_mm`` etc. with an Open-Meteo style
        ``hourly: {time: [...], precipitation: [...]}`` block).
        """
        summary = d.get("summary") if isinstance(d.get("summary"), Mapping) else d

        def pick(*keys: str) -> Optional[float]:
            for key in keys:
                for source in (summary, d):
                    if key in source:
                        n = safe_number(source[key])
                        if n is not None:
                            return n
            return None

        return cls(
            rain_24h_mm=pick("rain_24h_mm", "precipitation_sum_24h_mm"),
            rain_72h_mm=pick("rain_72h_mm", "precipitation_sum_72h_mm"),
            rain_7d_mm=pick("rain_7d_mm", "precipitation_sum_7d_mm"),
            max_hourly_mm=pick("max_hourly_mm", "max_hourly_precipitation_mm"),
            hourly=_parse_hourly(d.get("hourly")),
            forecast_daily=_parse_daily(d.get("forecast_daily")),
            elevation_m=pick("elevation_m", "elevation"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rain_24h_mm": self.rain_24h_mm,
            "rain_72h_mm": self.rain_72h_mm,
            "rain_7d_mm": self.rain_7d_mm,
            "max_hourly_mm": self.max_hourly_mm,
            "elevation_m": self.elevation_m,
            "hourly_points": len(self.hourly),
            "forecast_days": len(self.forecast_daily),
        }


def _parse_hourly(raw: Any) -> List[HourlyPrecipitation]:
    if not raw:
        return []
    points: List[HourlyPrecipitation] = []
    if isinstance(raw, Mapping):
        times = raw.get("time") or []
        values = raw.get("precipitation") or []
        pairs: Iterable = zip(times, values)
    else:
        pairs = (
            (p.get("timestamp", p.get("time")), p.get("precipitation_mm", p.get("precipitation")))
            for p in raw if isinstance(p, Mapping)
        )
    for ts_raw, value in pairs:
        ts = parse_timestamp(ts_raw)
        mm = safe_number(value)
        if ts is None:
            continue
        points.append(HourlyPrecipitation(timestamp=ts, precipitation_mm=mm if mm is not None else 0.0))
    return points


def _parse_daily(raw: Any) -> List[DailyForecast]:
    if not raw:
        return []
    days: List[DailyForecast] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        mm = safe_number(item.get("precipitation_mm"))
        days.append(DailyForecast(date=str(item.get("date", "")), precipitation_mm=mm if mm is not None else 0.0))
    return days


# ═══════════════════════════════════════════════════════════════════════════
# Seismic & reservoir
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class SeismicEvent:
    magnitude: Optional[float]
    depth_km: Optional[float]
    latitude: Optional[float]
    longitude: Optional[float]
    occurred_at: Optional[datetime] = None
    event_id: Optional[str] = None
    place: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "SeismicEvent":
        return cls(
            magnitude=safe_number(d.get("magnitude", d.get("mag"))),
            depth_km=safe_number(d.get("depth_km", d.get("depth"))),
            latitude=safe_number(d.get("latitude")),
            longitude=safe_number(d.get("longitude")),
            occurred_at=parse_timestamp(d.get("occurred_at", d.get("time"))),
            event_id=d.get("event_id", d.get("id")),
            place=d.get("place"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.event_id,
            "magnitude": self.magnitude,
            "depth_km": self.depth_km,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "time": self.occurred_at.isoformat() if self.occurred_at else None,
            "place": self.place,
        }


@dataclass
class ReservoirRecord:
    name: str
    region: Optional[str] = None
    level_pct: Optional[float] = None
    inflow: Optional[float] = None
    outflow: Optional[float] = None
    storage: Optional[float] = None
    capacity: Optional[float] = None
    updated_at: Optional[str] = None
    source: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], source: Optional[str] = None) -> "ReservoirRecord":
        """Build a record from a loosely-shaped upstream row."""
        updated = pick_field(raw, UPDATED_FIELDS)
        return cls(
            name=clean_station_name(pick_field(raw, NAME_FIELDS)) or "—",
            region=pick_field(raw, REGION_FIELDS) or None,
            level_pct=parse_level_pct(raw),
            inflow=safe_number(pick_field(raw, INFLOW_FIELDS)),
            outflow=safe_number(pick_field(raw, OUTFLOW_FIELDS)),
            storage=safe_number(pick_field(raw, STORAGE_FIELDS)),
            capacity=safe_number(pick_field(raw, ("capacity", "gross_capacity"))),
            updated_at=str(updated) if updated is not None else None,
            source=source or raw.get("source"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ═══════════════════════════════════════════════════════════════════════════
# Batch bundle
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class BatchInputs:
    """
    Every source's data for one run, keyed by location id where per-location.

    ``fetch_errors`` maps a source name to the reason it contributed
    nothing; the scoring core treats such sources as missing.
    """
    rainfall: Dict[str, RainfallSummary] = field(default_factory=dict)
    secondary_rainfall: Dict[str, RainfallSummary] = field(default_factory=dict)
    earthquakes: List[SeismicEvent] = field(default_factory=list)
    reservoirs: List[ReservoirRecord] = field(default_factory=list)
    elevations: Dict[str, float] = field(default_factory=dict)
    baselines: Dict[str, float] = field(default_factory=dict)
    baseline_daily_mm: Optional[float] = None
    provenance: Dict[str, str] = field(default_factory=dict)
    fetch_errors: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "BatchInputs":
        def numbers(raw: Any) -> Dict[str, float]:
            out: Dict[str, float] = {}
            for key, value in (raw or {}).items():
                n = safe_number(value)
                if n is not None:
                    out[str(key)] = n
            return out

        return cls(
            rainfall={str(k): RainfallSummary.from_dict(v) for k, v in (d.get("rainfall") or {}).items()},
            secondary_rainfall={
                str(k): RainfallSummary.from_dict(v)
                for k, v in (d.get("secondary_rainfall") or {}).items()
            },
            earthquakes=[SeismicEvent.from_dict(e) for e in d.get("earthquakes") or []],
            reservoirs=[ReservoirRecord.from_raw(r) for r in d.get("reservoirs") or []],
            elevations=numbers(d.get("elevations")),
            baselines=numbers(d.get("baselines")),
            baseline_daily_mm=safe_number(d.get("baseline_daily_mm")),
            provenance=dict(d.get("provenance") or {}),
            fetch_errors=dict(d.get("fetch_errors") or {}),
        )
