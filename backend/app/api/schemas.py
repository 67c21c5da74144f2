"""
Pydantic schemas for the risk-engine API.

Request bodies are validated here and converted to the engine's own
dataclass records (``to_record`` / ``to_features``) so route handlers stay
thin and the scoring core never sees pydantic models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from backend.app.ingestion.records import (
    BatchInputs,
    DailyForecast,
    HourlyPrecipitation,
    MonitoredLocation,
    RainfallSummary,
    ReservoirRecord,
    SeismicEvent,
)
from backend.app.ml.risk_formula import RiskFeatures


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

class LocationIn(BaseModel):
    """A monitored dam / site."""
    id: str = Field(..., min_length=1, examples=["D001"])
    name: str = Field(..., min_length=1, examples=["Tehri Dam"])
    region: Optional[str] = Field(
        default=None,
        description="Administrative region (state)",
        examples=["Uttarakhand"],
    )
    latitude: float = Field(..., ge=-90.0, le=90.0, examples=[30.3776])
    longitude: float = Field(..., ge=-180.0, le=180.0, examples=[78.4804])

    def to_record(self) -> MonitoredLocation:
        return MonitoredLocation(
            id=self.id,
            name=self.name,
            region=self.region,
            latitude=self.latitude,
            longitude=self.longitude,
        )


class LocationsMixin(BaseModel):
    locations: List[LocationIn] = Field(default_factory=list)

    @field_validator("locations")
    @classmethod
    def unique_ids(cls, v: List[LocationIn]) -> List[LocationIn]:
        seen = set()
        for loc in v:
            if loc.id in seen:
                raise ValueError(f"Duplicate location id: {loc.id}")
            seen.add(loc.id)
        return v

    def location_records(self) -> List[MonitoredLocation]:
        return [loc.to_record() for loc in self.locations]


# ---------------------------------------------------------------------------
# Source data
# ---------------------------------------------------------------------------

class HourlyPointIn(BaseModel):
    timestamp: datetime
    precipitation_mm: float = Field(default=0.0, ge=0.0)

    @field_validator("timestamp")
    @classmethod
    def aware(cls, v: datetime) -> datetime:
        return _as_utc(v)


class DailyForecastIn(BaseModel):
    date: str
    precipitation_mm: float = Field(default=0.0, ge=0.0)


class RainfallIn(BaseModel):
    """Rainfall summary for one location; every field optional."""
    rain_24h_mm: Optional[float] = Field(default=None, ge=0.0, examples=[42.5])
    rain_72h_mm: Optional[float] = Field(default=None, ge=0.0)
    rain_7d_mm: Optional[float] = Field(default=None, ge=0.0)
    max_hourly_mm: Optional[float] = Field(default=None, ge=0.0)
    hourly: List[HourlyPointIn] = Field(default_factory=list)
    forecast_daily: List[DailyForecastIn] = Field(default_factory=list)
    elevation_m: Optional[float] = None

    def to_record(self) -> RainfallSummary:
        return RainfallSummary(
            rain_24h_mm=self.rain_24h_mm,
            rain_72h_mm=self.rain_72h_mm,
            rain_7d_mm=self.rain_7d_mm,
            max_hourly_mm=self.max_hourly_mm,
            hourly=[
                HourlyPrecipitation(timestamp=p.timestamp, precipitation_mm=p.precipitation_mm)
                for p in self.hourly
            ],
            forecast_daily=[
                DailyForecast(date=d.date, precipitation_mm=d.precipitation_mm)
                for d in self.forecast_daily
            ],
            elevation_m=self.elevation_m,
        )


class SeismicEventIn(BaseModel):
    magnitude: Optional[float] = Field(default=None, ge=-2.0, le=10.0)
    depth_km: Optional[float] = None
    latitude: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(default=None, ge=-180.0, le=180.0)
    occurred_at: Optional[datetime] = None
    event_id: Optional[str] = None
    place: Optional[str] = None

    def to_record(self) -> SeismicEvent:
        return SeismicEvent(
            magnitude=self.magnitude,
            depth_km=self.depth_km,
            latitude=self.latitude,
            longitude=self.longitude,
            occurred_at=_as_utc(self.occurred_at),
            event_id=self.event_id,
            place=self.place,
        )


class BatchInputsIn(BaseModel):
    """
    Pre-collected source data for a batch.

    ``reservoirs`` are raw upstream rows; their storage percentage is
    derived server-side.
    """
    rainfall: Dict[str, RainfallIn] = Field(default_factory=dict)
    secondary_rainfall: Dict[str, RainfallIn] = Field(default_factory=dict)
    earthquakes: List[SeismicEventIn] = Field(default_factory=list)
    reservoirs: List[Dict[str, Any]] = Field(default_factory=list)
    elevations: Dict[str, float] = Field(default_factory=dict)
    baselines: Dict[str, float] = Field(default_factory=dict)
    baseline_daily_mm: Optional[float] = Field(default=None, ge=0.0)
    provenance: Dict[str, str] = Field(default_factory=dict)
    fetch_errors: Dict[str, str] = Field(default_factory=dict)

    def to_record(self) -> BatchInputs:
        return BatchInputs(
            rainfall={k: v.to_record() for k, v in self.rainfall.items()},
            secondary_rainfall={k: v.to_record() for k, v in self.secondary_rainfall.items()},
            earthquakes=[e.to_record() for e in self.earthquakes],
            reservoirs=[
                ReservoirRecord.from_raw(r, source=self.provenance.get("reservoirs"))
                for r in self.reservoirs
            ],
            elevations=dict(self.elevations),
            baselines=dict(self.baselines),
            baseline_daily_mm=self.baseline_daily_mm,
            provenance=dict(self.provenance),
            fetch_errors=dict(self.fetch_errors),
        )


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class RiskComputeRequest(BaseModel):
    """Feature bundle for a single location (POST /api/v1/risk/compute)."""
    rainfall: Optional[RainfallIn] = None
    earthquakes_nearby: Optional[int] = Field(default=None, ge=0)
    elevation_m: Optional[float] = None
    baseline_daily_mm: Optional[float] = Field(default=None, ge=0.0)
    reservoir: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Raw reservoir row (level_pct / storage+capacity, inflow, outflow)",
        examples=[{"name": "Tehri", "level_pct": 82, "inflow": 900, "outflow": 600}],
    )
    region: Optional[str] = Field(default=None, examples=["Uttarakhand"])

    def to_features(self) -> RiskFeatures:
        return RiskFeatures(
            rainfall=self.rainfall.to_record() if self.rainfall else None,
            earthquakes_nearby=self.earthquakes_nearby,
            elevation_m=self.elevation_m,
            baseline_daily_mm=self.baseline_daily_mm,
            reservoir=ReservoirRecord.from_raw(self.reservoir) if self.reservoir else None,
            region=self.region,
        )


class BatchRequest(LocationsMixin):
    """Locations + inputs, optionally restricted to one region."""
    inputs: BatchInputsIn = Field(default_factory=BatchInputsIn)
    region: Optional[str] = Field(default=None, examples=["Kerala"])


class NowcastRequest(BatchRequest):
    now: Optional[datetime] = Field(
        default=None,
        description="Reference time for the rainfall windows (default: server time)",
    )

    @field_validator("now")
    @classmethod
    def aware_now(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


class RegionsRequest(LocationsMixin):
    pass


class CheckRequest(LocationsMixin):
    """Locations for a live check; source data is fetched server-side."""
    region: Optional[str] = Field(default=None, examples=["Kerala"])
