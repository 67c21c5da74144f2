"""
Per-location feature assembly.

Joins the batch-wide inputs (rainfall by id, seismic events, reservoir
telemetry, elevations, baselines) into the ``RiskFeatures`` bundle for a
single monitored location. Shared by batch analytics and the nowcast so
both score a location from exactly the same evidence.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from backend.app.ingestion.records import BatchInputs, MonitoredLocation, RainfallSummary
from backend.app.matching.reservoir_matcher import ReservoirMatch, ReservoirMatcher
from backend.app.ml.risk_config import DEFAULT_CONFIG, RiskEngineConfig
from backend.app.ml.risk_formula import RiskFeatures
from backend.app.spatial.radius_utils import Coordinate, count_events_near

# fetch_errors keys for sources whose absence changes feature semantics
EARTHQUAKE_SOURCE = "earthquakes"


@dataclass
class LocationContext:
    location: MonitoredLocation
    features: RiskFeatures
    rainfall: Optional[RainfallSummary]
    reservoir_match: Optional[ReservoirMatch]

    @property
    def data_complete(self) -> bool:
        """False when no rainfall summary exists for the location."""
        return self.rainfall is not None

    @property
    def reservoir_level_pct(self) -> Optional[float]:
        return self.reservoir_match.record.level_pct if self.reservoir_match else None


def blend_rainfall(
    primary: Optional[RainfallSummary],
    secondary: Optional[RainfallSummary],
) -> Optional[RainfallSummary]:
    """
    Merge a secondary rainfall source into the primary summary.

    The 24h sum is averaged and the peak hour is the larger of the two;
    other fields come from the primary. Without a primary summary the
    secondary is ignored.
    """
    if primary is None or secondary is None:
        return primary

    r24_a, r24_b = primary.rain_24h_mm, secondary.rain_24h_mm
    if r24_a is not None and r24_b is not None:
        r24 = (r24_a + r24_b) / 2.0
    else:
        r24 = r24_a if r24_a is not None else r24_b

    peaks = [p for p in (primary.max_hourly_mm, secondary.max_hourly_mm) if p is not None]

    return RainfallSummary(
        rain_24h_mm=r24,
        rain_72h_mm=primary.rain_72h_mm,
        rain_7d_mm=primary.rain_7d_mm,
        max_hourly_mm=max(peaks) if peaks else None,
        hourly=primary.hourly,
        forecast_daily=primary.forecast_daily,
        elevation_m=primary.elevation_m,
    )


def build_location_context(
    location: MonitoredLocation,
    inputs: BatchInputs,
    config: Optional[RiskEngineConfig] = None,
    matcher: Optional[ReservoirMatcher] = None,
) -> LocationContext:
    """
    Assemble the feature bundle for one location.

    Parameters
    ----------
    location : MonitoredLocation
    inputs : BatchInputs
        The run's data; sources listed in ``fetch_errors`` count as missing.
    config : RiskEngineConfig, optional
    matcher : ReservoirMatcher, optional
        Defaults to one built with the configured minimum score.

    Returns
    -------
    LocationContext
    """
    cfg = config or DEFAULT_CONFIG
    matcher = matcher or ReservoirMatcher(min_score=cfg.reservoir_match_min_score)

    rainfall = blend_rainfall(
        inputs.rainfall.get(location.id),
        inputs.secondary_rainfall.get(location.id),
    )

    elevation = inputs.elevations.get(location.id)
    if elevation is None and rainfall is not None:
        elevation = rainfall.elevation_m

    baseline = inputs.baselines.get(location.id)
    if baseline is None:
        baseline = inputs.baseline_daily_mm

    quakes: Optional[int] = None
    if EARTHQUAKE_SOURCE not in inputs.fetch_errors:
        quakes = count_events_near(
            Coordinate(location.latitude, location.longitude),
            inputs.earthquakes,
            min_magnitude=cfg.seismic.min_magnitude,
            box_degrees=cfg.seismic.box_degrees,
        )

    match = matcher.match(location, inputs.reservoirs)

    features = RiskFeatures(
        rainfall=rainfall,
        earthquakes_nearby=quakes,
        elevation_m=elevation,
        baseline_daily_mm=baseline,
        reservoir=match.record if match else None,
        region=location.region,
    )
    return LocationContext(
        location=location,
        features=features,
        rainfall=rainfall,
        reservoir_match=match,
    )
