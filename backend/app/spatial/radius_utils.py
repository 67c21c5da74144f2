"""
radius_utils.py — proximity filtering of seismic events around a location.

Provides:
    - Coordinate validation
    - Degree-box containment (the seismic trigger's proximity rule)
    - Significant-event filtering and counting per monitored location

Coordinates are in **decimal degrees**.

The seismic trigger uses a rectangular ±N° box rather than a radius: an
event counts for a location when

    |event.lat − loc.lat| ≤ N   and   |event.lon − loc.lon| ≤ N

and its magnitude is at least the configured minimum.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from backend.app.ingestion.records import SeismicEvent


@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(
                f"Latitude must be in [-90, 90], got {self.latitude}"
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(
                f"Longitude must be in [-180, 180], got {self.longitude}"
            )


# ---------------------------------------------------------------------------
# Degree-box filtering
# ---------------------------------------------------------------------------

def inside_degree_box(
    center: Coordinate,
    lat: Optional[float],
    lon: Optional[float],
    box_degrees: float,
) -> bool:
    """Inclusive ±``box_degrees`` check; unknown coordinates are outside."""
    if lat is None or lon is None:
        return False
    return (
        abs(lat - center.latitude) <= box_degrees
        and abs(lon - center.longitude) <= box_degrees
    )


def is_significant(event: SeismicEvent, min_magnitude: float) -> bool:
    return event.magnitude is not None and event.magnitude >= min_magnitude


def significant_events(
    events: Sequence[SeismicEvent],
    min_magnitude: float,
) -> List[SeismicEvent]:
    """Events at or above ``min_magnitude``, input order preserved."""
    return [e for e in events if is_significant(e, min_magnitude)]


def count_events_near(
    center: Coordinate,
    events: Sequence[SeismicEvent],
    *,
    min_magnitude: float,
    box_degrees: float,
) -> int:
    """
    Significant events inside the location's degree box.

    Parameters
    ----------
    center : Coordinate
        The monitored location.
    events : Sequence[SeismicEvent]
        All events of the run.
    min_magnitude : float
        Events below this magnitude are ignored.
    box_degrees : float
        Half-width of the box in degrees.
    """
    return sum(
        1 for e in events
        if is_significant(e, min_magnitude)
        and inside_degree_box(center, e.latitude, e.longitude, box_degrees)
    )
