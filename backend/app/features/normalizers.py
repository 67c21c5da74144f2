"""
Feature normalisers — raw physical quantities → bounded 0–100 sub-indices.

Every function here is total: ``None``, NaN, infinities and non-numeric
strings are treated as "missing" and mapped to a documented neutral value,
never propagated. Outputs are always finite and clamped to [0, 100].

Provides:
    • clamp / safe_number helpers
    • Rainfall intensity, accumulation and anomaly indices
    • Terrain, lowland and seismic indices
    • Reservoir level / flow stress and their blend
    • Near-term (nowcast) index and logistic squash
    • Risk level banding (LOW / MEDIUM / HIGH)
"""

from __future__ import annotations

import math
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from backend.app.ml.risk_config import NormalizerScales, RiskBands

if TYPE_CHECKING:
    from backend.app.ingestion.records import ReservoirRecord

_DEFAULT_SCALES = NormalizerScales()
_DEFAULT_BANDS = RiskBands()

# Guards the inflow / outflow ratio against a zero outflow
FLOW_EPSILON = 1e-6


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# Ordinal used when ranking severities
LEVEL_ORDER = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    """Clamp to [lo, hi]; NaN collapses to ``lo``."""
    if value != value:  # NaN
        return lo
    return max(lo, min(hi, value))


def safe_number(value: Any) -> Optional[float]:
    """
    Coerce a raw value to a finite float, or None when it is unusable.

    >>> safe_number("12.5")
    12.5
    >>> safe_number("n/a") is None
    True
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(n):
        return None
    return n


def round_score(value: float) -> int:
    """Round half up to an int (``round`` would send 2.5 to 2)."""
    return int(math.floor(value + 0.5))


def _or_zero(value: Any) -> float:
    n = safe_number(value)
    return 0.0 if n is None else n


# ═══════════════════════════════════════════════════════════════════════════
# Rainfall
# ═══════════════════════════════════════════════════════════════════════════

def rain_intensity(
    rain_24h_mm: Any,
    peak_hourly_mm: Any,
    divisor: float = _DEFAULT_SCALES.flood_intensity_divisor,
    peak_weight: float = _DEFAULT_SCALES.flood_peak_weight,
) -> float:
    """
    Short-burst rainfall intensity.

    ``clamp(rain_24h / divisor + peak_hourly * peak_weight)``; missing
    inputs count as zero rain.
    """
    r24 = max(0.0, _or_zero(rain_24h_mm))
    peak = max(0.0, _or_zero(peak_hourly_mm))
    return clamp(r24 / divisor + peak * peak_weight)


def accumulation_index(total_mm: Any, divisor: float) -> float:
    """Multi-day accumulation → ``clamp(total / divisor)``."""
    return clamp(max(0.0, _or_zero(total_mm)) / divisor)


def anomaly_index(
    current_daily_mm: Any,
    baseline_daily_mm: Any,
    gain: float = _DEFAULT_SCALES.anomaly_gain,
    neutral: float = _DEFAULT_SCALES.anomaly_neutral,
) -> float:
    """
    Rainfall relative to the climatological daily baseline.

    Both arguments are mm/day. Returns ``neutral`` (50) when the baseline
    is missing or not positive; otherwise ``clamp((ratio - 1) * gain + 50)``
    so a day at exactly the baseline scores 50 and a day at twice the
    baseline scores 100.
    """
    baseline = safe_number(baseline_daily_mm)
    if baseline is None or baseline <= 0:
        return neutral
    current = max(0.0, _or_zero(current_daily_mm))
    ratio = current / baseline
    return clamp((ratio - 1.0) * gain + neutral)


# ═══════════════════════════════════════════════════════════════════════════
# Terrain & seismic
# ═══════════════════════════════════════════════════════════════════════════

def terrain_index(
    elevation_m: Any,
    divisor: float = _DEFAULT_SCALES.terrain_divisor,
    unknown: float = _DEFAULT_SCALES.terrain_unknown,
) -> float:
    """Elevation as a proxy for slope; ``unknown`` (50) when not supplied."""
    elev = safe_number(elevation_m)
    if elev is None:
        return unknown
    return clamp(elev / divisor)


def lowland_factor(elevation_m: Any, scales: NormalizerScales = _DEFAULT_SCALES) -> float:
    """
    Heuristic flood boost for low-lying locations.

    12 below 300 m, 6 below 600 m, else 0. Unknown elevation contributes
    nothing.
    """
    elev = safe_number(elevation_m)
    if elev is None:
        return 0.0
    if elev < scales.lowland_low_elevation_m:
        return scales.lowland_low_value
    if elev < scales.lowland_mid_elevation_m:
        return scales.lowland_mid_value
    return 0.0


def seismic_index(event_count: Any, per_event_weight: float) -> float:
    """``clamp(count * per_event_weight)`` over significant nearby events."""
    count = max(0.0, _or_zero(event_count))
    return clamp(count * per_event_weight)


# ═══════════════════════════════════════════════════════════════════════════
# Reservoir
# ═══════════════════════════════════════════════════════════════════════════

def normalize_level_pct(value: Any) -> Optional[float]:
    """A storage percentage in [0, 100], or None for anything else."""
    n = safe_number(value)
    if n is None or n < 0 or n > 100:
        return None
    return n


def reservoir_level_stress(
    level_pct: Any,
    reference: float = _DEFAULT_SCALES.reservoir_level_reference,
    gain: float = _DEFAULT_SCALES.reservoir_level_gain,
) -> float:
    """``clamp((level - reference) * gain)``; 0 when the level is unknown."""
    level = normalize_level_pct(level_pct)
    if level is None:
        return 0.0
    return clamp((level - reference) * gain)


def reservoir_flow_stress(
    inflow: Any,
    outflow: Any,
    gain: float = _DEFAULT_SCALES.reservoir_flow_gain,
) -> Optional[float]:
    """
    Inflow / outflow imbalance; None when either side is unusable.

    Balanced flows score 50, inflow exceeding outflow pushes towards 100.
    """
    inflow_n = safe_number(inflow)
    outflow_n = safe_number(outflow)
    if inflow_n is None or outflow_n is None or outflow_n < 0:
        return None
    ratio = inflow_n / (outflow_n + FLOW_EPSILON)
    return clamp((ratio - 1.0) * gain + 50.0)


def reservoir_stress_index(
    record: Optional["ReservoirRecord"],
    scales: NormalizerScales = _DEFAULT_SCALES,
) -> int:
    """
    Blend level stress and flow stress for a matched reservoir.

    Parameters
    ----------
    record : ReservoirRecord or None
        The location's matched reservoir; None means no match.
    scales : NormalizerScales

    Returns
    -------
    int
        0.7 · level + 0.3 · flow when both exist, either alone when only
        one exists, 0 when neither does.
    """
    if record is None:
        return 0

    level = normalize_level_pct(record.level_pct)
    level_stress = (
        reservoir_level_stress(level, scales.reservoir_level_reference, scales.reservoir_level_gain)
        if level is not None else None
    )
    flow_stress = reservoir_flow_stress(record.inflow, record.outflow, scales.reservoir_flow_gain)

    if level_stress is not None and flow_stress is not None:
        share = scales.reservoir_level_share
        blended = level_stress * share + flow_stress * (1.0 - share)
    elif level_stress is not None:
        blended = level_stress
    elif flow_stress is not None:
        blended = flow_stress
    else:
        return 0
    return round_score(clamp(blended))


# ═══════════════════════════════════════════════════════════════════════════
# Nowcast & output shaping
# ═══════════════════════════════════════════════════════════════════════════

def near_term_index(value_mm: Any, scale_mm: float) -> float:
    """Short-window rainfall as a share of its saturation scale, 0–100."""
    if scale_mm <= 0:
        return 0.0
    return clamp(max(0.0, _or_zero(value_mm)) / scale_mm * 100.0)


def logistic_to_100(value: float, center: float, steepness: float) -> float:
    """
    Squash a linear score into (0, 100) with a logistic curve.

    >>> round(logistic_to_100(50, 50, 0.09))
    50
    """
    x = -steepness * (value - center)
    # exp overflow guard; the curve is saturated long before this
    if x > 700:
        return 0.0
    return 100.0 / (1.0 + math.exp(x))


def risk_level(score: Any, bands: RiskBands = _DEFAULT_BANDS) -> RiskLevel:
    """
    Band a 0–100 score.

    >>> risk_level(33).value, risk_level(34).value, risk_level(67).value
    ('LOW', 'MEDIUM', 'HIGH')
    """
    s = _or_zero(score)
    if s <= bands.low_max:
        return RiskLevel.LOW
    if s <= bands.medium_max:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH
