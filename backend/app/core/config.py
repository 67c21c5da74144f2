"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development; the risk and
nowcast values below are the documented defaults of the scoring engine
and are turned into a ``RiskEngineConfig`` by
``backend.app.ml.risk_config.RiskEngineConfig.from_settings``.

Usage:
    from backend.app.core.config import settings
    print(settings.NOWCAST_WARNING_THRESHOLD)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Flood & Landslide Risk Engine"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8000",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Redis (short-TTL source cache) ──
    REDIS_URL: str = "redis://localhost:6379/0"
    SOURCE_CACHE_ENABLED: bool = True
    RESERVOIR_CACHE_TTL: int = 900  # auto-discovered reservoir datasets (15 min)

    # ── Upstream fan-out ──
    SOURCE_FETCH_TIMEOUT: float = 30.0  # seconds, per source
    RAINFALL_CHUNK_SIZE: int = 10  # locations per rainfall request
    ALERT_HISTORY_SIZE: int = 100

    # ── Upstream APIs (live checks) ──
    OPEN_METEO_URL: str = "https://api.open-meteo.com/v1/forecast"
    OPEN_METEO_PAST_DAYS: int = 7
    OPEN_METEO_FORECAST_DAYS: int = 7
    USGS_EARTHQUAKE_URL: str = "https://earthquake.usgs.gov/fdsnws/event/1/query"
    EARTHQUAKE_LOOKBACK_HOURS: int = 24
    EARTHQUAKE_FETCH_MIN_MAGNITUDE: float = 4.0
    # min_lat, max_lat, min_lon, max_lon
    EARTHQUAKE_BBOX: List[float] = [6.0, 36.0, 68.0, 98.0]
    OPEN_ELEVATION_URL: str = "https://api.open-elevation.com/api/v1/lookup"
    NASA_POWER_URL: str = "https://power.larc.nasa.gov/api/temporal/daily/point"
    BASELINE_DAYS: int = 30
    UPSTREAM_MAX_RETRIES: int = 2

    # ── Risk bands (0–100) ──
    RISK_LOW_MAX: int = 33
    RISK_MEDIUM_MAX: int = 66

    # ── Landslide-prone administrative regions ──
    LANDSLIDE_PRONE_REGIONS: List[str] = [
        "kerala",
        "uttarakhand",
        "himachal pradesh",
        "assam",
        "tamil nadu",
        "maharashtra",
        "karnataka",
        "goa",
        "meghalaya",
        "arunachal pradesh",
        "mizoram",
        "nagaland",
        "manipur",
        "jammu and kashmir",
        "sikkim",
        "west bengal",
    ]

    # ── Seismic trigger ──
    SEISMIC_MIN_MAGNITUDE: float = 4.5
    SEISMIC_BOX_DEGREES: float = 2.0

    # ── Reservoir matching ──
    RESERVOIR_MATCH_MIN_SCORE: float = 0.45

    # ── Nowcast early warning ──
    NOWCAST_WARNING_THRESHOLD: int = 60
    NOWCAST_EMERGENCY_THRESHOLD: int = 75
    NOWCAST_RISING_CHECKS: int = 3
    TREND_WINDOW_SIZE: int = 8

    # ── Post-hoc calibration (None = disabled) ──
    CALIBRATION_FLOOD_MULTIPLIER: Optional[float] = None
    CALIBRATION_LANDSLIDE_MULTIPLIER: Optional[float] = None

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
