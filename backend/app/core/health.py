"""
Health check aggregation — deep health probe for the risk engine.

Checks:
    • Cache connectivity (Redis, optional: only DEGRADED when down)
    • Scoring configuration (weights / bands / nowcast thresholds valid)
    • Disk space

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - Monitoring dashboards
"""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from backend.app.core import cache
from backend.app.core.config import settings
from backend.app.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


def _redis_location() -> str:
    url = settings.REDIS_URL
    return url.split("@")[-1] if "@" in url else url


async def check_redis() -> ComponentHealth:
    """Check Redis connectivity; scoring works without it."""
    comp = ComponentHealth(name="redis")
    start = time.monotonic()
    if not settings.SOURCE_CACHE_ENABLED:
        comp.message = "Source caching disabled"
    elif await cache.ping():
        comp.message = "Cache available"
        comp.details = {"url": _redis_location()}
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Cache unreachable; sources fetched uncached"
        comp.details = {"url": _redis_location()}
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_risk_engine() -> ComponentHealth:
    """Build the engine configuration from settings and validate it."""
    from backend.app.ml.risk_config import RiskEngineConfig

    comp = ComponentHealth(name="risk_engine")
    start = time.monotonic()
    try:
        config = RiskEngineConfig.from_settings()
    except ConfigurationError as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = e.message
        comp.details = e.details
    else:
        comp.message = "Configuration valid"
        comp.details = {
            "bands": {"low_max": config.bands.low_max, "medium_max": config.bands.medium_max},
            "nowcast": {
                "warning": config.nowcast.warning_threshold,
                "emergency": config.nowcast.emergency_threshold,
                "rising_checks": config.nowcast.rising_checks,
            },
            "landslide_prone_regions": len(config.landslide_prone_regions),
        }
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_disk_space() -> ComponentHealth:
    """Check available disk space."""
    comp = ComponentHealth(name="disk_space")
    start = time.monotonic()
    try:
        total, used, free = shutil.disk_usage(".")
    except OSError as e:
        comp.status = HealthStatus.DEGRADED
        comp.message = str(e)
    else:
        free_gb = free / (1024 ** 3)
        comp.details = {
            "total_gb": round(total / (1024 ** 3), 1),
            "free_gb": round(free_gb, 1),
            "used_pct": round((used / total) * 100, 1),
        }
        if free_gb < 1.0:
            comp.status = HealthStatus.UNHEALTHY
            comp.message = f"Low disk space: {free_gb:.1f} GB free"
        elif free_gb < 5.0:
            comp.status = HealthStatus.DEGRADED
            comp.message = f"Disk space warning: {free_gb:.1f} GB free"
        else:
            comp.message = f"{free_gb:.1f} GB free"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check() -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_redis(),
        check_risk_engine(),
        check_disk_space(),
    ]

    for coro in checks:
        comp = await coro
        report.components.append(comp)

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    if report.status is not HealthStatus.HEALTHY:
        logger.warning("Health check: %s", report.status.value)
    return report
