"""
Redis cache layer — short-TTL cache for expensive upstream datasets.

Provides:
    • Lazy async Redis client
    • JSON get/set with TTL
    • ``cache_source`` decorator for async source fetchers
    • Graceful degradation: an unreachable Redis means "no caching",
      never a failed scoring run

Usage:
    from backend.app.core.cache import cache_source

    @cache_source(ttl=900, prefix="reservoirs")
    async def fetch_reservoirs() -> list:
        ...
"""

from __future__ import annotations

import hashlib
import json
import logging
from functools import wraps
from typing import Any, Callable, Optional

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

# Lazy Redis client — initialised on first use
_redis_client = None


async def _get_redis():
    """Get or create async Redis client."""
    global _redis_client
    if not settings.SOURCE_CACHE_ENABLED:
        return None
    if _redis_client is None:
        try:
            import redis.asyncio as aioredis
            _redis_client = aioredis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis client created: %s", settings.REDIS_URL)
        except Exception as e:
            logger.warning("Redis unavailable: %s — source caching disabled", e)
            return None
    return _redis_client


async def cache_get(key: str) -> Optional[Any]:
    """Get a cached value by key. Returns None on miss or error."""
    client = await _get_redis()
    if not client:
        return None
    try:
        raw = await client.get(key)
        if raw is not None:
            return json.loads(raw)
    except Exception as e:
        logger.warning("Cache GET error for %s: %s", key, e)
    return None


async def cache_set(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    """Set a cached value with optional TTL (seconds)."""
    client = await _get_redis()
    if not client:
        return False
    try:
        serialised = json.dumps(value, default=str)
        await client.set(key, serialised, ex=ttl or settings.RESERVOIR_CACHE_TTL)
        return True
    except Exception as e:
        logger.warning("Cache SET error for %s: %s", key, e)
        return False


async def ping() -> bool:
    """True when Redis answers a PING."""
    client = await _get_redis()
    if not client:
        return False
    try:
        return bool(await client.ping())
    except Exception as e:
        logger.warning("Redis PING failed: %s", e)
        return False


def _make_cache_key(prefix: str, args: tuple, kwargs: dict) -> str:
    """Deterministic cache key from function arguments."""
    raw = json.dumps({"a": args, "k": kwargs}, sort_keys=True, default=str)
    digest = hashlib.md5(raw.encode()).hexdigest()[:12]
    return f"{prefix}:{digest}"


def cache_source(ttl: Optional[int] = None, prefix: str = "source"):
    """
    Decorator: cache the JSON-serialisable result of an async source fetcher.

    Empty results are not cached so a transient upstream outage is retried
    on the next run.

    Usage:
        @cache_source(ttl=900, prefix="reservoirs")
        async def fetch_reservoirs() -> list:
            ...
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            key = _make_cache_key(f"{prefix}:{func.__name__}", args, kwargs)
            cached = await cache_get(key)
            if cached is not None:
                logger.debug("Cache HIT: %s", key)
                return cached

            result = await func(*args, **kwargs)
            if result:
                await cache_set(key, result, ttl=ttl or settings.RESERVOIR_CACHE_TTL)
            return result
        return wrapper
    return decorator


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.close()
        _redis_client = None
        logger.info("Redis connection closed")
