"""
Redis cache for directory lookups.

Graceful degradation: when REDIS_URL is empty or Redis is down, every call
behaves like a cache miss and the caller falls through to the directory API.

Usage:
    from chathub.core.cache import cache

    value = await cache.get("directory:user:42")
    if value is None:
        value = await fetch_user(42)
        await cache.set("directory:user:42", serialize_for_cache(value), ttl=300)
"""

from typing import Optional, Any
import json
from redis import asyncio as aioredis
from chathub.config import settings
from chathub.core.logging_config import get_logger

logger = get_logger(__name__)


class CacheBackend:
    """Thin async Redis wrapper that never raises on cache failures."""

    def __init__(self):
        self.redis: Optional[Any] = None
        self.enabled = False

    async def initialize(self):
        """Connect to Redis if configured."""
        if not settings.REDIS_URL:
            logger.info("cache_disabled", reason="no_redis_url_configured")
            return

        try:
            self.redis = aioredis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=2,  # Fast timeout to avoid blocking requests
                socket_connect_timeout=2
            )
            await self.redis.ping()
            self.enabled = True
            logger.info("cache_enabled", redis_url=settings.REDIS_URL)
        except Exception as e:
            logger.warning("cache_initialization_failed", error=str(e))
            self.enabled = False

    async def close(self):
        """Close Redis connection."""
        if self.redis:
            try:
                await self.redis.aclose()
            except Exception as e:
                logger.error("cache_close_error", error=str(e))
        self.enabled = False

    async def get(self, key: str) -> Optional[str]:
        """Return the cached value, or None on miss, disabled cache or Redis error."""
        if not self.enabled or not self.redis:
            return None

        try:
            value = await self.redis.get(key)
            logger.debug("cache_hit" if value else "cache_miss", key=key)
            return value
        except Exception as e:
            logger.error("cache_get_error", key=key, error=str(e))
            return None

    async def set(self, key: str, value: str, ttl: int = 300) -> bool:
        """Set value with TTL in seconds. Returns False if it was not cached."""
        if not self.enabled or not self.redis:
            return False

        try:
            await self.redis.setex(key, ttl, value)
            return True
        except Exception as e:
            logger.error("cache_set_error", key=key, error=str(e))
            return False


def serialize_for_cache(data: Any) -> str:
    return json.dumps(data, default=str)


def deserialize_from_cache(data: str) -> Any:
    return json.loads(data)


# Global cache instance
cache = CacheBackend()
