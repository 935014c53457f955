"""
Redis Cache Service using Upstash Redis

Caches trend query payloads keyed by their filter tuple (1h TTL by default).
The cache is best-effort: when Redis is not configured or unreachable every
call degrades to a miss and the caller queries the database directly.
"""

import json
import structlog
from typing import Any, Optional

from upstash_redis.asyncio import Redis as AsyncRedis

from cloudscope.shared.core.config import Settings

logger = structlog.get_logger()

TREND_KEY_PREFIX = "trends"


class CacheService:
    """
    Async caching service for CloudScope.

    Constructed once per process by the application context and injected
    into request handlers; falls back gracefully when Redis is not configured.
    """

    def __init__(self, client: Optional[AsyncRedis] = None, default_ttl_seconds: int = 3600):
        self.client = client
        self.enabled = client is not None
        self.default_ttl_seconds = default_ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheService":
        if not settings.UPSTASH_REDIS_URL or not settings.UPSTASH_REDIS_TOKEN:
            logger.info("redis_disabled", reason="UPSTASH credentials not configured")
            return cls(None, settings.TREND_CACHE_TTL_SECONDS)

        client = AsyncRedis(
            url=settings.UPSTASH_REDIS_URL,
            token=settings.UPSTASH_REDIS_TOKEN
        )
        logger.info("redis_async_client_created")
        return cls(client, settings.TREND_CACHE_TTL_SECONDS)

    async def get_json(self, key: str) -> Optional[Any]:
        """Return the decoded payload for key, or None on miss or error."""
        if not self.enabled:
            return None

        try:
            data = await self.client.get(key)
            if data:
                logger.debug("cache_hit", key=key)
                return json.loads(data) if isinstance(data, str) else data
        except Exception as e:
            logger.warning("cache_get_error", key=key, error=str(e))

        return None

    async def set_json(self, key: str, payload: Any, ttl_seconds: Optional[int] = None) -> bool:
        """Store payload as JSON with a fixed expiry."""
        if not self.enabled:
            return False

        ttl = ttl_seconds or self.default_ttl_seconds
        try:
            await self.client.set(key, json.dumps(payload, default=str), ex=ttl)
            logger.debug("cache_set", key=key, ttl_seconds=ttl)
            return True
        except Exception as e:
            logger.warning("cache_set_error", key=key, error=str(e))
            return False

    async def get_trends(self, filter_key: str) -> Optional[dict]:
        return await self.get_json(f"{TREND_KEY_PREFIX}:{filter_key}")

    async def set_trends(self, filter_key: str, payload: dict) -> bool:
        return await self.set_json(f"{TREND_KEY_PREFIX}:{filter_key}", payload)

    async def ping(self) -> bool:
        if not self.enabled:
            return False
        return bool(await self.client.ping())

    async def close(self) -> None:
        if not self.enabled:
            return
        try:
            await self.client.close()
            logger.info("redis_client_closed")
        except Exception as e:
            logger.warning("redis_close_error", error=str(e))
