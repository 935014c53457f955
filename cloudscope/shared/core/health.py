import time
from typing import Any, Awaitable, Callable, Dict

import structlog
from sqlalchemy import text

from cloudscope.shared.core.context import AppContext

logger = structlog.get_logger()


async def _probe(name: str, check: Callable[[], Awaitable[Any]]) -> Dict[str, Any]:
    """Runs one dependency check and reports up/down with latency."""
    started = time.perf_counter()
    try:
        await check()
    except Exception as e:
        logger.error("health_check_failed", dependency=name, error=str(e))
        return {"status": "down", "error": str(e)}
    return {"status": "up", "latency_ms": round((time.perf_counter() - started) * 1000, 2)}


class HealthService:
    """Dependency checks for the /health endpoint."""

    def __init__(self, context: AppContext):
        self.context = context

    async def check_all(self) -> Dict[str, Any]:
        database = await self.check_database()
        cache = await self.check_cache()

        # Scans and trends need the database; the cache only speeds up trends
        if database["status"] == "down":
            status = "unhealthy"
        elif cache["status"] == "down":
            status = "degraded"
        else:
            status = "healthy"

        settings = self.context.settings
        scheduler = self.context.scheduler
        return {
            "status": status,
            "app": settings.APP_NAME,
            "version": settings.VERSION,
            "database": database,
            "cache": cache,
            "scheduler": scheduler.get_status() if scheduler else {"status": "disabled"},
        }

    async def check_database(self) -> Dict[str, Any]:
        async def select_one():
            async with self.context.session_maker() as db:
                await db.execute(text("SELECT 1"))

        return await _probe("database", select_one)

    async def check_cache(self) -> Dict[str, Any]:
        cache = self.context.cache
        if not cache.enabled:
            return {"status": "up", "detail": "Redis not configured; trend cache disabled"}
        return await _probe("cache", cache.ping)
