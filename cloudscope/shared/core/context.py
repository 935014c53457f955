"""
Application Context

Owns every long-lived resource of the process: settings, database engine,
session factory, trend cache, scan service and scheduler. Built once in the
FastAPI lifespan and stored on app.state; request handlers receive it through
dependencies instead of importing module-level clients.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from cloudscope.services.scans.service import ScanService
from cloudscope.services.scheduler.orchestrator import SchedulerOrchestrator
from cloudscope.shared.core.cache import CacheService
from cloudscope.shared.core.config import Settings
from cloudscope.shared.db.base import Base
from cloudscope.shared.db.session import create_engine_from_settings, create_session_maker

logger = structlog.get_logger()


@dataclass
class AppContext:
    settings: Settings
    engine: AsyncEngine
    session_maker: async_sessionmaker[AsyncSession]
    cache: CacheService
    scan_service: ScanService
    scheduler: Optional[SchedulerOrchestrator] = None

    @classmethod
    async def create(cls, settings: Settings, start_scheduler: bool = True) -> "AppContext":
        # Register ORM models on Base.metadata
        import cloudscope.models.scan  # noqa: F401

        engine = create_engine_from_settings(settings)
        if settings.DB_AUTO_CREATE:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("database_tables_ensured")

        session_maker = create_session_maker(engine)
        cache = CacheService.from_settings(settings)
        scan_service = ScanService(settings, session_maker)

        scheduler = None
        if settings.SCHEDULER_ENABLED:
            scheduler = SchedulerOrchestrator(scan_service, settings)
            if start_scheduler:
                scheduler.start()

        logger.info(
            "app_context_created",
            environment=settings.ENVIRONMENT,
            cache_enabled=cache.enabled,
            scheduler_enabled=scheduler is not None
        )
        return cls(
            settings=settings,
            engine=engine,
            session_maker=session_maker,
            cache=cache,
            scan_service=scan_service,
            scheduler=scheduler,
        )

    async def shutdown(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.stop()
        await self.cache.close()
        await self.engine.dispose()
        logger.info("app_context_closed")
