"""
Scan Service

Runs a multi-cloud scan and records every successful provider's assets in
the scan history. A storage failure is reported next to the scan result and
never turns a successful scan into a failed one.
"""

from typing import Dict, FrozenSet, Iterable, Optional, Set

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cloudscope.schemas.inventory import ProviderCredentials, ScanProvider
from cloudscope.services.costs.persistence import ScanPersistenceService
from cloudscope.services.scans.aggregator import AggregatedScan, ScanAggregator
from cloudscope.shared.core.config import Settings
from cloudscope.shared.core.exceptions import PersistenceError, ScanInProgressError

logger = structlog.get_logger()


class ScanService:
    """Aggregator plus persistence, with one in-flight scan per provider set."""

    def __init__(
        self,
        settings: Settings,
        session_maker: async_sessionmaker[AsyncSession],
        aggregator: Optional[ScanAggregator] = None
    ):
        self.settings = settings
        self.session_maker = session_maker
        self.aggregator = aggregator or ScanAggregator(settings)
        self._in_flight: Set[FrozenSet[ScanProvider]] = set()

    def is_running(self, providers: Iterable[ScanProvider | str]) -> bool:
        return self._key(providers) in self._in_flight

    @staticmethod
    def _key(providers: Iterable[ScanProvider | str]) -> FrozenSet[ScanProvider]:
        return frozenset(ScanProvider(p.lower()) for p in providers)

    async def run(
        self,
        providers: Iterable[ScanProvider | str],
        scan_type: str = "manual",
        credentials: Optional[Dict[ScanProvider, ProviderCredentials]] = None
    ) -> AggregatedScan:
        """
        Scans the provider set and persists the results.

        Raises ValueError for an empty set and ScanInProgressError when the same
        set is already being scanned.
        """
        providers = list(providers)
        key = self._key(providers)
        if not key:
            raise ValueError("At least one provider must be requested")
        if key in self._in_flight:
            logger.warning("scan_already_running", providers=sorted(p.value for p in key))
            raise ScanInProgressError(
                "A scan for these providers is already running",
                details={"providers": sorted(p.value for p in key)}
            )

        self._in_flight.add(key)
        try:
            aggregated = await self.aggregator.scan_all(providers, credentials=credentials)
            await self._persist(aggregated, scan_type)
        finally:
            self._in_flight.discard(key)

        return aggregated

    async def _persist(self, aggregated: AggregatedScan, scan_type: str) -> None:
        for result in aggregated.succeeded:
            provider = result.provider.value
            try:
                async with self.session_maker() as db:
                    await ScanPersistenceService(
                        db, timeout_seconds=self.settings.PERSISTENCE_TIMEOUT_SECONDS
                    ).record(provider, result.assets, scan_type, scanned_at=result.scan_timestamp)
            except PersistenceError as e:
                logger.error("scan_persistence_error", provider=provider, error=e.message)
                aggregated.persistence_errors.append(e.message)
