"""
Multi-Cloud Scan Aggregator

Fans a scan out to every requested provider concurrently, waits for all of
them and merges the successful results into one inventory and cost summary.
A failed provider never cancels the others and never fails the whole call.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

import structlog

from cloudscope.schemas.inventory import (
    AssetRecord,
    CostSummary,
    MonthlyCost,
    ProviderCredentials,
    ProviderFailure,
    ScanProvider,
    ScanResponse,
    ScanResult,
)
from cloudscope.shared.adapters.base import BaseAdapter
from cloudscope.shared.adapters.factory import AdapterFactory
from cloudscope.shared.core.config import Settings
from cloudscope.shared.core.exceptions import ConfigurationError, ProviderScanError

logger = structlog.get_logger()

AdapterBuilder = Callable[[ScanProvider, Optional[ProviderCredentials]], BaseAdapter]


@dataclass
class AggregatedScan:
    """Merged outcome of one multi-provider scan. Partial success is a normal value."""
    succeeded: List[ScanResult] = field(default_factory=list)
    failed: List[ProviderFailure] = field(default_factory=list)
    assets: List[AssetRecord] = field(default_factory=list)
    cost_summary: CostSummary = field(default_factory=CostSummary)
    last_scan: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    persistence_errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed

    def to_response(self) -> ScanResponse:
        return ScanResponse(
            success=self.success,
            providers=[ScanProvider(r.provider.value) for r in self.succeeded],
            assets=self.assets,
            cost_summary=self.cost_summary,
            last_scan=self.last_scan,
            errors=[f.message for f in self.failed] or None,
            persistence_errors=self.persistence_errors or None,
        )


def merge_results(results: List[ScanResult], failures: List[ProviderFailure]) -> AggregatedScan:
    """Concatenates assets and sums the cost maps across providers on identical keys."""
    assets: List[AssetRecord] = []
    cost_by_provider: Dict[str, float] = {}
    cost_by_service: Dict[str, float] = {}
    cost_by_region: Dict[str, float] = {}

    for result in results:
        assets.extend(result.assets)
        cost_by_provider[result.provider.value] = result.total_cost
        for service, cost in result.cost_by_service.items():
            cost_by_service[service] = cost_by_service.get(service, 0.0) + cost
        for region, cost in result.cost_by_region.items():
            cost_by_region[region] = cost_by_region.get(region, 0.0) + cost

    now = datetime.now(timezone.utc)
    total = sum(cost_by_provider.values())
    summary = CostSummary(
        total_cost=total,
        cost_by_provider=cost_by_provider,
        cost_by_service=cost_by_service,
        cost_by_region=cost_by_region,
        monthly_trend=[MonthlyCost(month=now.strftime("%Y-%m"), cost=total)],
    )
    return AggregatedScan(
        succeeded=results,
        failed=failures,
        assets=assets,
        cost_summary=summary,
        last_scan=now,
    )


class ScanAggregator:
    """Runs provider adapters concurrently and merges their results."""

    def __init__(self, settings: Settings, adapter_builder: Optional[AdapterBuilder] = None):
        self.settings = settings
        self._build_adapter = adapter_builder or (
            lambda provider, credentials: AdapterFactory.get_adapter(provider, credentials, settings)
        )

    async def _scan_one(
        self,
        provider: ScanProvider,
        credentials: Optional[ProviderCredentials]
    ) -> ScanResult:
        adapter = self._build_adapter(provider, credentials)
        return await adapter.scan()

    async def scan_all(
        self,
        providers: Iterable[ScanProvider | str],
        credentials: Optional[Dict[ScanProvider, ProviderCredentials]] = None
    ) -> AggregatedScan:
        """
        Scans every provider in the set, waiting for all of them.

        Raises ValueError for an empty provider set. Otherwise always returns;
        per-provider failures are reported in AggregatedScan.failed.
        """
        # Deduplicate while keeping request order
        requested = list(dict.fromkeys(ScanProvider(p.lower()) for p in providers))
        if not requested:
            raise ValueError("At least one provider must be requested")

        credentials = credentials or {}
        log = logger.bind(providers=[p.value for p in requested])
        log.info("multi_cloud_scan_started")

        outcomes = await asyncio.gather(
            *(self._scan_one(p, credentials.get(p)) for p in requested),
            return_exceptions=True
        )

        results: List[ScanResult] = []
        failures: List[ProviderFailure] = []
        for provider, outcome in zip(requested, outcomes):
            if isinstance(outcome, ScanResult):
                results.append(outcome)
            elif isinstance(outcome, (ProviderScanError, ConfigurationError)):
                failures.append(ProviderFailure(provider=provider, message=outcome.message))
            elif isinstance(outcome, Exception):
                # Adapters wrap their own errors; this covers construction failures
                error = ProviderScanError(provider.value, outcome)
                failures.append(ProviderFailure(provider=provider, message=error.message))
            else:
                raise outcome

        for failure in failures:
            log.warning("provider_scan_excluded", provider=failure.provider.value, error=failure.message)

        aggregated = merge_results(results, failures)
        log.info(
            "multi_cloud_scan_completed",
            succeeded=[r.provider.value for r in results],
            failed=[f.provider.value for f in failures],
            assets=len(aggregated.assets),
            total_cost=round(aggregated.cost_summary.total_cost, 2)
        )
        return aggregated
