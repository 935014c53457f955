import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional, Tuple

import structlog

from cloudscope.schemas.inventory import AssetRecord, ScanResult, ScanProvider
from cloudscope.services.costs.attribution import attribute_costs, infer_connections
from cloudscope.shared.core.exceptions import ProviderScanError

logger = structlog.get_logger()

DEFAULT_SCAN_TIMEOUT_SECONDS = 120


class BaseAdapter(ABC):
    """
    Abstract Base Class for Multi-Cloud Inventory & Cost Adapters.

    Concrete adapters wrap two vendor capabilities:
    - Resource listing (inventory / tagging API)
    - Month-to-date cost (billing API), as rows of {service, region, cost}

    scan() turns both into one normalized ScanResult. A failure in either call
    fails the whole scan with a single ProviderScanError; adapters never retry,
    never return partial data and never write to storage.
    """

    provider: ScanProvider
    # Service names used by connection inference
    compute_services: Tuple[str, ...] = ()
    storage_services: Tuple[str, ...] = ()
    # Inventory service name -> billing service name
    billing_service_aliases: Dict[str, str] = {}

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = timeout_seconds or DEFAULT_SCAN_TIMEOUT_SECONDS

    @abstractmethod
    async def list_resources(self) -> List[Dict[str, Any]]:
        """List raw resources from the provider's inventory API."""
        pass

    @abstractmethod
    async def get_month_to_date_cost(self) -> List[Dict[str, Any]]:
        """Return billing rows for the current calendar month: {service, region, cost}."""
        pass

    @abstractmethod
    def normalize_resource(self, raw: Dict[str, Any], scanned_at: datetime) -> AssetRecord:
        """Map one raw resource into the common AssetRecord shape."""
        pass

    def billing_key(self, asset: AssetRecord) -> str:
        return self.billing_service_aliases.get(asset.service, asset.service)

    def connection_scope(self, asset: AssetRecord) -> str:
        return asset.region

    async def scan(self) -> ScanResult:
        """Runs one bounded scan and returns the normalized result."""
        provider = self.provider.value
        log = logger.bind(provider=provider)
        log.info("provider_scan_started")

        try:
            raw_resources, cost_rows = await asyncio.wait_for(
                asyncio.gather(self.list_resources(), self.get_month_to_date_cost()),
                timeout=self.timeout_seconds
            )
            scanned_at = datetime.now(timezone.utc)
            result = self._build_result(raw_resources, cost_rows, scanned_at)
        except asyncio.TimeoutError as e:
            log.error("provider_scan_timeout", timeout_seconds=self.timeout_seconds)
            raise ProviderScanError(provider, f"timed out after {self.timeout_seconds}s") from e
        except ProviderScanError:
            raise
        except Exception as e:
            log.error("provider_scan_failed", error=str(e), error_type=type(e).__name__)
            raise ProviderScanError(provider, e) from e

        log.info(
            "provider_scan_completed",
            assets=len(result.assets),
            total_cost=round(result.total_cost, 2)
        )
        return result

    def _build_result(
        self,
        raw_resources: List[Dict[str, Any]],
        cost_rows: List[Dict[str, Any]],
        scanned_at: datetime
    ) -> ScanResult:
        cost_by_service: Dict[str, float] = {}
        cost_by_region: Dict[str, float] = {}
        for row in cost_rows:
            service = row.get("service") or "unknown"
            region = row.get("region") or "unknown"
            amount = float(row.get("cost") or 0)
            cost_by_service[service] = cost_by_service.get(service, 0.0) + amount
            cost_by_region[region] = cost_by_region.get(region, 0.0) + amount

        assets = [self.normalize_resource(raw, scanned_at) for raw in raw_resources]
        assets = attribute_costs(cost_by_service, assets, billing_key=self.billing_key)
        assets = infer_connections(
            assets,
            self.compute_services,
            self.storage_services,
            scope=self.connection_scope
        )

        return ScanResult(
            provider=self.provider.value,
            assets=assets,
            total_cost=sum(cost_by_service.values()),
            cost_by_service=cost_by_service,
            cost_by_region=cost_by_region,
            scan_timestamp=scanned_at
        )


def month_to_date_window(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Start of the current UTC calendar month and now."""
    now = now or datetime.now(timezone.utc)
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start, now
