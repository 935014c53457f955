from datetime import datetime
from typing import List, Dict, Any, Optional

import structlog
from azure.identity.aio import ClientSecretCredential
from azure.mgmt.costmanagement.aio import CostManagementClient
from azure.mgmt.costmanagement.models import QueryDefinition, QueryDataset, QueryAggregation, QueryGrouping
from azure.mgmt.resource.resources.aio import ResourceManagementClient

from cloudscope.schemas.inventory import AssetRecord, AzureCredentials, ScanProvider
from cloudscope.services.costs.attribution import determine_criticality, extract_owner, format_tags
from cloudscope.shared.adapters.base import BaseAdapter

logger = structlog.get_logger()

COST_COLUMN_NAMES = ("pretaxcost", "cost", "totalcost", "costusd")


def resource_group_of(resource_id: str) -> Optional[str]:
    """Extract the resource group from an Azure resource id."""
    parts = resource_id.split("/")
    for i, part in enumerate(parts):
        if part.lower() == "resourcegroups" and i + 1 < len(parts):
            return parts[i + 1].lower()
    return None


class AzureAdapter(BaseAdapter):
    """
    Azure adapter using the official async SDK: Resource Manager for inventory,
    Cost Management Query API for month-to-date cost.
    """

    provider = ScanProvider.AZURE
    compute_services = ("Microsoft.Compute",)
    storage_services = ("Microsoft.Storage",)
    # Resource provider namespace -> Cost Management ServiceName
    billing_service_aliases = {
        "Microsoft.Compute": "Virtual Machines",
        "Microsoft.Storage": "Storage",
        "Microsoft.Sql": "SQL Database",
        "Microsoft.Web": "Azure App Service",
        "Microsoft.Network": "Virtual Network",
        "Microsoft.ContainerService": "Azure Kubernetes Service",
        "Microsoft.DBforPostgreSQL": "Azure Database for PostgreSQL",
        "Microsoft.KeyVault": "Key Vault",
    }

    def __init__(self, credentials: AzureCredentials, timeout_seconds: float | None = None):
        super().__init__(timeout_seconds)
        self.credentials = credentials
        self._credential = None
        self._cost_client = None
        self._resource_client = None

    def _get_credential(self) -> ClientSecretCredential:
        if not self._credential:
            self._credential = ClientSecretCredential(
                tenant_id=self.credentials.tenant_id,
                client_id=self.credentials.client_id,
                client_secret=self.credentials.client_secret
            )
        return self._credential

    def _get_cost_client(self) -> CostManagementClient:
        if not self._cost_client:
            self._cost_client = CostManagementClient(credential=self._get_credential())
        return self._cost_client

    def _get_resource_client(self) -> ResourceManagementClient:
        if not self._resource_client:
            self._resource_client = ResourceManagementClient(
                credential=self._get_credential(),
                subscription_id=self.credentials.subscription_id
            )
        return self._resource_client

    async def close(self) -> None:
        for client in (self._cost_client, self._resource_client, self._credential):
            if client is not None:
                await client.close()
        self._credential = self._cost_client = self._resource_client = None

    async def list_resources(self) -> List[Dict[str, Any]]:
        client = self._get_resource_client()
        resources = []
        async for resource in client.resources.list():
            resources.append({
                "id": resource.id,
                "name": resource.name,
                "type": resource.type,
                "location": resource.location,
                "tags": resource.tags or {},
            })
        logger.debug("azure_resources_listed", count=len(resources))
        return resources

    async def get_month_to_date_cost(self) -> List[Dict[str, Any]]:
        client = self._get_cost_client()
        scope = f"/subscriptions/{self.credentials.subscription_id}"

        query_definition = QueryDefinition(
            type="ActualCost",
            timeframe="MonthToDate",
            dataset=QueryDataset(
                aggregation={
                    "totalCost": QueryAggregation(name="PreTaxCost", function="Sum")
                },
                grouping=[
                    QueryGrouping(type="Dimension", name="ServiceName"),
                    QueryGrouping(type="Dimension", name="ResourceLocation"),
                ]
            )
        )

        response = await client.query.usage(scope=scope, parameters=query_definition)
        if not response or not response.rows:
            return []

        columns = [(c.name or "").lower() for c in (response.columns or [])]
        cost_idx = next((columns.index(n) for n in COST_COLUMN_NAMES if n in columns), 0)
        service_idx = columns.index("servicename") if "servicename" in columns else 1
        region_idx = columns.index("resourcelocation") if "resourcelocation" in columns else 2

        return [
            {
                "service": row[service_idx] or "unknown",
                "region": row[region_idx] or "unknown",
                "cost": float(row[cost_idx] or 0),
            }
            for row in response.rows
        ]

    async def scan(self):
        try:
            return await super().scan()
        finally:
            await self.close()

    def connection_scope(self, asset: AssetRecord) -> str:
        # VMs link to storage accounts in the same resource group
        return resource_group_of(asset.resource_id) or asset.region

    def normalize_resource(self, raw: Dict[str, Any], scanned_at: datetime) -> AssetRecord:
        resource_type = raw.get("type") or "unknown"
        tag_map = raw.get("tags") or {}
        tags = format_tags(tag_map)

        return AssetRecord(
            resource_id=raw["id"],
            provider=self.provider.value,
            service=resource_type.split("/")[0] or "unknown",
            region=raw.get("location") or "unknown",
            tags=tags,
            last_updated=scanned_at,
            name=raw.get("name"),
            resource_type=resource_type,
            criticality=determine_criticality(tags),
            owner=extract_owner(tag_map),
        )
