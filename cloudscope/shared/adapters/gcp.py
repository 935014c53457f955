import asyncio
import json
import re
from datetime import datetime
from typing import List, Dict, Any, Optional

import structlog
from google.cloud import asset_v1
from google.cloud import bigquery
from google.oauth2 import service_account

from cloudscope.schemas.inventory import AssetRecord, AssetStatus, GCPCredentials, ScanProvider
from cloudscope.services.costs.attribution import determine_criticality, extract_owner, format_tags
from cloudscope.shared.adapters.base import BaseAdapter, month_to_date_window
from cloudscope.shared.core.exceptions import ConfigurationError

logger = structlog.get_logger()

# project.dataset.table; the table name is interpolated so it must be validated
BILLING_TABLE_PATTERN = re.compile(r"^[A-Za-z0-9_:\-]+\.[A-Za-z0-9_]+\.[A-Za-z0-9_\-]+$")

STATUS_MAP = {
    "RUNNING": AssetStatus.RUNNING,
    "STOPPED": AssetStatus.STOPPED,
    "TERMINATED": AssetStatus.STOPPED,
    "SUSPENDED": AssetStatus.TERMINATED,
}

BILLING_QUERY = """
    SELECT
        service.description AS service,
        location.region AS region,
        SUM(cost) AS cost
    FROM `{table}`
    WHERE usage_start_time >= @start_date
      AND usage_start_time <= @end_date
    GROUP BY service, region
"""


class GCPAdapter(BaseAdapter):
    """
    Google Cloud Platform Adapter using Cloud Asset Inventory for resources and
    the BigQuery billing export for costs.

    GCP has no synchronous billing API; the standard FinOps setup exports billing
    data to BigQuery, so the billing table must be configured.
    """

    provider = ScanProvider.GCP
    compute_services = ("compute", "run", "container")
    storage_services = ("storage",)
    # Asset API service -> billing export service.description
    billing_service_aliases = {
        "compute": "Compute Engine",
        "storage": "Cloud Storage",
        "sqladmin": "Cloud SQL",
        "run": "Cloud Run",
        "container": "Kubernetes Engine",
        "cloudfunctions": "Cloud Functions",
        "bigquery": "BigQuery",
        "pubsub": "Cloud Pub/Sub",
    }

    def __init__(self, credentials: GCPCredentials, timeout_seconds: float | None = None):
        super().__init__(timeout_seconds)
        if not BILLING_TABLE_PATTERN.match(credentials.billing_export_table):
            raise ConfigurationError(
                "GCP billing export table must look like project.dataset.table",
                details={"billing_export_table": credentials.billing_export_table}
            )
        self.credentials = credentials
        self._credentials = self._get_credentials()

    def _get_credentials(self) -> Optional[service_account.Credentials]:
        """Service account JSON, then key file, then application default credentials."""
        try:
            if self.credentials.service_account_json:
                info = json.loads(self.credentials.service_account_json)
                return service_account.Credentials.from_service_account_info(info)
            if self.credentials.key_file:
                return service_account.Credentials.from_service_account_file(self.credentials.key_file)
        except (ValueError, OSError) as e:
            logger.error("gcp_credentials_load_error", error=str(e))
            raise ConfigurationError("GCP service account credentials could not be loaded") from e
        return None

    def _get_bq_client(self) -> bigquery.Client:
        return bigquery.Client(
            project=self.credentials.project_id,
            credentials=self._credentials
        )

    def _get_asset_client(self) -> asset_v1.AssetServiceAsyncClient:
        return asset_v1.AssetServiceAsyncClient(credentials=self._credentials)

    async def list_resources(self) -> List[Dict[str, Any]]:
        client = self._get_asset_client()
        resources = []
        try:
            pager = await client.list_assets(
                request={
                    "parent": f"projects/{self.credentials.project_id}",
                    "content_type": asset_v1.ContentType.RESOURCE,
                }
            )
            async for asset in pager:
                resources.append(asset_v1.Asset.to_dict(asset))
        finally:
            # Each client owns a gRPC aio channel
            await client.transport.close()
        logger.debug("gcp_assets_listed", count=len(resources))
        return resources

    async def get_month_to_date_cost(self) -> List[Dict[str, Any]]:
        start, now = month_to_date_window()
        query = BILLING_QUERY.format(table=self.credentials.billing_export_table)
        job_config = bigquery.QueryJobConfig(
            query_parameters=[
                bigquery.ScalarQueryParameter("start_date", "TIMESTAMP", start),
                bigquery.ScalarQueryParameter("end_date", "TIMESTAMP", now),
            ]
        )

        def _run_query():
            client = self._get_bq_client()
            try:
                return list(client.query(query, job_config=job_config).result())
            finally:
                client.close()

        results = await asyncio.to_thread(_run_query)
        return [
            {
                "service": row["service"] or "unknown",
                "region": row["region"] or "global",
                "cost": float(row["cost"] or 0),
            }
            for row in results
        ]

    def normalize_resource(self, raw: Dict[str, Any], scanned_at: datetime) -> AssetRecord:
        asset_type = raw.get("asset_type") or "unknown"
        # compute.googleapis.com/Instance -> compute
        service = asset_type.split(".googleapis.com")[0] if ".googleapis.com" in asset_type else asset_type
        resource = raw.get("resource") or {}
        data = resource.get("data") or {}

        labels = data.get("labels") or {}
        tags = format_tags(labels)
        status = STATUS_MAP.get(str(data.get("status", "")).upper(), AssetStatus.UNKNOWN)
        name = raw.get("name", "")

        return AssetRecord(
            resource_id=name,
            provider=self.provider.value,
            service=service,
            region=resource.get("location") or "global",
            tags=tags,
            status=status,
            last_updated=scanned_at,
            name=data.get("name") or name.split("/")[-1] or None,
            resource_type=asset_type,
            criticality=determine_criticality(tags),
            owner=extract_owner(labels),
        )
