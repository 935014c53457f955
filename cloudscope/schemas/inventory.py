"""
Cloud Inventory and Cost Schemas - Normalization Layer

Every provider adapter emits these shapes; the aggregator, persistence writer
and API speak nothing else. JSON field names are camelCase for the dashboard,
Python attributes stay snake_case.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CloudProvider(str, Enum):
    AWS = "aws"
    AZURE = "azure"
    GCP = "gcp"
    MANUAL = "manual"


class ScanProvider(str, Enum):
    """Providers that can be scanned (manual assets are never discovered)."""
    AWS = "aws"
    AZURE = "azure"
    GCP = "gcp"


class AssetStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    TERMINATED = "terminated"
    UNKNOWN = "unknown"


class AssetCriticality(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class AssetRecord(CamelModel):
    """One discovered cloud resource at scan time."""
    resource_id: str = Field(..., description="Provider-native identifier (ARN, Azure resource id, GCP asset name)")
    provider: CloudProvider
    service: str
    region: str = "unknown"
    tags: List[str] = Field(default_factory=list, description="key:value strings")
    cost_this_month: float = Field(0.0, description="Even-split attribution of the service's month-to-date cost")
    status: AssetStatus = AssetStatus.UNKNOWN
    connected_assets: List[str] = Field(
        default_factory=list,
        description="Approximate, display-only links inferred from region/resource-group scoping"
    )
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    name: Optional[str] = None
    resource_type: Optional[str] = None
    criticality: AssetCriticality = AssetCriticality.LOW
    owner: Optional[str] = None

    @field_validator("cost_this_month")
    @classmethod
    def cost_must_be_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("cost_this_month must be >= 0")
        return v

    @model_validator(mode="after")
    def drop_self_connection(self) -> "AssetRecord":
        if self.resource_id in self.connected_assets:
            self.connected_assets = [a for a in self.connected_assets if a != self.resource_id]
        return self


class ScanResult(CamelModel):
    """Output of one provider adapter invocation."""
    provider: CloudProvider
    assets: List[AssetRecord] = Field(default_factory=list)
    total_cost: float = 0.0
    cost_by_service: Dict[str, float] = Field(default_factory=dict)
    # Grouped over the same billing rows by a different dimension; its sum may differ.
    cost_by_region: Dict[str, float] = Field(default_factory=dict)
    scan_timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MonthlyCost(CamelModel):
    month: str  # YYYY-MM
    cost: float


class CostSummary(CamelModel):
    """Aggregate cost view across providers."""
    total_cost: float = 0.0
    cost_by_provider: Dict[str, float] = Field(default_factory=dict)
    cost_by_service: Dict[str, float] = Field(default_factory=dict)
    cost_by_region: Dict[str, float] = Field(default_factory=dict)
    monthly_trend: List[MonthlyCost] = Field(default_factory=list)


class ProviderFailure(CamelModel):
    provider: ScanProvider
    message: str


class ScanRequest(CamelModel):
    providers: List[ScanProvider] = Field(
        default_factory=lambda: list(ScanProvider),
        min_length=1,
        description="Providers to scan; all three when omitted"
    )


class ScanResponse(CamelModel):
    success: bool
    providers: List[ScanProvider] = Field(default_factory=list, description="Providers that scanned successfully")
    assets: List[AssetRecord] = Field(default_factory=list)
    cost_summary: CostSummary
    last_scan: datetime
    errors: Optional[List[str]] = None
    persistence_errors: Optional[List[str]] = None
    sample: bool = Field(False, description="True only for the explicit sample-data endpoint")


class TrendFilter(CamelModel):
    providers: List[ScanProvider] = Field(default_factory=list)
    region: Optional[str] = None
    service: Optional[str] = None
    months: int = Field(6, ge=1, le=36)

    def cache_key(self) -> str:
        """
        Order-independent key over the full filter tuple. JSON-encoded so
        free-form region/service values cannot collide across fields.
        """
        providers = sorted({p.value for p in self.providers})
        return json.dumps([providers, self.region, self.service, self.months], separators=(",", ":"))


class TrendRow(CamelModel):
    provider: str
    month: str  # YYYY-MM
    total_cost: float
    percent_change: float = Field(0.0, description="Change vs the same provider's previous month; 0 for the first month")


class TrendResponse(CamelModel):
    trends: List[TrendRow] = Field(default_factory=list)


# Credential payloads for per-provider scan requests. Only required fields are validated.

class AWSCredentials(CamelModel):
    access_key_id: str = Field(..., min_length=1)
    secret_access_key: str = Field(..., min_length=1)
    region: str = "us-east-1"


class AzureCredentials(CamelModel):
    tenant_id: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1)
    subscription_id: str = Field(..., min_length=1)


class GCPCredentials(CamelModel):
    project_id: str = Field(..., min_length=1)
    billing_export_table: str = Field(..., min_length=1, description="project.dataset.table of the billing export")
    service_account_json: Optional[str] = None
    key_file: Optional[str] = None


ProviderCredentials = AWSCredentials | AzureCredentials | GCPCredentials

CREDENTIAL_MODELS: Dict[ScanProvider, Any] = {
    ScanProvider.AWS: AWSCredentials,
    ScanProvider.AZURE: AzureCredentials,
    ScanProvider.GCP: GCPCredentials,
}
