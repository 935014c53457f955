import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from datetime import datetime, timezone

from cloudscope.schemas.inventory import AssetStatus, GCPCredentials
from cloudscope.shared.adapters.gcp import GCPAdapter
from cloudscope.shared.core.exceptions import ConfigurationError, ProviderScanError

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class MockAsyncPager:
    def __init__(self, items):
        self.items = list(items)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.items:
            raise StopAsyncIteration
        return self.items.pop(0)


def _asset_client(pager):
    client = MagicMock()
    client.list_assets = AsyncMock(return_value=pager)
    client.transport.close = AsyncMock()
    return client


def _asset(name, asset_type, location=None, data=None):
    return {
        "name": name,
        "asset_type": asset_type,
        "resource": {"location": location, "data": data or {}},
    }


@pytest.fixture
def gcp_adapter():
    return GCPAdapter(GCPCredentials(
        project_id="demo-project",
        billing_export_table="demo-project.billing.gcp_billing_export_v1_0123"
    ))


def test_gcp_adapter_rejects_malformed_billing_table():
    with pytest.raises(ConfigurationError):
        GCPAdapter(GCPCredentials(project_id="p", billing_export_table="p.billing`; DROP TABLE x"))


def test_gcp_adapter_rejects_unreadable_service_account_json():
    with pytest.raises(ConfigurationError):
        GCPAdapter(GCPCredentials(
            project_id="p",
            billing_export_table="p.billing.export",
            service_account_json="{not json"
        ))


@pytest.mark.parametrize("raw_status,expected", [
    ("RUNNING", AssetStatus.RUNNING),
    ("STOPPED", AssetStatus.STOPPED),
    ("TERMINATED", AssetStatus.STOPPED),
    ("SUSPENDED", AssetStatus.TERMINATED),
    ("PROVISIONING", AssetStatus.UNKNOWN),
])
def test_gcp_status_mapping(gcp_adapter, raw_status, expected):
    raw = _asset(
        "//compute.googleapis.com/projects/demo-project/zones/us-central1-a/instances/vm-1",
        "compute.googleapis.com/Instance",
        "us-central1-a",
        {"name": "vm-1", "status": raw_status}
    )
    assert gcp_adapter.normalize_resource(raw, NOW).status == expected


def test_gcp_normalize_uses_labels_and_defaults_region(gcp_adapter):
    raw = _asset(
        "//storage.googleapis.com/media-bucket",
        "storage.googleapis.com/Bucket",
        None,
        {"labels": {"env": "production", "owner": "media"}}
    )
    asset = gcp_adapter.normalize_resource(raw, NOW)

    assert asset.service == "storage"
    assert asset.region == "global"
    assert asset.name == "media-bucket"
    assert asset.tags == ["env:production", "owner:media"]
    assert asset.owner == "media"
    assert asset.criticality.value == "High"


@pytest.mark.asyncio
async def test_gcp_adapter_scan(gcp_adapter):
    asset_client = _asset_client(MockAsyncPager([
        _asset("//compute.googleapis.com/projects/demo-project/zones/us-central1-a/instances/vm-1",
               "compute.googleapis.com/Instance", "us-central1-a", {"name": "vm-1", "status": "RUNNING"}),
        _asset("//storage.googleapis.com/media-bucket", "storage.googleapis.com/Bucket", "US"),
    ]))

    bq_client = MagicMock()
    bq_client.query.return_value.result.return_value = [
        {"service": "Compute Engine", "region": "us-central1", "cost": 12.5},
        {"service": "Cloud Storage", "region": None, "cost": 2.5},
    ]

    with patch("cloudscope.shared.adapters.gcp.asset_v1") as mock_asset_v1, \
         patch.object(gcp_adapter, "_get_asset_client", return_value=asset_client), \
         patch.object(gcp_adapter, "_get_bq_client", return_value=bq_client):
        mock_asset_v1.Asset.to_dict.side_effect = lambda asset: asset
        result = await gcp_adapter.scan()

    assert result.total_cost == pytest.approx(15.0)
    assert result.cost_by_region == {"us-central1": 12.5, "global": 2.5}
    assets = {a.service: a for a in result.assets}
    assert assets["compute"].cost_this_month == pytest.approx(12.5)
    assert assets["compute"].status == AssetStatus.RUNNING
    assert assets["storage"].cost_this_month == pytest.approx(2.5)

    request = asset_client.list_assets.call_args.kwargs["request"]
    assert request["parent"] == "projects/demo-project"
    # Billing table is interpolated once; dates are bound parameters
    sql = bq_client.query.call_args.args[0]
    assert "`demo-project.billing.gcp_billing_export_v1_0123`" in sql
    assert "@start_date" in sql
    bq_client.close.assert_called_once()
    asset_client.transport.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_gcp_adapter_billing_failure(gcp_adapter):
    asset_client = _asset_client(MockAsyncPager([]))
    bq_client = MagicMock()
    bq_client.query.side_effect = Exception("403 PermissionDenied on table")

    with patch.object(gcp_adapter, "_get_asset_client", return_value=asset_client), \
         patch.object(gcp_adapter, "_get_bq_client", return_value=bq_client):
        with pytest.raises(ProviderScanError) as exc_info:
            await gcp_adapter.scan()

    assert exc_info.value.provider == "gcp"
    assert "Permission denied" in exc_info.value.message


@pytest.mark.asyncio
async def test_gcp_asset_client_closed_when_listing_fails(gcp_adapter):
    asset_client = _asset_client(None)
    asset_client.list_assets.side_effect = Exception("503 Service Unavailable")

    with patch.object(gcp_adapter, "_get_asset_client", return_value=asset_client):
        with pytest.raises(Exception, match="503"):
            await gcp_adapter.list_resources()

    asset_client.transport.close.assert_awaited_once()
