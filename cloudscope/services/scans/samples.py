"""
Sample inventory for demos and UI development.

Served only by the explicit sample endpoint and always labelled sample=true;
it is never substituted for a failed or unconfigured scan.
"""

from datetime import datetime, timezone

from cloudscope.schemas.inventory import (
    AssetCriticality,
    AssetRecord,
    AssetStatus,
    CostSummary,
    MonthlyCost,
    ScanProvider,
    ScanResponse,
)


def _previous_month(now: datetime) -> str:
    year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
    return f"{year:04d}-{month:02d}"


def build_sample_scan(now: datetime | None = None) -> ScanResponse:
    now = now or datetime.now(timezone.utc)
    account = "arn:aws:ec2:{region}:123456789012:instance/{instance}"

    assets = [
        AssetRecord(
            resource_id=account.format(region="us-east-1", instance="i-1234567890abcdef0"),
            provider="aws",
            service="ec2",
            region="us-east-1",
            tags=["env:production", "role:web"],
            cost_this_month=45.67,
            status=AssetStatus.RUNNING,
            last_updated=now,
            name="web-server-prod-01",
            resource_type="ec2:instance",
            criticality=AssetCriticality.HIGH,
            owner="devops-team",
        ),
        AssetRecord(
            resource_id=account.format(region="us-east-1", instance="i-0987654321fedcba0"),
            provider="aws",
            service="ec2",
            region="us-east-1",
            tags=["env:production", "role:database"],
            cost_this_month=125.89,
            status=AssetStatus.RUNNING,
            last_updated=now,
            name="database-server-prod",
            resource_type="ec2:instance",
            criticality=AssetCriticality.HIGH,
            owner="database-team",
        ),
        AssetRecord(
            resource_id=account.format(region="us-west-2", instance="i-abcdef1234567890"),
            provider="aws",
            service="ec2",
            region="us-west-2",
            tags=["env:staging", "role:application"],
            cost_this_month=12.34,
            status=AssetStatus.STOPPED,
            last_updated=now,
            name="staging-app-server",
            resource_type="ec2:instance",
            criticality=AssetCriticality.MEDIUM,
            owner="dev-team",
        ),
    ]

    total = round(sum(a.cost_this_month for a in assets), 2)
    summary = CostSummary(
        total_cost=total,
        cost_by_provider={"aws": total},
        cost_by_service={"Amazon Elastic Compute Cloud - Compute": total},
        cost_by_region={"us-east-1": 171.56, "us-west-2": 12.34},
        monthly_trend=[
            MonthlyCost(month=_previous_month(now), cost=165.23),
            MonthlyCost(month=now.strftime("%Y-%m"), cost=total),
        ],
    )
    return ScanResponse(
        success=True,
        providers=[ScanProvider.AWS],
        assets=assets,
        cost_summary=summary,
        last_scan=now,
        sample=True,
    )
