import re
from datetime import datetime, timedelta
from typing import List, Dict, Any

import aioboto3
from botocore.config import Config as BotoConfig
import structlog

from cloudscope.schemas.inventory import AssetRecord, AWSCredentials, ScanProvider
from cloudscope.services.costs.attribution import determine_criticality, extract_owner, format_tags
from cloudscope.shared.adapters.base import BaseAdapter, month_to_date_window

logger = structlog.get_logger()

# Cost Explorer is served from us-east-1 only
COST_EXPLORER_REGION = "us-east-1"

# Timeouts prevent indefinite hangs; retries are disabled (one attempt per call)
DEFAULT_BOTO_CONFIG = BotoConfig(
    read_timeout=30,
    connect_timeout=10,
    retries={"max_attempts": 1, "mode": "standard"}
)

RESOURCE_TYPE_FILTERS = [
    "ec2:instance",
    "s3:bucket",
    "rds:db",
    "lambda:function",
    "ecs:cluster",
    "ecs:service",
    "eks:cluster",
    "elasticloadbalancing:loadbalancer",
    "cloudfront:distribution",
    "route53:hostedzone",
]


class AWSAdapter(BaseAdapter):
    """
    AWS adapter: Resource Groups Tagging API for inventory, Cost Explorer for cost.
    """

    provider = ScanProvider.AWS
    compute_services = ("ec2", "lambda", "ecs", "eks")
    storage_services = ("s3",)
    # ARN service segment -> Cost Explorer SERVICE dimension
    billing_service_aliases = {
        "ec2": "Amazon Elastic Compute Cloud - Compute",
        "s3": "Amazon Simple Storage Service",
        "rds": "Amazon Relational Database Service",
        "lambda": "AWS Lambda",
        "ecs": "Amazon Elastic Container Service",
        "eks": "Amazon Elastic Container Service for Kubernetes",
        "elasticloadbalancing": "Elastic Load Balancing",
        "cloudfront": "Amazon CloudFront",
        "route53": "Amazon Route 53",
    }

    def __init__(self, credentials: AWSCredentials, timeout_seconds: float | None = None):
        super().__init__(timeout_seconds)
        self.credentials = credentials
        self.session = aioboto3.Session(
            aws_access_key_id=credentials.access_key_id,
            aws_secret_access_key=credentials.secret_access_key,
            region_name=credentials.region
        )

    async def list_resources(self) -> List[Dict[str, Any]]:
        resources: List[Dict[str, Any]] = []
        async with self.session.client(
            "resourcegroupstaggingapi",
            region_name=self.credentials.region,
            config=DEFAULT_BOTO_CONFIG
        ) as client:
            paginator = client.get_paginator("get_resources")
            async for page in paginator.paginate(ResourceTypeFilters=RESOURCE_TYPE_FILTERS):
                resources.extend(page.get("ResourceTagMappingList", []))

        logger.debug("aws_resources_listed", count=len(resources))
        return resources

    async def get_month_to_date_cost(self) -> List[Dict[str, Any]]:
        start, now = month_to_date_window()
        # Cost Explorer's End is exclusive
        end = (now + timedelta(days=1)).date()

        rows: List[Dict[str, Any]] = []
        async with self.session.client(
            "ce",
            region_name=COST_EXPLORER_REGION,
            config=DEFAULT_BOTO_CONFIG
        ) as client:
            request = {
                "TimePeriod": {"Start": start.date().isoformat(), "End": end.isoformat()},
                "Granularity": "MONTHLY",
                "Metrics": ["BlendedCost"],
                "GroupBy": [
                    {"Type": "DIMENSION", "Key": "SERVICE"},
                    {"Type": "DIMENSION", "Key": "REGION"},
                ],
            }
            while True:
                response = await client.get_cost_and_usage(**request)
                for result in response.get("ResultsByTime", []):
                    for group in result.get("Groups", []):
                        keys = group.get("Keys", [])
                        rows.append({
                            "service": keys[0] if keys else "unknown",
                            "region": keys[1] if len(keys) > 1 and keys[1] else "global",
                            "cost": float(group.get("Metrics", {}).get("BlendedCost", {}).get("Amount", 0) or 0),
                        })
                token = response.get("NextPageToken")
                if not token:
                    break
                request["NextPageToken"] = token

        return rows

    def normalize_resource(self, raw: Dict[str, Any], scanned_at: datetime) -> AssetRecord:
        arn = raw.get("ResourceARN", "")
        # arn:partition:service:region:account-id:resource
        parts = arn.split(":", 5)
        service = parts[2] if len(parts) > 2 and parts[2] else "unknown"
        region = parts[3] if len(parts) > 3 and parts[3] else "global"
        resource = parts[5] if len(parts) > 5 else arn

        tag_map = {t.get("Key", ""): t.get("Value", "") for t in raw.get("Tags", [])}
        tags = format_tags(tag_map)
        # instance/i-123, function:name, or a bare bucket name
        segments = re.split(r"[/:]", resource)
        kind = segments[0] if len(segments) > 1 else None

        return AssetRecord(
            resource_id=arn,
            provider=self.provider.value,
            service=service,
            region=region,
            tags=tags,
            last_updated=scanned_at,
            name=tag_map.get("Name") or segments[-1],
            resource_type=f"{service}:{kind}" if kind else service,
            criticality=determine_criticality(tags),
            owner=extract_owner(tag_map),
        )
