"""
Cost Attribution & Connection Inference

Billing APIs report month-to-date cost per service, not per resource. The
per-asset figure is therefore an even split of the service total across the
discovered assets of that service. It is a documented approximation.

Connections are a display-only graph linking compute assets to storage assets
in the same scope. They are not derived from network or dependency metadata.
"""

from collections import Counter
from typing import Callable, Dict, Iterable, List, Optional

from cloudscope.schemas.inventory import AssetRecord, AssetCriticality

GLOBAL_REGION = "global"


def attribute_costs(
    cost_by_service: Dict[str, float],
    assets: List[AssetRecord],
    billing_key: Optional[Callable[[AssetRecord], str]] = None,
) -> List[AssetRecord]:
    """
    Returns copies of assets with cost_this_month set to
    cost_by_service[key] / count(assets of the same service), or 0 when the
    service has no cost entry.
    """
    key_of = billing_key or (lambda asset: asset.service)
    counts = Counter(asset.service for asset in assets)

    attributed = []
    for asset in assets:
        service_cost = cost_by_service.get(key_of(asset))
        share = service_cost / counts[asset.service] if service_cost else 0.0
        attributed.append(asset.model_copy(update={"cost_this_month": max(share, 0.0)}))
    return attributed


def infer_connections(
    assets: List[AssetRecord],
    compute_services: Iterable[str],
    storage_services: Iterable[str],
    scope: Optional[Callable[[AssetRecord], str]] = None,
) -> List[AssetRecord]:
    """
    Links each compute asset to the storage assets sharing its scope (region by
    default). Storage in the 'global' region is in scope for every compute asset.
    """
    compute = set(compute_services)
    storage = set(storage_services)
    scope_of = scope or (lambda asset: asset.region)

    storage_assets = [a for a in assets if a.service in storage]
    if not storage_assets:
        return list(assets)

    connected = []
    for asset in assets:
        if asset.service not in compute:
            connected.append(asset)
            continue

        asset_scope = scope_of(asset)
        links = [
            s.resource_id for s in storage_assets
            if s.resource_id != asset.resource_id
            and (scope_of(s) == asset_scope or s.region == GLOBAL_REGION)
        ]
        connected.append(asset.model_copy(update={"connected_assets": links}))
    return connected


def determine_criticality(tags: List[str]) -> AssetCriticality:
    tag_string = " ".join(tags).lower()
    if "production" in tag_string or "critical" in tag_string:
        return AssetCriticality.HIGH
    if "staging" in tag_string or "testing" in tag_string:
        return AssetCriticality.MEDIUM
    return AssetCriticality.LOW


def extract_owner(tags: Dict[str, str]) -> Optional[str]:
    for key, value in tags.items():
        if "owner" in key.lower() or "team" in key.lower():
            return value
    return None


def format_tags(tags: Optional[Dict[str, str]]) -> List[str]:
    return [f"{key}:{value}" for key, value in (tags or {}).items()]
