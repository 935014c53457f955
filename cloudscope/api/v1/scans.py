from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, Response
import structlog

from cloudscope.schemas.inventory import (
    ScanProvider,
    ScanRequest,
    ScanResponse,
    TrendFilter,
    TrendResponse,
)
from cloudscope.services.costs.trends import TrendService
from cloudscope.services.scans.aggregator import AggregatedScan
from cloudscope.services.scans.samples import build_sample_scan
from cloudscope.services.scans.service import ScanService
from cloudscope.shared.adapters.factory import parse_credentials
from cloudscope.shared.core.dependencies import get_scan_service, get_trend_service

router = APIRouter(tags=["Scans"])
logger = structlog.get_logger()


def _single_provider_response(aggregated: AggregatedScan, response: Response) -> ScanResponse:
    # One provider and it failed: same payload, upstream error status
    if not aggregated.success:
        response.status_code = 502
    return aggregated.to_response()


@router.post("/scan", response_model=ScanResponse, response_model_exclude_none=True)
async def scan_providers(
    request: Optional[ScanRequest] = Body(None),
    scan_service: ScanService = Depends(get_scan_service),
):
    """
    Scans the requested providers concurrently using configured credentials.
    Partial success returns 200 with success=false and per-provider errors.
    """
    request = request or ScanRequest()
    logger.info("scan_requested", providers=[p.value for p in request.providers])
    aggregated = await scan_service.run(request.providers, scan_type="manual")
    return aggregated.to_response()


@router.get("/scan", response_model=ScanResponse, response_model_exclude_none=True)
async def scan_provider(
    response: Response,
    provider: ScanProvider = Query(..., description="Provider to scan with configured credentials"),
    scan_service: ScanService = Depends(get_scan_service),
):
    """Scans one provider using credentials from the environment."""
    aggregated = await scan_service.run([provider], scan_type="provider")
    return _single_provider_response(aggregated, response)


@router.post("/cloud/{provider}/scan", response_model=ScanResponse, response_model_exclude_none=True)
async def scan_with_credentials(
    provider: ScanProvider,
    response: Response,
    payload: Dict[str, Any] = Body(...),
    scan_service: ScanService = Depends(get_scan_service),
):
    """
    Scans one provider with request-supplied credentials.
    Missing credential fields are rejected with 400 before any cloud call.
    """
    credentials = parse_credentials(provider, payload)
    aggregated = await scan_service.run(
        [provider],
        scan_type="provider",
        credentials={provider: credentials}
    )
    return _single_provider_response(aggregated, response)


@router.get("/scans/trends", response_model=TrendResponse)
async def get_trends(
    provider: List[ScanProvider] = Query(default=[]),
    region: Optional[str] = Query(None),
    service: Optional[str] = Query(None),
    months: int = Query(6, ge=1, le=36),
    trend_service: TrendService = Depends(get_trend_service),
):
    """Month-over-month cost per provider from scan history."""
    trend_filter = TrendFilter(providers=provider, region=region, service=service, months=months)
    return await trend_service.get_trends(trend_filter)


@router.get("/scans/sample", response_model=ScanResponse, response_model_exclude_none=True)
async def get_sample_scan():
    """Static demo inventory, always labelled sample=true."""
    return build_sample_scan()
