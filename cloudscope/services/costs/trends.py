"""
Cost Trend Service

Month-over-month cost per provider, computed from the scan history table and
cached in Redis per filter tuple.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cloudscope.models.scan import CloudScan
from cloudscope.schemas.inventory import TrendFilter, TrendResponse, TrendRow
from cloudscope.shared.core.cache import CacheService
from cloudscope.shared.core.exceptions import TrendQueryError

logger = structlog.get_logger()


def window_start(months: int, now: Optional[datetime] = None) -> datetime:
    """First instant of the calendar month `months - 1` months before now (UTC)."""
    now = now or datetime.now(timezone.utc)
    month_index = now.year * 12 + (now.month - 1) - (months - 1)
    return datetime(month_index // 12, month_index % 12 + 1, 1, tzinfo=timezone.utc)


def percent_change(previous: Optional[float], current: float) -> float:
    if not previous:
        return 0.0
    return round((current - previous) / previous * 100, 2)


def build_trend_rows(totals: List[tuple]) -> List[TrendRow]:
    """
    totals: (provider, month, total_cost) sorted by provider then month.
    The first month of each provider has percent_change 0.
    """
    rows: List[TrendRow] = []
    previous: Dict[str, float] = {}
    for provider, month, total in totals:
        total = float(total or 0)
        rows.append(TrendRow(
            provider=provider,
            month=month,
            total_cost=round(total, 2),
            percent_change=percent_change(previous.get(provider), total)
        ))
        previous[provider] = total
    return rows


class TrendService:
    def __init__(self, db: AsyncSession, cache: Optional[CacheService] = None):
        self.db = db
        self.cache = cache

    def _month_expression(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return func.to_char(func.date_trunc("month", CloudScan.scanned_at), "YYYY-MM")
        return func.strftime("%Y-%m", CloudScan.scanned_at)

    async def get_trends(self, trend_filter: TrendFilter) -> TrendResponse:
        """
        Returns per-provider monthly totals with percent change.
        A cache hit is returned as stored; a miss queries and populates the cache.
        """
        cache_key = trend_filter.cache_key()

        if self.cache is not None:
            cached = await self.cache.get_trends(cache_key)
            if cached is not None:
                logger.info("trend_cache_hit", key=cache_key)
                return TrendResponse.model_validate(cached)

        totals = await self._query_totals(trend_filter)
        response = TrendResponse(trends=build_trend_rows(totals))

        if self.cache is not None:
            await self.cache.set_trends(cache_key, response.model_dump(mode="json", by_alias=True))

        logger.info("trend_query_completed", key=cache_key, rows=len(response.trends))
        return response

    async def _query_totals(self, trend_filter: TrendFilter) -> List[tuple]:
        month = self._month_expression().label("month")
        stmt = (
            select(
                CloudScan.provider,
                month,
                func.sum(CloudScan.cost_this_month).label("total_cost")
            )
            .where(CloudScan.scanned_at >= window_start(trend_filter.months))
            .group_by(CloudScan.provider, month)
            .order_by(CloudScan.provider, month)
        )

        if trend_filter.providers:
            stmt = stmt.where(CloudScan.provider.in_([p.value for p in trend_filter.providers]))
        if trend_filter.region:
            stmt = stmt.where(CloudScan.region == trend_filter.region)
        if trend_filter.service:
            stmt = stmt.where(CloudScan.service == trend_filter.service)

        try:
            result = await self.db.execute(stmt)
            return [(row.provider, row.month, row.total_cost) for row in result.all()]
        except SQLAlchemyError as e:
            logger.error("trend_query_failed", error=str(e))
            raise TrendQueryError(
                "Failed to compute cost trends",
                details={"error_type": type(e).__name__}
            ) from e
