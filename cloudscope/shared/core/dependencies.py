import secrets
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from cloudscope.services.costs.trends import TrendService
from cloudscope.services.scans.service import ScanService
from cloudscope.shared.core.context import AppContext
from cloudscope.shared.core.exceptions import AuthError, ConfigurationError


def get_context(request: Request) -> AppContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise ConfigurationError("Application context is not initialized")
    return context


async def get_db(context: AppContext = Depends(get_context)) -> AsyncGenerator[AsyncSession, None]:
    async with context.session_maker() as session:
        yield session


def get_scan_service(context: AppContext = Depends(get_context)) -> ScanService:
    return context.scan_service


def get_trend_service(
    context: AppContext = Depends(get_context),
    db: AsyncSession = Depends(get_db)
) -> TrendService:
    return TrendService(db, context.cache)


def require_admin_key(
    context: AppContext = Depends(get_context),
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key")
) -> None:
    """Admin endpoints are closed unless ADMIN_API_KEY is configured."""
    expected = context.settings.ADMIN_API_KEY
    if not expected:
        raise AuthError("Admin API is disabled", code="admin_disabled")
    if not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise AuthError("Invalid admin key")
