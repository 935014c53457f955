import os
# Disable DB SSL, the scheduler and production validation for all tests BEFORE any app imports
os.environ["DB_SSL_MODE"] = "disable"
os.environ["ENVIRONMENT"] = "development"
os.environ["TESTING"] = "True"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "False"

import pytest
from datetime import datetime, timezone
from typing import AsyncGenerator, Dict, List, Optional
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

from cloudscope.models.scan import CloudScan  # noqa: F401  (registers the table)
from cloudscope.schemas.inventory import AssetRecord, ScanResult
from cloudscope.services.scans.aggregator import ScanAggregator
from cloudscope.services.scans.service import ScanService
from cloudscope.shared.core.cache import CacheService
from cloudscope.shared.core.config import Settings
from cloudscope.shared.core.context import AppContext
from cloudscope.shared.core.exceptions import ProviderScanError
from cloudscope.shared.db.base import Base
from cloudscope.shared.db.session import create_engine_from_settings, create_session_maker

TEST_ADMIN_KEY = "test-admin-key-0123456789abcdef0123"


def make_asset(provider: str, resource_id: str, service: str = "ec2", region: str = "us-east-1",
               cost: float = 0.0, **extra) -> AssetRecord:
    return AssetRecord(
        resource_id=resource_id,
        provider=provider,
        service=service,
        region=region,
        cost_this_month=cost,
        **extra
    )


def make_result(provider: str, assets: List[AssetRecord], cost_by_service: Dict[str, float],
                cost_by_region: Optional[Dict[str, float]] = None) -> ScanResult:
    return ScanResult(
        provider=provider,
        assets=assets,
        total_cost=sum(cost_by_service.values()),
        cost_by_service=cost_by_service,
        cost_by_region=cost_by_region or {},
        scan_timestamp=datetime.now(timezone.utc)
    )


class FakeAdapter:
    """Stands in for a provider adapter: returns a prepared result or raises."""

    def __init__(self, provider: str, outcome):
        self.provider = provider
        self.outcome = outcome
        self.calls = 0

    async def scan(self) -> ScanResult:
        self.calls += 1
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


def fake_builder(outcomes: Dict[str, object]):
    """adapter_builder for ScanAggregator keyed by provider value."""
    adapters = {p: FakeAdapter(p, o) for p, o in outcomes.items()}

    def build(provider, credentials):
        return adapters[provider.value]

    build.adapters = adapters
    return build


def scan_error(provider: str, message: str = "AccessDenied") -> ProviderScanError:
    return ProviderScanError(provider, Exception(message))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        TESTING=True,
        DB_SSL_MODE="disable",
        SCHEDULER_ENABLED=False,
        ADMIN_API_KEY=TEST_ADMIN_KEY,
        UPSTASH_REDIS_URL=None,
        UPSTASH_REDIS_TOKEN=None,
    )


@pytest.fixture
async def engine(settings):
    # StaticPool keeps one in-memory database per engine
    engine = create_engine_from_settings(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return create_session_maker(engine)


@pytest.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture
def app_context(settings, engine, session_maker) -> AppContext:
    """Context with no cloud adapters wired; tests replace scan_service.aggregator as needed."""
    scan_service = ScanService(settings, session_maker, aggregator=ScanAggregator(settings, fake_builder({})))
    return AppContext(
        settings=settings,
        engine=engine,
        session_maker=session_maker,
        cache=CacheService(None),
        scan_service=scan_service,
        scheduler=None,
    )


@pytest.fixture
async def ac(app_context) -> AsyncGenerator[AsyncClient, None]:
    from cloudscope.main import app
    # ASGITransport does not run the lifespan; install the test context directly
    app.state.context = app_context
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.state.context = None
