import asyncio
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from cloudscope.models.scan import CloudScan
from cloudscope.services.costs.persistence import ScanPersistenceService, scan_bucket
from cloudscope.shared.core.exceptions import PersistenceError
from conftest import make_asset


def _assets():
    return [
        make_asset("aws", "arn:aws:ec2:us-east-1:1:instance/i-1", cost=12.5, tags=["env:prod"]),
        make_asset("aws", "arn:aws:s3:::bucket", service="s3", region="global", cost=1.25),
    ]


async def _count(db) -> int:
    result = await db.execute(select(func.count()).select_from(CloudScan))
    return result.scalar()


def test_scan_bucket_truncates_to_utc_hour():
    assert scan_bucket(datetime(2026, 1, 15, 12, 59, 59, tzinfo=timezone.utc)) == "2026-01-15T12"
    assert scan_bucket(datetime(2026, 1, 15, 12, 0, 0)) == "2026-01-15T12"


@pytest.mark.asyncio
async def test_record_persists_one_row_per_asset(db):
    service = ScanPersistenceService(db)
    now = datetime(2026, 1, 15, 12, 5, tzinfo=timezone.utc)

    result = await service.record("aws", _assets(), scan_type="manual", scanned_at=now)

    assert result == {"records_saved": 2, "records_skipped": 0}
    rows = (await db.execute(select(CloudScan).order_by(CloudScan.resource_id))).scalars().all()
    assert len(rows) == 2
    ec2 = rows[0]
    assert ec2.provider == "aws"
    assert ec2.scan_type == "manual"
    assert ec2.scan_bucket == "2026-01-15T12"
    assert ec2.tags == ["env:prod"]
    assert Decimal(ec2.cost_this_month) == Decimal("12.5")


@pytest.mark.asyncio
async def test_replay_in_same_hour_is_idempotent(db):
    service = ScanPersistenceService(db)
    first = datetime(2026, 1, 15, 12, 5, tzinfo=timezone.utc)
    replay = datetime(2026, 1, 15, 12, 45, tzinfo=timezone.utc)

    await service.record("aws", _assets(), scanned_at=first)
    result = await service.record("aws", _assets(), scanned_at=replay)

    assert result == {"records_saved": 0, "records_skipped": 2}
    assert await _count(db) == 2


@pytest.mark.asyncio
async def test_new_hour_appends_history(db):
    service = ScanPersistenceService(db)
    await service.record("aws", _assets(), scanned_at=datetime(2026, 1, 15, 12, 5, tzinfo=timezone.utc))
    await service.record("aws", _assets(), scanned_at=datetime(2026, 1, 15, 13, 5, tzinfo=timezone.utc))
    assert await _count(db) == 4


@pytest.mark.asyncio
async def test_concurrent_writers_do_not_duplicate(session_maker):
    now = datetime(2026, 1, 15, 12, 5, tzinfo=timezone.utc)

    async def write():
        async with session_maker() as session:
            return await ScanPersistenceService(session).record("aws", _assets(), scanned_at=now)

    results = await asyncio.gather(write(), write())

    assert sum(r["records_saved"] for r in results) == 2
    async with session_maker() as session:
        assert await _count(session) == 2


@pytest.mark.asyncio
async def test_empty_asset_list_writes_nothing(db):
    result = await ScanPersistenceService(db).record("gcp", [])
    assert result == {"records_saved": 0, "records_skipped": 0}
    assert await _count(db) == 0


@pytest.mark.asyncio
async def test_database_error_raises_persistence_error(db):
    service = ScanPersistenceService(db)
    with patch.object(db, "execute", AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")))), \
         patch.object(db, "rollback", AsyncMock()) as rollback:
        with pytest.raises(PersistenceError) as exc_info:
            await service.record("aws", _assets())

    rollback.assert_awaited_once()
    assert exc_info.value.code == "persistence_error"
    assert exc_info.value.details["provider"] == "aws"


@pytest.mark.asyncio
async def test_write_timeout_raises_persistence_error():
    async def slow_execute(*args, **kwargs):
        await asyncio.sleep(5)

    session = MagicMock()
    session.get_bind.return_value.dialect.name = "sqlite"
    session.execute = AsyncMock(side_effect=slow_execute)
    session.rollback = AsyncMock()

    service = ScanPersistenceService(session, timeout_seconds=0.01)
    with pytest.raises(PersistenceError, match="timed out"):
        await service.record("aws", _assets())
    session.rollback.assert_awaited_once()
