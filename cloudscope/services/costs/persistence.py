"""
Scan Persistence Service

Appends scan results to the cloud_scans history table. Writes are idempotent
per (provider, resource_id, scan hour): replaying a scan or two writers racing
on the same hour never duplicates rows.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cloudscope.models.scan import CloudScan
from cloudscope.schemas.inventory import AssetRecord
from cloudscope.shared.core.exceptions import PersistenceError

logger = structlog.get_logger()

BATCH_SIZE = 500
DEFAULT_PERSISTENCE_TIMEOUT_SECONDS = 30
CONFLICT_COLUMNS = ["provider", "resource_id", "scan_bucket"]


def scan_bucket(scanned_at: datetime) -> str:
    """scanned_at truncated to the UTC hour, e.g. 2026-01-15T12."""
    if scanned_at.tzinfo is None:
        scanned_at = scanned_at.replace(tzinfo=timezone.utc)
    return scanned_at.astimezone(timezone.utc).strftime("%Y-%m-%dT%H")


class ScanPersistenceService:
    def __init__(self, db: AsyncSession, timeout_seconds: Optional[float] = None):
        self.db = db
        self.timeout_seconds = timeout_seconds or DEFAULT_PERSISTENCE_TIMEOUT_SECONDS

    async def record(
        self,
        provider: str,
        assets: List[AssetRecord],
        scan_type: str = "manual",
        scanned_at: Optional[datetime] = None
    ) -> dict:
        """
        Saves one row per asset. Uses INSERT ... ON CONFLICT DO NOTHING on the
        (provider, resource_id, scan_bucket) key.

        Raises PersistenceError on any database error or timeout; the transaction
        is rolled back and nothing from this call is kept.
        """
        scanned_at = scanned_at or datetime.now(timezone.utc)
        bucket = scan_bucket(scanned_at)
        values = [self._row(provider, asset, scan_type, scanned_at, bucket) for asset in assets]
        log = logger.bind(provider=provider, scan_type=scan_type, scan_bucket=bucket)

        if not values:
            log.info("scan_persisted", records_saved=0, records_skipped=0)
            return {"records_saved": 0, "records_skipped": 0}

        try:
            inserted = await asyncio.wait_for(self._write(values), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            await self.db.rollback()
            log.error("scan_persistence_timeout", timeout_seconds=self.timeout_seconds)
            raise PersistenceError(
                f"Persisting {provider} scan timed out after {self.timeout_seconds}s",
                details={"provider": provider}
            ) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            log.error("scan_persistence_failed", error=str(e))
            raise PersistenceError(
                f"Persisting {provider} scan failed",
                details={"provider": provider, "error_type": type(e).__name__}
            ) from e
        except Exception as e:
            # Driver connect errors (OSError, asyncpg) reach here unwrapped
            await self._safe_rollback(log)
            log.error("scan_persistence_failed", error=str(e), error_type=type(e).__name__)
            raise PersistenceError(
                f"Persisting {provider} scan failed",
                details={"provider": provider, "error_type": type(e).__name__}
            ) from e

        result = {"records_saved": inserted, "records_skipped": len(values) - inserted}
        log.info("scan_persisted", **result)
        return result

    async def _safe_rollback(self, log) -> None:
        try:
            await self.db.rollback()
        except Exception as e:
            log.warning("scan_persistence_rollback_failed", error=str(e))

    async def _write(self, values: List[Dict[str, Any]]) -> int:
        inserted = 0
        for i in range(0, len(values), BATCH_SIZE):
            batch = values[i : i + BATCH_SIZE]
            stmt = self._insert().values(batch)
            stmt = stmt.on_conflict_do_nothing(index_elements=CONFLICT_COLUMNS)
            # RETURNING only yields rows that were actually inserted
            result = await self.db.execute(stmt.returning(CloudScan.id))
            inserted += len(result.scalars().all())

        await self.db.commit()
        return inserted

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(CloudScan)
        if dialect == "sqlite":
            return sqlite.insert(CloudScan)
        raise PersistenceError(f"Unsupported database dialect for scan history: {dialect}")

    @staticmethod
    def _row(
        provider: str,
        asset: AssetRecord,
        scan_type: str,
        scanned_at: datetime,
        bucket: str
    ) -> Dict[str, Any]:
        return {
            "id": uuid.uuid4(),
            "provider": provider,
            "resource_id": asset.resource_id,
            "service": asset.service,
            "region": asset.region,
            "status": asset.status.value,
            "tags": list(asset.tags),
            "connected_assets": list(asset.connected_assets),
            "cost_this_month": Decimal(str(asset.cost_this_month)),
            "scan_type": scan_type,
            "scanned_at": scanned_at,
            "scan_bucket": bucket,
            "created_at": datetime.now(timezone.utc),
        }
