import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Numeric, DateTime, UniqueConstraint, JSON, Uuid, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB

from cloudscope.shared.db.base import Base


class CloudScan(Base):
    """
    Scan history: one append-only row per discovered asset per scan.

    Rows are never updated or deleted by the application; retention is
    handled outside the service.
    """
    __tablename__ = "cloud_scans"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    provider: Mapped[str] = mapped_column(String, nullable=False, index=True)  # 'aws', 'azure', 'gcp'
    resource_id: Mapped[str] = mapped_column(String, nullable=False)
    service: Mapped[str] = mapped_column(String, nullable=False, index=True)
    region: Mapped[str] = mapped_column(String, nullable=False, default="unknown", index=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="unknown")

    tags: Mapped[list] = mapped_column(JSON().with_variant(JSONB, "postgresql"), default=list)
    connected_assets: Mapped[list] = mapped_column(JSON().with_variant(JSONB, "postgresql"), default=list)

    # Financials (DECIMAL for money!)
    cost_this_month: Mapped[Decimal] = mapped_column(Numeric(18, 8), nullable=False, default=Decimal("0"))

    scan_type: Mapped[str] = mapped_column(String, nullable=False, default="manual")  # manual, daily, weekly, provider
    scanned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    # scanned_at truncated to the UTC hour; part of the de-duplication key
    scan_bucket: Mapped[str] = mapped_column(String(13), nullable=False)

    __table_args__ = (
        UniqueConstraint("provider", "resource_id", "scan_bucket", name="uix_cloud_scan_resource_bucket"),
        Index("ix_cloud_scans_provider_scanned_at", "provider", "scanned_at"),
    )
