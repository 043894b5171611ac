"""POS integration models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from barledger.db.base import Base, TimestampMixin


class POSType(str, Enum):
    TOAST = "toast"


class SyncStatus(str, Enum):
    """Outcome of an integration's last sync / of one SyncLog run."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    FAILED = "FAILED"


class POSIntegration(Base, TimestampMixin):
    """A connection from one organization to a POS provider account."""

    __tablename__ = "pos_integrations"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(30), default=POSType.TOAST.value, nullable=False)
    credentials: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_sales_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_status: Mapped[str] = mapped_column(String(20), default=SyncStatus.PENDING.value, nullable=False)
    sync_errors: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    pos_products: Mapped[List["POSProduct"]] = relationship("POSProduct", back_populates="integration")


class POSProduct(Base, TimestampMixin):
    """A POS catalog entry, possibly carrying its own serving metadata."""

    __tablename__ = "pos_products"
    __table_args__ = (
        UniqueConstraint("integration_id", "external_id", name="uq_pos_product_integration_external"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    integration_id: Mapped[int] = mapped_column(
        ForeignKey("pos_integrations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    serving_unit: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    serving_size: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 4), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    integration: Mapped["POSIntegration"] = relationship("POSIntegration", back_populates="pos_products")
    mappings: Mapped[List["ProductMapping"]] = relationship("ProductMapping", back_populates="pos_product")


class ProductMapping(Base, TimestampMixin):
    """Confirmed POS catalog entry -> Product link with optional serving override."""

    __tablename__ = "product_mappings"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    pos_product_id: Mapped[int] = mapped_column(
        ForeignKey("pos_products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    is_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    serving_unit: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    serving_size: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 4), nullable=True)

    pos_product: Mapped["POSProduct"] = relationship("POSProduct", back_populates="mappings")
    product: Mapped["Product"] = relationship("Product")


class SyncLog(Base):
    """One row per sync run. Written once at the end of the run."""

    __tablename__ = "sync_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    integration_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("pos_integrations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    sync_type: Mapped[str] = mapped_column(String(20), default="SALES", nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    records_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    new_sales: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duplicates: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    depletion_failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


# Forward references
from barledger.models.product import Product  # noqa: E402
