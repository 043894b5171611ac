"""Append-only inventory audit trail."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, func
from sqlalchemy.orm import Mapped, mapped_column

from barledger.db.base import Base


class AuditEventType(str, Enum):
    INVENTORY_OVER_DEPLETION = "inventory_over_depletion"
    UNIT_CONVERSION = "unit_conversion"
    INVENTORY_ADJUSTMENT = "inventory_adjustment"
    INVENTORY_DEPLETION = "inventory_depletion"


class AuditLog(Base):
    """One inventory event. Never updated; purged only by retention cleanup."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    product_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    recipe_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    event_data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    external_order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
