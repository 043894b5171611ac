"""Per-organization inventory depletion settings."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from barledger.db.base import Base, TimestampMixin


class InventorySettings(Base, TimestampMixin):
    """One row per organization, created lazily.

    Each ``*_policy`` column holds
    ``{"allow_over_depletion": bool, "warning_thresholds": {"low": int, "critical": int}}``.
    """

    __tablename__ = "inventory_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    webhook_policy: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    cron_sync_policy: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    manual_policy: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    enable_auto_conversion: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    conversion_fallback: Mapped[str] = mapped_column(String(20), default="warn", nullable=False)
    enable_over_depletion_logging: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    enable_unit_conversion_logging: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    audit_log_retention_days: Mapped[int] = mapped_column(Integer, default=90, nullable=False)
