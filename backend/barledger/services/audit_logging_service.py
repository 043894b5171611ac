"""Audit logging service for inventory events.

Writes append-only AuditLog rows for over-depletions, unit conversions,
adjustments and depletions. Over-depletion and unit-conversion events are
gated by the organization's settings; the others are always written.

Every write runs inside a SAVEPOINT on the caller's session so a failed audit
insert rolls back only itself. Failures are logged and swallowed: an audit
problem must never abort the inventory mutation that triggered it.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from barledger.models.audit import AuditEventType, AuditLog
from barledger.services.inventory_settings_service import InventorySettingsService

logger = logging.getLogger("audit")

DEFAULT_PAGE_SIZE = 100


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class AuditLoggingService:
    """Record-and-forget audit writer plus retention cleanup."""

    def __init__(self, db: Session, settings_service: Optional[InventorySettingsService] = None):
        self.db = db
        self.settings_service = settings_service or InventorySettingsService(db)

    def _write(
        self,
        organization_id: int,
        event_type: str,
        event_data: Dict[str, Any],
        product_id: Optional[int] = None,
        recipe_id: Optional[int] = None,
        user_id: Optional[str] = None,
        source: Optional[str] = None,
        external_order_id: Optional[str] = None,
    ) -> None:
        try:
            with self.db.begin_nested():
                self.db.add(AuditLog(
                    organization_id=organization_id,
                    event_type=event_type,
                    product_id=product_id,
                    recipe_id=recipe_id,
                    user_id=user_id,
                    source=source or "unknown",
                    external_order_id=external_order_id,
                    event_data=_jsonable(event_data),
                    created_at=datetime.now(timezone.utc),
                ))
        except Exception:
            logger.exception(f"Failed to log {event_type} event for organization {organization_id}")

    def log_over_depletion_event(
        self,
        organization_id: int,
        product_id: int,
        event_data: Dict[str, Any],
        recipe_id: Optional[int] = None,
        user_id: Optional[str] = None,
        source: Optional[str] = None,
        external_order_id: Optional[str] = None,
    ) -> None:
        """Stock went (or will go) negative under a permissive policy."""
        try:
            if not self.settings_service.get_settings(organization_id).enable_over_depletion_logging:
                return
        except Exception:
            logger.exception("Failed to load settings for over-depletion audit")
            return
        self._write(
            organization_id, AuditEventType.INVENTORY_OVER_DEPLETION.value, event_data,
            product_id=product_id, recipe_id=recipe_id, user_id=user_id,
            source=source, external_order_id=external_order_id,
        )

    def log_unit_conversion_event(
        self,
        organization_id: int,
        product_id: int,
        event_data: Dict[str, Any],
        recipe_id: Optional[int] = None,
        user_id: Optional[str] = None,
        source: Optional[str] = None,
        external_order_id: Optional[str] = None,
    ) -> None:
        """A serving was converted into inventory units."""
        try:
            if not self.settings_service.get_settings(organization_id).enable_unit_conversion_logging:
                return
        except Exception:
            logger.exception("Failed to load settings for unit conversion audit")
            return
        self._write(
            organization_id, AuditEventType.UNIT_CONVERSION.value, event_data,
            product_id=product_id, recipe_id=recipe_id, user_id=user_id,
            source=source, external_order_id=external_order_id,
        )

    def log_inventory_adjustment_event(
        self,
        organization_id: int,
        product_id: int,
        event_data: Dict[str, Any],
        user_id: Optional[str] = None,
        source: Optional[str] = None,
    ) -> None:
        self._write(
            organization_id, AuditEventType.INVENTORY_ADJUSTMENT.value, event_data,
            product_id=product_id, user_id=user_id, source=source or "manual",
        )

    def log_inventory_depletion_event(
        self,
        organization_id: int,
        product_id: int,
        event_data: Dict[str, Any],
        recipe_id: Optional[int] = None,
        user_id: Optional[str] = None,
        source: Optional[str] = None,
        external_order_id: Optional[str] = None,
    ) -> None:
        self._write(
            organization_id, AuditEventType.INVENTORY_DEPLETION.value, event_data,
            product_id=product_id, recipe_id=recipe_id, user_id=user_id,
            source=source, external_order_id=external_order_id,
        )

    def log_inventory_event(
        self,
        organization_id: int,
        event_type: str,
        event_data: Dict[str, Any],
        product_id: Optional[int] = None,
        recipe_id: Optional[int] = None,
        user_id: Optional[str] = None,
        source: Optional[str] = None,
        external_order_id: Optional[str] = None,
    ) -> None:
        """Catch-all for event types without a dedicated method."""
        self._write(
            organization_id, event_type, event_data,
            product_id=product_id, recipe_id=recipe_id, user_id=user_id,
            source=source, external_order_id=external_order_id,
        )

    # ===== QUERIES & RETENTION =====

    def get_audit_logs(
        self,
        organization_id: int,
        event_type: Optional[str] = None,
        product_id: Optional[int] = None,
        recipe_id: Optional[int] = None,
        user_id: Optional[str] = None,
        source: Optional[str] = None,
        external_order_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> List[AuditLog]:
        """Newest-first audit rows for an organization."""
        query = self.db.query(AuditLog).filter(AuditLog.organization_id == organization_id)
        if event_type:
            query = query.filter(AuditLog.event_type == event_type)
        if product_id is not None:
            query = query.filter(AuditLog.product_id == product_id)
        if recipe_id is not None:
            query = query.filter(AuditLog.recipe_id == recipe_id)
        if user_id:
            query = query.filter(AuditLog.user_id == user_id)
        if source:
            query = query.filter(AuditLog.source == source)
        if external_order_id:
            query = query.filter(AuditLog.external_order_id == external_order_id)
        if start_date:
            query = query.filter(AuditLog.created_at >= start_date)
        if end_date:
            query = query.filter(AuditLog.created_at <= end_date)

        return (
            query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .offset(offset)
            .limit(limit or DEFAULT_PAGE_SIZE)
            .all()
        )

    def cleanup_old_logs(self, organization_id: int) -> int:
        """Delete rows older than the organization's retention window."""
        try:
            retention_days = self.settings_service.get_settings(organization_id).audit_log_retention_days
            cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
            deleted = self.db.query(AuditLog).filter(
                AuditLog.organization_id == organization_id,
                AuditLog.created_at < cutoff,
            ).delete(synchronize_session=False)
            self.db.commit()
            if deleted:
                logger.info(
                    f"Audit log retention: purged {deleted} entries older than "
                    f"{retention_days} days for organization {organization_id}"
                )
            return deleted
        except Exception:
            self.db.rollback()
            logger.exception(f"Failed to clean up audit logs for organization {organization_id}")
            return 0

    def cleanup_all_organizations(self) -> Dict[int, int]:
        """Run retention cleanup for every organization that has audit rows."""
        try:
            org_ids = [
                row[0] for row in self.db.query(AuditLog.organization_id)
                .group_by(AuditLog.organization_id)
                .having(func.count(AuditLog.id) > 0)
                .all()
            ]
        except Exception:
            logger.exception("Failed to list organizations for audit cleanup")
            return {}
        return {org_id: self.cleanup_old_logs(org_id) for org_id in org_ids}
