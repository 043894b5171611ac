"""Tests for the inventory audit trail."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from barledger.core.cache import SimpleCache
from barledger.models.audit import AuditEventType, AuditLog
from barledger.services.audit_logging_service import AuditLoggingService
from barledger.services.inventory_settings_service import InventorySettingsService


def _service(db_session):
    return AuditLoggingService(db_session, InventorySettingsService(db_session, SimpleCache()))


class TestAuditRecording:
    def test_over_depletion_logged_by_default(self, db_session, organization):
        service = _service(db_session)
        service.log_over_depletion_event(
            organization.id, 1,
            {"original_quantity": Decimal("1"), "requested_quantity": Decimal("3")},
            source="webhook", external_order_id="order-1",
        )
        db_session.commit()

        row = db_session.query(AuditLog).one()
        assert row.event_type == AuditEventType.INVENTORY_OVER_DEPLETION.value
        assert row.source == "webhook"
        assert row.external_order_id == "order-1"
        assert row.event_data["requested_quantity"] == 3.0

    def test_unit_conversion_gated_off_by_default(self, db_session, organization):
        service = _service(db_session)
        service.log_unit_conversion_event(organization.id, 1, {"from_unit": "fl oz"}, source="manual")
        db_session.commit()
        assert db_session.query(AuditLog).count() == 0

    def test_unit_conversion_logged_when_enabled(self, db_session, organization):
        settings_service = InventorySettingsService(db_session, SimpleCache())
        settings_service.update_settings(organization.id, {"enable_unit_conversion_logging": True})
        service = AuditLoggingService(db_session, settings_service)

        service.log_unit_conversion_event(organization.id, 1, {"from_unit": "fl oz"}, source="manual")
        db_session.commit()
        assert db_session.query(AuditLog).filter_by(event_type=AuditEventType.UNIT_CONVERSION.value).count() == 1

    def test_over_depletion_gated_when_disabled(self, db_session, organization):
        settings_service = InventorySettingsService(db_session, SimpleCache())
        settings_service.update_settings(organization.id, {"enable_over_depletion_logging": False})
        service = AuditLoggingService(db_session, settings_service)

        service.log_over_depletion_event(organization.id, 1, {}, source="webhook")
        db_session.commit()
        assert db_session.query(AuditLog).count() == 0

    def test_adjustment_and_depletion_always_logged(self, db_session, organization):
        settings_service = InventorySettingsService(db_session, SimpleCache())
        settings_service.update_settings(organization.id, {
            "enable_over_depletion_logging": False,
            "enable_unit_conversion_logging": False,
        })
        service = AuditLoggingService(db_session, settings_service)

        service.log_inventory_adjustment_event(organization.id, 1, {"reason": "recount"}, user_id="u-1")
        service.log_inventory_depletion_event(organization.id, 1, {"depleted_quantity": 2}, source="cron_sync")
        db_session.commit()

        rows = db_session.query(AuditLog).order_by(AuditLog.id).all()
        assert [r.event_type for r in rows] == ["inventory_adjustment", "inventory_depletion"]
        assert rows[0].source == "manual"
        assert rows[0].user_id == "u-1"

    def test_write_failure_is_swallowed(self, db_session, organization, caplog):
        service = _service(db_session)
        # Unknown organization violates the foreign key inside the savepoint
        service.log_inventory_depletion_event(999999, 1, {"depleted_quantity": 1}, source="manual")
        service.log_inventory_depletion_event(organization.id, 1, {"depleted_quantity": 1}, source="manual")
        db_session.commit()

        assert db_session.query(AuditLog).count() == 1
        assert "Failed to log inventory_depletion event" in caplog.text


class TestAuditQueries:
    def _add(self, db_session, organization_id, event_type, created_at, **kwargs):
        db_session.add(AuditLog(
            organization_id=organization_id,
            event_type=event_type,
            event_data={},
            source=kwargs.pop("source", "manual"),
            created_at=created_at,
            **kwargs,
        ))
        db_session.commit()

    def test_filters_and_ordering(self, db_session, organization, other_organization):
        now = datetime.now(timezone.utc)
        self._add(db_session, organization.id, "inventory_depletion", now - timedelta(hours=2), product_id=1)
        self._add(db_session, organization.id, "inventory_depletion", now - timedelta(hours=1), product_id=2)
        self._add(db_session, organization.id, "inventory_adjustment", now, product_id=1)
        self._add(db_session, other_organization.id, "inventory_depletion", now)

        service = _service(db_session)
        rows = service.get_audit_logs(organization.id)
        assert [r.product_id for r in rows] == [1, 2, 1]

        depletions = service.get_audit_logs(organization.id, event_type="inventory_depletion")
        assert [r.product_id for r in depletions] == [2, 1]

        assert len(service.get_audit_logs(organization.id, product_id=1)) == 2
        assert len(service.get_audit_logs(organization.id, limit=1, offset=1)) == 1

    def test_cleanup_respects_retention(self, db_session, organization):
        now = datetime.now(timezone.utc)
        self._add(db_session, organization.id, "inventory_depletion", now - timedelta(days=120))
        self._add(db_session, organization.id, "inventory_depletion", now - timedelta(days=40))
        self._add(db_session, organization.id, "inventory_depletion", now - timedelta(days=1))

        service = _service(db_session)
        assert service.cleanup_old_logs(organization.id) == 1
        assert db_session.query(AuditLog).count() == 2

        service.settings_service.update_settings(organization.id, {"audit_log_retention_days": 30})
        assert service.cleanup_old_logs(organization.id) == 1
        assert db_session.query(AuditLog).count() == 1

    def test_cleanup_all_organizations(self, db_session, organization, other_organization):
        old = datetime.now(timezone.utc) - timedelta(days=365)
        self._add(db_session, organization.id, "inventory_depletion", old)
        self._add(db_session, other_organization.id, "inventory_depletion", old)
        self._add(db_session, other_organization.id, "inventory_depletion", old)

        purged = _service(db_session).cleanup_all_organizations()
        assert purged == {organization.id: 1, other_organization.id: 2}
        assert db_session.query(AuditLog).count() == 0
