"""Tests for manual inventory, inventory settings and audit log endpoints."""

from decimal import Decimal

from barledger.models.audit import AuditEventType, AuditLog
from barledger.models.inventory import InventoryItem


class TestManualDepletion:
    URL = "/api/v1/inventory/depletions"

    def test_depletes_under_manual_policy(self, client, db_session, org_headers, integration, make_product, quantities):
        beer = make_product(external_id="beer-1", balances=(10,))
        headers = {**org_headers, "X-User-ID": "user-7"}

        response = client.post(self.URL, json={
            "integrationId": integration.id,
            "externalProductId": "beer-1",
            "quantity": 3,
            "reference": "tab-12",
        }, headers=headers)

        assert response.status_code == 200
        assert response.json()["result"]["depletedAmount"] == 3
        assert quantities(beer) == [Decimal("7")]
        audit = db_session.query(AuditLog).filter_by(event_type=AuditEventType.INVENTORY_DEPLETION.value).one()
        assert audit.user_id == "user-7"
        assert audit.source == "manual"

    def test_insufficient_stock_is_rejected(self, client, org_headers, integration, make_product, quantities):
        beer = make_product(external_id="beer-1", balances=(1,))

        response = client.post(self.URL, json={
            "integrationId": integration.id, "externalProductId": "beer-1", "quantity": 2,
        }, headers=org_headers)

        assert response.status_code == 400
        assert "Insufficient inventory" in response.json()["error"]
        assert quantities(beer) == [Decimal("1")]

    def test_unmapped_product(self, client, org_headers, integration):
        response = client.post(self.URL, json={
            "integrationId": integration.id, "externalProductId": "ghost", "quantity": 1,
        }, headers=org_headers)
        assert response.status_code == 404

    def test_integration_of_other_organization(self, client, other_organization, integration, make_product):
        make_product(external_id="beer-1")
        response = client.post(self.URL, json={
            "integrationId": integration.id, "externalProductId": "beer-1", "quantity": 1,
        }, headers={"X-Organization-ID": str(other_organization.id)})
        assert response.status_code == 404


class TestInventoryAdjustment:
    def test_adjusts_and_audits(self, client, db_session, org_headers, make_product):
        product = make_product(balances=(10,))
        item = db_session.query(InventoryItem).filter_by(product_id=product.id).one()

        response = client.post(
            f"/api/v1/inventory/items/{item.id}/adjust",
            json={"newQuantity": 12.5, "reason": "Recount"},
            headers=org_headers,
        )

        assert response.status_code == 200
        assert response.json()["currentQuantity"] == 12.5
        audit = db_session.query(AuditLog).filter_by(event_type=AuditEventType.INVENTORY_ADJUSTMENT.value).one()
        assert audit.event_data["reason"] == "Recount"
        assert audit.event_data["old_quantity"] == 10

    def test_item_of_other_organization(self, client, db_session, other_organization, make_product):
        product = make_product(balances=(10,))
        item = db_session.query(InventoryItem).filter_by(product_id=product.id).one()

        response = client.post(
            f"/api/v1/inventory/items/{item.id}/adjust",
            json={"newQuantity": 1, "reason": "Recount"},
            headers={"X-Organization-ID": str(other_organization.id)},
        )
        assert response.status_code == 404


class TestInventorySettingsRoutes:
    URL = "/api/v1/inventory-settings"

    def test_defaults(self, client, org_headers):
        response = client.get(self.URL, headers=org_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["webhookPolicy"]["allowOverDepletion"] is True
        assert data["cronSyncPolicy"]["allowOverDepletion"] is False
        assert data["manualPolicy"]["warningThresholds"] == {"low": 20, "critical": 10}
        assert data["auditLogRetentionDays"] == 90

    def test_partial_update(self, client, org_headers):
        response = client.put(self.URL, json={
            "cronSyncPolicy": {"allowOverDepletion": True},
            "manualPolicy": {"warningThresholds": {"low": 30}},
            "enableUnitConversionLogging": True,
        }, headers=org_headers)

        assert response.status_code == 200
        data = client.get(self.URL, headers=org_headers).json()
        assert data["cronSyncPolicy"]["allowOverDepletion"] is True
        assert data["manualPolicy"]["warningThresholds"] == {"low": 30, "critical": 10}
        assert data["enableUnitConversionLogging"] is True
        assert data["webhookPolicy"]["allowOverDepletion"] is True

    def test_invalid_update(self, client, org_headers):
        response = client.put(self.URL, json={"conversionFallback": "explode"}, headers=org_headers)
        assert response.status_code == 422

        response = client.put(self.URL, json={
            "webhookPolicy": {"warningThresholds": {"low": 5, "critical": 10}},
        }, headers=org_headers)
        assert response.status_code == 422

    def test_requires_organization(self, client):
        assert client.get(self.URL).status_code == 401


class TestAuditLogRoutes:
    URL = "/api/v1/audit-logs"

    def test_lists_newest_first_with_filters(self, client, org_headers, integration, make_product):
        make_product(external_id="beer-1", balances=(10,))
        make_product(external_id="wine-1", name="Wine", balances=(10,))
        for external_id in ("beer-1", "wine-1"):
            client.post("/api/v1/inventory/depletions", json={
                "integrationId": integration.id, "externalProductId": external_id, "quantity": 1,
                "reference": f"ref-{external_id}",
            }, headers=org_headers)

        response = client.get(self.URL, headers=org_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["limit"] == 100
        assert [row["externalOrderId"] for row in data["items"]] == ["ref-wine-1", "ref-beer-1"]

        filtered = client.get(self.URL, params={"externalOrderId": "ref-beer-1"}, headers=org_headers).json()
        assert len(filtered["items"]) == 1
        assert filtered["items"][0]["eventType"] == AuditEventType.INVENTORY_DEPLETION.value

    def test_isolated_by_organization(self, client, org_headers, other_organization, integration, make_product):
        make_product(external_id="beer-1", balances=(10,))
        client.post("/api/v1/inventory/depletions", json={
            "integrationId": integration.id, "externalProductId": "beer-1", "quantity": 1,
        }, headers=org_headers)

        response = client.get(self.URL, headers={"X-Organization-ID": str(other_organization.id)})
        assert response.json()["items"] == []

    def test_limit_bounds(self, client, org_headers):
        assert client.get(self.URL, params={"limit": 501}, headers=org_headers).status_code == 422
