"""Pytest configuration and fixtures."""

import os

# Keep the application engine off disk; tests get their own engine below
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from barledger.core.cache import SimpleCache
from barledger.db.base import Base
from barledger.db.session import get_db
from barledger.main import app
# Import all models to ensure they're registered with Base.metadata
from barledger.models import *
from barledger.models.inventory import CountStatus, InventoryCount, InventoryItem
from barledger.models.organization import Location, Organization
from barledger.models.pos import POSIntegration, POSProduct, ProductMapping
from barledger.models.product import Product
from barledger.models.recipe import Recipe, RecipeItem, RecipePOSMapping
from barledger.services.pos import POSClient, POSClientError, POSLocation, POSSale, POSSaleItem

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.state.settings_cache = SimpleCache()
    # Disable rate limiting during tests to avoid flaky failures
    from barledger.core.rate_limit import limiter
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture
def organization(db_session: Session) -> Organization:
    org = Organization(name="Test Bar")
    db_session.add(org)
    db_session.commit()
    db_session.refresh(org)
    return org


@pytest.fixture
def other_organization(db_session: Session) -> Organization:
    org = Organization(name="Another Bar")
    db_session.add(org)
    db_session.commit()
    db_session.refresh(org)
    return org


@pytest.fixture
def org_headers(organization: Organization) -> dict:
    return {"X-Organization-ID": str(organization.id)}


@pytest.fixture
def locations(db_session: Session, organization: Organization) -> list:
    """Three storage locations, created in id order."""
    rows = [
        Location(organization_id=organization.id, name=name)
        for name in ("Main Bar", "Back Bar", "Storage")
    ]
    db_session.add_all(rows)
    db_session.commit()
    for row in rows:
        db_session.refresh(row)
    return rows


@pytest.fixture
def integration(db_session: Session, organization: Organization) -> POSIntegration:
    integration = POSIntegration(
        organization_id=organization.id,
        name="Toast Main",
        type="toast",
        credentials={
            "client_id": "client",
            "client_secret": "secret",
            "restaurant_guid": "rest-1",
        },
        is_active=True,
    )
    db_session.add(integration)
    db_session.commit()
    db_session.refresh(integration)
    return integration


@pytest.fixture
def make_product(db_session: Session, organization: Organization, integration: POSIntegration, locations: list):
    """Factory: a product with inventory rows and a confirmed POS mapping.

    ``balances`` gives one InventoryItem per location, in location order.
    """
    def _create(
        external_id: str = "beer-1",
        name: str = "Lager",
        unit: str = "unit",
        unit_size=None,
        balances=(10,),
        minimum=None,
        serving_unit=None,
        serving_size=None,
        mapped: bool = True,
    ) -> Product:
        product = Product(
            organization_id=organization.id,
            name=name,
            unit=unit,
            unit_size=Decimal(str(unit_size)) if unit_size is not None else None,
        )
        db_session.add(product)
        db_session.flush()

        for location, balance in zip(locations, balances):
            db_session.add(InventoryItem(
                organization_id=organization.id,
                product_id=product.id,
                location_id=location.id,
                current_quantity=Decimal(str(balance)),
                minimum_quantity=Decimal(str(minimum)) if minimum is not None else None,
            ))

        if mapped:
            pos_product = POSProduct(
                organization_id=organization.id,
                integration_id=integration.id,
                external_id=external_id,
                name=name,
            )
            db_session.add(pos_product)
            db_session.flush()
            db_session.add(ProductMapping(
                organization_id=organization.id,
                pos_product_id=pos_product.id,
                product_id=product.id,
                is_confirmed=True,
                serving_unit=serving_unit,
                serving_size=Decimal(str(serving_size)) if serving_size is not None else None,
            ))

        db_session.commit()
        db_session.refresh(product)
        return product

    return _create


@pytest.fixture
def make_recipe(db_session: Session, organization: Organization, integration: POSIntegration):
    """Factory: a recipe mapped to a POS product. ``ingredients`` is [(product, qty)]."""
    def _create(external_id: str, name: str, ingredients: list) -> Recipe:
        recipe = Recipe(organization_id=organization.id, name=name)
        db_session.add(recipe)
        db_session.flush()
        for position, (product, quantity) in enumerate(ingredients):
            db_session.add(RecipeItem(
                recipe_id=recipe.id,
                product_id=product.id,
                quantity=Decimal(str(quantity)),
                position=position,
            ))
        pos_product = POSProduct(
            organization_id=organization.id,
            integration_id=integration.id,
            external_id=external_id,
            name=name,
        )
        db_session.add(pos_product)
        db_session.flush()
        db_session.add(RecipePOSMapping(
            organization_id=organization.id,
            pos_product_id=pos_product.id,
            recipe_id=recipe.id,
            is_active=True,
        ))
        db_session.commit()
        db_session.refresh(recipe)
        return recipe

    return _create


@pytest.fixture
def approved_count(db_session: Session, organization: Organization):
    """Factory: an approved physical count at ``approved_at``."""
    def _create(approved_at: datetime = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)) -> InventoryCount:
        count = InventoryCount(
            organization_id=organization.id,
            name="Monthly count",
            status=CountStatus.APPROVED.value,
            approved_at=approved_at,
        )
        db_session.add(count)
        db_session.commit()
        db_session.refresh(count)
        return count

    return _create


@pytest.fixture
def quantities(db_session: Session):
    """Current quantities of a product's rows in id order."""
    def _read(product: Product) -> list:
        db_session.expire_all()
        rows = (
            db_session.query(InventoryItem)
            .filter(InventoryItem.product_id == product.id)
            .order_by(InventoryItem.id)
            .all()
        )
        return [row.current_quantity for row in rows]

    return _read


class FakePOSClient(POSClient):
    """In-memory POS provider. ``sales`` maps location id -> list of POSSale."""

    def __init__(self):
        self.locations = [POSLocation(external_id="loc-1", name="Downtown", timezone="America/Chicago", closeout_hour=3)]
        self.sales = {"loc-1": []}
        self.failing_locations = set()
        self.business_date_supported = True
        self.locations_error = None
        self.calls = []

    @property
    def name(self) -> str:
        return "fake"

    async def get_locations(self):
        if self.locations_error:
            raise self.locations_error
        return list(self.locations)

    def _orders(self, location_id):
        if location_id in self.failing_locations:
            raise POSClientError(f"Location {location_id} unavailable", status_code=503)
        return list(self.sales.get(location_id, []))

    async def get_orders_by_business_date(self, location_id, business_date):
        self.calls.append(("business_date", location_id, business_date))
        if not self.business_date_supported:
            raise POSClientError("Business date lookup not supported", status_code=400)
        return self._orders(location_id)

    async def get_orders_by_business_date_range(self, location_id, start_business_date, end_business_date):
        self.calls.append(("business_date_range", location_id, start_business_date, end_business_date))
        if not self.business_date_supported:
            raise POSClientError("Business date lookup not supported", status_code=400)
        return self._orders(location_id)

    async def get_orders(self, location_id, start, end):
        self.calls.append(("timestamp", location_id, start, end))
        return self._orders(location_id)

    def convert_to_pos_sales(self, orders):
        return list(orders)


@pytest.fixture
def pos_client() -> FakePOSClient:
    return FakePOSClient()


@pytest.fixture
def make_sale():
    """Factory: a POSSale with (external product id, quantity[, unit price]) lines."""
    def _create(external_id: str, timestamp: datetime, lines: list) -> POSSale:
        items = []
        for line in lines:
            product_id, quantity = line[0], Decimal(str(line[1]))
            unit_price = Decimal(str(line[2])) if len(line) > 2 else Decimal("5.00")
            items.append(POSSaleItem(
                product_id=product_id,
                quantity=quantity,
                unit_price=unit_price,
                total_price=unit_price * quantity,
                name=product_id.title(),
            ))
        return POSSale(
            external_id=external_id,
            timestamp=timestamp,
            total_amount=sum((i.total_price for i in items), Decimal("0")),
            items=items,
        )

    return _create
