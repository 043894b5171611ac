"""SQLAlchemy models."""

from barledger.models.organization import Organization, Location
from barledger.models.product import Product
from barledger.models.inventory import InventoryItem, InventoryCount, CountStatus
from barledger.models.pos import (
    POSIntegration,
    POSProduct,
    POSType,
    ProductMapping,
    SyncLog,
    SyncStatus,
)
from barledger.models.recipe import Recipe, RecipeItem, RecipePOSMapping
from barledger.models.sale import Sale, SaleItem
from barledger.models.settings import InventorySettings
from barledger.models.audit import AuditLog, AuditEventType

__all__ = [
    "Organization",
    "Location",
    "Product",
    "InventoryItem",
    "InventoryCount",
    "CountStatus",
    "POSIntegration",
    "POSProduct",
    "POSType",
    "ProductMapping",
    "SyncLog",
    "SyncStatus",
    "Recipe",
    "RecipeItem",
    "RecipePOSMapping",
    "Sale",
    "SaleItem",
    "InventorySettings",
    "AuditLog",
    "AuditEventType",
]
