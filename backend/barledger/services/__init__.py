# Services module

from barledger.services.unit_conversion import (
    UnitConversionResult,
    convert,
    calculate_serving_depletion,
)
from barledger.services.inventory_settings_service import (
    InventorySettingsService,
    TriggerSource,
    DepletionPolicy,
    WarningThresholds,
)
from barledger.services.audit_logging_service import AuditLoggingService
from barledger.services.sale_resolver import (
    SaleResolver,
    DepletionError,
    UnresolvedMappingError,
)
from barledger.services.inventory_depletion_service import (
    InventoryDepletionService,
    DepletionOptions,
    DirectDepletion,
    RecipeDepletion,
    InsufficientInventoryError,
    InventoryNotTrackedError,
)
from barledger.services.pos_sales_sync_service import (
    POSSalesSyncService,
    SyncResult,
)

__all__ = [
    "UnitConversionResult",
    "convert",
    "calculate_serving_depletion",
    "InventorySettingsService",
    "TriggerSource",
    "DepletionPolicy",
    "WarningThresholds",
    "AuditLoggingService",
    "SaleResolver",
    "DepletionError",
    "UnresolvedMappingError",
    "InventoryDepletionService",
    "DepletionOptions",
    "DirectDepletion",
    "RecipeDepletion",
    "InsufficientInventoryError",
    "InventoryNotTrackedError",
    "POSSalesSyncService",
    "SyncResult",
]
