"""Manual inventory routes: hand-entered sales and count adjustments."""

import logging
from typing import Optional

from fastapi import APIRouter, Header, Request
from sqlalchemy.exc import SQLAlchemyError

from barledger.core.errors import AppError, ErrorCode
from barledger.core.org_context import OrganizationId
from barledger.core.rate_limit import limiter
from barledger.db.session import DbSession
from barledger.models.pos import POSIntegration
from barledger.schemas.common import CamelModel
from barledger.schemas.depletion import DepletionResultSchema
from barledger.schemas.inventory import (
    InventoryAdjustmentRequest,
    InventoryItemResponse,
    ManualDepletionRequest,
)
from barledger.services.inventory_depletion_service import DepletionOptions, InventoryDepletionService
from barledger.services.inventory_settings_service import InventorySettingsService, TriggerSource
from barledger.services.sale_resolver import DepletionError, UnresolvedMappingError

logger = logging.getLogger(__name__)

router = APIRouter()


class ManualDepletionResponse(CamelModel):
    success: bool
    result: DepletionResultSchema


def _depletion_service(request: Request, db) -> InventoryDepletionService:
    return InventoryDepletionService(
        db, settings_service=InventorySettingsService(db, request.app.state.settings_cache)
    )


@router.post("/depletions", response_model=ManualDepletionResponse)
@limiter.limit("30/minute")
async def create_manual_depletion(
    request: Request,
    payload: ManualDepletionRequest,
    db: DbSession,
    organization_id: OrganizationId,
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    """Deplete stock for a hand-entered sale under the manual policy."""
    integration = db.query(POSIntegration).filter(
        POSIntegration.id == payload.integration_id,
        POSIntegration.organization_id == organization_id,
    ).first()
    if integration is None:
        raise AppError(ErrorCode.NOT_FOUND, "POS integration not found")

    service = _depletion_service(request, db)
    try:
        result = service.deplete_for_sale_item(
            organization_id,
            integration.id,
            payload.external_product_id,
            payload.quantity,
            payload.reference,
            payload.timestamp,
            DepletionOptions(source=TriggerSource.MANUAL, audit_user_id=x_user_id),
        )
        db.commit()
    except UnresolvedMappingError as e:
        db.rollback()
        raise AppError(ErrorCode.NOT_FOUND, str(e))
    except DepletionError as e:
        db.rollback()
        raise AppError(ErrorCode.VALIDATION_ERROR, str(e))
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Manual depletion failed for {payload.external_product_id}")
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to deplete inventory")

    return ManualDepletionResponse(success=True, result=result.to_dict())


@router.post("/items/{item_id}/adjust", response_model=InventoryItemResponse)
@limiter.limit("30/minute")
async def adjust_inventory_item(
    request: Request,
    item_id: int,
    payload: InventoryAdjustmentRequest,
    db: DbSession,
    organization_id: OrganizationId,
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    """Set an inventory item to a counted quantity."""
    item = _depletion_service(request, db).adjust_inventory_item(
        organization_id, item_id, payload.new_quantity, payload.reason, user_id=x_user_id
    )
    if item is None:
        raise AppError(ErrorCode.NOT_FOUND, "Inventory item not found")
    return InventoryItemResponse.model_validate(item)
