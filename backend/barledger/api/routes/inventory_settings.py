"""Inventory settings routes."""

from fastapi import APIRouter, Request

from barledger.core.errors import AppError, ErrorCode
from barledger.core.org_context import OrganizationId
from barledger.core.rate_limit import limiter
from barledger.db.session import DbSession
from barledger.schemas.inventory_settings import InventorySettingsResponse, InventorySettingsUpdate
from barledger.services.inventory_settings_service import InventorySettingsService

router = APIRouter()


@router.get("", response_model=InventorySettingsResponse)
@limiter.limit("60/minute")
async def get_inventory_settings(request: Request, db: DbSession, organization_id: OrganizationId):
    """Effective settings; defaults when the organization has saved none."""
    service = InventorySettingsService(db, request.app.state.settings_cache)
    return InventorySettingsResponse(**service.get_settings(organization_id).to_dict())


@router.put("", response_model=InventorySettingsResponse)
@limiter.limit("30/minute")
async def update_inventory_settings(
    request: Request,
    payload: InventorySettingsUpdate,
    db: DbSession,
    organization_id: OrganizationId,
):
    service = InventorySettingsService(db, request.app.state.settings_cache)
    try:
        updated = service.update_settings(organization_id, payload.model_dump(exclude_none=True))
    except ValueError as e:
        raise AppError(ErrorCode.VALIDATION_ERROR, str(e))
    return InventorySettingsResponse(**updated.to_dict())
