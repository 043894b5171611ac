"""Audit logs API routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, Request

from barledger.core.org_context import OrganizationId
from barledger.core.rate_limit import limiter
from barledger.db.session import DbSession
from barledger.schemas.audit import AuditLogListResponse, AuditLogResponse
from barledger.services.audit_logging_service import AuditLoggingService

router = APIRouter()


@router.get("", response_model=AuditLogListResponse)
@limiter.limit("60/minute")
async def get_audit_logs(
    request: Request,
    db: DbSession,
    organization_id: OrganizationId,
    event_type: Optional[str] = Query(None, alias="eventType"),
    product_id: Optional[int] = Query(None, alias="productId"),
    recipe_id: Optional[int] = Query(None, alias="recipeId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    source: Optional[str] = Query(None),
    external_order_id: Optional[str] = Query(None, alias="externalOrderId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Get audit logs with filters, newest first."""
    rows = AuditLoggingService(db).get_audit_logs(
        organization_id,
        event_type=event_type,
        product_id=product_id,
        recipe_id=recipe_id,
        user_id=user_id,
        source=source,
        external_order_id=external_order_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(row) for row in rows],
        limit=limit,
        offset=offset,
    )
