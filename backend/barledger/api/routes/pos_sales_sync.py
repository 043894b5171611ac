"""POS sales sync routes: manual triggers, scheduled cron trigger, status."""

import hmac
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Request

from barledger.core.cache import SimpleCache
from barledger.core.config import settings
from barledger.core.errors import AppError, ErrorCode
from barledger.core.org_context import OrganizationId
from barledger.core.rate_limit import limiter
from barledger.db.session import DbSession
from barledger.schemas.sales_sync import (
    BulkSyncResponse,
    IntegrationSyncStatus,
    SyncRequest,
    SyncRunResponse,
    SyncStatusResponse,
)
from barledger.services.pos_sales_sync_service import (
    POSClientBuilder,
    POSSalesSyncService,
    default_client_factory,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_pos_client_factory() -> POSClientBuilder:
    return default_client_factory


def get_settings_cache(request: Request) -> SimpleCache:
    return request.app.state.settings_cache


def _sync_service(
    db: DbSession,
    client_factory: POSClientBuilder = Depends(get_pos_client_factory),
    settings_cache: SimpleCache = Depends(get_settings_cache),
) -> POSSalesSyncService:
    return POSSalesSyncService(db, client_factory=client_factory, settings_cache=settings_cache)


def _bulk_response(runs: List[dict]) -> BulkSyncResponse:
    integrations = [SyncRunResponse(**run) for run in runs]
    return BulkSyncResponse(
        success=all(run.success for run in integrations),
        processed=sum(run.processed for run in integrations),
        errors=sum(run.errors for run in integrations),
        new_sales=sum(run.new_sales for run in integrations),
        duplicates=sum(run.duplicates for run in integrations),
        integrations=integrations,
    )


@router.post("/cron", response_model=BulkSyncResponse)
@limiter.limit("10/minute")
async def cron_sync(
    request: Request,
    service: POSSalesSyncService = Depends(_sync_service),
    x_cron_secret: Optional[str] = Header(None, alias="x-cron-secret"),
):
    """Scheduled sync of every active integration across all organizations."""
    expected = settings.cron_secret
    if not expected or not x_cron_secret or not hmac.compare_digest(x_cron_secret, expected):
        raise AppError(ErrorCode.UNAUTHORIZED, "Invalid cron secret")

    runs = await service.sync_all_integrations()
    logger.info(f"Cron sales sync finished for {len(runs)} integrations")
    return _bulk_response(runs)


@router.get("/status", response_model=SyncStatusResponse)
@limiter.limit("60/minute")
async def sync_status(
    request: Request,
    organization_id: OrganizationId,
    service: POSSalesSyncService = Depends(_sync_service),
):
    """Last sync time, status and stored errors per integration."""
    rows = service.get_sync_status(organization_id)
    return SyncStatusResponse(integrations=[IntegrationSyncStatus(**row) for row in rows])


@router.post("/", response_model=BulkSyncResponse)
@limiter.limit("10/minute")
async def sync_all(
    request: Request,
    organization_id: OrganizationId,
    body: Optional[SyncRequest] = None,
    service: POSSalesSyncService = Depends(_sync_service),
):
    """Sync every active integration of the caller's organization."""
    forced = body.forced if body else False
    runs = await service.sync_all_integrations(organization_id=organization_id, forced=forced)
    return _bulk_response(runs)


@router.post("/{integration_id}", response_model=SyncRunResponse)
@limiter.limit("30/minute")
async def sync_integration(
    request: Request,
    integration_id: int,
    organization_id: OrganizationId,
    body: Optional[SyncRequest] = None,
    service: POSSalesSyncService = Depends(_sync_service),
):
    """Sync one integration, optionally over an explicit window."""
    body = body or SyncRequest()
    result = await service.sync_sales_for_integration(
        integration_id,
        start_date=body.start_date,
        end_date=body.end_date,
        forced=body.forced,
        organization_id=organization_id,
    )
    return SyncRunResponse(**result.to_dict())
