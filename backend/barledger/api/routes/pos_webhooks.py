"""POS webhook routes - real-time depletion for sales pushed by the POS.

Webhook sales are depleted immediately under the webhook policy. They are not
recorded as Sale rows and skip the approved-count gate; the batch sync
remains the system of record for sales history.
"""

import logging

from fastapi import APIRouter, Request
from sqlalchemy.exc import SQLAlchemyError

from barledger.core.config import settings
from barledger.core.errors import AppError, ErrorCode
from barledger.core.rate_limit import limiter
from barledger.db.session import DbSession
from barledger.models.pos import POSIntegration
from barledger.schemas.pos_webhooks import (
    WebhookItemError,
    WebhookItemResult,
    WebhookSaleRequest,
    WebhookSaleResponse,
)
from barledger.services.inventory_depletion_service import DepletionOptions, InventoryDepletionService
from barledger.services.inventory_settings_service import InventorySettingsService, TriggerSource
from barledger.services.sale_resolver import DepletionError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/sale", response_model=WebhookSaleResponse)
@limiter.limit(settings.webhook_rate_limit)
async def receive_sale(request: Request, payload: WebhookSaleRequest, db: DbSession):
    """Deplete inventory for every line of a POS sale.

    Lines fail independently; the response is 200 with per-line error
    details even when some or all lines could not be depleted.
    """
    integration = db.query(POSIntegration).filter(POSIntegration.id == payload.integration_id).first()
    if integration is None:
        raise AppError(ErrorCode.NOT_FOUND, "POS integration not found")
    organization_id = integration.organization_id

    service = InventoryDepletionService(
        db, settings_service=InventorySettingsService(db, request.app.state.settings_cache)
    )
    options = DepletionOptions(source=TriggerSource.WEBHOOK)

    results = []
    errors = []
    for item in payload.items:
        try:
            result = service.deplete_for_sale_item(
                organization_id,
                integration.id,
                item.external_product_id,
                item.quantity,
                payload.external_order_id,
                payload.timestamp,
                options,
            )
            db.commit()
        except (DepletionError, SQLAlchemyError) as e:
            db.rollback()
            logger.warning(
                f"Webhook depletion failed for item {item.external_product_id} "
                f"in order {payload.external_order_id}: {e}"
            )
            errors.append(WebhookItemError(
                pos_product_id=item.pos_product_id,
                external_product_id=item.external_product_id,
                error=str(e),
            ))
            continue

        results.append(WebhookItemResult(
            pos_product_id=item.pos_product_id,
            external_product_id=item.external_product_id,
            quantity=float(item.quantity),
            result=result.to_dict(),
        ))

    logger.info(
        f"Processed {payload.source} webhook sale {payload.external_order_id} for organization "
        f"{organization_id}: {len(results)} depleted, {len(errors)} failed"
    )
    return WebhookSaleResponse(
        success=not errors,
        processed=len(results),
        errors=len(errors),
        results=results,
        error_details=errors or None,
    )
