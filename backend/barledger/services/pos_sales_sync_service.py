"""POS Sales Sync Service - batch reconciliation of POS orders.

Per integration, per run:
1. Find the organization's most recent approved physical count. Without one,
   sales are still recorded but nothing is depleted.
2. Resolve the fetch window: explicit dates, else the last sync + 1s, else
   the last count's approval time, else a fixed lookback.
3. For each POS location, fetch orders by business date, falling back to a
   timestamp-range fetch when that fails.
4. Skip orders already ingested (Sale.external_id per organization).
5. Aggregate raw lines by external product, persist Sale + SaleItems, then
   deplete lines for sales newer than the last approved count.
6. Update the integration's sync status and write one SyncLog row, also when
   the run fails outright.

Per-line depletion failures and per-location fetch failures are counted and
reported; they never stop the run.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from barledger.core.cache import SimpleCache
from barledger.core.config import settings
from barledger.core.errors import AppError, ErrorCode
from barledger.models.inventory import CountStatus, InventoryCount
from barledger.models.pos import POSIntegration, SyncLog, SyncStatus
from barledger.models.sale import Sale, SaleItem
from barledger.services.business_day import calculate_business_date, ensure_utc
from barledger.services.inventory_depletion_service import (
    DepletionOptions,
    InventoryDepletionService,
    RecipeDepletion,
)
from barledger.services.inventory_settings_service import InventorySettingsService, TriggerSource
from barledger.services.pos import (
    CredentialsCallback,
    POSClient,
    POSClientError,
    POSLocation,
    POSSale,
    POSSaleItem,
    create_pos_client,
)
from barledger.services.sale_resolver import DepletionError, SaleResolver

logger = logging.getLogger(__name__)

FIRST_COUNT_NOTE = "First count not run yet; inventory depletion skipped"
MAX_STORED_ERRORS = 50

POSClientBuilder = Callable[[POSIntegration, CredentialsCallback], POSClient]


def default_client_factory(integration: POSIntegration, on_credentials_update: CredentialsCallback) -> POSClient:
    return create_pos_client(integration.type, integration.credentials or {}, on_credentials_update)


def aggregate_sale_items(items: List[POSSaleItem]) -> List[POSSaleItem]:
    """Merge raw lines for the same product, keeping first-seen order.

    Quantities and totals are summed; the unit price becomes the weighted
    average ``total / quantity``.
    """
    merged: Dict[str, POSSaleItem] = {}
    for item in items:
        existing = merged.get(item.product_id)
        if existing is None:
            merged[item.product_id] = POSSaleItem(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
                name=item.name,
            )
            continue
        existing.quantity += item.quantity
        existing.total_price += item.total_price
        if existing.quantity:
            existing.unit_price = existing.total_price / existing.quantity
        if not existing.name:
            existing.name = item.name
    return list(merged.values())


@dataclass
class SaleProcessingResult:
    is_new: bool
    sale_id: Optional[int] = None
    depletion_attempted: bool = False
    lines_depleted: int = 0
    depletion_errors: List[str] = field(default_factory=list)


@dataclass
class SyncResult:
    integration_id: int
    processed: int = 0
    errors: int = 0
    new_sales: int = 0
    duplicates: int = 0
    depletion_failures: int = 0
    depletion_skipped: bool = False
    error_details: List[str] = field(default_factory=list)
    sync_log_id: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.errors == 0

    @property
    def status(self) -> SyncStatus:
        if self.errors == 0:
            return SyncStatus.SUCCESS
        if self.errors < self.processed:
            return SyncStatus.PARTIAL_SUCCESS
        return SyncStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "integration_id": self.integration_id,
            "success": self.success,
            "status": self.status.value,
            "processed": self.processed,
            "errors": self.errors,
            "new_sales": self.new_sales,
            "duplicates": self.duplicates,
            "depletion_failures": self.depletion_failures,
            "depletion_skipped": self.depletion_skipped,
            "error_details": self.error_details or None,
            "sync_log_id": self.sync_log_id,
        }


class POSSalesSyncService:
    """Drives POS order ingestion and depletion for integrations."""

    def __init__(
        self,
        db: Session,
        client_factory: Optional[POSClientBuilder] = None,
        settings_cache: Optional[SimpleCache] = None,
        depletion_service: Optional[InventoryDepletionService] = None,
    ):
        self.db = db
        self.client_factory = client_factory or default_client_factory
        self.resolver = SaleResolver(db)
        self.depletion_service = depletion_service or InventoryDepletionService(
            db,
            settings_service=InventorySettingsService(db, settings_cache),
            resolver=self.resolver,
        )

    # ===== QUERIES =====

    def get_last_approved_count(self, organization_id: int) -> Optional[InventoryCount]:
        return (
            self.db.query(InventoryCount)
            .filter(
                InventoryCount.organization_id == organization_id,
                InventoryCount.status == CountStatus.APPROVED.value,
                InventoryCount.approved_at.isnot(None),
            )
            .order_by(InventoryCount.approved_at.desc())
            .first()
        )

    def _get_integration(self, integration_id: int, organization_id: Optional[int]) -> POSIntegration:
        query = self.db.query(POSIntegration).filter(POSIntegration.id == integration_id)
        if organization_id is not None:
            query = query.filter(POSIntegration.organization_id == organization_id)
        integration = query.first()
        if integration is None:
            raise AppError(ErrorCode.NOT_FOUND, "POS integration not found")
        if not integration.is_active:
            raise AppError(ErrorCode.VALIDATION_ERROR, "POS integration is not active")
        return integration

    @staticmethod
    def resolve_window(
        integration: POSIntegration,
        start_date: Optional[datetime],
        end_date: Optional[datetime],
        forced: bool,
        last_count_date: Optional[datetime],
        now: Optional[datetime] = None,
    ) -> tuple[datetime, datetime]:
        """Fetch window for a run.

        Explicit start wins; otherwise one second after the last sync (unless
        forced), then the last count's approval time, then a fixed lookback.
        """
        now = now or datetime.now(timezone.utc)
        end = ensure_utc(end_date) or now
        if start_date is not None:
            start = ensure_utc(start_date)
        elif not forced and integration.last_sales_sync_at is not None:
            start = ensure_utc(integration.last_sales_sync_at) + timedelta(seconds=1)
        elif last_count_date is not None:
            start = ensure_utc(last_count_date)
        else:
            start = now - timedelta(days=settings.sync_fallback_lookback_days)
        return start, end

    # ===== SYNC =====

    async def sync_sales_for_integration(
        self,
        integration_id: int,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        forced: bool = False,
        last_count_date: Optional[datetime] = None,
        organization_id: Optional[int] = None,
    ) -> SyncResult:
        """Run one sync for an integration.

        Raises:
            AppError: NOT_FOUND / VALIDATION_ERROR before any work starts, or
                INTEGRATION_ERROR when the provider cannot be reached at all.
                A FAILED SyncLog is written before an in-run failure is raised.
        """
        integration = self._get_integration(integration_id, organization_id)
        organization_id = integration.organization_id

        if last_count_date is None:
            count = self.get_last_approved_count(organization_id)
            last_count_date = ensure_utc(count.approved_at) if count else None
        has_count = last_count_date is not None

        start, end = self.resolve_window(integration, start_date, end_date, forced, last_count_date)
        if start > end:
            raise AppError(ErrorCode.VALIDATION_ERROR, "Sync start date must be before end date")

        result = SyncResult(integration_id=integration.id, depletion_skipped=not has_count)
        if not has_count:
            logger.info(f"Integration {integration.id}: {FIRST_COUNT_NOTE}")
        depletion_errors: List[str] = []

        try:
            client = self.client_factory(integration, self._credentials_saver(integration))
            locations = await client.get_locations()
            if not locations:
                logger.warning(f"No POS locations found for integration {integration.name}")

            for location in locations:
                try:
                    orders = await self._fetch_location_orders(client, location, start, end)
                except POSClientError as e:
                    msg = f"Failed to sync sales from location {location.name}: {e}"
                    logger.error(msg)
                    result.errors += 1
                    result.error_details.append(msg)
                    continue

                for sale in client.convert_to_pos_sales(orders):
                    try:
                        outcome = self.process_sale(
                            organization_id,
                            integration.id,
                            sale,
                            deplete_after=last_count_date,
                            depletion_enabled=has_count,
                        )
                    except SQLAlchemyError as e:
                        self.db.rollback()
                        msg = f"Failed to process sale {sale.external_id}: {e}"
                        logger.error(msg)
                        result.errors += 1
                        result.error_details.append(msg)
                        continue

                    result.processed += 1
                    if outcome.is_new:
                        result.new_sales += 1
                    else:
                        result.duplicates += 1
                    result.depletion_failures += len(outcome.depletion_errors)
                    depletion_errors.extend(outcome.depletion_errors)
        except (POSClientError, ValueError) as e:
            self._record_failure(integration, organization_id, start, end, str(e))
            if isinstance(e, ValueError):
                raise AppError(ErrorCode.VALIDATION_ERROR, str(e)) from e
            raise AppError(ErrorCode.INTEGRATION_ERROR, f"POS sync failed: {e}") from e
        except Exception as e:
            self._record_failure(integration, organization_id, start, end, str(e) or type(e).__name__)
            raise

        previous = ensure_utc(integration.last_sales_sync_at)
        integration.last_sales_sync_at = end if previous is None or end > previous else previous
        integration.sync_status = SyncStatus.FAILED.value if result.errors else SyncStatus.SUCCESS.value
        integration.sync_errors = result.error_details[:MAX_STORED_ERRORS] if result.errors else []

        notes = list(result.error_details)
        if not has_count:
            notes.insert(0, FIRST_COUNT_NOTE)
        notes.extend(depletion_errors[:MAX_STORED_ERRORS])
        sync_log = SyncLog(
            organization_id=organization_id,
            integration_id=integration.id,
            sync_type="SALES",
            status=result.status.value,
            records_processed=result.processed,
            records_failed=result.errors,
            new_sales=result.new_sales,
            duplicates=result.duplicates,
            depletion_failures=result.depletion_failures,
            error_message="; ".join(notes) if notes else None,
            start_date=start,
            end_date=end,
            completed_at=datetime.now(timezone.utc),
        )
        self.db.add(sync_log)
        self.db.commit()
        result.sync_log_id = sync_log.id

        logger.info(
            f"Sales sync for integration {integration.id}: processed={result.processed} "
            f"new={result.new_sales} duplicates={result.duplicates} errors={result.errors} "
            f"depletion_failures={result.depletion_failures}"
        )
        return result

    def _credentials_saver(self, integration: POSIntegration) -> CredentialsCallback:
        def save(credentials: dict) -> None:
            integration.credentials = credentials
            self.db.commit()
        return save

    async def _fetch_location_orders(
        self, client: POSClient, location: POSLocation, start: datetime, end: datetime
    ) -> List[Any]:
        """Orders for one location, by business date when the provider allows it."""
        try:
            start_bd = calculate_business_date(start, location.timezone, location.closeout_hour)
            end_bd = calculate_business_date(end, location.timezone, location.closeout_hour)
            if start_bd == end_bd:
                return await client.get_orders_by_business_date(location.external_id, start_bd)
            return await client.get_orders_by_business_date_range(location.external_id, start_bd, end_bd)
        except (POSClientError, ValueError, LookupError) as e:
            # LookupError covers an unknown IANA zone from the provider
            logger.warning(
                f"Business date fetch failed for location {location.name}, "
                f"falling back to timestamp range: {e}"
            )
            return await client.get_orders(location.external_id, start, end)

    def _record_failure(
        self,
        integration: POSIntegration,
        organization_id: int,
        start: Optional[datetime],
        end: Optional[datetime],
        message: str,
    ) -> None:
        """Mark the integration FAILED and write the run's SyncLog."""
        logger.error(f"Failed to sync sales for integration {integration.id}: {message}")
        try:
            self.db.rollback()
            integration.sync_status = SyncStatus.FAILED.value
            integration.sync_errors = [message]
            self.db.add(SyncLog(
                organization_id=organization_id,
                integration_id=integration.id,
                sync_type="SALES",
                status=SyncStatus.FAILED.value,
                records_processed=0,
                records_failed=0,
                error_message=message,
                start_date=start,
                end_date=end or datetime.now(timezone.utc),
                completed_at=datetime.now(timezone.utc),
            ))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to update integration sync status")

    def process_sale(
        self,
        organization_id: int,
        integration_id: int,
        sale: POSSale,
        deplete_after: Optional[datetime] = None,
        depletion_enabled: bool = True,
    ) -> SaleProcessingResult:
        """Record one POS order and deplete it when eligible.

        The Sale is committed before any depletion so it survives depletion
        failures. Depletion only runs for sales strictly newer than
        ``deplete_after`` (the last approved count).
        """
        existing = self.db.query(Sale.id).filter(
            Sale.organization_id == organization_id,
            Sale.external_id == sale.external_id,
        ).first()
        if existing is not None:
            return SaleProcessingResult(is_new=False, sale_id=existing[0])

        aggregated = aggregate_sale_items(sale.items)
        sale_timestamp = ensure_utc(sale.timestamp)
        record = Sale(
            organization_id=organization_id,
            integration_id=integration_id,
            external_id=sale.external_id,
            total_amount=sale.total_amount,
            sale_date=sale_timestamp,
        )
        for item in aggregated:
            pos_product = self.resolver.ensure_pos_product(organization_id, integration_id, item.product_id)
            product_id, recipe_id = self.resolver.mapping_targets(pos_product)
            record.items.append(SaleItem(
                pos_product_id=pos_product.id,
                product_id=product_id,
                recipe_id=recipe_id,
                external_product_id=item.product_id,
                item_name=item.name or pos_product.name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
            ))
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            # Another worker ingested the same order between our check and insert
            self.db.rollback()
            logger.info(f"Sale {sale.external_id} was ingested concurrently, treating as duplicate")
            return SaleProcessingResult(is_new=False)

        result = SaleProcessingResult(is_new=True, sale_id=record.id)
        if not depletion_enabled:
            return result
        if deplete_after is not None and not sale_timestamp > ensure_utc(deplete_after):
            logger.debug(
                f"Skipping depletion for sale {sale.external_id} ({sale_timestamp.isoformat()}): "
                f"not after last approved count ({deplete_after.isoformat()})"
            )
            return result

        result.depletion_attempted = True
        options = DepletionOptions(source=TriggerSource.CRON_SYNC)
        for item in aggregated:
            try:
                depletion = self.depletion_service.deplete_for_sale_item(
                    organization_id,
                    integration_id,
                    item.product_id,
                    item.quantity,
                    sale.external_id,
                    sale_timestamp,
                    options,
                )
                self.db.commit()
            except (DepletionError, SQLAlchemyError) as e:
                self.db.rollback()
                msg = f"Failed to deplete inventory for item {item.product_id} in sale {sale.external_id}: {e}"
                logger.warning(msg)
                result.depletion_errors.append(msg)
                continue

            result.lines_depleted += 1
            if isinstance(depletion, RecipeDepletion):
                # Partially depleted recipe: each short ingredient is its own failure
                for failure in depletion.failed_ingredients:
                    msg = (
                        f"Failed to deplete ingredient {failure.product_name} of recipe "
                        f"{depletion.recipe_name} for item {item.product_id} in sale {sale.external_id}: "
                        f"{failure.error}"
                    )
                    logger.warning(msg)
                    result.depletion_errors.append(msg)
        return result

    async def sync_all_integrations(
        self, organization_id: Optional[int] = None, forced: bool = False
    ) -> List[Dict[str, Any]]:
        """Sync every active integration, optionally for one organization only."""
        query = self.db.query(POSIntegration).filter(POSIntegration.is_active.is_(True))
        if organization_id is not None:
            query = query.filter(POSIntegration.organization_id == organization_id)
        integrations = query.order_by(POSIntegration.id).all()

        results = []
        for integration in integrations:
            integration_id, name = integration.id, integration.name
            try:
                outcome = await self.sync_sales_for_integration(integration_id, forced=forced)
                results.append({"integration_name": name, **outcome.to_dict()})
            except AppError as e:
                results.append({
                    "integration_id": integration_id,
                    "integration_name": name,
                    "success": False,
                    "status": SyncStatus.FAILED.value,
                    "processed": 0,
                    "errors": 1,
                    "new_sales": 0,
                    "duplicates": 0,
                    "error_details": [e.message],
                })
        return results

    def get_sync_status(self, organization_id: int) -> List[Dict[str, Any]]:
        now = datetime.now(timezone.utc)
        integrations = (
            self.db.query(POSIntegration)
            .filter(POSIntegration.organization_id == organization_id)
            .order_by(POSIntegration.id)
            .all()
        )
        status = []
        for integration in integrations:
            last_sync = ensure_utc(integration.last_sales_sync_at)
            errors = integration.sync_errors or []
            status.append({
                "integration_id": integration.id,
                "name": integration.name,
                "type": integration.type,
                "is_active": integration.is_active,
                "last_sales_sync_at": last_sync,
                "sync_status": integration.sync_status,
                "has_errors": bool(errors),
                "error_count": len(errors),
                "days_since_last_sync": (now - last_sync).days if last_sync else None,
            })
        return status
