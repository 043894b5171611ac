"""Inventory Depletion Service - turns one resolved sale line into stock changes.

Flow for a line (external POS product id + quantity sold):
1. Resolve the POS product to a stocked product or a recipe (SaleResolver)
2. Work out how much inventory one line consumes:
   - direct product: serving unit/size from the mapping, then the POS catalog;
     converted into the product's unit and divided by the container size
   - recipe: ingredient quantity * servings sold, per ingredient
3. Lock the product's InventoryItem rows (one per location), check the total
   against the trigger source's policy
4. Allocate greedily across locations in id order; a remainder the locations
   cannot cover lands on the first row when over-depletion is allowed
5. Write audit events and return a typed result

Each product's read-allocate-write runs in its own SAVEPOINT with the rows
selected FOR UPDATE, so concurrent sales of one product serialize and a
rejected line leaves no partial writes. Committing is the caller's job.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy.orm import Session

from barledger.models.inventory import InventoryItem
from barledger.models.product import Product
from barledger.services.audit_logging_service import AuditLoggingService
from barledger.services.inventory_settings_service import (
    InventorySettingsService,
    TriggerSource,
    WarningThresholds,
)
from barledger.services.sale_resolver import (
    DepletionError,
    ResolvedProduct,
    ResolvedRecipe,
    SaleResolver,
)
from barledger.services.unit_conversion import (
    UnitConversionResult,
    calculate_serving_depletion,
    normalize_unit,
)

logger = logging.getLogger(__name__)

# Matches the Numeric(14, 4) quantity columns
QUANTITY_PRECISION = Decimal("0.0001")
# Without any minimum configured, warn at or below this many units
ABSOLUTE_LOW_STOCK_LEVEL = Decimal("5")


class InsufficientInventoryError(DepletionError):
    """Raised when stock cannot cover a line and the policy forbids going negative."""

    def __init__(self, product_name: str, product_id: int, available: Decimal, required: Decimal, unit: str):
        self.product_name = product_name
        self.product_id = product_id
        self.available = available
        self.required = required
        self.unit = unit
        super().__init__(
            f"Insufficient inventory for {product_name}. "
            f"Available: {available} {unit}, Required: {required} {unit}"
        )


class InventoryNotTrackedError(DepletionError):
    """The product has no InventoryItem rows at any location."""

    def __init__(self, product_name: str, product_id: int):
        self.product_name = product_name
        self.product_id = product_id
        super().__init__(f"No inventory items found for product: {product_name}")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(QUANTITY_PRECISION, rounding=ROUND_HALF_UP)


@dataclass
class DepletionOptions:
    """Per-call overrides. Unset policy values come from the trigger source's policy."""

    source: TriggerSource = TriggerSource.MANUAL
    allow_over_depletion: Optional[bool] = None
    warning_thresholds: Optional[WarningThresholds] = None
    audit_user_id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.source, TriggerSource):
            values = {s.value for s in TriggerSource}
            self.source = TriggerSource(self.source) if self.source in values else TriggerSource.from_tag(self.source)


@dataclass
class LocationAllocation:
    inventory_item_id: int
    location_id: int
    depleted: Decimal
    new_quantity: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inventory_item_id": self.inventory_item_id,
            "location_id": self.location_id,
            "depleted": float(self.depleted),
            "new_quantity": float(self.new_quantity),
        }


@dataclass
class IngredientDepletion:
    product_id: int
    product_name: str
    depleted_amount: Decimal
    remaining_inventory: Decimal
    allocations: List[LocationAllocation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "depleted_amount": float(self.depleted_amount),
            "remaining_inventory": float(self.remaining_inventory),
            "allocations": [a.to_dict() for a in self.allocations],
        }


@dataclass
class IngredientFailure:
    product_id: int
    product_name: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"product_id": self.product_id, "product_name": self.product_name, "error": self.error}


@dataclass
class DirectDepletion:
    type: ClassVar[str] = "direct"

    product_id: int
    product_name: str
    depleted_amount: Decimal
    remaining_inventory: Decimal
    unit_conversion: Optional[UnitConversionResult] = None
    warnings: List[str] = field(default_factory=list)
    over_depleted: bool = False
    allocations: List[LocationAllocation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "depleted_amount": float(self.depleted_amount),
            "remaining_inventory": float(self.remaining_inventory),
            "unit_conversion": self.unit_conversion.to_dict() if self.unit_conversion else None,
            "warnings": list(self.warnings),
            "over_depleted": self.over_depleted,
            "allocations": [a.to_dict() for a in self.allocations],
        }


@dataclass
class RecipeDepletion:
    type: ClassVar[str] = "recipe"

    recipe_id: int
    recipe_name: str
    ingredients: List[IngredientDepletion] = field(default_factory=list)
    failed_ingredients: List[IngredientFailure] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    over_depleted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "recipe_id": self.recipe_id,
            "recipe_name": self.recipe_name,
            "ingredients": [i.to_dict() for i in self.ingredients],
            "failed_ingredients": [f.to_dict() for f in self.failed_ingredients],
            "warnings": list(self.warnings),
            "over_depleted": self.over_depleted,
        }


DepletionResult = Union[DirectDepletion, RecipeDepletion]


def allocate_depletion(
    balances: Sequence[Decimal],
    required: Decimal,
    allow_over_depletion: bool,
) -> List[Decimal]:
    """Split ``required`` across per-location balances.

    First pass walks the balances in order and takes from each row's
    non-negative stock. Whatever is left goes entirely to the first row,
    which may go negative; that second pass only runs when over-depletion is
    allowed. The returned per-row amounts always sum to ``required``.

    >>> allocate_depletion([Decimal(2), Decimal(3), Decimal(0)], Decimal(4), False)
    [Decimal('2'), Decimal('2'), Decimal('0')]
    """
    if not balances:
        raise ValueError("Cannot allocate depletion without inventory rows")

    deltas = [Decimal("0")] * len(balances)
    remaining = required
    for index, balance in enumerate(balances):
        if remaining <= 0:
            break
        take = min(remaining, max(Decimal("0"), balance))
        if take > 0:
            deltas[index] = take
            remaining -= take

    if remaining > 0:
        if not allow_over_depletion:
            raise ValueError(f"{remaining} left unallocated and over-depletion is not allowed")
        deltas[0] += remaining

    return deltas


def check_warning_thresholds(
    product_name: str,
    unit: str,
    minimum_quantities: Sequence[Optional[Decimal]],
    final_quantity: Decimal,
    thresholds: WarningThresholds,
) -> List[str]:
    """Advisory low-stock messages for a product's post-depletion total.

    The floor is the smallest positive minimum among the product's rows.
    """
    floors = [m for m in minimum_quantities if m is not None and m > 0]
    if floors:
        floor = min(floors)
        percentage = float(final_quantity / floor * 100)
        if percentage <= thresholds.critical:
            return [f"CRITICAL: {product_name} is at {percentage:.1f}% of minimum stock level"]
        if percentage <= thresholds.low:
            return [f"LOW STOCK: {product_name} is at {percentage:.1f}% of minimum stock level"]
        return []
    if final_quantity <= ABSOLUTE_LOW_STOCK_LEVEL:
        return [f"LOW STOCK: {product_name} has only {float(final_quantity):.2f} {unit} remaining"]
    return []


@dataclass
class _ProductOutcome:
    before: Decimal
    after: Decimal
    over_depleted: bool
    allocations: List[LocationAllocation]


class InventoryDepletionService:
    """Depletes inventory for resolved POS sale lines."""

    def __init__(
        self,
        db: Session,
        settings_service: Optional[InventorySettingsService] = None,
        audit_service: Optional[AuditLoggingService] = None,
        resolver: Optional[SaleResolver] = None,
    ):
        self.db = db
        self.settings_service = settings_service or InventorySettingsService(db)
        self.audit_service = audit_service or AuditLoggingService(db, self.settings_service)
        self.resolver = resolver or SaleResolver(db)

    # ===== CORE: SALE LINE DEPLETION =====

    def deplete_for_sale_item(
        self,
        organization_id: int,
        integration_id: int,
        external_product_id: str,
        quantity_sold: Any,
        external_order_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        options: Optional[DepletionOptions] = None,
    ) -> DepletionResult:
        """Deplete inventory for one sale line.

        Raises:
            UnresolvedMappingError: the POS product maps to nothing.
            InventoryNotTrackedError: a direct product has no inventory rows.
            InsufficientInventoryError: stock is short and the policy forbids
                going negative (for recipes, only when every ingredient fails).
        """
        quantity = _to_decimal(quantity_sold)
        if quantity <= 0:
            raise DepletionError(f"Quantity sold must be positive, got {quantity}")

        options = options or DepletionOptions()
        allow_over_depletion, thresholds = self._effective_policy(organization_id, options)

        resolution = self.resolver.resolve(organization_id, integration_id, external_product_id)
        if isinstance(resolution, ResolvedProduct):
            return self._deplete_direct(
                organization_id, resolution, quantity, external_order_id, timestamp,
                options, allow_over_depletion, thresholds,
            )
        return self._deplete_recipe(
            organization_id, resolution, quantity, external_order_id, timestamp,
            options, allow_over_depletion, thresholds,
        )

    def _effective_policy(self, organization_id: int, options: DepletionOptions) -> Tuple[bool, WarningThresholds]:
        allow = options.allow_over_depletion
        thresholds = options.warning_thresholds
        if allow is None or thresholds is None:
            policy = self.settings_service.get_policy_for_source(organization_id, options.source)
            if allow is None:
                allow = policy.allow_over_depletion
            if thresholds is None:
                thresholds = policy.warning_thresholds
        return allow, thresholds

    def _deplete_direct(
        self,
        organization_id: int,
        resolution: ResolvedProduct,
        quantity: Decimal,
        external_order_id: Optional[str],
        timestamp: Optional[datetime],
        options: DepletionOptions,
        allow_over_depletion: bool,
        thresholds: WarningThresholds,
    ) -> DirectDepletion:
        product = resolution.product
        required, conversion = self._serving_depletion_amount(
            organization_id, resolution, quantity, external_order_id, options
        )

        warnings: List[str] = []
        with self.db.begin_nested():
            outcome = self._deplete_product(
                organization_id, product, required, allow_over_depletion, thresholds,
                warnings, options, external_order_id, timestamp,
            )

        return DirectDepletion(
            product_id=product.id,
            product_name=product.name,
            depleted_amount=required,
            remaining_inventory=outcome.after,
            unit_conversion=conversion,
            warnings=warnings,
            over_depleted=outcome.over_depleted,
            allocations=outcome.allocations,
        )

    def _serving_depletion_amount(
        self,
        organization_id: int,
        resolution: ResolvedProduct,
        quantity: Decimal,
        external_order_id: Optional[str],
        options: DepletionOptions,
    ) -> Tuple[Decimal, Optional[UnitConversionResult]]:
        """Inventory units consumed by ``quantity`` servings of a mapped product."""
        product = resolution.product
        serving_unit = resolution.mapping.serving_unit or resolution.pos_product.serving_unit
        serving_size = resolution.mapping.serving_size or resolution.pos_product.serving_size or Decimal("1")
        if not serving_unit:
            return _quantize(quantity), None

        unit_size = product.unit_size if product.unit_size and product.unit_size > 0 else None
        conversion = None
        if normalize_unit(serving_unit) != normalize_unit(product.unit):
            conversion = calculate_serving_depletion(
                serving_size, serving_unit, product.unit, unit_size, quantity
            )
            amount = conversion.converted_amount
            rate = conversion.conversion_factor
        else:
            amount = serving_size * quantity
            rate = 1 / unit_size if unit_size else Decimal("1")
        if unit_size:
            # e.g. 44.36 ml poured from a 750 ml bottle is 0.0591 bottles
            amount = amount / unit_size

        required = _quantize(amount)
        self.audit_service.log_unit_conversion_event(
            organization_id,
            product.id,
            {
                "product_name": product.name,
                "from_unit": serving_unit,
                "to_unit": product.unit,
                "from_amount": serving_size * quantity,
                "to_amount": required,
                "conversion_rate": rate,
                "source": options.source.value,
                "success": True,
            },
            user_id=options.audit_user_id,
            source=options.source.value,
            external_order_id=external_order_id,
        )
        return required, conversion

    def _deplete_recipe(
        self,
        organization_id: int,
        resolution: ResolvedRecipe,
        quantity: Decimal,
        external_order_id: Optional[str],
        timestamp: Optional[datetime],
        options: DepletionOptions,
        allow_over_depletion: bool,
        thresholds: WarningThresholds,
    ) -> RecipeDepletion:
        recipe = resolution.recipe
        result = RecipeDepletion(recipe_id=recipe.id, recipe_name=recipe.name)
        errors: List[DepletionError] = []

        if not recipe.items:
            result.warnings.append(f"Recipe {recipe.name} has no ingredients")

        for ingredient in recipe.items:
            product = ingredient.product
            usage = _quantize(ingredient.quantity * quantity)
            try:
                with self.db.begin_nested():
                    outcome = self._deplete_product(
                        organization_id, product, usage, allow_over_depletion, thresholds,
                        result.warnings, options, external_order_id, timestamp, recipe_id=recipe.id,
                    )
            except InventoryNotTrackedError as exc:
                logger.warning(f"Recipe {recipe.name}: {exc}")
                result.warnings.append(str(exc))
                continue
            except InsufficientInventoryError as exc:
                errors.append(exc)
                result.failed_ingredients.append(
                    IngredientFailure(product_id=product.id, product_name=product.name, error=str(exc))
                )
                continue

            result.over_depleted = result.over_depleted or outcome.over_depleted
            result.ingredients.append(IngredientDepletion(
                product_id=product.id,
                product_name=product.name,
                depleted_amount=usage,
                remaining_inventory=outcome.after,
                allocations=outcome.allocations,
            ))

        if errors and not result.ingredients:
            raise errors[0]
        return result

    def _locked_inventory_rows(self, organization_id: int, product_id: int) -> List[InventoryItem]:
        return (
            self.db.query(InventoryItem)
            .filter(
                InventoryItem.organization_id == organization_id,
                InventoryItem.product_id == product_id,
            )
            .order_by(InventoryItem.id)
            .with_for_update()
            .populate_existing()
            .all()
        )

    def _deplete_product(
        self,
        organization_id: int,
        product: Product,
        required: Decimal,
        allow_over_depletion: bool,
        thresholds: WarningThresholds,
        warnings: List[str],
        options: DepletionOptions,
        external_order_id: Optional[str],
        timestamp: Optional[datetime],
        recipe_id: Optional[int] = None,
    ) -> _ProductOutcome:
        """Check, allocate and write one product's depletion. Must run in a savepoint."""
        items = self._locked_inventory_rows(organization_id, product.id)
        if not items:
            raise InventoryNotTrackedError(product.name, product.id)

        total = sum((item.current_quantity for item in items), Decimal("0"))
        over_depleted = total < required
        if over_depleted:
            if not allow_over_depletion:
                raise InsufficientInventoryError(product.name, product.id, total, required, product.unit)
            shortfall = required - total
            warnings.append(
                f"Over-depletion allowed: {product.name} went negative by {float(shortfall):.2f} {product.unit}"
            )
            self.audit_service.log_over_depletion_event(
                organization_id,
                product.id,
                {
                    "product_name": product.name,
                    "original_quantity": total,
                    "requested_quantity": required,
                    "resulting_quantity": total - required,
                    "allowed_by_policy": True,
                    "external_order_id": external_order_id,
                },
                recipe_id=recipe_id,
                user_id=options.audit_user_id,
                source=options.source.value,
                external_order_id=external_order_id,
            )

        final_total = total - required
        warnings.extend(check_warning_thresholds(
            product.name, product.unit, [item.minimum_quantity for item in items], final_total, thresholds,
        ))

        deltas = allocate_depletion([item.current_quantity for item in items], required, allow_over_depletion)
        allocations = []
        for item, delta in zip(items, deltas):
            if delta == 0:
                continue
            item.current_quantity = item.current_quantity - delta
            allocations.append(LocationAllocation(
                inventory_item_id=item.id,
                location_id=item.location_id,
                depleted=delta,
                new_quantity=item.current_quantity,
            ))
        self.db.flush()

        self.audit_service.log_inventory_depletion_event(
            organization_id,
            product.id,
            {
                "product_name": product.name,
                "previous_quantity": total,
                "depleted_quantity": required,
                "new_quantity": final_total,
                "allocations": [a.to_dict() for a in allocations],
                "sale_timestamp": timestamp,
            },
            recipe_id=recipe_id,
            user_id=options.audit_user_id,
            source=options.source.value,
            external_order_id=external_order_id,
        )

        logger.debug(
            f"Depleted {required} {product.unit} of {product.name} "
            f"({total} -> {final_total}) source={options.source.value}"
        )
        return _ProductOutcome(before=total, after=final_total, over_depleted=over_depleted, allocations=allocations)

    # ===== MANUAL ADJUSTMENTS =====

    def adjust_inventory_item(
        self,
        organization_id: int,
        inventory_item_id: int,
        new_quantity: Any,
        reason: str,
        user_id: Optional[str] = None,
    ) -> Optional[InventoryItem]:
        """Set an InventoryItem to a counted quantity and record the adjustment.

        Returns None when the item does not belong to the organization.
        """
        new_quantity = _quantize(_to_decimal(new_quantity))
        item = (
            self.db.query(InventoryItem)
            .filter(
                InventoryItem.id == inventory_item_id,
                InventoryItem.organization_id == organization_id,
            )
            .with_for_update()
            .populate_existing()
            .first()
        )
        if item is None:
            return None

        old_quantity = item.current_quantity
        item.current_quantity = new_quantity
        self.db.flush()

        self.audit_service.log_inventory_adjustment_event(
            organization_id,
            item.product_id,
            {
                "product_name": item.product.name,
                "old_quantity": old_quantity,
                "new_quantity": new_quantity,
                "adjustment_amount": new_quantity - old_quantity,
                "reason": reason,
                "location": item.location.name if item.location else None,
            },
            user_id=user_id,
            source=TriggerSource.MANUAL.value,
        )
        self.db.commit()
        self.db.refresh(item)
        logger.info(f"Inventory item {item.id} adjusted {old_quantity} -> {new_quantity}: {reason}")
        return item
