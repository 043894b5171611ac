"""Unit conversion between POS serving units and inventory units.

Three disjoint unit families:

- volume, normalized to millilitres
- weight, normalized to grams
- container units (bottle, keg, can...), where selling one unit empties one
  whole container

Conversion never raises: when no rule applies the amount passes through
unchanged and a warning is logged, so a missing exchange rate cannot block a
sale from being recorded.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str]

# Volume: base unit = ml
VOLUME_TO_ML = {
    "ml": Decimal("1"),
    "cl": Decimal("10"),
    "dl": Decimal("100"),
    "l": Decimal("1000"),
    "fl oz": Decimal("29.5735"),
    "oz": Decimal("29.5735"),  # bar convention: a bare oz is a fluid ounce
    "cup": Decimal("236.588"),
    "pint": Decimal("473.176"),
    "quart": Decimal("946.353"),
    "gal": Decimal("3785.41"),
}

# Weight: base unit = g
WEIGHT_TO_GRAMS = {
    "g": Decimal("1"),
    "kg": Decimal("1000"),
    "oz": Decimal("28.3495"),
    "lb": Decimal("453.592"),
    "lbs": Decimal("453.592"),
}

FULL_DEPLETION_UNITS = frozenset({
    "container", "unit", "bottle", "can", "keg", "box", "bag", "carton", "count",
})


@dataclass(frozen=True)
class UnitConversionResult:
    converted_amount: Decimal
    conversion_factor: Decimal
    is_full_depletion: bool
    from_unit: str
    to_unit: str
    original_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "converted_amount": float(self.converted_amount),
            "conversion_factor": float(self.conversion_factor),
            "is_full_depletion": self.is_full_depletion,
            "from_unit": self.from_unit,
            "to_unit": self.to_unit,
            "original_amount": float(self.original_amount),
        }


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def normalize_unit(unit: str) -> str:
    return " ".join(unit.strip().lower().split())


def is_full_depletion_unit(unit: str) -> bool:
    """True when ``unit`` represents a whole container."""
    return normalize_unit(unit) in FULL_DEPLETION_UNITS


def convert(
    amount: Number,
    from_unit: str,
    to_unit: str,
    product_container_size: Optional[Number] = None,
) -> UnitConversionResult:
    """Convert ``amount`` of ``from_unit`` into ``to_unit``.

    Args:
        amount: Quantity expressed in ``from_unit``.
        from_unit: Serving-side unit (e.g. "fl oz").
        to_unit: Inventory-side unit (e.g. "ml" or "bottle").
        product_container_size: Declared container size of the product
            (750 for a 750 ml bottle); used when either side is a container.

    Returns:
        UnitConversionResult. Unknown or incompatible units give an identity
        result rather than an error.
    """
    amount = _to_decimal(amount)
    size = _to_decimal(product_container_size) if product_container_size else None
    src = normalize_unit(from_unit)
    dst = normalize_unit(to_unit)

    if src == dst:
        return UnitConversionResult(
            converted_amount=amount,
            conversion_factor=Decimal("1"),
            is_full_depletion=src in FULL_DEPLETION_UNITS,
            from_unit=from_unit,
            to_unit=to_unit,
            original_amount=amount,
        )

    if src in FULL_DEPLETION_UNITS or dst in FULL_DEPLETION_UNITS:
        # One whole container, whatever the serving side says
        if size is not None and size > 0:
            converted = size
            factor = size / amount if amount else Decimal("1")
        else:
            converted = amount
            factor = Decimal("1")
        return UnitConversionResult(
            converted_amount=converted,
            conversion_factor=factor,
            is_full_depletion=True,
            from_unit=from_unit,
            to_unit=to_unit,
            original_amount=amount,
        )

    for table in (VOLUME_TO_ML, WEIGHT_TO_GRAMS):
        if src in table and dst in table:
            factor = table[src] / table[dst]
            return UnitConversionResult(
                converted_amount=amount * table[src] / table[dst],
                conversion_factor=factor,
                is_full_depletion=False,
                from_unit=from_unit,
                to_unit=to_unit,
                original_amount=amount,
            )

    logger.warning(f"Cannot convert from {from_unit!r} to {to_unit!r}, using original amount")
    return UnitConversionResult(
        converted_amount=amount,
        conversion_factor=Decimal("1"),
        is_full_depletion=False,
        from_unit=from_unit,
        to_unit=to_unit,
        original_amount=amount,
    )


def calculate_serving_depletion(
    serving_size: Number,
    serving_unit: str,
    inventory_unit: str,
    inventory_unit_size: Optional[Number] = None,
    quantity_sold: Number = 1,
) -> UnitConversionResult:
    """Convert one POS serving into inventory units and scale by servings sold."""
    quantity = _to_decimal(quantity_sold)
    conversion = convert(serving_size, serving_unit, inventory_unit, inventory_unit_size)
    return UnitConversionResult(
        converted_amount=conversion.converted_amount * quantity,
        conversion_factor=conversion.conversion_factor,
        is_full_depletion=conversion.is_full_depletion,
        from_unit=conversion.from_unit,
        to_unit=conversion.to_unit,
        original_amount=conversion.original_amount * quantity,
    )


def supported_volume_units() -> List[str]:
    return list(VOLUME_TO_ML)


def supported_weight_units() -> List[str]:
    return list(WEIGHT_TO_GRAMS)


def supported_units() -> List[str]:
    """Every unit the converter recognizes, volume first."""
    units = supported_volume_units()
    units += [u for u in supported_weight_units() if u not in units]
    units += sorted(FULL_DEPLETION_UNITS)
    return units
