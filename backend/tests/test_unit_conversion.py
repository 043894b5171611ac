"""Tests for serving-to-inventory unit conversion."""

import itertools
import logging
from decimal import Decimal

import pytest

from barledger.services.unit_conversion import (
    VOLUME_TO_ML,
    WEIGHT_TO_GRAMS,
    calculate_serving_depletion,
    convert,
    is_full_depletion_unit,
    normalize_unit,
    supported_units,
)


class TestConvert:
    def test_same_unit_is_identity(self):
        result = convert(Decimal("12"), "ml", "ML")
        assert result.converted_amount == Decimal("12")
        assert result.conversion_factor == Decimal("1")
        assert result.is_full_depletion is False

    def test_same_container_unit_is_full_depletion(self):
        result = convert(2, "bottle", "bottle")
        assert result.converted_amount == Decimal("2")
        assert result.is_full_depletion is True

    def test_volume_through_base_unit(self):
        result = convert(Decimal("1500"), "ml", "l")
        assert result.converted_amount == Decimal("1.5")
        assert result.conversion_factor == Decimal("0.001")

    def test_fluid_ounces_to_millilitres(self):
        result = convert(Decimal("1.5"), "fl oz", "ml")
        assert result.converted_amount == Decimal("44.36025")
        assert result.original_amount == Decimal("1.5")

    def test_bare_oz_is_fluid_against_volume(self):
        assert convert(1, "oz", "ml").converted_amount == Decimal("29.5735")

    def test_bare_oz_is_weight_against_weight(self):
        assert convert(1, "oz", "g").converted_amount == Decimal("28.3495")

    def test_weight_conversion(self):
        result = convert(2, "kg", "lb")
        assert result.converted_amount == Decimal("2000") / Decimal("453.592")

    def test_container_uses_declared_size(self):
        result = convert(Decimal("1.5"), "fl oz", "bottle", product_container_size=750)
        assert result.is_full_depletion is True
        assert result.converted_amount == Decimal("750")
        assert result.conversion_factor == Decimal("500")

    def test_container_without_size_keeps_amount(self):
        result = convert(3, "can", "ml")
        assert result.is_full_depletion is True
        assert result.converted_amount == Decimal("3")
        assert result.conversion_factor == Decimal("1")

    def test_incompatible_units_pass_through_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            result = convert(5, "ml", "g")
        assert result.converted_amount == Decimal("5")
        assert result.conversion_factor == Decimal("1")
        assert result.is_full_depletion is False
        assert "Cannot convert" in caplog.text

    def test_unknown_unit_never_raises(self):
        assert convert(1, "splash", "ml").converted_amount == Decimal("1")

    def test_to_dict_is_json_friendly(self):
        data = convert(1, "cl", "ml").to_dict()
        assert data["converted_amount"] == 10.0
        assert data["from_unit"] == "cl"


SAME_FAMILY_PAIRS = [
    pair
    for table in (VOLUME_TO_ML, WEIGHT_TO_GRAMS)
    for pair in itertools.product(table, repeat=2)
]


class TestRoundTrip:
    @pytest.mark.parametrize("from_unit,to_unit", SAME_FAMILY_PAIRS)
    def test_there_and_back(self, from_unit, to_unit):
        amount = Decimal("37.5")
        there = convert(amount, from_unit, to_unit)
        back = convert(there.converted_amount, to_unit, from_unit)
        assert abs(back.converted_amount - amount) < Decimal("1e-9")


class TestServingDepletion:
    def test_scales_by_quantity_sold(self):
        result = calculate_serving_depletion(Decimal("1.5"), "fl oz", "ml", None, 4)
        assert result.converted_amount == Decimal("177.441")
        assert result.original_amount == Decimal("6.0")

    def test_container_serving_per_sale(self):
        result = calculate_serving_depletion(1, "bottle", "ml", 750, 2)
        assert result.converted_amount == Decimal("1500")
        assert result.is_full_depletion is True


class TestUnitHelpers:
    @pytest.mark.parametrize("raw,expected", [
        ("ML", "ml"),
        ("  Fl   Oz ", "fl oz"),
        ("Bottle", "bottle"),
    ])
    def test_normalize_unit(self, raw, expected):
        assert normalize_unit(raw) == expected

    def test_full_depletion_units(self):
        assert is_full_depletion_unit("Keg")
        assert not is_full_depletion_unit("ml")

    def test_supported_units_lists_each_unit_once(self):
        units = supported_units()
        assert units.count("oz") == 1
        assert "bottle" in units
        assert "lbs" in units
