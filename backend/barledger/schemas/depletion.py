"""Depletion result schemas (direct product vs. recipe)."""

from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import Field

from barledger.schemas.common import CamelModel


class UnitConversionSchema(CamelModel):
    converted_amount: float
    conversion_factor: float
    is_full_depletion: bool
    from_unit: str
    to_unit: str
    original_amount: float


class LocationAllocationSchema(CamelModel):
    inventory_item_id: int
    location_id: int
    depleted: float
    new_quantity: float


class IngredientDepletionSchema(CamelModel):
    product_id: int
    product_name: str
    depleted_amount: float
    remaining_inventory: float
    allocations: List[LocationAllocationSchema] = []


class IngredientFailureSchema(CamelModel):
    product_id: int
    product_name: str
    error: str


class DirectDepletionSchema(CamelModel):
    type: Literal["direct"] = "direct"
    product_id: int
    product_name: str
    depleted_amount: float
    remaining_inventory: float
    unit_conversion: Optional[UnitConversionSchema] = None
    warnings: List[str] = []
    over_depleted: bool = False
    allocations: List[LocationAllocationSchema] = []


class RecipeDepletionSchema(CamelModel):
    type: Literal["recipe"] = "recipe"
    recipe_id: int
    recipe_name: str
    ingredients: List[IngredientDepletionSchema] = []
    failed_ingredients: List[IngredientFailureSchema] = []
    warnings: List[str] = []
    over_depleted: bool = False


DepletionResultSchema = Annotated[
    Union[DirectDepletionSchema, RecipeDepletionSchema],
    Field(discriminator="type"),
]
