"""Manual inventory operation schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from barledger.schemas.common import CamelModel


class ManualDepletionRequest(CamelModel):
    """A sale entered by hand, depleted under the manual policy."""

    integration_id: int
    external_product_id: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., gt=0)
    reference: Optional[str] = None
    timestamp: Optional[datetime] = None


class InventoryAdjustmentRequest(CamelModel):
    new_quantity: Decimal
    reason: str = Field(..., min_length=1, max_length=500)


class InventoryItemResponse(CamelModel):
    id: int
    product_id: int
    location_id: int
    current_quantity: float
    minimum_quantity: Optional[float] = None
