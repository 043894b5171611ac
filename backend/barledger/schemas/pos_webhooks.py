"""POS webhook schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import Field

from barledger.schemas.common import CamelModel
from barledger.schemas.depletion import DepletionResultSchema


class WebhookSaleItem(CamelModel):
    pos_product_id: str = Field(..., min_length=1)
    external_product_id: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., gt=0)
    price: Optional[Decimal] = None
    name: Optional[str] = None


class WebhookSaleRequest(CamelModel):
    """Sale notification pushed by a POS provider."""

    integration_id: int
    external_order_id: str = Field(..., min_length=1)
    timestamp: datetime
    items: List[WebhookSaleItem] = Field(..., min_length=1)
    total_amount: Optional[Decimal] = None
    source: Literal["toast", "manual"] = "toast"


class WebhookItemResult(CamelModel):
    pos_product_id: str
    external_product_id: str
    quantity: float
    result: DepletionResultSchema


class WebhookItemError(CamelModel):
    pos_product_id: str
    external_product_id: str
    error: str


class WebhookSaleResponse(CamelModel):
    success: bool
    processed: int
    errors: int
    results: List[WebhookItemResult] = []
    error_details: Optional[List[WebhookItemError]] = None
