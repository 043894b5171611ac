"""Audit log schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from barledger.schemas.common import CamelModel


class AuditLogResponse(CamelModel):
    id: int
    event_type: str
    product_id: Optional[int] = None
    recipe_id: Optional[int] = None
    user_id: Optional[str] = None
    event_data: Dict[str, Any]
    source: str
    external_order_id: Optional[str] = None
    created_at: datetime


class AuditLogListResponse(CamelModel):
    items: List[AuditLogResponse]
    limit: int
    offset: int
