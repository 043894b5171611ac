"""POS sales sync schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from barledger.schemas.common import CamelModel


class SyncRequest(CamelModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    forced: bool = False


class SyncRunResponse(CamelModel):
    integration_id: int
    integration_name: Optional[str] = None
    success: bool
    status: str
    processed: int
    errors: int
    new_sales: int
    duplicates: int
    depletion_failures: int = 0
    depletion_skipped: bool = False
    error_details: Optional[List[str]] = None
    sync_log_id: Optional[int] = None


class BulkSyncResponse(CamelModel):
    success: bool
    processed: int
    errors: int
    new_sales: int
    duplicates: int
    integrations: List[SyncRunResponse]


class IntegrationSyncStatus(CamelModel):
    integration_id: int
    name: str
    type: str
    is_active: bool
    last_sales_sync_at: Optional[datetime] = None
    sync_status: str
    has_errors: bool
    error_count: int
    days_since_last_sync: Optional[int] = None


class SyncStatusResponse(CamelModel):
    integrations: List[IntegrationSyncStatus]
