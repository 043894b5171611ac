"""API routes."""

from fastapi import APIRouter

from barledger.api.routes import (
    audit_logs,
    inventory,
    inventory_settings,
    pos_sales_sync,
    pos_webhooks,
)

api_router = APIRouter()

api_router.include_router(pos_webhooks.router, prefix="/pos-webhooks", tags=["pos", "webhooks"])
api_router.include_router(pos_sales_sync.router, prefix="/pos-sales-sync", tags=["pos", "sync"])
api_router.include_router(inventory.router, prefix="/inventory", tags=["inventory"])
api_router.include_router(inventory_settings.router, prefix="/inventory-settings", tags=["inventory", "settings"])
api_router.include_router(audit_logs.router, prefix="/audit-logs", tags=["audit"])
