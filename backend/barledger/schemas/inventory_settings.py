"""Inventory settings schemas."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field, model_validator

from barledger.schemas.common import CamelModel


class WarningThresholdsSchema(CamelModel):
    low: float = Field(20, ge=0, le=100)
    critical: float = Field(10, ge=0, le=100)


class DepletionPolicySchema(CamelModel):
    allow_over_depletion: bool
    warning_thresholds: WarningThresholdsSchema


class InventorySettingsResponse(CamelModel):
    webhook_policy: DepletionPolicySchema
    cron_sync_policy: DepletionPolicySchema
    manual_policy: DepletionPolicySchema
    enable_auto_conversion: bool
    conversion_fallback: str
    enable_over_depletion_logging: bool
    enable_unit_conversion_logging: bool
    audit_log_retention_days: int


class WarningThresholdsUpdate(CamelModel):
    low: Optional[float] = Field(None, ge=0, le=100)
    critical: Optional[float] = Field(None, ge=0, le=100)

    @model_validator(mode="after")
    def check_order(self):
        if self.low is not None and self.critical is not None and self.critical > self.low:
            raise ValueError("critical threshold must not exceed low threshold")
        return self


class DepletionPolicyUpdate(CamelModel):
    allow_over_depletion: Optional[bool] = None
    warning_thresholds: Optional[WarningThresholdsUpdate] = None


class InventorySettingsUpdate(CamelModel):
    """Partial update; omitted fields keep their current value."""

    webhook_policy: Optional[DepletionPolicyUpdate] = None
    cron_sync_policy: Optional[DepletionPolicyUpdate] = None
    manual_policy: Optional[DepletionPolicyUpdate] = None
    enable_auto_conversion: Optional[bool] = None
    conversion_fallback: Optional[Literal["error", "warn", "ignore"]] = None
    enable_over_depletion_logging: Optional[bool] = None
    enable_unit_conversion_logging: Optional[bool] = None
    audit_log_retention_days: Optional[int] = Field(None, ge=1, le=3650)
