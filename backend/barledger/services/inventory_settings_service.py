"""Inventory Settings Service - per-organization depletion policy.

Every depletion runs under the policy of the pathway that triggered it:
real-time webhooks, scheduled POS sync, or manual entry. Webhook sales must
never be rejected, so that policy lets stock go negative by default; the
reconciliation paths surface shortfalls instead.

Settings are read far more often than written, so they are cached per
organization in the injected cache and invalidated on every write.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from barledger.core.cache import SimpleCache
from barledger.core.config import settings as app_settings
from barledger.models.settings import InventorySettings

logger = logging.getLogger(__name__)

CACHE_PREFIX = "inventory_settings:"
CONVERSION_FALLBACKS = ("error", "warn", "ignore")


class TriggerSource(str, Enum):
    """Pathway that initiated a depletion."""

    WEBHOOK = "webhook"
    CRON_SYNC = "cron_sync"
    MANUAL = "manual"

    @classmethod
    def from_tag(cls, tag: str) -> "TriggerSource":
        """Classify a free-text source tag such as ``pos_webhook`` or ``pos_cron_sync``."""
        tag = (tag or "").lower()
        if "webhook" in tag:
            return cls.WEBHOOK
        if "cron" in tag or "sync" in tag:
            return cls.CRON_SYNC
        return cls.MANUAL


@dataclass(frozen=True)
class WarningThresholds:
    """Percentages of the minimum stock level."""

    low: float = 20
    critical: float = 10

    def to_dict(self) -> Dict[str, float]:
        return {"low": self.low, "critical": self.critical}


@dataclass(frozen=True)
class DepletionPolicy:
    allow_over_depletion: bool
    warning_thresholds: WarningThresholds = field(default_factory=WarningThresholds)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], default: "DepletionPolicy") -> "DepletionPolicy":
        if not data:
            return default
        thresholds = data.get("warning_thresholds") or {}
        return cls(
            allow_over_depletion=bool(data.get("allow_over_depletion", default.allow_over_depletion)),
            warning_thresholds=WarningThresholds(
                low=thresholds.get("low", default.warning_thresholds.low),
                critical=thresholds.get("critical", default.warning_thresholds.critical),
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allow_over_depletion": self.allow_over_depletion,
            "warning_thresholds": self.warning_thresholds.to_dict(),
        }


@dataclass(frozen=True)
class InventorySettingsConfig:
    webhook_policy: DepletionPolicy
    cron_sync_policy: DepletionPolicy
    manual_policy: DepletionPolicy
    enable_auto_conversion: bool = True
    conversion_fallback: str = "warn"
    enable_over_depletion_logging: bool = True
    enable_unit_conversion_logging: bool = False
    audit_log_retention_days: int = 90

    def policy_for(self, source: TriggerSource) -> DepletionPolicy:
        if source == TriggerSource.WEBHOOK:
            return self.webhook_policy
        if source == TriggerSource.CRON_SYNC:
            return self.cron_sync_policy
        return self.manual_policy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "webhook_policy": self.webhook_policy.to_dict(),
            "cron_sync_policy": self.cron_sync_policy.to_dict(),
            "manual_policy": self.manual_policy.to_dict(),
            "enable_auto_conversion": self.enable_auto_conversion,
            "conversion_fallback": self.conversion_fallback,
            "enable_over_depletion_logging": self.enable_over_depletion_logging,
            "enable_unit_conversion_logging": self.enable_unit_conversion_logging,
            "audit_log_retention_days": self.audit_log_retention_days,
        }


DEFAULT_SETTINGS = InventorySettingsConfig(
    webhook_policy=DepletionPolicy(allow_over_depletion=True),
    cron_sync_policy=DepletionPolicy(allow_over_depletion=False),
    manual_policy=DepletionPolicy(allow_over_depletion=False),
)


class InventorySettingsService:
    """Loads, caches and updates InventorySettings."""

    def __init__(self, db: Session, cache: Optional[SimpleCache] = None):
        self.db = db
        self.cache = cache if cache is not None else SimpleCache(app_settings.settings_cache_ttl_seconds)

    @staticmethod
    def _cache_key(organization_id: int) -> str:
        return f"{CACHE_PREFIX}{organization_id}"

    @staticmethod
    def _from_row(row: InventorySettings) -> InventorySettingsConfig:
        return InventorySettingsConfig(
            webhook_policy=DepletionPolicy.from_dict(row.webhook_policy, DEFAULT_SETTINGS.webhook_policy),
            cron_sync_policy=DepletionPolicy.from_dict(row.cron_sync_policy, DEFAULT_SETTINGS.cron_sync_policy),
            manual_policy=DepletionPolicy.from_dict(row.manual_policy, DEFAULT_SETTINGS.manual_policy),
            enable_auto_conversion=row.enable_auto_conversion,
            conversion_fallback=row.conversion_fallback,
            enable_over_depletion_logging=row.enable_over_depletion_logging,
            enable_unit_conversion_logging=row.enable_unit_conversion_logging,
            audit_log_retention_days=row.audit_log_retention_days,
        )

    def get_settings(self, organization_id: int) -> InventorySettingsConfig:
        """Settings for an organization; built-in defaults when no row exists."""
        key = self._cache_key(organization_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        row = self.db.query(InventorySettings).filter(
            InventorySettings.organization_id == organization_id
        ).first()
        config = self._from_row(row) if row else DEFAULT_SETTINGS
        self.cache.set(key, config)
        return config

    def get_policy_for_source(self, organization_id: int, source: TriggerSource) -> DepletionPolicy:
        return self.get_settings(organization_id).policy_for(TriggerSource(source))

    def update_settings(self, organization_id: int, changes: Dict[str, Any]) -> InventorySettingsConfig:
        """Apply a partial update and invalidate the organization's cache entry.

        Policy values may be partial dicts; missing keys keep their current value.
        """
        current = self.get_settings(organization_id)

        updated = current
        for name in ("webhook_policy", "cron_sync_policy", "manual_policy"):
            if changes.get(name) is not None:
                base = getattr(current, name)
                merged = base.to_dict()
                patch = changes[name]
                if "allow_over_depletion" in patch and patch["allow_over_depletion"] is not None:
                    merged["allow_over_depletion"] = patch["allow_over_depletion"]
                if patch.get("warning_thresholds"):
                    merged["warning_thresholds"].update(
                        {k: v for k, v in patch["warning_thresholds"].items() if v is not None}
                    )
                updated = replace(updated, **{name: DepletionPolicy.from_dict(merged, base)})

        scalar_fields = (
            "enable_auto_conversion",
            "conversion_fallback",
            "enable_over_depletion_logging",
            "enable_unit_conversion_logging",
            "audit_log_retention_days",
        )
        scalars = {k: changes[k] for k in scalar_fields if changes.get(k) is not None}
        if "conversion_fallback" in scalars and scalars["conversion_fallback"] not in CONVERSION_FALLBACKS:
            raise ValueError(f"conversion_fallback must be one of {', '.join(CONVERSION_FALLBACKS)}")
        if "audit_log_retention_days" in scalars and scalars["audit_log_retention_days"] < 1:
            raise ValueError("audit_log_retention_days must be at least 1")
        updated = replace(updated, **scalars)

        row = self.db.query(InventorySettings).filter(
            InventorySettings.organization_id == organization_id
        ).first()
        if row is None:
            row = InventorySettings(organization_id=organization_id)
            self.db.add(row)

        row.webhook_policy = updated.webhook_policy.to_dict()
        row.cron_sync_policy = updated.cron_sync_policy.to_dict()
        row.manual_policy = updated.manual_policy.to_dict()
        row.enable_auto_conversion = updated.enable_auto_conversion
        row.conversion_fallback = updated.conversion_fallback
        row.enable_over_depletion_logging = updated.enable_over_depletion_logging
        row.enable_unit_conversion_logging = updated.enable_unit_conversion_logging
        row.audit_log_retention_days = updated.audit_log_retention_days
        self.db.commit()

        self.clear_cache(organization_id)
        logger.info(f"Inventory settings updated for organization {organization_id}")
        return updated

    def clear_cache(self, organization_id: int) -> None:
        self.cache.delete(self._cache_key(organization_id))

    def clear_all_cache(self) -> None:
        self.cache.clear_prefix(CACHE_PREFIX)
