"""Status Engine - merged view of plan limits, live usage and feature access.

Recomputed per call and never persisted.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pydantic import BaseModel
from models import PlanTier, SubscriptionStatusValue
from services.plan_catalog import FEATURE_KEYS, plan_catalog, resolve_layered, within_limit
from services.usage_resolver import ResolvedUsage, resolve
import math
import logging

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class PlanLimits(BaseModel):
    max_properties: Optional[int] = None
    max_units: Optional[int] = None
    max_users: Optional[int] = None


class PlanUsage(BaseModel):
    current_properties: int = 0
    current_units: int = 0
    current_users: int = 0


class SubscriptionStatusSnapshot(BaseModel):
    account_id: str
    plan: PlanTier
    status: SubscriptionStatusValue
    limits: PlanLimits
    usage: PlanUsage
    features: Dict[str, bool]
    is_active: bool
    can_add_property: bool
    can_add_unit: bool
    can_add_user: bool
    days_until_expiry: Optional[int] = None
    is_default: bool = False

    def to_response(self) -> Dict[str, Any]:
        """Client-facing shape (camelCase keys)."""
        return {
            "plan": self.plan.value,
            "status": self.status.value,
            "limits": {
                "maxProperties": self.limits.max_properties,
                "maxUnits": self.limits.max_units,
                "maxUsers": self.limits.max_users,
            },
            "usage": {
                "currentProperties": self.usage.current_properties,
                "currentUnits": self.usage.current_units,
                "currentUsers": self.usage.current_users,
            },
            "features": dict(self.features),
            "isActive": self.is_active,
            "canAddProperty": self.can_add_property,
            "canAddUnit": self.can_add_unit,
            "canAddUser": self.can_add_user,
            "daysUntilExpiry": self.days_until_expiry,
        }


def days_until(end_date: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days left, rounded up. Negative once the date has passed."""
    if end_date is None:
        return None
    now = now or datetime.now(timezone.utc)
    if end_date.tzinfo is None:
        end_date = end_date.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return math.ceil((end_date - now).total_seconds() / SECONDS_PER_DAY)


def build_status(resolved: ResolvedUsage, now: Optional[datetime] = None) -> SubscriptionStatusSnapshot:
    subscription = resolved.subscription
    tier = subscription.tier
    overrides = subscription.overrides

    limit_overrides = overrides.model_dump(include={"max_properties", "max_units", "max_users"})
    limit_defaults = plan_catalog.limit_defaults(tier)
    limits = PlanLimits(**{
        key: resolve_layered(key, limit_overrides, limit_defaults)
        for key in limit_defaults
    })

    feature_defaults = plan_catalog.feature_defaults(tier)
    features = {
        key: bool(resolve_layered(key, overrides.features, feature_defaults))
        for key in FEATURE_KEYS
    }

    is_active = subscription.status == SubscriptionStatusValue.ACTIVE
    usage = PlanUsage(
        current_properties=resolved.current_properties,
        current_units=resolved.current_units,
        current_users=resolved.current_users,
    )

    return SubscriptionStatusSnapshot(
        account_id=resolved.account.account_id,
        plan=tier,
        status=subscription.status,
        limits=limits,
        usage=usage,
        features=features,
        is_active=is_active,
        can_add_property=is_active and within_limit(usage.current_properties, limits.max_properties),
        can_add_unit=is_active and within_limit(usage.current_units, limits.max_units),
        can_add_user=is_active and within_limit(usage.current_users, limits.max_users),
        days_until_expiry=days_until(subscription.end_date, now),
        is_default=resolved.is_default,
    )


async def get_subscription_status(account_id: str, now: Optional[datetime] = None) -> SubscriptionStatusSnapshot:
    resolved = await resolve(account_id)
    return build_status(resolved, now)
