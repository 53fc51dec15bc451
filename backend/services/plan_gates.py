"""Gate Functions - allow/deny decisions with structured, renderable errors.

Deny reasons are checked in a fixed order:
1. Subscription not ACTIVE -> SUBSCRIPTION_INACTIVE (no suggested tier)
2. Limit reached / feature disabled -> *_LIMIT / FEATURE_BLOCKED (suggested tier)

Denials are returned as values; only store faults and unknown accounts raise.
"""
from typing import Dict, NamedTuple, Optional
from pydantic import BaseModel, ConfigDict
from models import LimitErrorKind, PlanTier
from services.plan_catalog import plan_catalog, within_limit
from services.subscription_status import SubscriptionStatusSnapshot, get_subscription_status
import logging

logger = logging.getLogger(__name__)

INACTIVE_MESSAGE = "Your subscription is not active. Please renew to continue."


class PlanLimitError(BaseModel):
    kind: LimitErrorKind
    message: str
    current_usage: int = 0
    limit: Optional[int] = 0
    suggested_tier: Optional[PlanTier] = None


class GateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    error: Optional[PlanLimitError] = None


class CapacityResource(NamedTuple):
    key: str  # catalog suffix: max_<key>
    kind: LimitErrorKind
    noun: str


CAPACITY_RESOURCES: Dict[str, CapacityResource] = {
    "properties": CapacityResource("properties", LimitErrorKind.PROPERTY_LIMIT, "property"),
    "units": CapacityResource("units", LimitErrorKind.UNIT_LIMIT, "unit"),
    "users": CapacityResource("users", LimitErrorKind.USER_LIMIT, "user"),
}

ALLOWED = GateResult(allowed=True)


def _inactive(current_usage: int, limit: Optional[int]) -> GateResult:
    return GateResult(
        allowed=False,
        error=PlanLimitError(
            kind=LimitErrorKind.SUBSCRIPTION_INACTIVE,
            message=INACTIVE_MESSAGE,
            current_usage=current_usage,
            limit=limit,
        ),
    )


def evaluate_capacity(
    status: SubscriptionStatusSnapshot,
    resource: str,
    used: Optional[int] = None,
) -> GateResult:
    """Decide whether one more `resource` fits.

    `used` replaces the snapshot's count when the caller holds a fresher one
    (the commit-time re-check).
    """
    info = CAPACITY_RESOURCES[resource]
    limit = getattr(status.limits, f"max_{info.key}")
    if used is None:
        used = getattr(status.usage, f"current_{info.key}")

    if not status.is_active:
        return _inactive(used, limit)

    if within_limit(used, limit):
        return ALLOWED

    suggested = plan_catalog.suggest_tier_for_capacity(status.plan, info.key, used + 1)
    suggested_name = plan_catalog.get_plan(suggested).display_name
    return GateResult(
        allowed=False,
        error=PlanLimitError(
            kind=info.kind,
            message=(
                f"You've reached your {info.noun} limit ({limit} {info.key}). "
                f"Upgrade to {suggested_name} plan to add more."
            ),
            current_usage=used,
            limit=limit,
            suggested_tier=suggested,
        ),
    )


def evaluate_feature(status: SubscriptionStatusSnapshot, feature_key: str) -> GateResult:
    plan_catalog.ensure_feature_key(feature_key)

    if not status.is_active:
        return _inactive(0, 0)

    if status.features.get(feature_key, False):
        return ALLOWED

    suggested = plan_catalog.suggest_tier_for_feature(status.plan, feature_key)
    current_name = plan_catalog.get_plan(status.plan).display_name
    suggested_name = plan_catalog.get_plan(suggested).display_name
    feature_name = plan_catalog.feature_name(feature_key)
    return GateResult(
        allowed=False,
        error=PlanLimitError(
            kind=LimitErrorKind.FEATURE_BLOCKED,
            message=(
                f"{feature_name} is not available on your {current_name} plan. "
                f"Upgrade to {suggested_name} plan to access this feature."
            ),
            current_usage=0,
            limit=0,
            suggested_tier=suggested,
        ),
    )


async def can_add_property(account_id: str) -> GateResult:
    status = await get_subscription_status(account_id)
    return evaluate_capacity(status, "properties")


async def can_add_unit(account_id: str) -> GateResult:
    status = await get_subscription_status(account_id)
    return evaluate_capacity(status, "units")


async def can_add_user(account_id: str) -> GateResult:
    status = await get_subscription_status(account_id)
    return evaluate_capacity(status, "users")


async def has_feature(account_id: str, feature_key: str) -> GateResult:
    plan_catalog.ensure_feature_key(feature_key)
    status = await get_subscription_status(account_id)
    return evaluate_feature(status, feature_key)
