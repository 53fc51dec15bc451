"""Subscription lifecycle - admin tier and status changes.

Every mutation writes exactly one SubscriptionHistoryEntry in the same
document write, plus a SUBSCRIPTION_CHANGED audit entry with a diff.
Accounts without a subscription document get one created on first change.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pydantic import ValidationError
from models import (
    AuditAction,
    PlanTier,
    Subscription,
    SubscriptionAction,
    SubscriptionHistoryEntry,
    SubscriptionOverrides,
    SubscriptionStatusValue,
    UserRole,
)
from services.account_store import account_store
from services.plan_catalog import admits, plan_catalog, tier_rank
from services.usage_resolver import ResolvedUsage, resolve
from utils.audit import create_audit_log
import uuid
import logging

logger = logging.getLogger(__name__)


class SubscriptionChangeError(ValueError):
    """Refused lifecycle change. `status_code` is the HTTP status routes answer with."""

    def __init__(self, message: str, status_code: int = 400, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


def _parse_tier(tier: Optional[str]) -> Optional[PlanTier]:
    if tier is None:
        return None
    try:
        return plan_catalog.resolve_tier(tier)
    except ValueError:
        raise SubscriptionChangeError("Invalid plan", details={"plan": tier})


def _parse_status(value: Optional[str]) -> Optional[SubscriptionStatusValue]:
    if value is None:
        return None
    try:
        return SubscriptionStatusValue(str(value).upper())
    except ValueError:
        raise SubscriptionChangeError("Invalid status", details={"status": value})


def _parse_custom_limits(custom_limits: Optional[Dict[str, Any]]) -> Optional[SubscriptionOverrides]:
    if not custom_limits:
        return None
    try:
        overrides = SubscriptionOverrides.model_validate(custom_limits)
    except ValidationError:
        raise SubscriptionChangeError("Invalid custom limits", details={"customLimits": custom_limits})
    for key in ("max_properties", "max_units", "max_users"):
        value = getattr(overrides, key)
        if value is not None and value < 0:
            raise SubscriptionChangeError("Custom limits must not be negative", details={key: value})
    for feature_key in overrides.features:
        try:
            plan_catalog.ensure_feature_key(feature_key)
        except ValueError as e:
            raise SubscriptionChangeError(str(e))
    return overrides


def _ensure_downgrade_fits(resolved: ResolvedUsage, new_tier: PlanTier):
    """Refuse a tier whose catalog limits are below what the account already holds."""
    plan = plan_catalog.get_plan(new_tier)
    if not admits(resolved.current_properties, plan.max_properties):
        raise SubscriptionChangeError(
            f"Cannot downgrade: Landlord has {resolved.current_properties} properties, "
            f"but {plan.display_name} plan allows only {plan.max_properties}",
            details={"currentProperties": resolved.current_properties, "planLimit": plan.max_properties},
        )
    if not admits(resolved.current_units, plan.max_units):
        raise SubscriptionChangeError(
            f"Cannot downgrade: Landlord has {resolved.current_units} units, "
            f"but {plan.display_name} plan allows only {plan.max_units}",
            details={"currentUnits": resolved.current_units, "planLimit": plan.max_units},
        )


def _determine_action(
    current: Subscription,
    new_tier: Optional[PlanTier],
    new_status: Optional[SubscriptionStatusValue],
) -> SubscriptionAction:
    # Cancellation wins over a tier change made in the same request
    if new_status == SubscriptionStatusValue.CANCELLED:
        if current.status == SubscriptionStatusValue.CANCELLED:
            raise SubscriptionChangeError("Subscription is already cancelled", status_code=409)
        return SubscriptionAction.CANCELLED
    if new_tier is not None and new_tier != current.tier:
        if tier_rank(new_tier) > tier_rank(current.tier):
            return SubscriptionAction.UPGRADED
        return SubscriptionAction.DOWNGRADED
    if new_status == SubscriptionStatusValue.SUSPENDED:
        return SubscriptionAction.SUSPENDED
    if new_status == SubscriptionStatusValue.ACTIVE and current.status != SubscriptionStatusValue.ACTIVE:
        return SubscriptionAction.REACTIVATED
    return SubscriptionAction.UPDATED


def _state(subscription: Subscription) -> Dict[str, Any]:
    return subscription.model_dump(
        mode="json",
        include={"tier", "status", "monthly_price", "overrides", "end_date", "cancelled_at", "notes"},
    )


async def _apply_change(
    resolved: ResolvedUsage,
    actor: Dict[str, Any],
    tier: Optional[str] = None,
    status: Optional[str] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    custom_limits: Optional[Dict[str, Any]] = None,
) -> Subscription:
    current = resolved.subscription
    account_id = resolved.account.account_id

    new_tier = _parse_tier(tier)
    new_status = _parse_status(status)
    overrides = _parse_custom_limits(custom_limits)
    tier_changed = new_tier is not None and new_tier != current.tier

    if tier_changed and overrides is None:
        _ensure_downgrade_fits(resolved, new_tier)

    action = _determine_action(current, new_tier, new_status)
    effective_tier = new_tier or current.tier
    plan = plan_catalog.get_plan(effective_tier)
    now = datetime.now(timezone.utc)

    updated = current.model_copy(deep=True)
    updated.changed_by = actor.get("user_id")
    updated.changed_at = now

    if new_tier is not None:
        updated.tier = new_tier
        updated.monthly_price = plan.monthly_price
    if tier_changed:
        # Overrides granted for the old tier do not carry over
        updated.overrides = overrides or SubscriptionOverrides()
    elif overrides is not None:
        updated.overrides = updated.overrides.model_copy(
            update=overrides.model_dump(exclude_unset=True)
        )

    if new_status is not None:
        updated.status = new_status
        if new_status == SubscriptionStatusValue.CANCELLED:
            updated.cancelled_at = now
        elif new_status == SubscriptionStatusValue.ACTIVE:
            updated.cancelled_at = None

    if notes is not None:
        updated.notes = notes

    changed_by_name = actor.get("name") or actor.get("email") or "Admin"

    if resolved.is_default:
        entry = SubscriptionHistoryEntry(
            action=SubscriptionAction.CREATED,
            new_tier=updated.tier,
            new_price=plan.monthly_price,
            changed_by=actor.get("user_id"),
            changed_by_name=changed_by_name,
            reason=reason or "Subscription created by admin",
        )
        data = updated.model_dump(mode="json", exclude={"history"})
        data["subscription_id"] = str(uuid.uuid4())
        doc = await account_store.create_subscription(data, entry.model_dump(mode="json"))
        if doc is None:
            raise SubscriptionChangeError(
                "Subscription was created by another request; reload and retry", status_code=409
            )
    else:
        entry = SubscriptionHistoryEntry(
            action=action,
            previous_tier=current.tier,
            new_tier=updated.tier,
            previous_price=current.monthly_price,
            new_price=plan.monthly_price,
            changed_by=actor.get("user_id"),
            changed_by_name=changed_by_name,
            reason=reason or f"{action.value} by admin",
        )
        patch = updated.model_dump(mode="json", exclude={"history", "subscription_id", "account_id"})
        doc = await account_store.update_subscription(
            account_id, patch, entry.model_dump(mode="json"),
            expected={"tier": current.tier.value, "status": current.status.value},
        )
        if doc is None:
            raise SubscriptionChangeError(
                "Subscription was changed by another request; reload and retry", status_code=409
            )

    result = Subscription.model_validate(doc)

    try:
        actor_role = UserRole(actor.get("role"))
    except ValueError:
        actor_role = None
    await create_audit_log(
        action=AuditAction.SUBSCRIPTION_CHANGED,
        actor_role=actor_role,
        actor_id=actor.get("user_id"),
        account_id=account_id,
        resource_type="subscription",
        resource_id=result.subscription_id,
        before_state=None if resolved.is_default else _state(current),
        after_state=_state(result),
        metadata={"action": entry.action.value, "reason": entry.reason},
    )

    logger.info(
        "Subscription %s account_id=%s tier=%s->%s status=%s by=%s",
        entry.action.value, account_id, current.tier.value, result.tier.value,
        result.status.value, actor.get("user_id")
    )
    return result


async def change_subscription(
    account_id: str,
    actor: Dict[str, Any],
    tier: Optional[str] = None,
    status: Optional[str] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    custom_limits: Optional[Dict[str, Any]] = None,
) -> Subscription:
    """Apply an admin change and return the stored subscription.

    The action recorded in history is the last entry of the returned model.
    """
    resolved = await resolve(account_id)
    return await _apply_change(
        resolved, actor,
        tier=tier, status=status, reason=reason, notes=notes, custom_limits=custom_limits,
    )


async def cancel_subscription(account_id: str, actor: Dict[str, Any], reason: Optional[str] = None) -> Subscription:
    return await change_subscription(
        account_id, actor, status=SubscriptionStatusValue.CANCELLED.value, reason=reason
    )


async def suspend_subscription(account_id: str, actor: Dict[str, Any], reason: Optional[str] = None) -> Subscription:
    return await change_subscription(
        account_id, actor, status=SubscriptionStatusValue.SUSPENDED.value, reason=reason
    )


async def reactivate_subscription(account_id: str, actor: Dict[str, Any], reason: Optional[str] = None) -> Subscription:
    resolved = await resolve(account_id)
    if resolved.subscription.status == SubscriptionStatusValue.ACTIVE:
        raise SubscriptionChangeError("Subscription is already active", status_code=409)
    return await _apply_change(
        resolved, actor, status=SubscriptionStatusValue.ACTIVE.value, reason=reason
    )
