"""Plan Enforcement - adapters that turn gate decisions into HTTP responses.

Two entry points share the same gates:
- require_plan_limits(): decorator for FastAPI handlers. Checks run in a fixed
  order (property limit, unit limit, feature) and the first failure wins.
- check_plan_limits(): standalone check returning a ready 403 response or None.

Every limit error is rendered with format_limit_error(); its `code` values are
the LimitErrorKind spellings and are a client contract.
"""
from dataclasses import dataclass
from functools import wraps
from typing import Any, Dict, List, Optional
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from middleware import get_current_user
from models import AuditAction, LimitErrorKind, UserRole
from services.plan_catalog import UNLIMITED, plan_catalog
from services.plan_gates import (
    GateResult,
    PlanLimitError,
    can_add_property,
    can_add_unit,
    can_add_user,
    has_feature,
)
from services.subscription_status import SubscriptionStatusSnapshot, get_subscription_status
from services.usage_resolver import AccountNotFoundError
from utils.audit import create_audit_log
import math
import logging

logger = logging.getLogger(__name__)

APPROACHING_LIMIT_PERCENT = 80
LIMIT_REACHED_PERCENT = 100
EXPIRY_WARNING_DAYS = 7


# ============================================================================
# ERROR FORMATTING
# ============================================================================
def format_limit_error(error: PlanLimitError) -> Dict[str, Any]:
    return {
        "success": False,
        "error": error.message,
        "code": error.kind.value,
        "details": {
            "currentUsage": error.current_usage,
            "limit": error.limit,
            "suggestedPlan": error.suggested_tier.value if error.suggested_tier else None,
        },
    }


def limit_error_response(error: PlanLimitError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=format_limit_error(error))


# ============================================================================
# STANDALONE CHECK
# ============================================================================
async def _run_gate(account_id: str, action: str, feature_key: Optional[str] = None) -> GateResult:
    if action == "add_property":
        return await can_add_property(account_id)
    if action == "add_unit":
        return await can_add_unit(account_id)
    if action == "add_user":
        return await can_add_user(account_id)
    if action == "feature":
        if not feature_key:
            raise ValueError("feature_key is required for the 'feature' action")
        return await has_feature(account_id, feature_key)
    raise ValueError(f"Unknown plan action: {action}")


async def check_plan_limits(
    account_id: str,
    action: str,
    feature_key: Optional[str] = None,
) -> Optional[JSONResponse]:
    """Return a 403 response when the action is denied, None when allowed.

    Expected denials never raise. AccountNotFoundError and store faults do.
    """
    result = await _run_gate(account_id, action, feature_key)
    if result.allowed:
        return None

    logger.warning(
        "Plan limit denied account_id=%s action=%s code=%s",
        account_id, action, result.error.kind.value
    )
    return limit_error_response(result.error)


# ============================================================================
# REQUEST PIPELINE DECORATOR
# ============================================================================
async def _record_denial(request: Request, user: dict, account_id: str, check: str, error: PlanLimitError):
    logger.warning(
        "Plan gate denied: account_id=%s check=%s code=%s endpoint=%s method=%s",
        account_id, check, error.kind.value, request.url.path, request.method
    )
    try:
        actor_role = UserRole(user.get("role"))
    except ValueError:
        actor_role = None
    await create_audit_log(
        action=AuditAction.PLAN_LIMIT_DENIED,
        actor_role=actor_role,
        actor_id=user.get("user_id"),
        account_id=account_id,
        metadata={
            "check": check,
            "code": error.kind.value,
            "current_usage": error.current_usage,
            "limit": error.limit,
            "suggested_plan": error.suggested_tier.value if error.suggested_tier else None,
            "endpoint": str(request.url.path),
            "method": request.method,
        },
    )


def require_plan_limits(
    check_property_limit: bool = False,
    check_unit_limit: bool = False,
    required_feature: Optional[str] = None,
):
    """
    Decorator enforcing plan limits before the handler runs.
    The account is always read fresh; nothing is taken from the request body.

    Usage:
        @router.post("/units")
        @require_plan_limits(check_unit_limit=True)
        async def create_unit(request: Request, data: CreateUnitRequest):
            ...
    """
    if required_feature:
        plan_catalog.ensure_feature_key(required_feature)

    checks: List[tuple] = []
    if check_property_limit:
        checks.append(("add_property", None))
    if check_unit_limit:
        checks.append(("add_unit", None))
    if required_feature:
        checks.append(("feature", required_feature))

    def decorator(func):
        @wraps(func)
        async def wrapper(request: Request, *args, **kwargs):
            user = await get_current_user(request)
            if not user:
                raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Not authenticated")

            account_id = user.get("account_id")
            if not account_id:
                raise HTTPException(status.HTTP_404_NOT_FOUND, "Account not found")

            for action, feature_key in checks:
                try:
                    result = await _run_gate(account_id, action, feature_key)
                except AccountNotFoundError:
                    raise HTTPException(status.HTTP_404_NOT_FOUND, "Account not found")
                if not result.allowed:
                    await _record_denial(request, user, account_id, action, result.error)
                    return limit_error_response(result.error)

            return await func(request, *args, **kwargs)

        return wrapper
    return decorator


# ============================================================================
# SUBSCRIPTION VERIFICATION
# ============================================================================
@dataclass
class SubscriptionVerification:
    is_valid: bool
    status: Optional[SubscriptionStatusSnapshot] = None
    error: Optional[JSONResponse] = None
    expiring_soon: bool = False


def is_expiring_soon(days_until_expiry: Optional[int]) -> bool:
    return days_until_expiry is not None and 0 < days_until_expiry <= EXPIRY_WARNING_DAYS


async def verify_subscription(account_id: str) -> SubscriptionVerification:
    """Gate a whole area on an active subscription, independent of limits."""
    snapshot = await get_subscription_status(account_id)

    if not snapshot.is_active:
        return SubscriptionVerification(
            is_valid=False,
            status=snapshot,
            error=JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={
                    "success": False,
                    "error": "Your subscription is not active. Please contact support.",
                    "code": LimitErrorKind.SUBSCRIPTION_INACTIVE.value,
                },
            ),
        )

    return SubscriptionVerification(
        is_valid=True,
        status=snapshot,
        expiring_soon=is_expiring_soon(snapshot.days_until_expiry),
    )


# ============================================================================
# USAGE PROJECTIONS
# ============================================================================
def usage_percentage(used: int, limit: Optional[int]) -> int:
    """0 for unlimited, otherwise used/limit as a percentage rounded half up."""
    if limit is UNLIMITED:
        return 0
    if limit <= 0:
        return LIMIT_REACHED_PERCENT
    return int(math.floor(used * 100 / limit + 0.5))


def build_usage_warnings(property_pct: int, unit_pct: int, days_until_expiry: Optional[int]) -> List[str]:
    warnings = []
    if APPROACHING_LIMIT_PERCENT <= property_pct < LIMIT_REACHED_PERCENT:
        warnings.append(f"You're using {property_pct}% of your property limit")
    if APPROACHING_LIMIT_PERCENT <= unit_pct < LIMIT_REACHED_PERCENT:
        warnings.append(f"You're using {unit_pct}% of your unit limit")
    if property_pct >= LIMIT_REACHED_PERCENT:
        warnings.append("You have reached your property limit. Upgrade to add more.")
    if unit_pct >= LIMIT_REACHED_PERCENT:
        warnings.append("You have reached your unit limit. Upgrade to add more.")
    if is_expiring_soon(days_until_expiry):
        warnings.append(f"Your subscription expires in {days_until_expiry} days")
    return warnings


def summarize_usage(snapshot: SubscriptionStatusSnapshot) -> Dict[str, Any]:
    limits, usage = snapshot.limits, snapshot.usage
    property_pct = usage_percentage(usage.current_properties, limits.max_properties)
    unit_pct = usage_percentage(usage.current_units, limits.max_units)

    return {
        "plan": snapshot.plan.value,
        "properties": {
            "used": usage.current_properties,
            "limit": limits.max_properties,
            "percentage": property_pct,
        },
        "units": {
            "used": usage.current_units,
            "limit": limits.max_units,
            "percentage": unit_pct,
        },
        "features": dict(snapshot.features),
        "warnings": build_usage_warnings(property_pct, unit_pct, snapshot.days_until_expiry),
    }


async def get_usage_summary(account_id: str) -> Dict[str, Any]:
    snapshot = await get_subscription_status(account_id)
    return summarize_usage(snapshot)


def _capacity(used: int, limit: Optional[int]) -> Dict[str, Any]:
    return {
        "used": used,
        "remaining": None if limit is UNLIMITED else max(0, limit - used),
        "total": limit,
    }


async def get_remaining_capacity(account_id: str) -> Dict[str, Any]:
    snapshot = await get_subscription_status(account_id)
    return {
        "properties": _capacity(snapshot.usage.current_properties, snapshot.limits.max_properties),
        "units": _capacity(snapshot.usage.current_units, snapshot.limits.max_units),
        "users": _capacity(snapshot.usage.current_users, snapshot.limits.max_users),
    }
