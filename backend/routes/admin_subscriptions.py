"""Admin Subscription Routes - inspect and change landlord subscriptions.

Endpoints:
- GET /api/admin/subscriptions - List stored subscriptions (filter by tier/status)
- GET /api/admin/subscriptions/plans - Plan listing and feature entitlement matrix
- GET /api/admin/subscriptions/{account_id} - Subscription (or implicit default), history and usage
- PUT /api/admin/subscriptions/{account_id} - Upgrade / downgrade / cancel / suspend / reactivate
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Dict, Optional
from middleware import admin_route_guard
from models import AuditAction
from services.account_store import account_store
from services.plan_catalog import plan_catalog
from services.plan_enforcement import summarize_usage
from services.subscription_service import SubscriptionChangeError, change_subscription
from services.subscription_status import build_status
from services.usage_resolver import AccountNotFoundError, resolve
from utils.audit import get_audit_logs_for_account
import logging

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/admin/subscriptions",
    tags=["admin-subscriptions"],
    dependencies=[Depends(admin_route_guard)],
)

HISTORY_PREVIEW = 10


class CustomLimits(BaseModel):
    max_properties: Optional[int] = Field(default=None, ge=0)
    max_units: Optional[int] = Field(default=None, ge=0)
    max_users: Optional[int] = Field(default=None, ge=0)
    features: Dict[str, bool] = Field(default_factory=dict)


class UpdateSubscriptionRequest(BaseModel):
    plan: Optional[str] = None  # STARTER, GROWTH, PRO, ENTERPRISE
    status: Optional[str] = None  # ACTIVE, CANCELLED, SUSPENDED, EXPIRED
    reason: Optional[str] = None
    notes: Optional[str] = None
    custom_limits: Optional[CustomLimits] = None


@router.get("")
async def list_subscriptions(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    tier: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
):
    subscriptions = await account_store.list_subscriptions(
        skip=skip, limit=limit, tier=tier, status=status_filter
    )
    return {"success": True, "data": subscriptions, "skip": skip, "limit": limit}


@router.get("/plans")
async def get_plans():
    return {
        "success": True,
        "data": {
            "plans": plan_catalog.get_available_plans(),
            "entitlements": plan_catalog.get_entitlement_matrix(),
        },
    }


@router.get("/{account_id}")
async def get_account_subscription(account_id: str):
    """Subscription details for one landlord, synthesising the default when none is stored."""
    try:
        resolved = await resolve(account_id)
    except AccountNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Landlord not found")

    snapshot = build_status(resolved)
    subscription = resolved.subscription
    history = sorted(subscription.history, key=lambda h: h.created_at, reverse=True)[:HISTORY_PREVIEW]
    plan = plan_catalog.get_plan(subscription.tier)

    recent_denials = await get_audit_logs_for_account(
        account_id, action=AuditAction.PLAN_LIMIT_DENIED, limit=HISTORY_PREVIEW
    )

    return {
        "success": True,
        "data": {
            "account": resolved.account.model_dump(mode="json"),
            "subscription": {
                **subscription.model_dump(mode="json", exclude={"history"}),
                "history": [h.model_dump(mode="json") for h in history],
                "is_default": resolved.is_default,
            },
            "status": snapshot.to_response(),
            "usage": summarize_usage(snapshot),
            "planConfig": {
                "name": plan.display_name,
                "price": plan.monthly_price,
                "maxProperties": plan.max_properties,
                "maxUnits": plan.max_units,
                "maxUsers": plan.max_users,
                "features": dict(plan.features),
            },
            "availablePlans": plan_catalog.get_available_plans(),
            "recentDenials": recent_denials,
        },
    }


@router.put("/{account_id}")
async def update_account_subscription(request: Request, account_id: str, body: UpdateSubscriptionRequest):
    admin = await admin_route_guard(request)

    try:
        subscription = await change_subscription(
            account_id,
            admin,
            tier=body.plan,
            status=body.status,
            reason=body.reason,
            notes=body.notes,
            custom_limits=body.custom_limits.model_dump(exclude_unset=True) if body.custom_limits else None,
        )
    except AccountNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Landlord not found")
    except SubscriptionChangeError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={"success": False, "error": e.message, "details": e.details},
        )

    action = subscription.history[-1].action if subscription.history else None
    data = subscription.model_dump(mode="json", exclude={"history"})
    data["history"] = [h.model_dump(mode="json") for h in subscription.history[-5:]][::-1]

    return {
        "success": True,
        "data": data,
        "message": f"Subscription {action.value.lower() if action else 'updated'} successfully",
    }
