"""Subscription Routes - the landlord's own plan, usage and capacity.

Endpoints:
- GET /api/subscription - Plan, limits, usage summary, warnings and available plans
- GET /api/subscription/capacity - Remaining properties / units / users
"""
from fastapi import APIRouter, HTTPException, Request, status
from middleware import landlord_route_guard
from services.plan_catalog import plan_catalog
from services.plan_enforcement import get_remaining_capacity, summarize_usage
from services.subscription_status import get_subscription_status
from services.usage_resolver import AccountNotFoundError
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/subscription", tags=["subscription"])


@router.get("")
async def get_subscription(request: Request):
    """Current plan and usage for the authenticated landlord."""
    user = await landlord_route_guard(request)
    account_id = user["account_id"]

    try:
        snapshot = await get_subscription_status(account_id)
    except AccountNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")

    summary = summarize_usage(snapshot)
    plan = plan_catalog.get_plan(snapshot.plan)

    return {
        "success": True,
        "data": {
            **snapshot.to_response(),
            "planName": plan.display_name,
            "monthlyPrice": plan.monthly_price,
            "usageSummary": summary,
            "warnings": summary["warnings"],
            "availablePlans": plan_catalog.get_available_plans(),
        },
    }


@router.get("/capacity")
async def get_capacity(request: Request):
    user = await landlord_route_guard(request)

    try:
        capacity = await get_remaining_capacity(user["account_id"])
    except AccountNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")

    return {"success": True, "data": capacity}
