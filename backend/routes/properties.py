"""Property Routes - landlord property creation under plan limits."""
from fastapi import APIRouter, HTTPException, Request, status
from middleware import landlord_route_guard
from services.plan_enforcement import check_plan_limits, limit_error_response
from services.property_service import CreationConflictError, PlanLimitReached, create_property
from services.usage_resolver import AccountNotFoundError
from pydantic import BaseModel
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/properties", tags=["properties"])


class CreatePropertyRequest(BaseModel):
    name: str
    address: str
    city: str
    country: str


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_property_route(request: Request, data: CreatePropertyRequest):
    """Create a property for the authenticated landlord.

    Plan limits are checked up front and again when the write commits.
    """
    user = await landlord_route_guard(request)
    account_id = user["account_id"]

    try:
        denied = await check_plan_limits(account_id, "add_property")
        if denied is not None:
            return denied

        property_obj = await create_property(account_id, data.model_dump(), user)
    except AccountNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    except PlanLimitReached as e:
        return limit_error_response(e.error)
    except CreationConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return {
        "success": True,
        "message": "Property created successfully",
        "data": property_obj.model_dump(mode="json"),
    }
