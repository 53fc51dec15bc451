"""Unit Routes - unit creation, gated by the account's unit limit."""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from middleware import landlord_route_guard
from services.plan_enforcement import limit_error_response, require_plan_limits
from services.property_service import (
    CreationConflictError,
    PlanLimitReached,
    PropertyNotFoundError,
    create_unit,
)
from pydantic import BaseModel
from typing import Optional
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/units", tags=["units"])


class CreateUnitRequest(BaseModel):
    property_id: str
    unit_number: str
    rent_amount: float
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None


# Role guard runs before the plan gate
@router.post("", status_code=status.HTTP_201_CREATED, dependencies=[Depends(landlord_route_guard)])
@require_plan_limits(check_unit_limit=True)
async def create_unit_route(request: Request, data: CreateUnitRequest):
    user = await landlord_route_guard(request)
    account_id = user["account_id"]

    try:
        unit = await create_unit(
            account_id,
            data.property_id,
            data.model_dump(exclude={"property_id"}),
            user,
        )
    except PropertyNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Property not found")
    except PlanLimitReached as e:
        return limit_error_response(e.error)
    except CreationConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return {"success": True, "data": unit.model_dump(mode="json")}
