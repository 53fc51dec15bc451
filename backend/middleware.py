from fastapi import Request, HTTPException, status
from typing import Optional
import logging
from auth import decode_access_token, check_rbac
from models import UserRole

logger = logging.getLogger(__name__)

async def get_current_user(request: Request) -> Optional[dict]:
    """Extract current user from request state (set upstream) or the bearer JWT."""
    user = getattr(request.state, "user", None)
    if user:
        return user

    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None

    token = auth_header.split(" ")[1]
    payload = decode_access_token(token)

    if not payload:
        return None

    return payload

async def require_auth(request: Request) -> dict:
    """Require valid authentication."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user

async def require_role(request: Request, required_role: UserRole) -> dict:
    """Require specific role."""
    user = await require_auth(request)
    try:
        user_role = UserRole(user.get("role"))
    except ValueError:
        user_role = UserRole.ROLE_TENANT

    if not check_rbac(user_role, required_role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )

    return user

async def require_admin(request: Request) -> dict:
    """Require admin role."""
    return await require_role(request, UserRole.ROLE_ADMIN)

async def landlord_route_guard(request: Request) -> dict:
    """Guard for landlord routes - requires a landlord session bound to an account."""
    user = await require_role(request, UserRole.ROLE_LANDLORD)
    if not user.get("account_id"):
        logger.warning("Landlord route called without account_id path=%s", request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No landlord account bound to this session"
        )
    return user

async def admin_route_guard(request: Request) -> dict:
    """Guard for admin routes."""
    user = await require_admin(request)
    return user
