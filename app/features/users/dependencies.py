"""
FastAPI dependencies for authentication and authorization.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from app.features.users.auth import verify_jwt_token


security = HTTPBearer()


class CurrentUser(BaseModel):
    """Authenticated caller, as described by its token."""
    id: str
    name: str | None = None
    is_admin: bool = False


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> CurrentUser:
    """
    Get the current authenticated user from the bearer token.

    Usage:
        @router.get("/kinds")
        async def list_kinds(user: CurrentUser = Depends(get_current_user)):
            ...
    """
    payload = verify_jwt_token(credentials.credentials)
    user_id = payload.get("sub")

    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    return CurrentUser(
        id=str(user_id),
        name=payload.get("name"),
        is_admin=bool(payload.get("is_admin", False)),
    )


async def get_current_admin_user(
    user: Annotated[CurrentUser, Depends(get_current_user)]
) -> CurrentUser:
    """
    Require admin privileges.

    Usage:
        @router.post("/reset")
        async def reset_grants(admin: CurrentUser = Depends(get_current_admin_user)):
            # Only admins can access this endpoint
            ...
    """
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return user


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
