"""
Bearer token verification.

Tokens are issued by the surrounding application; this service only checks
the signature and expiry, then reads the caller's identity from the claims:
- sub: user id
- is_admin: whether the caller may manage grants
"""
import jwt
from fastapi import HTTPException, status

from app.core import config


def verify_jwt_token(token: str) -> dict:
    """
    Verify a JWT and return its payload.

    Args:
        token: JWT token from Authorization header

    Returns:
        Decoded JWT payload

    Raises:
        HTTPException: If token is invalid or expired, or no secret is configured
    """
    if not config.JWT_SECRET:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Token verification is not configured",
        )

    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub"], "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
