"""
API dependencies for FastAPI dependency injection.

Provides the database session, the clock, and the authenticated customer id.
"""
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from rebooking.lib.clock import Clock, system_clock
from rebooking.lib.db import get_db as get_db_session
from rebooking.lib.jwt import verify_token


# Re-export get_db for convenience
get_db = get_db_session


# HTTP Bearer token security scheme
security = HTTPBearer()


def get_clock() -> Clock:
    """Clock used by request handlers; overridden in tests."""
    return system_clock


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> UUID:
    """
    Customer id from the bearer token's 'sub' claim.

    The user row itself is not loaded here; services treat a missing user
    as their own error case.

    Raises:
        HTTPException: 401 if the token is invalid or carries no usable subject
    """
    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Could not validate credentials: {e}",
        )

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )

    try:
        return UUID(str(subject))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )
