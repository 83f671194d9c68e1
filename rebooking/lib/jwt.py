"""JWT helpers for identifying the customer behind a request.

Tokens are issued by the account service; this subsystem only needs the
'sub' claim (user id). create_access_token exists for tests and local tools.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from rebooking.lib.settings import settings


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed access token whose subject is user_id."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.jwt_expiration_minutes)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode a token.

    Raises:
        jwt.InvalidTokenError: expired, bad signature or malformed token
    """
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
