"""
JWT verification for API callers.

Tokens are issued by the identity service; this service only verifies them and
turns the payload into a ``TokenPayload`` principal. ``create_access_token`` is
kept for local tooling and tests that need a signed token.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as pyjwt
from pydantic import BaseModel

from manpower.core.config import settings
from manpower.core.logging import get_logger

logger = get_logger(__name__)


class TokenPayload(BaseModel):
    """Content of the JWT"""
    user_id: int
    role: str
    exp: int  # Unix timestamp


def create_access_token(user_id: int, role: str, expires_minutes: int | None = None) -> str:
    """Create a signed access token"""
    if not settings.JWT_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY is not set, cannot sign tokens")
    minutes = expires_minutes if expires_minutes is not None else settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    payload = {
        "user_id": user_id,
        "role": role,
        "exp": int(expire.timestamp()),
    }
    return pyjwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Optional[TokenPayload]:
    """Verify a JWT. Returns None if invalid or expired"""
    if not settings.JWT_SECRET_KEY:
        logger.error("JWT_SECRET_KEY is empty, tokens are not verified")
        return None
    try:
        payload = pyjwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return TokenPayload(**payload)
    except pyjwt.InvalidTokenError:
        logger.warning("JWT token invalid or expired")
        return None
    except (KeyError, ValueError) as e:
        logger.warning("JWT payload malformed", extra_data={"error": str(e)})
        return None
