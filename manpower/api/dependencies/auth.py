"""
FastAPI dependencies for authenticating API callers

Usage:
    @router.get("/wallet")
    async def wallet(
        user: User = Depends(require_role(UserRole.WORKER)),
        db: AsyncSession = Depends(get_db),
    ):
        ...
"""
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from manpower.core.auth import verify_token
from manpower.core.exceptions import ForbiddenError, UnauthorizedError
from manpower.core.logging import get_logger
from manpower.db.database import get_db
from manpower.db.models.user import User, UserRole

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def authenticate_token(token: Optional[str], db: AsyncSession) -> User:
    """
    Resolve a bearer token to an active user.

    Shared by the HTTP dependency and the WebSocket handshake.

    Raises:
        UnauthorizedError: missing/invalid/expired token, or the user is
            gone or deactivated.
    """
    if not token:
        raise UnauthorizedError("Not authorized, no token")

    token_data = verify_token(token)
    if not token_data:
        raise UnauthorizedError("Not authorized, token failed")

    user = await db.get(User, token_data.user_id)
    if not user or not user.is_active:
        logger.warning(
            "API access denied - user missing or inactive",
            extra_data={
                "user_id": token_data.user_id,
                "user_found": user is not None,
            },
        )
        raise UnauthorizedError("Not authorized, user not found")

    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Authenticated caller (401 otherwise)"""
    return await authenticate_token(credentials.credentials if credentials else None, db)


def require_role(*roles: UserRole):
    """Dependency factory: the caller must hold one of ``roles`` (403 otherwise)"""

    async def _require_role(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            logger.warning(
                "API access denied - wrong role",
                extra_data={
                    "user_id": user.id,
                    "role": user.role.value,
                    "required": [r.value for r in roles],
                },
            )
            raise ForbiddenError(
                f"User role {user.role.value} is not authorized to access this route"
            )
        return user

    return _require_role
