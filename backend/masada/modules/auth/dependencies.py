from datetime import datetime, timedelta
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from masada.core.database import get_db
from masada.core.exceptions import AuthenticationError, AuthorizationError, MasadaError
from masada.core.logging_config import set_user_id
from masada.core.security import verify_access_token
from masada.models.user import User, UserStatus, UserType

# auto_error=False so a missing header maps to our own 401 envelope
security = HTTPBearer(auto_error=False)

LAST_LOGIN_REFRESH = timedelta(hours=1)


async def authenticate_token(
    db: AsyncSession,
    token: str,
    allowed_statuses=(UserStatus.ACTIVE,),
) -> User:
    """Resolve an access token to a user, enforcing account status"""
    payload = verify_access_token(token)

    user = await db.get(User, payload["sub"])
    if user is None:
        raise AuthenticationError("User not found")

    if user.status not in allowed_statuses:
        raise AuthenticationError("Account is not active")

    return user


async def _resolve_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
    db: AsyncSession,
    allowed_statuses,
) -> User:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access token required")

    user = await authenticate_token(db, credentials.credentials, allowed_statuses)

    now = datetime.utcnow()
    if user.last_login_at is None or now - user.last_login_at > LAST_LOGIN_REFRESH:
        user.last_login_at = now

    set_user_id(user.id)
    request.state.user_id = user.id
    return user


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get current authenticated, ACTIVE user"""
    return await _resolve_user(request, credentials, db, (UserStatus.ACTIVE,))


async def get_current_user_allow_pending(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Like get_current_user, but also lets unverified accounts through"""
    return await _resolve_user(
        request, credentials, db, (UserStatus.ACTIVE, UserStatus.PENDING_VERIFICATION)
    )


def require_roles(*roles: UserType) -> Callable:
    """
    Dependency factory restricting an endpoint to the given user types.

    Usage:
        @router.post("/", dependencies=[Depends(require_roles(UserType.CUSTOMER))])
    """
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.user_type not in roles:
            raise AuthorizationError("Insufficient permissions")
        return current_user

    return checker


async def require_email_verified(
    current_user: User = Depends(get_current_user)
) -> User:
    if not current_user.email_verified:
        raise AuthorizationError("Email verification required")
    return current_user


async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Optional[User]:
    """Current user when a valid token is sent, otherwise None"""
    if credentials is None:
        return None
    try:
        return await _resolve_user(request, credentials, db, (UserStatus.ACTIVE,))
    except MasadaError:
        return None
