"""
Account and token operations behind the /auth endpoints.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from masada.core.config import settings
from masada.core.exceptions import AuthenticationError, ConflictError, NotFoundError, ValidationError
from masada.core.logging_config import logger
from masada.core.security import (
    EMAIL_VERIFICATION_TOKEN_TYPE,
    PASSWORD_RESET_TOKEN_TYPE,
    create_access_token,
    create_purpose_token,
    create_refresh_token,
    get_password_hash,
    verify_password,
    verify_purpose_token,
    verify_refresh_token,
)
from masada.models.user import CustomerProfile, RefreshToken, TesterProfile, User, UserStatus, UserType
from masada.schemas.auth import UserRegister
from masada.schemas.user import UserDetailResponse
from masada.services.email_service import email_service, queue_email
from masada.services.notification_service import notification_service

TESTER_PROFILE_FIELDS = (
    "phone", "city", "region", "age", "education", "occupation", "experience",
    "languages", "devices", "internet_speed", "availability", "motivation",
)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


def create_verification_token(user_id: str) -> str:
    return create_purpose_token(
        user_id,
        EMAIL_VERIFICATION_TOKEN_TYPE,
        timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS),
    )


def create_password_reset_token(user_id: str) -> str:
    return create_purpose_token(
        user_id,
        PASSWORD_RESET_TOKEN_TYPE,
        timedelta(hours=settings.PASSWORD_RESET_EXPIRE_HOURS),
    )


async def generate_tokens(db: AsyncSession, user: User) -> Dict[str, str]:
    """Issue an access/refresh pair and persist the refresh token"""
    access_token = create_access_token({
        "sub": str(user.id),
        "email": user.email,
        "user_type": user.user_type.value,
    })
    refresh_token = create_refresh_token(user.id)

    db.add(RefreshToken(
        token=refresh_token,
        user_id=user.id,
        expires_at=datetime.utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    ))
    await db.flush()

    return {"access_token": access_token, "refresh_token": refresh_token}


async def register_user(db: AsyncSession, data: UserRegister) -> Tuple[User, Dict[str, str]]:
    """
    Create a PENDING_VERIFICATION user with the profile matching its type.

    The verification email goes out in the background; registration
    succeeds even when SMTP is unavailable.
    """
    if await get_user_by_email(db, data.email):
        logger.log_auth_event("register", False, data.email, "Email already registered")
        raise ConflictError("User with this email already exists")

    user_type = UserType(data.user_type)
    user = User(
        email=data.email,
        password_hash=get_password_hash(data.password),
        name=data.name,
        user_type=user_type,
        status=UserStatus.PENDING_VERIFICATION,
        email_verified=False,
    )

    if user_type == UserType.CUSTOMER:
        user.customer_profile = CustomerProfile(company=f"{data.name}'s Company")
        user.tester_profile = None
    else:
        profile_data = {field: getattr(data, field) for field in TESTER_PROFILE_FIELDS}
        profile_data["languages"] = profile_data["languages"] or []
        profile_data["devices"] = profile_data["devices"] or []
        user.tester_profile = TesterProfile(**profile_data)
        user.customer_profile = None

    db.add(user)
    await db.flush()

    tokens = await generate_tokens(db, user)

    queue_email(email_service.send_verification_email(
        user.email, user.name, create_verification_token(user.id)
    ))

    logger.log_auth_event("register", True, user.email, user_type=user_type.value)
    return user, tokens


async def authenticate(db: AsyncSession, email: str, password: str) -> User:
    user = await get_user_by_email(db, email)

    if user is None or not verify_password(password, user.password_hash):
        logger.log_auth_event("login", False, email, "Invalid credentials")
        raise AuthenticationError("Invalid email or password")

    if user.status == UserStatus.SUSPENDED:
        logger.log_auth_event("login", False, email, "Account suspended")
        raise AuthenticationError("Account is suspended. Please contact support.")

    user.last_login_at = datetime.utcnow()
    logger.log_auth_event("login", True, email)
    return user


async def refresh_tokens(db: AsyncSession, refresh_token: str) -> Dict[str, str]:
    """Rotate a refresh token: the presented row is deleted, a new pair issued"""
    payload = verify_refresh_token(refresh_token)

    result = await db.execute(
        select(RefreshToken).where(
            RefreshToken.token == refresh_token,
            RefreshToken.user_id == payload["sub"],
        )
    )
    stored = result.scalar_one_or_none()
    if stored is None or stored.is_expired:
        raise AuthenticationError("Invalid or expired refresh token")

    user = await db.get(User, payload["sub"])
    if user is None or user.status != UserStatus.ACTIVE:
        raise AuthenticationError("Account is not active")

    await db.delete(stored)
    await db.flush()

    logger.log_auth_event("refresh", True, user.email)
    return await generate_tokens(db, user)


async def logout(db: AsyncSession, user: User, refresh_token: Optional[str] = None) -> int:
    """Delete one refresh token, or every token of the user"""
    stmt = delete(RefreshToken).where(RefreshToken.user_id == user.id)
    if refresh_token:
        stmt = stmt.where(RefreshToken.token == refresh_token)
    result = await db.execute(stmt)

    logger.log_auth_event("logout", True, user.email, revoked=result.rowcount)
    return result.rowcount


async def verify_email(db: AsyncSession, token: str) -> User:
    user_id = verify_purpose_token(token, EMAIL_VERIFICATION_TOKEN_TYPE, "Invalid verification token")

    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User")
    if user.email_verified:
        raise ValidationError("Email is already verified")

    now = datetime.utcnow()
    user.email_verified = True
    user.email_verified_at = now
    # Suspended or deactivated accounts stay that way
    if user.status == UserStatus.PENDING_VERIFICATION:
        user.status = UserStatus.ACTIVE
    if user.tester_profile is not None:
        user.tester_profile.is_verified = True
        user.tester_profile.verified_at = now

    await notification_service.notify_account_update(db, user.id, "Your email address has been verified.")
    queue_email(email_service.send_welcome_email(user.email, user.name, user.user_type.value))

    logger.log_auth_event("verify_email", True, user.email)
    return user


async def resend_verification(user: User) -> None:
    if user.email_verified:
        raise ValidationError("Email is already verified")

    queue_email(email_service.send_verification_email(
        user.email, user.name, create_verification_token(user.id)
    ))
    logger.log_auth_event("resend_verification", True, user.email)


async def forgot_password(db: AsyncSession, email: str) -> None:
    """Queue a reset email when the address is known; callers never learn which"""
    user = await get_user_by_email(db, email)
    if user is None:
        logger.log_auth_event("forgot_password", False, email, "Unknown email")
        return

    queue_email(email_service.send_password_reset_email(
        user.email, user.name, create_password_reset_token(user.id)
    ))
    logger.log_auth_event("forgot_password", True, user.email)


async def reset_password(db: AsyncSession, token: str, new_password: str) -> User:
    user_id = verify_purpose_token(token, PASSWORD_RESET_TOKEN_TYPE, "Invalid reset token")

    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User")

    user.password_hash = get_password_hash(new_password)
    await db.execute(delete(RefreshToken).where(RefreshToken.user_id == user.id))

    logger.log_auth_event("reset_password", True, user.email)
    return user


async def change_password(db: AsyncSession, user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.password_hash):
        logger.log_auth_event("change_password", False, user.email, "Wrong current password")
        raise AuthenticationError("Current password is incorrect")

    user.password_hash = get_password_hash(new_password)
    db.add(user)
    await notification_service.notify_account_update(db, user.id, "Your password was changed.")
    logger.log_auth_event("change_password", True, user.email)


async def cleanup_expired_tokens(db: AsyncSession) -> int:
    result = await db.execute(
        delete(RefreshToken).where(RefreshToken.expires_at < datetime.utcnow())
    )
    if result.rowcount:
        logger.info(f"[Auth] Removed {result.rowcount} expired refresh tokens")
    return result.rowcount


def auth_payload(user: User, tokens: Dict[str, str]) -> Dict[str, Any]:
    return {
        "user": UserDetailResponse.model_validate(user).model_dump(mode="json"),
        **tokens,
    }
