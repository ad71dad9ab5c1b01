from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from masada.core.database import get_db
from masada.core.rate_limiter import auth_rate_limit, password_reset_rate_limit
from masada.models.user import User
from masada.modules.auth.dependencies import get_current_user, get_current_user_allow_pending
from masada.schemas.auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LogoutRequest,
    RefreshTokenRequest,
    ResetPasswordRequest,
    TesterRegister,
    UserLogin,
    UserRegister,
    VerifyEmailRequest,
)
from masada.schemas.common import success_response
from masada.schemas.user import UserDetailResponse
from masada.services import auth_service

router = APIRouter()

REGISTRATION_MESSAGE = "Registration successful. Please check your email to verify your account."
FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."


@router.post("/register", status_code=status.HTTP_201_CREATED)
@auth_rate_limit()
async def register(
    request: Request,
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db)
):
    """Register a customer or tester (rate limited: 5 per 15 minutes)"""
    user, tokens = await auth_service.register_user(db, user_data)
    await db.commit()
    return success_response(auth_service.auth_payload(user, tokens), REGISTRATION_MESSAGE)


@router.post("/register/tester", status_code=status.HTTP_201_CREATED)
@auth_rate_limit()
async def register_tester(
    request: Request,
    user_data: TesterRegister,
    db: AsyncSession = Depends(get_db)
):
    """Register a tester; demographic fields are mandatory here"""
    user, tokens = await auth_service.register_user(db, user_data)
    await db.commit()
    return success_response(auth_service.auth_payload(user, tokens), REGISTRATION_MESSAGE)


@router.post("/login")
@auth_rate_limit()
async def login(
    request: Request,
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db)
):
    user = await auth_service.authenticate(db, credentials.email, credentials.password)
    tokens = await auth_service.generate_tokens(db, user)
    await db.commit()
    return success_response(auth_service.auth_payload(user, tokens), "Login successful")


@router.post("/refresh")
async def refresh_token(
    token_data: RefreshTokenRequest,
    db: AsyncSession = Depends(get_db)
):
    """Exchange a refresh token for a new pair; the old token stops working"""
    tokens = await auth_service.refresh_tokens(db, token_data.refresh_token)
    await db.commit()
    return success_response(tokens, "Token refreshed successfully")


@router.post("/logout")
async def logout(
    body: LogoutRequest,
    current_user: User = Depends(get_current_user_allow_pending),
    db: AsyncSession = Depends(get_db)
):
    await auth_service.logout(db, current_user, body.refresh_token)
    await db.commit()
    return success_response(message="Logged out successfully")


@router.post("/verify-email")
async def verify_email(
    body: VerifyEmailRequest,
    db: AsyncSession = Depends(get_db)
):
    user = await auth_service.verify_email(db, body.token)
    await db.commit()
    return success_response(
        {"user": UserDetailResponse.model_validate(user).model_dump(mode="json")},
        "Email verified successfully",
    )


@router.post("/resend-verification")
async def resend_verification(
    current_user: User = Depends(get_current_user_allow_pending)
):
    await auth_service.resend_verification(current_user)
    return success_response(message="Verification email sent")


@router.post("/forgot-password")
@password_reset_rate_limit()
async def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db)
):
    """Always answers the same way so addresses cannot be probed"""
    await auth_service.forgot_password(db, body.email)
    return success_response(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password")
async def reset_password(
    body: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db)
):
    await auth_service.reset_password(db, body.token, body.password)
    await db.commit()
    return success_response(message="Password reset successfully")


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await auth_service.change_password(db, current_user, body.current_password, body.new_password)
    await db.commit()
    return success_response(message="Password changed successfully")


@router.get("/me")
async def get_me(
    current_user: User = Depends(get_current_user_allow_pending)
):
    return success_response(
        {"user": UserDetailResponse.model_validate(current_user).model_dump(mode="json")}
    )
