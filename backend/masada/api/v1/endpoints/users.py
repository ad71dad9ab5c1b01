from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from masada.core.database import get_db
from masada.core.logging_config import logger
from masada.models.analytics import Analytics
from masada.models.notification import Notification
from masada.models.payment import Payment, PaymentStatus
from masada.models.test import Test
from masada.models.user import CustomerProfile, RefreshToken, TesterProfile, User, UserStatus, UserType
from masada.modules.auth.dependencies import get_current_user, require_roles
from masada.schemas.common import PaginationParams, success_response
from masada.schemas.user import (
    ActivityResponse,
    CustomerProfileUpdate,
    NotificationResponse,
    ProfileUpdate,
    TesterProfileUpdate,
    UserDetailResponse,
    UserResponse,
)
from masada.services import test_lifecycle
from masada.services.notification_service import notification_service

router = APIRouter()


def serialize_user(user: User):
    return UserDetailResponse.model_validate(user).model_dump(mode="json")


@router.get("")
async def list_users(
    user_type: Optional[UserType] = None,
    status: Optional[UserStatus] = None,
    params: PaginationParams = Depends(),
    current_user: User = Depends(require_roles(UserType.ADMIN)),
    db: AsyncSession = Depends(get_db)
):
    """List all users (admin only)"""
    conditions = []
    if user_type:
        conditions.append(User.user_type == user_type)
    if status:
        conditions.append(User.status == status)

    total = (await db.execute(select(func.count(User.id)).where(*conditions))).scalar_one()
    result = await db.execute(
        select(User)
        .where(*conditions)
        .order_by(params.order_by(User))
        .offset(params.offset)
        .limit(params.limit)
    )
    return success_response({
        "users": [UserResponse.model_validate(u).model_dump(mode="json") for u in result.scalars().all()],
        "pagination": params.pagination(total).model_dump(),
    })


@router.get("/profile")
async def get_profile(current_user: User = Depends(get_current_user)):
    return success_response({"user": serialize_user(current_user)})


@router.put("/profile")
async def update_profile(
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    for field, value in body.model_dump(mode="json", exclude_unset=True).items():
        setattr(current_user, field, value)
    await db.commit()

    logger.info(f"[Users] Profile updated for {current_user.id}")
    return success_response({"user": serialize_user(current_user)}, "Profile updated successfully")


@router.put("/customer-profile")
async def update_customer_profile(
    body: CustomerProfileUpdate,
    current_user: User = Depends(require_roles(UserType.CUSTOMER)),
    db: AsyncSession = Depends(get_db)
):
    profile = current_user.customer_profile
    if profile is None:
        profile = CustomerProfile(user_id=current_user.id)
        db.add(profile)
        current_user.customer_profile = profile

    for field, value in body.model_dump(mode="json", exclude_unset=True).items():
        setattr(profile, field, value)
    await db.commit()

    return success_response({"user": serialize_user(current_user)}, "Customer profile updated successfully")


@router.put("/tester-profile")
async def update_tester_profile(
    body: TesterProfileUpdate,
    current_user: User = Depends(require_roles(UserType.TESTER)),
    db: AsyncSession = Depends(get_db)
):
    profile = current_user.tester_profile
    if profile is None:
        profile = TesterProfile(user_id=current_user.id, languages=[], devices=[])
        db.add(profile)
        current_user.tester_profile = profile

    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(profile, field, value)
    await db.commit()

    return success_response({"user": serialize_user(current_user)}, "Tester profile updated successfully")


@router.get("/dashboard-stats")
async def dashboard_stats(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    if current_user.user_type == UserType.CUSTOMER:
        owned = Test.created_by_id == current_user.id
        tests_created = (await db.execute(select(func.count(Test.id)).where(owned))).scalar_one()
        active_tests = (await db.execute(
            select(func.count(Test.id)).where(owned, Test.status.in_(test_lifecycle.OPEN_STATUSES))
        )).scalar_one()
        total_spent = (await db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.customer_id == current_user.id,
                Payment.status == PaymentStatus.COMPLETED,
            )
        )).scalar_one()
        stats = {
            "tests_created": tests_created,
            "active_tests": active_tests,
            "total_spent": float(total_spent),
        }
    elif current_user.user_type == UserType.TESTER:
        profile = current_user.tester_profile
        stats = {
            "completed_tests": profile.completed_tests if profile else 0,
            "total_earnings": profile.total_earnings if profile else 0.0,
            "rating": profile.rating if profile else 0.0,
            "level": profile.level.value if profile else None,
        }
    else:
        stats = {
            "total_users": (await db.execute(select(func.count(User.id)))).scalar_one(),
            "total_tests": (await db.execute(select(func.count(Test.id)))).scalar_one(),
        }

    return success_response({"stats": stats})


@router.get("/notifications")
async def list_notifications(
    unread_only: bool = Query(False),
    params: PaginationParams = Depends(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    conditions = [Notification.user_id == current_user.id]
    if unread_only:
        conditions.append(Notification.is_read.is_(False))

    total = (await db.execute(select(func.count(Notification.id)).where(*conditions))).scalar_one()
    result = await db.execute(
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc())
        .offset(params.offset)
        .limit(params.limit)
    )
    return success_response({
        "notifications": [
            NotificationResponse.model_validate(n).model_dump(mode="json") for n in result.scalars().all()
        ],
        "pagination": params.pagination(total).model_dump(),
    })


@router.get("/notifications/unread-count")
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    count = await notification_service.get_unread_count(db, current_user.id)
    return success_response({"count": count})


@router.put("/notifications/read-all")
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    updated = await notification_service.mark_all_as_read(db, current_user.id)
    await db.commit()
    return success_response({"updated": updated}, "All notifications marked as read")


@router.put("/notifications/{notification_id}/read")
async def mark_read(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    notification = await notification_service.mark_as_read(db, current_user.id, notification_id)
    await db.commit()
    return success_response(
        {"notification": NotificationResponse.model_validate(notification).model_dump(mode="json")},
        "Notification marked as read",
    )


@router.get("/activity")
async def recent_activity(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(Analytics)
        .where(Analytics.user_id == current_user.id)
        .order_by(Analytics.created_at.desc())
        .limit(50)
    )
    return success_response({
        "activity": [ActivityResponse.model_validate(a).model_dump(mode="json") for a in result.scalars().all()]
    })


@router.delete("/account")
async def delete_account(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Soft delete: the account is deactivated and every session revoked"""
    current_user.status = UserStatus.INACTIVE
    await db.execute(delete(RefreshToken).where(RefreshToken.user_id == current_user.id))
    await db.commit()

    logger.log_auth_event("account_deleted", True, current_user.email)
    return success_response(message="Account deleted successfully")
