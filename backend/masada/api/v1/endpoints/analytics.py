from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from masada.core.database import get_db
from masada.core.exceptions import AuthorizationError, NotFoundError
from masada.models.analytics import Analytics
from masada.models.test import Test
from masada.models.user import User, UserType
from masada.modules.auth.dependencies import get_current_user, get_optional_user, require_roles
from masada.schemas.analytics import AnalyticsEventCreate
from masada.schemas.common import success_response
from masada.services import analytics_service

router = APIRouter()


@router.get("/dashboard")
async def dashboard(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    if current_user.user_type == UserType.CUSTOMER:
        analytics = await analytics_service.customer_dashboard(db, current_user)
    elif current_user.user_type == UserType.TESTER:
        analytics = await analytics_service.tester_dashboard(db, current_user)
    else:
        analytics = await analytics_service.platform_analytics(db)

    return success_response({"analytics": analytics})


@router.get("/tests/{test_id}")
async def get_test_analytics(
    test_id: str,
    current_user: User = Depends(require_roles(UserType.CUSTOMER, UserType.ADMIN)),
    db: AsyncSession = Depends(get_db)
):
    test = await db.get(Test, test_id)
    if test is None:
        raise NotFoundError("Test")
    if current_user.user_type != UserType.ADMIN and test.created_by_id != current_user.id:
        raise AuthorizationError("You can only view analytics for your own tests")

    return success_response({"analytics": await analytics_service.analyze_test(db, test)})


@router.get("/platform")
async def platform(
    current_user: User = Depends(require_roles(UserType.ADMIN)),
    db: AsyncSession = Depends(get_db)
):
    return success_response({"analytics": await analytics_service.platform_analytics(db)})


@router.post("/events", status_code=status.HTTP_201_CREATED)
async def track_event(
    request: Request,
    body: AnalyticsEventCreate,
    current_user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    """Store a client-side analytics event; anonymous visitors are recorded without a user"""
    if body.test_id and await db.get(Test, body.test_id) is None:
        raise NotFoundError("Test")

    db.add(Analytics(
        user_id=current_user.id if current_user else None,
        test_id=body.test_id,
        event=body.event,
        data=body.data,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    ))
    await db.commit()
    return success_response(message="Event tracked successfully")
