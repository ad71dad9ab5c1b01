from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from masada.core.database import get_db
from masada.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from masada.core.logging_config import logger
from masada.models.session import TestSession, TesterSession
from masada.models.test import Platform, Test, TestAsset, TestStatus, TestType
from masada.models.user import CustomerProfile, User, UserType
from masada.modules.auth.dependencies import get_current_user, require_email_verified, require_roles
from masada.schemas.common import PaginationParams, success_response
from masada.schemas.test import InviteTestersRequest, TestCreate, TestResponse, TestUpdate
from masada.services import analytics_service, test_lifecycle
from masada.services.notification_service import notification_service
from masada.services.realtime_service import realtime_service
from masada.services.upload_service import upload_service

router = APIRouter()


def serialize_test(test: Test, creator: Optional[User] = None) -> Dict[str, Any]:
    data = TestResponse.model_validate(test).model_dump(mode="json")
    if creator is not None:
        data["created_by"] = {"id": creator.id, "name": creator.name, "email": creator.email}
    return data


async def get_test_or_404(db: AsyncSession, test_id: str) -> Test:
    test = await db.get(Test, test_id)
    if test is None:
        raise NotFoundError("Test")
    return test


def ensure_owner(test: Test, user: User, message: str = "You can only modify your own tests"):
    if user.user_type == UserType.ADMIN:
        return
    if test.created_by_id != user.id:
        raise AuthorizationError(message)


async def apply_status_change(
    db: AsyncSession,
    test: Test,
    target: TestStatus,
    user: User,
) -> Dict[str, Any]:
    previous = test_lifecycle.transition(test, target)
    await db.flush()
    return await realtime_service.handle_test_status_change(db, test, previous, user)


@router.get("")
async def list_tests(
    status_filter: Optional[TestStatus] = Query(None, alias="status"),
    test_type: Optional[TestType] = None,
    platform: Optional[Platform] = None,
    params: PaginationParams = Depends(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    List tests visible to the caller.

    Customers see their own tests, testers see open tests, admins see all.
    """
    conditions = []
    if current_user.user_type == UserType.CUSTOMER:
        conditions.append(Test.created_by_id == current_user.id)
    elif current_user.user_type == UserType.TESTER:
        conditions.append(Test.status.in_(test_lifecycle.OPEN_STATUSES))

    if status_filter:
        conditions.append(Test.status == status_filter)
    if test_type:
        conditions.append(Test.test_type == test_type)
    if platform:
        conditions.append(Test.platform == platform)

    total = (await db.execute(select(func.count(Test.id)).where(*conditions))).scalar_one()
    result = await db.execute(
        select(Test)
        .where(*conditions)
        .order_by(params.order_by(Test))
        .offset(params.offset)
        .limit(params.limit)
    )
    tests = result.scalars().all()

    return success_response({
        "tests": [serialize_test(t) for t in tests],
        "pagination": params.pagination(total).model_dump(),
    })


@router.get("/tester/available")
async def available_tests(
    platform: Optional[Platform] = None,
    min_pay: Optional[float] = Query(None, ge=0),
    max_duration: Optional[int] = Query(None, ge=1),
    current_user: User = Depends(require_roles(UserType.TESTER)),
    db: AsyncSession = Depends(get_db)
):
    """Newest open tests that still have free slots"""
    conditions = [
        Test.status.in_(test_lifecycle.OPEN_STATUSES),
        Test.current_testers < Test.max_testers,
    ]
    if platform:
        conditions.append(Test.platform == platform)
    if min_pay is not None:
        conditions.append(Test.payment_per_tester >= min_pay)
    if max_duration is not None:
        conditions.append(Test.estimated_duration <= max_duration)

    result = await db.execute(
        select(Test).where(*conditions).order_by(Test.created_at.desc()).limit(50)
    )
    return success_response({"tests": [serialize_test(t) for t in result.scalars().all()]})


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_test(
    test_data: TestCreate,
    current_user: User = Depends(require_roles(UserType.CUSTOMER)),
    _verified: User = Depends(require_email_verified),
    db: AsyncSession = Depends(get_db)
):
    test = Test(
        **test_data.model_dump(mode="json", exclude={"test_type", "platform"}),
        test_type=test_data.test_type,
        platform=test_data.platform,
        status=TestStatus.DRAFT,
        current_testers=0,
        created_by_id=current_user.id,
    )
    db.add(test)

    await db.execute(
        update(CustomerProfile)
        .where(CustomerProfile.user_id == current_user.id)
        .values(tests_created=CustomerProfile.tests_created + 1)
        .execution_options(synchronize_session=False)
    )
    await db.flush()

    await db.commit()
    logger.info(f"[Tests] Created test {test.id} by {current_user.id}")
    return success_response({"test": serialize_test(test)}, "Test created successfully")


@router.get("/{test_id}")
async def get_test(
    test_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    test = await get_test_or_404(db, test_id)

    if current_user.user_type == UserType.CUSTOMER and test.created_by_id != current_user.id:
        raise AuthorizationError("You can only view your own tests")
    if current_user.user_type == UserType.TESTER and not test_lifecycle.is_open_for_testing(test):
        raise AuthorizationError("Test is not available for testing")

    creator = await db.get(User, test.created_by_id)
    return success_response({"test": serialize_test(test, creator)})


@router.put("/{test_id}")
async def update_test(
    test_id: str,
    test_data: TestUpdate,
    current_user: User = Depends(require_roles(UserType.CUSTOMER, UserType.ADMIN)),
    db: AsyncSession = Depends(get_db)
):
    test = await get_test_or_404(db, test_id)
    ensure_owner(test, current_user)

    if test.status == TestStatus.RUNNING:
        raise ValidationError("Cannot update a running test")
    if test.status in (TestStatus.COMPLETED, TestStatus.CANCELLED):
        raise ValidationError(f"Cannot update a {test.status.value.lower()} test")

    changes = test_data.model_dump(mode="json", exclude_unset=True)
    if "max_testers" in changes and changes["max_testers"] < test.current_testers:
        raise ValidationError("max_testers cannot be lower than the current number of testers")
    for field, value in changes.items():
        if field == "test_type":
            value = TestType(value)
        elif field == "platform":
            value = Platform(value)
        setattr(test, field, value)
    await db.flush()

    await db.commit()
    logger.info(f"[Tests] Updated test {test.id}: {sorted(changes)}")
    return success_response({"test": serialize_test(test)}, "Test updated successfully")


@router.post("/{test_id}/publish")
async def publish_test(
    test_id: str,
    current_user: User = Depends(require_roles(UserType.CUSTOMER, UserType.ADMIN)),
    db: AsyncSession = Depends(get_db)
):
    test = await get_test_or_404(db, test_id)
    ensure_owner(test, current_user)

    if test.status != TestStatus.DRAFT:
        raise ValidationError("Only draft tests can be published")

    result = await apply_status_change(db, test, TestStatus.PUBLISHED, current_user)
    await db.commit()
    return success_response(
        {"test": serialize_test(test), "invited_testers": result.get("invited_testers", 0)},
        "Test published successfully",
    )


@router.post("/{test_id}/pause")
async def pause_test(
    test_id: str,
    current_user: User = Depends(require_roles(UserType.CUSTOMER, UserType.ADMIN)),
    db: AsyncSession = Depends(get_db)
):
    test = await get_test_or_404(db, test_id)
    ensure_owner(test, current_user)

    if test.status != TestStatus.RUNNING:
        raise ValidationError("Only running tests can be paused")

    await apply_status_change(db, test, TestStatus.PAUSED, current_user)
    await db.commit()
    return success_response({"test": serialize_test(test)}, "Test paused successfully")


@router.post("/{test_id}/resume")
async def resume_test(
    test_id: str,
    current_user: User = Depends(require_roles(UserType.CUSTOMER, UserType.ADMIN)),
    db: AsyncSession = Depends(get_db)
):
    test = await get_test_or_404(db, test_id)
    ensure_owner(test, current_user)

    if test.status != TestStatus.PAUSED:
        raise ValidationError("Only paused tests can be resumed")

    await apply_status_change(db, test, TestStatus.RUNNING, current_user)
    await db.commit()
    return success_response({"test": serialize_test(test)}, "Test resumed successfully")


@router.post("/{test_id}/complete")
async def complete_test(
    test_id: str,
    current_user: User = Depends(require_roles(UserType.CUSTOMER, UserType.ADMIN)),
    db: AsyncSession = Depends(get_db)
):
    test = await get_test_or_404(db, test_id)
    ensure_owner(test, current_user)

    if test.status == TestStatus.COMPLETED:
        raise ValidationError("Test is already completed")

    result = await apply_status_change(db, test, TestStatus.COMPLETED, current_user)
    await db.commit()
    return success_response(
        {"test": serialize_test(test), "completed_sessions": result.get("completed_sessions", 0)},
        "Test completed successfully",
    )


@router.post("/{test_id}/cancel")
async def cancel_test(
    test_id: str,
    current_user: User = Depends(require_roles(UserType.CUSTOMER, UserType.ADMIN)),
    db: AsyncSession = Depends(get_db)
):
    test = await get_test_or_404(db, test_id)
    ensure_owner(test, current_user)

    result = await apply_status_change(db, test, TestStatus.CANCELLED, current_user)
    await db.commit()
    return success_response(
        {"test": serialize_test(test), "cancelled_sessions": result.get("cancelled_sessions", 0)},
        "Test cancelled successfully",
    )


@router.delete("/{test_id}")
async def delete_test(
    test_id: str,
    current_user: User = Depends(require_roles(UserType.CUSTOMER, UserType.ADMIN)),
    db: AsyncSession = Depends(get_db)
):
    test = await get_test_or_404(db, test_id)
    ensure_owner(test, current_user)

    session_count = (await db.execute(
        select(func.count(TesterSession.id)).where(TesterSession.test_id == test.id)
    )).scalar_one()
    if test.status == TestStatus.RUNNING or session_count > 0:
        raise ValidationError("Cannot delete a test that has started or has tester sessions")

    assets = (await db.execute(select(TestAsset).where(TestAsset.test_id == test.id))).scalars().all()
    for asset in assets:
        await upload_service.delete("test-assets", asset.file_name, missing_ok=True)
    await db.execute(delete(TestAsset).where(TestAsset.test_id == test.id))
    await db.execute(delete(TestSession).where(TestSession.test_id == test.id))
    await db.execute(delete(Test).where(Test.id == test.id))
    await db.commit()
    logger.info(f"[Tests] Deleted test {test_id}")
    return success_response(message="Test deleted successfully")


@router.post("/{test_id}/duplicate", status_code=status.HTTP_201_CREATED)
async def duplicate_test(
    test_id: str,
    current_user: User = Depends(require_roles(UserType.CUSTOMER, UserType.ADMIN)),
    db: AsyncSession = Depends(get_db)
):
    original = await get_test_or_404(db, test_id)
    ensure_owner(original, current_user)

    copy = Test(
        title=f"{original.title} (Copy)"[:200],
        description=original.description,
        instructions=original.instructions,
        test_type=original.test_type,
        platform=original.platform,
        target_url=original.target_url,
        status=TestStatus.DRAFT,
        max_testers=original.max_testers,
        current_testers=0,
        payment_per_tester=original.payment_per_tester,
        estimated_duration=original.estimated_duration,
        requirements=list(original.requirements or []),
        tasks=original.tasks,
        demographics=original.demographics,
        created_by_id=current_user.id,
    )
    db.add(copy)
    await db.commit()

    return success_response({"test": serialize_test(copy)}, "Test duplicated successfully")


@router.post("/{test_id}/invite-testers")
async def invite_testers(
    test_id: str,
    body: InviteTestersRequest,
    current_user: User = Depends(require_roles(UserType.CUSTOMER, UserType.ADMIN)),
    db: AsyncSession = Depends(get_db)
):
    test = await get_test_or_404(db, test_id)
    ensure_owner(test, current_user)

    if test.status in (TestStatus.COMPLETED, TestStatus.CANCELLED):
        raise ValidationError("Cannot invite testers to a closed test")

    invited = await notification_service.invite_testers_by_email(db, test, body.emails)
    await db.commit()
    return success_response({"invited": invited}, f"Invitations sent to {invited} testers")


@router.get("/{test_id}/analytics")
async def get_test_analytics(
    test_id: str,
    current_user: User = Depends(require_roles(UserType.CUSTOMER, UserType.ADMIN)),
    db: AsyncSession = Depends(get_db)
):
    test = await get_test_or_404(db, test_id)
    ensure_owner(test, current_user, "You can only view analytics for your own tests")

    return success_response({"analytics": await analytics_service.analyze_test(db, test)})
