"""
Tester session lifecycle: start, complete, cancel.

Shared by the REST endpoints and the WebSocket handlers so both paths
apply the same capacity and completion rules.
"""

from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from masada.core.exceptions import ConflictError, NotFoundError, TestCapacityError, ValidationError
from masada.core.logging_config import logger
from masada.models.payment import Currency, Earning, EarningStatus
from masada.models.session import ACTIVE_SESSION_STATUSES, SessionStatus, TestSession, TesterSession
from masada.models.test import Test, TestStatus
from masada.models.user import TesterProfile, User
from masada.services import test_lifecycle
from masada.services.notification_service import notification_service


# Moves a tester session may make; the three closed statuses are final
SESSION_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({
        SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED,
    }),
    SessionStatus.IN_PROGRESS: frozenset({
        SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED,
    }),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.FAILED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
}


def check_session_update(session: TesterSession, target: Optional[SessionStatus] = None):
    """
    Raise ValidationError unless the session is still active and may move
    to target. Keeping the current active status is allowed.
    """
    current = session.status
    if current not in ACTIVE_SESSION_STATUSES:
        raise ValidationError(f"Cannot update a {current.value.lower()} session")
    if target is not None and target != current and target not in SESSION_TRANSITIONS[current]:
        raise ValidationError(f"Cannot change session status from {current.value} to {target.value}")


async def start_session(
    db: AsyncSession,
    tester: User,
    test_id: str,
    device_info: Dict[str, Any],
) -> Tuple[TesterSession, Test, Optional[TestStatus]]:
    """
    Claim a tester slot on a test and open a TesterSession.

    Returns (session, test, previous_status); previous_status is set when
    the first session moved the test from PUBLISHED to RUNNING.
    """
    test = await db.get(Test, test_id)
    if test is None:
        raise NotFoundError("Test")
    if not test_lifecycle.is_open_for_testing(test):
        raise ValidationError("Test is not available for testing")

    existing = await db.execute(
        select(TesterSession.id).where(
            TesterSession.test_id == test.id,
            TesterSession.tester_id == tester.id,
            TesterSession.status.in_(ACTIVE_SESSION_STATUSES),
        )
    )
    if existing.first() is not None:
        raise ConflictError("You already have an active session for this test")

    # Check-and-increment in one statement so concurrent starts cannot overfill
    claimed = await db.execute(
        update(Test)
        .where(
            Test.id == test.id,
            Test.current_testers < Test.max_testers,
            Test.status.in_(test_lifecycle.OPEN_STATUSES),
        )
        .values(current_testers=Test.current_testers + 1)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        raise TestCapacityError()
    await db.refresh(test)

    previous_status = None
    if test.status == TestStatus.PUBLISHED:
        previous_status = test_lifecycle.transition(test, TestStatus.RUNNING)

    now = datetime.utcnow()
    result = await db.execute(
        select(TestSession).where(
            TestSession.test_id == test.id,
            TestSession.status == SessionStatus.IN_PROGRESS,
        )
    )
    test_session = result.scalars().first()
    if test_session is None:
        test_session = TestSession(
            test_id=test.id,
            customer_id=test.created_by_id,
            status=SessionStatus.IN_PROGRESS,
            started_at=now,
        )
        db.add(test_session)
        await db.flush()

    session = TesterSession(
        test_id=test.id,
        tester_id=tester.id,
        test_session_id=test_session.id,
        status=SessionStatus.IN_PROGRESS,
        started_at=now,
        device_info=device_info,
    )
    db.add(session)
    await db.flush()

    logger.log_test_session("started", session.id, test.id, tester.id,
                            current_testers=test.current_testers)
    return session, test, previous_status


async def release_slot(db: AsyncSession, test_id: str):
    """Give a tester slot back, never going below zero"""
    await db.execute(
        update(Test)
        .where(Test.id == test_id, Test.current_testers > 0)
        .values(current_testers=Test.current_testers - 1)
        .execution_options(synchronize_session=False)
    )


async def recompute_tester_rating(db: AsyncSession, tester_id: str) -> Optional[float]:
    """Average rating over the tester's rated, completed sessions"""
    result = await db.execute(
        select(func.avg(TesterSession.rating)).where(
            TesterSession.tester_id == tester_id,
            TesterSession.status == SessionStatus.COMPLETED,
            TesterSession.rating.is_not(None),
        )
    )
    average = result.scalar_one_or_none()
    return round(float(average), 2) if average is not None else None


async def count_completed_sessions(db: AsyncSession, test_id: str) -> int:
    result = await db.execute(
        select(func.count(TesterSession.id)).where(
            TesterSession.test_id == test_id,
            TesterSession.status == SessionStatus.COMPLETED,
        )
    )
    return result.scalar_one()


async def complete_session(
    db: AsyncSession,
    session: TesterSession,
    tester: User,
    feedback: Optional[str] = None,
    rating: Optional[int] = None,
    task_results: Optional[Any] = None,
) -> Tuple[TesterSession, Test, Earning, bool]:
    """
    Mark a session COMPLETED and pay the tester.

    Only PENDING or IN_PROGRESS sessions can complete. The status flip is
    a conditional UPDATE on those statuses, so a second completion (or one
    racing a cancel) fails instead of creating another Earning.
    Returns (session, test, earning, test_completed).
    """
    check_session_update(session, SessionStatus.COMPLETED)

    now = datetime.utcnow()
    values: Dict[str, Any] = {
        "status": SessionStatus.COMPLETED,
        "completed_at": now,
        "updated_at": now,
    }
    if session.started_at:
        values["duration"] = max(int((now - session.started_at).total_seconds()), 0)
    if feedback is not None:
        values["feedback"] = feedback
    if rating is not None:
        values["rating"] = rating
    if task_results is not None:
        values["task_results"] = task_results

    result = await db.execute(
        update(TesterSession)
        .where(
            TesterSession.id == session.id,
            TesterSession.status.in_(ACTIVE_SESSION_STATUSES),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(session)
    if result.rowcount == 0:
        raise ValidationError(f"Cannot update a {session.status.value.lower()} session")

    test = await db.get(Test, session.test_id)

    earning = Earning(
        tester_id=tester.id,
        tester_session_id=session.id,
        test_id=test.id,
        amount=test.payment_per_tester,
        currency=Currency.ETB,
        status=EarningStatus.PENDING,
        description=f"Payment for completing test: {test.title}",
    )
    db.add(earning)
    await db.flush()

    profile = (await db.execute(
        select(TesterProfile).where(TesterProfile.user_id == tester.id)
    )).scalar_one_or_none()
    if profile is not None:
        profile.completed_tests = (profile.completed_tests or 0) + 1
        profile.total_earnings = (profile.total_earnings or 0.0) + earning.amount
        new_rating = await recompute_tester_rating(db, tester.id)
        if new_rating is not None:
            profile.rating = new_rating

    await notification_service.notify_session_completed(db, session, test, tester, earning.amount)

    test_completed = await check_test_completion(db, test)

    logger.log_test_session("completed", session.id, test.id, tester.id,
                            duration=session.duration, rating=session.rating)
    return session, test, earning, test_completed


async def check_test_completion(db: AsyncSession, test: Test) -> bool:
    """
    Complete the test once every tester slot has a completed session.

    Only the status moves here; callers run the completion side effects.
    """
    if test.status in (TestStatus.COMPLETED, TestStatus.CANCELLED):
        return False

    completed = await count_completed_sessions(db, test.id)
    if completed < test.max_testers:
        return False

    test_lifecycle.transition(test, TestStatus.COMPLETED)
    logger.info(f"[Sessions] Test {test.id} auto-completed after {completed} sessions")
    return True


async def cancel_session(db: AsyncSession, session: TesterSession) -> TesterSession:
    if session.status == SessionStatus.COMPLETED:
        raise ValidationError("Cannot cancel a completed session")
    return await end_session(db, session, SessionStatus.CANCELLED)


async def end_session(db: AsyncSession, session: TesterSession, status: SessionStatus) -> TesterSession:
    """Close an active session as FAILED or CANCELLED and give its slot back"""
    if status not in (SessionStatus.FAILED, SessionStatus.CANCELLED):
        raise ValidationError(f"Cannot end a session as {status.value}")
    check_session_update(session, status)

    session.status = status
    await release_slot(db, session.test_id)

    logger.log_test_session(status.value.lower(), session.id, session.test_id, session.tester_id)
    return session
