"""
Real-time side effects shared by the WebSocket handlers and REST endpoints.

Status changes, session progress and completions all end up here so the
notifications and room broadcasts are the same whichever path triggered
them. Nothing in this module commits; callers own the transaction.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Set, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from masada.core.logging_config import logger
from masada.models.analytics import Analytics
from masada.models.payment import Earning, Payment
from masada.models.session import ACTIVE_SESSION_STATUSES, SessionStatus, TesterSession
from masada.models.test import Test, TestStatus
from masada.models.user import User, UserType
from masada.services import session_service, test_lifecycle
from masada.services.notification_service import notification_service
from masada.services.socket_manager import EventType, connection_manager

NEAR_COMPLETION_PERCENT = 80
RECORDED_SCREEN_EVENTS = ("click", "scroll", "navigation")


class RealtimeService:

    def __init__(self):
        # Sessions whose owner was already told they are nearly done
        self._near_completion_notified: Set[str] = set()

    async def verify_test_access(self, db: AsyncSession, user: User, test_id: str) -> Optional[Test]:
        """Test the user may watch: owner, tester on an open test, or admin"""
        test = await db.get(Test, test_id)
        if test is None:
            return None
        if user.user_type == UserType.ADMIN:
            return test
        if user.user_type == UserType.CUSTOMER and test.created_by_id == user.id:
            return test
        if user.user_type == UserType.TESTER and test_lifecycle.is_open_for_testing(test):
            return test
        return None

    async def get_test_status(self, db: AsyncSession, test: Test) -> Dict[str, Any]:
        result = await db.execute(
            select(TesterSession.status, func.count(TesterSession.id))
            .where(TesterSession.test_id == test.id)
            .group_by(TesterSession.status)
        )
        counts = {status: count for status, count in result.all()}
        return {
            "id": test.id,
            "title": test.title,
            "status": test.status.value,
            "current_testers": test.current_testers,
            "max_testers": test.max_testers,
            "active_sessions": sum(counts.get(s, 0) for s in ACTIVE_SESSION_STATUSES),
            "completed_sessions": counts.get(SessionStatus.COMPLETED, 0),
            "participants": connection_manager.get_test_room_participants(test.id),
        }

    async def handle_test_status_change(
        self,
        db: AsyncSession,
        test: Test,
        previous_status: TestStatus,
        actor: Optional[User] = None,
    ) -> Dict[str, Any]:
        """
        Run the side effects of a test status change and tell the room.

        PUBLISHED invites testers, COMPLETED notifies the owner and
        CANCELLED closes the active sessions and notifies their testers.
        """
        extra: Dict[str, Any] = {}

        if test.status == TestStatus.PUBLISHED:
            extra["invited_testers"] = await notification_service.notify_test_published(db, test)

        elif test.status == TestStatus.COMPLETED:
            completed = await session_service.count_completed_sessions(db, test.id)
            owner = await db.get(User, test.created_by_id)
            if owner is not None:
                await notification_service.notify_test_completed(db, test, owner, completed)
            extra["completed_sessions"] = completed

        elif test.status == TestStatus.CANCELLED:
            extra["cancelled_sessions"] = await self._cancel_active_sessions(db, test)

        payload = {
            "test_id": test.id,
            "status": test.status.value,
            "previous_status": previous_status.value if previous_status else None,
            "updated_by": actor.id if actor else None,
            **extra,
        }
        await connection_manager.broadcast_to_test(test.id, EventType.TEST_STATUS_UPDATED, payload)

        logger.info(
            f"[Realtime] Test {test.id} status "
            f"{previous_status.value if previous_status else '-'} -> {test.status.value}"
        )
        return payload

    async def _cancel_active_sessions(self, db: AsyncSession, test: Test) -> int:
        result = await db.execute(
            select(TesterSession).where(
                TesterSession.test_id == test.id,
                TesterSession.status.in_(ACTIVE_SESSION_STATUSES),
            )
        )
        sessions = list(result.scalars().all())
        if not sessions:
            return 0

        for session in sessions:
            session.status = SessionStatus.CANCELLED
            self._near_completion_notified.discard(session.id)

        await db.execute(
            update(Test)
            .where(Test.id == test.id)
            .values(current_testers=0)
            .execution_options(synchronize_session=False)
        )
        test.current_testers = 0

        await notification_service.notify_test_cancelled(db, test, {s.tester_id for s in sessions})
        return len(sessions)

    async def handle_session_progress(
        self,
        db: AsyncSession,
        session: TesterSession,
        user: User,
        progress: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Record a progress tick, tell the room, warn the owner near the end"""
        db.add(Analytics(
            user_id=user.id,
            test_id=session.test_id,
            event="session_progress",
            data={"session_id": session.id, "progress": progress},
        ))

        payload = {
            "session_id": session.id,
            "tester_id": user.id,
            "tester_name": user.name,
            "progress": progress,
            "timestamp": datetime.utcnow().isoformat(),
        }
        await connection_manager.broadcast_to_test(
            session.test_id, EventType.SESSION_PROGRESS_UPDATED, payload
        )

        percentage = progress.get("percentage") if isinstance(progress, dict) else None
        if (
            isinstance(percentage, (int, float))
            and percentage > NEAR_COMPLETION_PERCENT
            and session.id not in self._near_completion_notified
        ):
            test = await db.get(Test, session.test_id)
            if test is not None:
                await notification_service.notify_session_near_completion(db, test, session.id, percentage)
                self._near_completion_notified.add(session.id)

        return payload

    async def handle_screen_event(
        self,
        db: AsyncSession,
        session: TesterSession,
        user: User,
        event_type: str,
        data: Any,
    ):
        """Record clicks, scrolls and navigations; relay every event to the whole room"""
        if event_type in RECORDED_SCREEN_EVENTS:
            db.add(Analytics(
                user_id=user.id,
                test_id=session.test_id,
                event=f"screen_{event_type}",
                data={"session_id": session.id, "data": data},
            ))

        await connection_manager.broadcast_to_test(
            session.test_id,
            EventType.SESSION_SCREEN_EVENT,
            {
                "session_id": session.id,
                "tester_id": user.id,
                "event_type": event_type,
                "data": data,
            },
        )

    async def complete_session(
        self,
        db: AsyncSession,
        session: TesterSession,
        tester: User,
        feedback: Optional[str] = None,
        rating: Optional[int] = None,
        task_results: Optional[Any] = None,
    ) -> Tuple[TesterSession, Earning]:
        """Complete a tester session and fan the result out to the room"""
        previous_status = None
        test = await db.get(Test, session.test_id)
        if test is not None:
            previous_status = test.status

        session, test, earning, test_completed = await session_service.complete_session(
            db, session, tester, feedback=feedback, rating=rating, task_results=task_results
        )
        self._near_completion_notified.discard(session.id)

        await connection_manager.broadcast_to_test(
            test.id,
            EventType.SESSION_COMPLETED,
            {
                "session_id": session.id,
                "tester_id": tester.id,
                "tester_name": tester.name,
                "rating": session.rating,
                "duration": session.duration,
                "earning": earning.amount,
            },
        )

        if test_completed:
            await self.handle_test_status_change(db, test, previous_status)

        return session, earning

    async def close_session(self, db: AsyncSession, session: TesterSession, status: SessionStatus) -> TesterSession:
        """End an active session as CANCELLED or FAILED and free its slot"""
        if status == SessionStatus.CANCELLED:
            await session_service.cancel_session(db, session)
        else:
            await session_service.end_session(db, session, status)
        self._near_completion_notified.discard(session.id)
        return session

    async def handle_payment_status_change(self, payment: Payment):
        await connection_manager.send_to_user(
            payment.customer_id,
            EventType.PAYMENT_STATUS_UPDATED,
            {
                "payment_id": payment.id,
                "status": payment.status.value,
                "amount": payment.amount,
                "currency": payment.currency.value,
                "transaction_id": payment.transaction_id,
            },
        )


realtime_service = RealtimeService()
