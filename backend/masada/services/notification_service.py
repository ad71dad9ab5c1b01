"""
Notification Service

Persists in-app notifications, pushes them to connected users and
queues the matching emails. Rows are added to the caller's session;
the caller owns the commit.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, event, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from masada.core.exceptions import NotFoundError
from masada.core.logging_config import logger
from masada.models.notification import Notification, NotificationType
from masada.models.payment import Payment
from masada.models.session import TesterSession
from masada.models.test import Test
from masada.models.user import TesterProfile, User, UserStatus, UserType
from masada.services.email_service import email_service, queue_email
from masada.services.socket_manager import EventType, connection_manager

MAX_PUBLISH_INVITES = 50

_PENDING_PUSHES = "pending_socket_pushes"
_push_tasks: Set[asyncio.Task] = set()


def _send_pending_pushes(session: Session):
    for user_id, event_type, data in session.info.pop(_PENDING_PUSHES, []):
        task = asyncio.ensure_future(connection_manager.send_to_user(user_id, event_type, data))
        _push_tasks.add(task)
        task.add_done_callback(_push_tasks.discard)


def _drop_pending_pushes(session: Session, previous_transaction):
    session.info.pop(_PENDING_PUSHES, None)


def push_after_commit(db: AsyncSession, user_id: str, event_type: EventType, data: Dict[str, Any]):
    """
    Queue a socket push that is sent once the caller commits.

    A rollback discards the queue, so clients never hear about rows that
    were not stored.
    """
    session = db.sync_session
    if not event.contains(session, "after_commit", _send_pending_pushes):
        event.listen(session, "after_commit", _send_pending_pushes)
        event.listen(session, "after_soft_rollback", _drop_pending_pushes)
    session.info.setdefault(_PENDING_PUSHES, []).append((user_id, event_type, data))


def serialize_notification(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.type.value,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data,
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


class NotificationService:

    async def send_notification(
        self,
        db: AsyncSession,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        """Store a notification and push it to the user if online"""
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=data,
            is_read=False,
            created_at=datetime.utcnow(),
        )
        db.add(notification)
        await db.flush()

        push_after_commit(db, user_id, EventType.NOTIFICATION_NEW, serialize_notification(notification))
        logger.debug(f"[Notifications] {type.value} -> {user_id}")
        return notification

    async def send_bulk_notifications(
        self,
        db: AsyncSession,
        user_ids: Iterable[str],
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> List[Notification]:
        now = datetime.utcnow()
        notifications = [
            Notification(
                user_id=user_id,
                type=type,
                title=title,
                message=message,
                data=data,
                is_read=False,
                created_at=now,
            )
            for user_id in user_ids
        ]
        if not notifications:
            return []

        db.add_all(notifications)
        await db.flush()

        for notification in notifications:
            push_after_commit(
                db, notification.user_id, EventType.NOTIFICATION_NEW, serialize_notification(notification)
            )

        logger.info(f"[Notifications] Bulk {type.value} sent to {len(notifications)} users")
        return notifications

    async def get_eligible_testers(self, db: AsyncSession, limit: int) -> List[User]:
        """Active testers with a verified tester profile"""
        result = await db.execute(
            select(User)
            .join(TesterProfile, TesterProfile.user_id == User.id)
            .where(
                User.user_type == UserType.TESTER,
                User.status == UserStatus.ACTIVE,
                TesterProfile.is_verified.is_(True),
            )
            .order_by(TesterProfile.rating.desc(), User.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def notify_test_published(self, db: AsyncSession, test: Test) -> int:
        """
        Invite eligible testers to a freshly published test.

        Invites twice the tester capacity, capped at MAX_PUBLISH_INVITES.
        Returns the number of testers invited.
        """
        limit = min(test.max_testers * 2, MAX_PUBLISH_INVITES)
        testers = await self.get_eligible_testers(db, limit)
        if not testers:
            logger.info(f"[Notifications] No eligible testers for test {test.id}")
            return 0

        await self.send_bulk_notifications(
            db,
            [tester.id for tester in testers],
            NotificationType.TEST_INVITATION,
            "New test available",
            f'A new test "{test.title}" is available. Earn {test.payment_per_tester:.2f} ETB.',
            {"test_id": test.id, "payment": test.payment_per_tester},
        )

        summary = {
            "id": test.id,
            "title": test.title,
            "test_type": test.test_type.value,
            "platform": test.platform.value,
            "payment_per_tester": test.payment_per_tester,
            "estimated_duration": test.estimated_duration,
        }
        for tester in testers:
            push_after_commit(db, tester.id, EventType.TEST_NEW, summary)
            queue_email(email_service.send_test_invitation_email(
                tester.email, tester.name, test.id, test.title,
                test.payment_per_tester, test.estimated_duration,
            ))

        logger.info(f"[Notifications] Invited {len(testers)} testers to test {test.id}")
        return len(testers)

    async def invite_testers_by_email(self, db: AsyncSession, test: Test, emails: Iterable[str]) -> int:
        """Invite specific testers; unknown or inactive addresses are skipped"""
        normalized = {email.lower() for email in emails}
        result = await db.execute(
            select(User).where(
                User.email.in_(normalized),
                User.user_type == UserType.TESTER,
                User.status == UserStatus.ACTIVE,
            )
        )
        testers = list(result.scalars().all())

        await self.send_bulk_notifications(
            db,
            [tester.id for tester in testers],
            NotificationType.TEST_INVITATION,
            "You have been invited to a test",
            f'You were invited to take part in "{test.title}".',
            {"test_id": test.id},
        )
        for tester in testers:
            queue_email(email_service.send_test_invitation_email(
                tester.email, tester.name, test.id, test.title,
                test.payment_per_tester, test.estimated_duration,
            ))
        return len(testers)

    async def notify_session_completed(
        self,
        db: AsyncSession,
        session: TesterSession,
        test: Test,
        tester: User,
        earning_amount: float,
    ):
        """Tell the customer a session finished and the tester an earning was created"""
        await self.send_notification(
            db,
            test.created_by_id,
            NotificationType.TEST_COMPLETED,
            "Test session completed",
            f'{tester.name} completed a session of "{test.title}".',
            {"test_id": test.id, "session_id": session.id, "rating": session.rating},
        )
        await self.send_notification(
            db,
            tester.id,
            NotificationType.EARNING_AVAILABLE,
            "Earning added",
            f'You earned {earning_amount:.2f} ETB for completing "{test.title}".',
            {"test_id": test.id, "session_id": session.id, "amount": earning_amount},
        )
        push_after_commit(
            db,
            tester.id,
            EventType.EARNINGS_UPDATED,
            {"amount": earning_amount, "test_id": test.id, "session_id": session.id},
        )

    async def notify_session_near_completion(self, db: AsyncSession, test: Test, session_id: str, percentage: float):
        await self.send_notification(
            db,
            test.created_by_id,
            NotificationType.SYSTEM_UPDATE,
            "Session almost done",
            f'A tester is {percentage:.0f}% through "{test.title}".',
            {"test_id": test.id, "session_id": session_id, "percentage": percentage},
        )

    async def notify_test_completed(self, db: AsyncSession, test: Test, owner: User, completed_testers: int):
        await self.send_notification(
            db,
            owner.id,
            NotificationType.TEST_COMPLETED,
            "Test completed",
            f'"{test.title}" is complete with {completed_testers} finished session(s).',
            {"test_id": test.id, "completed_testers": completed_testers},
        )
        queue_email(email_service.send_test_completion_email(
            owner.email, owner.name, test.id, test.title, completed_testers
        ))

    async def notify_test_cancelled(self, db: AsyncSession, test: Test, tester_ids: Iterable[str]):
        await self.send_bulk_notifications(
            db,
            tester_ids,
            NotificationType.SYSTEM_UPDATE,
            "Test cancelled",
            f'"{test.title}" was cancelled by the customer. Your active session has been closed.',
            {"test_id": test.id},
        )

    async def notify_payment_received(self, db: AsyncSession, payment: Payment, customer: User):
        await self.send_notification(
            db,
            customer.id,
            NotificationType.PAYMENT_RECEIVED,
            "Payment received",
            f"Your payment of {payment.amount:.2f} {payment.currency.value} was confirmed.",
            {"payment_id": payment.id, "amount": payment.amount, "transaction_id": payment.transaction_id},
        )
        queue_email(email_service.send_payment_confirmation_email(
            customer.email, customer.name, payment.amount,
            payment.currency.value, payment.transaction_id or payment.id,
        ))

    async def notify_account_update(self, db: AsyncSession, user_id: str, message: str,
                                    data: Optional[Dict[str, Any]] = None):
        await self.send_notification(
            db, user_id, NotificationType.ACCOUNT_UPDATE, "Account update", message, data
        )

    async def get_unread_count(self, db: AsyncSession, user_id: str) -> int:
        result = await db.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()

    async def mark_as_read(self, db: AsyncSession, user_id: str, notification_id: str) -> Notification:
        result = await db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError("Notification")

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.utcnow()
        return notification

    async def mark_all_as_read(self, db: AsyncSession, user_id: str) -> int:
        result = await db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def cleanup_old_notifications(self, db: AsyncSession, days: int = 30) -> int:
        """Delete read notifications older than days"""
        cutoff = datetime.utcnow() - timedelta(days=days)
        result = await db.execute(
            delete(Notification)
            .where(Notification.is_read.is_(True), Notification.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        logger.info(f"[Notifications] Cleaned up {result.rowcount or 0} old notifications")
        return result.rowcount or 0


notification_service = NotificationService()
