"""
Socket pushes for new notifications wait for the surrounding commit
"""
import asyncio

import pytest
from sqlalchemy import select

from masada.models import Notification, NotificationType, UserType
from masada.services.notification_service import notification_service
from masada.services.socket_manager import EventType, connection_manager
from conftest import create_user


@pytest.fixture
def pushes(monkeypatch):
    sent = []

    async def record(user_id, event_type, data):
        sent.append((user_id, event_type, data))
        return True

    monkeypatch.setattr(connection_manager, 'send_to_user', record)
    return sent


@pytest.mark.asyncio
async def test_push_waits_for_commit(db_session, pushes):
    user = await create_user(db_session, UserType.TESTER)

    notification = await notification_service.send_notification(
        db_session, user.id, NotificationType.SYSTEM_UPDATE, 'Maintenance', 'Back at 10:00'
    )
    await asyncio.sleep(0)
    assert pushes == []

    await db_session.commit()
    await asyncio.sleep(0)

    assert len(pushes) == 1
    user_id, event_type, data = pushes[0]
    assert user_id == user.id
    assert event_type == EventType.NOTIFICATION_NEW
    assert data['id'] == notification.id
    assert data['message'] == 'Back at 10:00'


@pytest.mark.asyncio
async def test_rollback_drops_push(db_session, pushes):
    user = await create_user(db_session, UserType.TESTER)

    await notification_service.send_notification(
        db_session, user.id, NotificationType.SYSTEM_UPDATE, 'Maintenance', 'Back at 10:00'
    )
    await db_session.rollback()
    await db_session.commit()
    await asyncio.sleep(0)

    assert pushes == []
    stored = (await db_session.execute(select(Notification))).scalars().all()
    assert stored == []
