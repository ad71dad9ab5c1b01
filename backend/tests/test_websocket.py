"""
WebSocket endpoint tests.

These run synchronously through Starlette's TestClient, so the database is
prepared with asyncio.run instead of the async fixtures.
"""
import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from masada.main import app
from masada.core.database import Base, close_db
from masada.core.security import create_access_token
from masada.models import (
    Analytics, Earning, Notification, NotificationType, SessionStatus, Test, TesterSession, TestStatus,
    UserStatus, UserType,
)
from masada.services.socket_manager import connection_manager
from conftest import TestSessionLocal, auth_headers_for, create_test, create_user, test_engine


def token_for(user) -> str:
    return auth_headers_for(user)['Authorization'].split(' ', 1)[1]


async def _setup():
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with TestSessionLocal() as db:
        customer = await create_user(db, UserType.CUSTOMER)
        tester = await create_user(db, UserType.TESTER)
        suspended = await create_user(db, UserType.TESTER, status=UserStatus.SUSPENDED)
        test = await create_test(db, customer, TestStatus.PUBLISHED)
        session = TesterSession(
            test_id=test.id,
            tester_id=tester.id,
            status=SessionStatus.IN_PROGRESS,
            started_at=datetime.utcnow(),
        )
        db.add(session)
        notification = Notification(
            user_id=tester.id,
            type=NotificationType.TEST_INVITATION,
            title='New test available',
            message='A new test matches your profile',
        )
        db.add(notification)
        await db.commit()
    return {
        'customer': customer, 'tester': tester, 'suspended': suspended,
        'test': test, 'session': session, 'notification': notification,
    }


async def _teardown():
    # The app engine was used from the TestClient loop; drop it before reuse
    await close_db()
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def ws_data():
    data = asyncio.run(_setup())
    yield data
    asyncio.run(_teardown())


@pytest.fixture
def ws_client():
    return TestClient(app)


def test_rejects_missing_token(ws_client, ws_data):
    with pytest.raises(WebSocketDisconnect) as exc:
        with ws_client.websocket_connect('/api/v1/ws'):
            pass

    assert exc.value.code == 4001


def test_rejects_invalid_token(ws_client, ws_data):
    with pytest.raises(WebSocketDisconnect) as exc:
        with ws_client.websocket_connect('/api/v1/ws?token=not-a-token'):
            pass

    assert exc.value.code == 4001


def test_rejects_inactive_account(ws_client, ws_data):
    token = token_for(ws_data['suspended'])

    with pytest.raises(WebSocketDisconnect) as exc:
        with ws_client.websocket_connect(f'/api/v1/ws?token={token}'):
            pass

    assert exc.value.code == 4003


def test_connect_ping_and_join(ws_client, ws_data):
    token = token_for(ws_data['customer'])
    test_id = ws_data['test'].id

    with ws_client.websocket_connect(f'/api/v1/ws?token={token}') as ws:
        connected = ws.receive_json()
        assert connected['type'] == 'connected'
        assert connected['data']['user_id'] == ws_data['customer'].id

        ws.send_json({'type': 'ping'})
        assert ws.receive_json()['type'] == 'pong'

        ws.send_json({'type': 'test:join', 'data': {'test_id': test_id}})
        status = ws.receive_json()
        assert status['type'] == 'test:status'
        assert status['data']['id'] == test_id
        assert status['data']['status'] == 'PUBLISHED'
        assert status['data']['participants'][0]['user_id'] == ws_data['customer'].id

        ws.send_json({'type': 'notification:get_count'})
        count = ws.receive_json()
        assert count['type'] == 'notification:count'
        assert count['data']['count'] == 0


def test_owner_status_update_reaches_room(ws_client, ws_data):
    token = token_for(ws_data['customer'])
    test_id = ws_data['test'].id

    with ws_client.websocket_connect(f'/api/v1/ws?token={token}') as ws:
        ws.receive_json()
        ws.send_json({'type': 'test:join', 'data': {'test_id': test_id}})
        ws.receive_json()

        ws.send_json({'type': 'test:update_status', 'data': {'test_id': test_id, 'status': 'PAUSED'}})
        update = ws.receive_json()
        assert update['type'] == 'test:status_updated'
        assert update['data']['status'] == 'PAUSED'
        assert update['data']['previous_status'] == 'PUBLISHED'


def test_errors_keep_connection_open(ws_client, ws_data):
    token = token_for(ws_data['tester'])
    test_id = ws_data['test'].id

    with ws_client.websocket_connect(f'/api/v1/ws?token={token}') as ws:
        ws.receive_json()

        ws.send_json({'type': 'video:call', 'data': {}})
        unknown = ws.receive_json()
        assert unknown['type'] == 'error'
        assert unknown['data']['message'] == 'Unknown event type: video:call'

        ws.send_json({'type': 'test:update_status', 'data': {'test_id': test_id, 'status': 'PAUSED'}})
        denied = ws.receive_json()
        assert denied['type'] == 'error'
        assert denied['data']['message'] == 'Only the test owner can change its status'
        assert denied['data']['event'] == 'test:update_status'

        ws.send_json({'type': 'ping'})
        assert ws.receive_json()['type'] == 'pong'


async def _progress_events(user_id):
    async with TestSessionLocal() as db:
        result = await db.execute(
            select(Analytics).where(Analytics.user_id == user_id, Analytics.event == 'session_progress')
        )
        return result.scalars().all()


def test_session_progress_is_broadcast_and_recorded(ws_client, ws_data):
    token = token_for(ws_data['tester'])
    test_id = ws_data['test'].id
    session_id = ws_data['session'].id

    with ws_client.websocket_connect(f'/api/v1/ws?token={token}') as ws:
        ws.receive_json()
        ws.send_json({'type': 'test:join', 'data': {'test_id': test_id}})
        assert ws.receive_json()['data']['active_sessions'] == 1

        ws.send_json({'type': 'session:progress', 'data': {'session_id': session_id, 'progress': {'percentage': 40}}})
        update = ws.receive_json()
        assert update['type'] == 'session:progress_updated'
        assert update['data']['session_id'] == session_id
        assert update['data']['progress'] == {'percentage': 40}

        # Unknown sessions are refused
        ws.send_json({'type': 'session:progress', 'data': {'session_id': 'missing', 'progress': {}}})
        assert ws.receive_json()['data']['message'] == 'Session not found'

    events = asyncio.run(_progress_events(ws_data['tester'].id))
    assert [e.data['progress'] for e in events] == [{'percentage': 40}]


def test_rejects_expired_token(ws_client, ws_data):
    user = ws_data['tester']
    token = create_access_token(
        {'sub': user.id, 'email': user.email, 'user_type': user.user_type.value},
        expires_delta=timedelta(seconds=-10),
    )

    with pytest.raises(WebSocketDisconnect) as exc:
        with ws_client.websocket_connect(f'/api/v1/ws?token={token}'):
            pass

    assert exc.value.code == 4001


class RecordingSocket:
    """A room member connected outside the TestClient; keeps what it is sent"""

    def __init__(self):
        self.sent = []

    async def accept(self):
        pass

    async def send_json(self, message):
        self.sent.append(message)

    def of_type(self, event_type):
        return [m['data'] for m in self.sent if m['type'] == event_type]


@pytest.fixture
def owner_in_room(ws_data):
    """The test owner, sitting in the test room while the tester acts"""
    socket = RecordingSocket()
    owner = ws_data['customer']

    async def enter():
        await connection_manager.connect(socket, owner.id, owner.name, owner.user_type.value)
        await connection_manager.join_test(owner.id, ws_data['test'].id)

    asyncio.run(enter())
    yield socket
    asyncio.run(connection_manager.disconnect(owner.id, socket))


def receive_until(ws, event_type, limit=10):
    """Read messages until one of event_type arrives; pushes sent after commit may come first"""
    for _ in range(limit):
        message = ws.receive_json()
        if message['type'] == event_type:
            return message
    raise AssertionError(f'{event_type} not received')


def join_room(ws, test_id):
    ws.receive_json()
    ws.send_json({'type': 'test:join', 'data': {'test_id': test_id}})
    assert ws.receive_json()['type'] == 'test:status'


def sync(ws):
    """Handlers run in order, so a pong means everything sent before it was handled"""
    ws.send_json({'type': 'ping'})
    receive_until(ws, 'pong')


async def _rows(model, *conditions):
    async with TestSessionLocal() as db:
        return (await db.execute(select(model).where(*conditions))).scalars().all()


async def _set_session_status(session_id, status):
    async with TestSessionLocal() as db:
        session = await db.get(TesterSession, session_id)
        session.status = status
        await db.commit()


def test_session_completion_pays_once(ws_client, ws_data, owner_in_room):
    token = token_for(ws_data['tester'])
    session_id = ws_data['session'].id
    completion = {'type': 'session:completed', 'data': {'session_id': session_id, 'rating': 5, 'feedback': 'Smooth'}}

    with ws_client.websocket_connect(f'/api/v1/ws?token={token}') as ws:
        join_room(ws, ws_data['test'].id)

        ws.send_json(completion)
        completed = receive_until(ws, 'session:completed')
        assert completed['data']['session_id'] == session_id
        assert completed['data']['rating'] == 5
        assert completed['data']['earning'] == ws_data['test'].payment_per_tester

        ws.send_json(completion)
        error = receive_until(ws, 'error')
        assert error['data']['message'] == 'Cannot update a completed session'
        assert error['data']['event'] == 'session:completed'

    assert owner_in_room.of_type('session:completed')[0]['tester_id'] == ws_data['tester'].id
    earnings = asyncio.run(_rows(Earning, Earning.tester_session_id == session_id))
    assert len(earnings) == 1


def test_cancelled_session_cannot_complete_over_socket(ws_client, ws_data):
    token = token_for(ws_data['tester'])
    session_id = ws_data['session'].id
    asyncio.run(_set_session_status(session_id, SessionStatus.CANCELLED))

    with ws_client.websocket_connect(f'/api/v1/ws?token={token}') as ws:
        ws.receive_json()
        ws.send_json({'type': 'session:completed', 'data': {'session_id': session_id, 'rating': 4}})
        error = receive_until(ws, 'error')
        assert error['data']['message'] == 'Cannot update a cancelled session'

    assert asyncio.run(_rows(Earning, Earning.tester_session_id == session_id)) == []


def test_screen_event_reaches_whole_room(ws_client, ws_data, owner_in_room):
    token = token_for(ws_data['tester'])
    session_id = ws_data['session'].id

    with ws_client.websocket_connect(f'/api/v1/ws?token={token}') as ws:
        join_room(ws, ws_data['test'].id)

        ws.send_json({'type': 'session:screen_event', 'data': {
            'session_id': session_id, 'event_type': 'click', 'data': {'x': 120, 'y': 48},
        }})
        echoed = receive_until(ws, 'session:screen_event')
        assert echoed['data']['event_type'] == 'click'
        assert echoed['data']['data'] == {'x': 120, 'y': 48}

        ws.send_json({'type': 'session:screen_event', 'data': {
            'session_id': session_id, 'event_type': 'hover', 'data': {},
        }})
        assert receive_until(ws, 'session:screen_event')['data']['event_type'] == 'hover'

    assert [e['event_type'] for e in owner_in_room.of_type('session:screen_event')] == ['click', 'hover']
    clicks = asyncio.run(_rows(Analytics, Analytics.event == 'screen_click'))
    assert len(clicks) == 1
    assert clicks[0].data == {'session_id': session_id, 'data': {'x': 120, 'y': 48}}
    assert asyncio.run(_rows(Analytics, Analytics.event == 'screen_hover')) == []


def test_leaving_room_tells_remaining_members(ws_client, ws_data, owner_in_room):
    token = token_for(ws_data['tester'])
    test_id = ws_data['test'].id

    with ws_client.websocket_connect(f'/api/v1/ws?token={token}') as ws:
        join_room(ws, test_id)
        assert owner_in_room.of_type('user:joined')[0]['user_id'] == ws_data['tester'].id

        ws.send_json({'type': 'test:leave', 'data': {'test_id': test_id}})
        sync(ws)

        assert owner_in_room.of_type('user:left') == [{'user_id': ws_data['tester'].id, 'test_id': test_id}]
        participants = connection_manager.get_test_room_participants(test_id)
        assert [p['user_id'] for p in participants] == [ws_data['customer'].id]


def test_typing_goes_to_others_only(ws_client, ws_data, owner_in_room):
    token = token_for(ws_data['tester'])

    with ws_client.websocket_connect(f'/api/v1/ws?token={token}') as ws:
        join_room(ws, ws_data['test'].id)

        ws.send_json({'type': 'user:typing', 'data': {'test_id': ws_data['test'].id, 'is_typing': True}})
        ws.send_json({'type': 'ping'})
        assert ws.receive_json()['type'] == 'pong'

    typing = owner_in_room.of_type('user:typing')
    assert typing == [{'user_id': ws_data['tester'].id, 'user_name': ws_data['tester'].name, 'is_typing': True}]


def test_notification_read_is_confirmed(ws_client, ws_data):
    token = token_for(ws_data['tester'])
    notification_id = ws_data['notification'].id

    with ws_client.websocket_connect(f'/api/v1/ws?token={token}') as ws:
        ws.receive_json()
        ws.send_json({'type': 'notification:get_count'})
        assert ws.receive_json()['data']['count'] == 1

        ws.send_json({'type': 'notification:read', 'data': {'notification_id': notification_id}})
        confirmed = ws.receive_json()
        assert confirmed['type'] == 'notification:read_confirmed'
        assert confirmed['data'] == {'notification_id': notification_id}

        ws.send_json({'type': 'notification:get_count'})
        assert ws.receive_json()['data']['count'] == 0


def test_cancelling_test_closes_active_sessions(ws_client, ws_data):
    token = token_for(ws_data['customer'])
    test_id = ws_data['test'].id

    with ws_client.websocket_connect(f'/api/v1/ws?token={token}') as ws:
        join_room(ws, test_id)

        ws.send_json({'type': 'test:update_status', 'data': {'test_id': test_id, 'status': 'CANCELLED'}})
        update = receive_until(ws, 'test:status_updated')
        assert update['data']['status'] == 'CANCELLED'
        assert update['data']['cancelled_sessions'] == 1

    sessions = asyncio.run(_rows(TesterSession, TesterSession.test_id == test_id))
    assert [s.status for s in sessions] == [SessionStatus.CANCELLED]
    tests = asyncio.run(_rows(Test, Test.id == test_id))
    assert tests[0].current_testers == 0
