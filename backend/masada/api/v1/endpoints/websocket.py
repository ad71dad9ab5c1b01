"""
Real-time WebSocket Endpoint

Connection URL: WS /api/v1/ws?token=<access jwt>

Message format (both directions):
{
    "type": "event_type",
    "data": { ... },
    "timestamp": "..."          (server messages only)
}

Client events:
- ping
- test:join / test:leave                  { test_id }
- test:update_status                      { test_id, status }
- session:progress                        { session_id, progress }
- session:screen_event                    { session_id, event_type, data }
- session:completed                       { session_id, feedback?, rating?, task_results? }
- notification:read                       { notification_id }
- notification:get_count
- user:typing                             { test_id, is_typing }

Close codes: 4001 invalid or expired token, 4003 inactive account.
"""

import json
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from masada.core.database import session_scope
from masada.core.exceptions import AuthenticationError, AuthorizationError, MasadaError, NotFoundError, ValidationError
from masada.core.logging_config import logger, set_user_id
from masada.core.security import verify_access_token
from masada.models.session import SessionStatus, TesterSession
from masada.models.test import Test, TestStatus
from masada.models.user import User, UserStatus, UserType
from masada.services import test_lifecycle
from masada.services.notification_service import notification_service
from masada.services.realtime_service import realtime_service
from masada.services.socket_manager import EventType, connection_manager

router = APIRouter()

Handler = Callable[[AsyncSession, User, Dict[str, Any]], Awaitable[None]]


async def get_user_from_token(token: Optional[str]) -> Optional[User]:
    """Validate the access token and load its user, or None"""
    if not token:
        return None
    try:
        payload = verify_access_token(token)
    except AuthenticationError:
        return None

    async with session_scope() as db:
        return await db.get(User, payload["sub"])


async def _load_session(db: AsyncSession, user: User, data: Dict[str, Any]) -> TesterSession:
    session_id = data.get("session_id")
    session = await db.get(TesterSession, session_id) if session_id else None
    if session is None:
        raise NotFoundError("Session")
    if session.tester_id != user.id:
        raise AuthorizationError("You can only update your own sessions")
    return session


async def handle_join(db: AsyncSession, user: User, data: Dict[str, Any]):
    test_id = data.get("test_id")
    test = await realtime_service.verify_test_access(db, user, test_id) if test_id else None
    if test is None:
        await connection_manager.send_to_user(user.id, EventType.ERROR, {"message": "Access denied to test"})
        return

    await connection_manager.join_test(user.id, test.id)
    status = await realtime_service.get_test_status(db, test)
    await connection_manager.send_to_user(user.id, EventType.TEST_STATUS, status)


async def handle_leave(db: AsyncSession, user: User, data: Dict[str, Any]):
    test_id = data.get("test_id")
    if test_id:
        await connection_manager.leave_test(user.id, test_id)


async def handle_update_status(db: AsyncSession, user: User, data: Dict[str, Any]):
    test = await db.get(Test, data.get("test_id") or "")
    if test is None:
        raise NotFoundError("Test")
    if user.user_type != UserType.CUSTOMER or test.created_by_id != user.id:
        raise AuthorizationError("Only the test owner can change its status")

    try:
        target = TestStatus(data.get("status"))
    except ValueError:
        raise ValidationError("Invalid test status")

    previous = test_lifecycle.transition(test, target)
    await db.flush()
    await realtime_service.handle_test_status_change(db, test, previous, user)
    await db.commit()


async def handle_progress(db: AsyncSession, user: User, data: Dict[str, Any]):
    session = await _load_session(db, user, data)
    if session.status != SessionStatus.IN_PROGRESS:
        raise ValidationError("Session is not in progress")

    progress = data.get("progress") or {}
    await realtime_service.handle_session_progress(db, session, user, progress)
    await db.commit()


async def handle_screen_event(db: AsyncSession, user: User, data: Dict[str, Any]):
    session = await _load_session(db, user, data)
    await realtime_service.handle_screen_event(
        db, session, user, str(data.get("event_type") or "unknown"), data.get("data")
    )
    await db.commit()


async def handle_completed(db: AsyncSession, user: User, data: Dict[str, Any]):
    session = await _load_session(db, user, data)
    rating = data.get("rating")
    if rating is not None and (not isinstance(rating, int) or not 1 <= rating <= 5):
        raise ValidationError("Rating must be between 1 and 5")

    await realtime_service.complete_session(
        db, session, user,
        feedback=data.get("feedback"),
        rating=rating,
        task_results=data.get("task_results"),
    )
    await db.commit()


async def handle_notification_read(db: AsyncSession, user: User, data: Dict[str, Any]):
    notification = await notification_service.mark_as_read(db, user.id, data.get("notification_id") or "")
    await db.commit()
    await connection_manager.send_to_user(
        user.id, EventType.NOTIFICATION_READ_CONFIRMED, {"notification_id": notification.id}
    )


async def handle_notification_count(db: AsyncSession, user: User, data: Dict[str, Any]):
    count = await notification_service.get_unread_count(db, user.id)
    await connection_manager.send_to_user(user.id, EventType.NOTIFICATION_COUNT, {"count": count})


async def handle_typing(db: AsyncSession, user: User, data: Dict[str, Any]):
    test_id = data.get("test_id")
    if not test_id:
        return
    await connection_manager.broadcast_to_test(
        test_id,
        EventType.USER_TYPING,
        {"user_id": user.id, "user_name": user.name, "is_typing": bool(data.get("is_typing"))},
        exclude_user=user.id,
    )


HANDLERS: Dict[str, Handler] = {
    EventType.TEST_JOIN.value: handle_join,
    EventType.TEST_LEAVE.value: handle_leave,
    EventType.TEST_UPDATE_STATUS.value: handle_update_status,
    EventType.SESSION_PROGRESS.value: handle_progress,
    EventType.SESSION_SCREEN_EVENT.value: handle_screen_event,
    EventType.SESSION_COMPLETED.value: handle_completed,
    EventType.NOTIFICATION_READ.value: handle_notification_read,
    EventType.NOTIFICATION_GET_COUNT.value: handle_notification_count,
    EventType.USER_TYPING.value: handle_typing,
}


async def dispatch(user_id: str, event_type: str, data: Dict[str, Any]):
    """Run one client event in its own database session"""
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.debug(f"[Socket] Unknown event type: {event_type}")
        await connection_manager.send_to_user(
            user_id, EventType.ERROR, {"message": f"Unknown event type: {event_type}"}
        )
        return

    async with session_scope() as db:
        user = await db.get(User, user_id)
        if user is None or user.status != UserStatus.ACTIVE:
            raise AuthenticationError("Account is not active")
        await handler(db, user, data)


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None)
):
    user = await get_user_from_token(token)
    if user is None:
        await websocket.close(code=4001, reason="Invalid or expired token")
        return
    if user.status != UserStatus.ACTIVE:
        await websocket.close(code=4003, reason="Account is not active")
        return

    user_id = user.id
    set_user_id(user_id)
    await connection_manager.connect(websocket, user_id, user.name, user.user_type.value)

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except (json.JSONDecodeError, ValueError):
                await connection_manager.send_to_user(
                    user_id, EventType.ERROR, {"message": "Invalid JSON message"}
                )
                continue

            if not isinstance(message, dict):
                continue

            event_type = message.get("type", "")
            data = message.get("data") or {}
            connection_manager.touch(user_id)

            if event_type == EventType.PING.value:
                await connection_manager.send_to_user(user_id, EventType.PONG, {})
                continue

            try:
                await dispatch(user_id, event_type, data if isinstance(data, dict) else {})
            except MasadaError as e:
                await connection_manager.send_to_user(
                    user_id, EventType.ERROR, {"message": e.message, "event": event_type}
                )
            except Exception as e:
                logger.log_error_with_context(e, f"socket event {event_type}", user_id=user_id)
                await connection_manager.send_to_user(
                    user_id, EventType.ERROR, {"message": "Failed to process event", "event": event_type}
                )

    except WebSocketDisconnect:
        logger.info(f"[Socket] WebSocket disconnected for user {user_id}")
    except Exception as e:
        logger.error(f"[Socket] WebSocket error for user {user_id}: {e}", exc_info=True)
    finally:
        await connection_manager.disconnect(user_id, websocket)
