"""
Real-time Connection Manager

Tracks WebSocket connections for the marketplace:
- Connected users (one live connection per user, newest wins)
- Test rooms: the users watching a test's status and session activity
- Fan-out of test/session/notification events

Messages on the wire are {"type": ..., "data": ..., "timestamp": ...}.
"""

import asyncio
from typing import Dict, List, Set, Optional, Any, Union
from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum
from fastapi import WebSocket

from masada.core.logging_config import logger


class EventType(str, Enum):
    """WebSocket event types"""
    # Connection events
    CONNECTED = "connected"
    ERROR = "error"
    PING = "ping"
    PONG = "pong"

    # Test room events
    TEST_JOIN = "test:join"
    TEST_LEAVE = "test:leave"
    TEST_STATUS = "test:status"
    TEST_UPDATE_STATUS = "test:update_status"
    TEST_STATUS_UPDATED = "test:status_updated"
    TEST_NEW = "test:new"

    # Session events
    SESSION_PROGRESS = "session:progress"
    SESSION_PROGRESS_UPDATED = "session:progress_updated"
    SESSION_SCREEN_EVENT = "session:screen_event"
    SESSION_COMPLETED = "session:completed"

    # Notification events
    NOTIFICATION_NEW = "notification:new"
    NOTIFICATION_READ = "notification:read"
    NOTIFICATION_READ_CONFIRMED = "notification:read_confirmed"
    NOTIFICATION_GET_COUNT = "notification:get_count"
    NOTIFICATION_COUNT = "notification:count"

    # Presence events
    USER_JOINED = "user:joined"
    USER_LEFT = "user:left"
    USER_TYPING = "user:typing"

    # Money / system events
    EARNINGS_UPDATED = "earnings:updated"
    PAYMENT_STATUS_UPDATED = "payment:status_updated"
    SYSTEM_MESSAGE = "system:message"


@dataclass
class UserConnection:
    """A live WebSocket connection of an authenticated user"""
    websocket: WebSocket
    user_id: str
    user_name: str
    user_type: str
    connected_at: datetime = field(default_factory=datetime.utcnow)
    last_activity: datetime = field(default_factory=datetime.utcnow)
    test_rooms: Set[str] = field(default_factory=set)


def build_message(event_type: Union[EventType, str], data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": getattr(event_type, "value", event_type),
        "data": data,
        "timestamp": datetime.utcnow().isoformat(),
    }


class ConnectionManager:
    """
    Manages WebSocket connections and test rooms.

    State is in-memory and per-process; events are best effort and a
    connection that fails to receive is dropped.
    """

    def __init__(self):
        # user_id -> connection
        self._connections: Dict[str, UserConnection] = {}
        # test_id -> user_ids in the room
        self._test_rooms: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def connect(
        self,
        websocket: WebSocket,
        user_id: str,
        user_name: str,
        user_type: str
    ) -> UserConnection:
        """Accept the socket and register it as the user's live connection"""
        await websocket.accept()

        connection = UserConnection(
            websocket=websocket,
            user_id=user_id,
            user_name=user_name,
            user_type=user_type,
        )

        async with self._lock:
            previous = self._connections.get(user_id)
            if previous:
                # Rooms follow the user to the new connection
                connection.test_rooms = previous.test_rooms
            self._connections[user_id] = connection

        logger.info(f"[Socket] User connected: {user_id} ({user_type})")

        await self.send_to_user(
            user_id,
            EventType.CONNECTED,
            {"user_id": user_id, "connected_users": self.get_connected_users_count()},
        )
        return connection

    async def disconnect(self, user_id: str, websocket: Optional[WebSocket] = None):
        """
        Drop the user's connection and leave all rooms.

        When websocket is given, nothing happens unless it is still the
        user's live connection (a reconnect may have replaced it).
        """
        async with self._lock:
            connection = self._connections.get(user_id)
            if connection is None:
                return
            if websocket is not None and connection.websocket is not websocket:
                return

            del self._connections[user_id]
            rooms = list(connection.test_rooms)
            for test_id in rooms:
                members = self._test_rooms.get(test_id)
                if members is not None:
                    members.discard(user_id)
                    if not members:
                        del self._test_rooms[test_id]

        logger.info(f"[Socket] User disconnected: {user_id}")

        for test_id in rooms:
            await self.broadcast_to_test(
                test_id,
                EventType.USER_LEFT,
                {"user_id": user_id, "user_name": connection.user_name, "test_id": test_id},
            )

    async def join_test(self, user_id: str, test_id: str) -> List[Dict[str, Any]]:
        """Add a connected user to a test room; returns the room participants"""
        async with self._lock:
            connection = self._connections.get(user_id)
            if connection is None:
                return []
            self._test_rooms.setdefault(test_id, set()).add(user_id)
            connection.test_rooms.add(test_id)

        logger.debug(f"[Socket] User {user_id} joined test room {test_id}")

        await self.broadcast_to_test(
            test_id,
            EventType.USER_JOINED,
            {
                "user_id": user_id,
                "user_name": connection.user_name,
                "user_type": connection.user_type,
                "test_id": test_id,
            },
            exclude_user=user_id,
        )
        return self.get_test_room_participants(test_id)

    async def leave_test(self, user_id: str, test_id: str):
        async with self._lock:
            members = self._test_rooms.get(test_id)
            if not members or user_id not in members:
                return
            members.discard(user_id)
            if not members:
                del self._test_rooms[test_id]
            connection = self._connections.get(user_id)
            if connection:
                connection.test_rooms.discard(test_id)

        await self.broadcast_to_test(
            test_id,
            EventType.USER_LEFT,
            {"user_id": user_id, "test_id": test_id},
        )

    async def send_to_user(
        self,
        user_id: str,
        event_type: Union[EventType, str],
        data: Dict[str, Any]
    ) -> bool:
        """Send a message to a specific user. Returns False if the user is offline."""
        connection = self._connections.get(user_id)
        if connection is None:
            return False

        try:
            await connection.websocket.send_json(build_message(event_type, data))
            connection.last_activity = datetime.utcnow()
            return True
        except Exception as e:
            logger.error(f"[Socket] Error sending to user {user_id}: {e}")
            await self.disconnect(user_id, connection.websocket)
            return False

    async def broadcast_to_test(
        self,
        test_id: str,
        event_type: Union[EventType, str],
        data: Dict[str, Any],
        exclude_user: Optional[str] = None
    ) -> int:
        """Broadcast to everyone in a test room. Returns the number of recipients."""
        members = list(self._test_rooms.get(test_id, ()))
        message = build_message(event_type, data)
        delivered = 0
        dead_connections = []

        for user_id in members:
            if exclude_user and user_id == exclude_user:
                continue
            connection = self._connections.get(user_id)
            if connection is None:
                continue
            try:
                await connection.websocket.send_json(message)
                connection.last_activity = datetime.utcnow()
                delivered += 1
            except Exception as e:
                logger.error(f"[Socket] Error broadcasting to user {user_id}: {e}")
                dead_connections.append((user_id, connection.websocket))

        for user_id, websocket in dead_connections:
            await self.disconnect(user_id, websocket)

        return delivered

    async def broadcast_to_all(self, event_type: Union[EventType, str], data: Dict[str, Any]) -> int:
        delivered = 0
        for user_id in list(self._connections):
            if await self.send_to_user(user_id, event_type, data):
                delivered += 1
        return delivered

    def touch(self, user_id: str):
        connection = self._connections.get(user_id)
        if connection:
            connection.last_activity = datetime.utcnow()

    def is_user_online(self, user_id: str) -> bool:
        return user_id in self._connections

    def get_connected_users_count(self) -> int:
        return len(self._connections)

    def get_test_room_participants(self, test_id: str) -> List[Dict[str, Any]]:
        participants = []
        for user_id in self._test_rooms.get(test_id, ()):
            connection = self._connections.get(user_id)
            if connection:
                participants.append({
                    "user_id": connection.user_id,
                    "user_name": connection.user_name,
                    "user_type": connection.user_type,
                    "connected_at": connection.connected_at.isoformat(),
                })
        return participants


connection_manager = ConnectionManager()
