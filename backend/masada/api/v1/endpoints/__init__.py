# API endpoints
from . import analytics, auth, payments, sessions, tests, uploads, users, websocket

__all__ = ["analytics", "auth", "payments", "sessions", "tests", "uploads", "users", "websocket"]
