from fastapi import APIRouter

from masada.api.v1.endpoints import analytics, auth, payments, sessions, tests, uploads, users, websocket

api_router = APIRouter()


@api_router.get("", tags=["Meta"])
async def api_index():
    """List the endpoint groups of this API version"""
    return {
        "success": True,
        "message": "Masada API",
        "data": {
            "endpoints": {
                "auth": "/auth",
                "users": "/users",
                "tests": "/tests",
                "sessions": "/sessions",
                "payments": "/payments",
                "analytics": "/analytics",
                "uploads": "/uploads",
                "websocket": "/ws",
            }
        },
    }


api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_router.include_router(users.router, prefix="/users", tags=["Users"])
api_router.include_router(tests.router, prefix="/tests", tags=["Tests"])
api_router.include_router(sessions.router, prefix="/sessions", tags=["Sessions"])
api_router.include_router(payments.router, prefix="/payments", tags=["Payments"])
api_router.include_router(analytics.router, prefix="/analytics", tags=["Analytics"])
api_router.include_router(uploads.router, prefix="/uploads", tags=["Uploads"])
api_router.include_router(websocket.router, tags=["WebSocket"])
