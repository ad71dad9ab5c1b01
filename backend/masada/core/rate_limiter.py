"""
Rate Limiting for the Masada API
================================
slowapi limiter with a global default plus stricter limits on the
sensitive auth endpoints:

- /auth/register, /auth/login: 5 per 15 minutes
- /auth/forgot-password: 3 per hour
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request

from masada.core.config import settings
from masada.core.logging_config import logger
from masada.core.error_handlers import error_response
from masada.core.exceptions import RateLimitError

AUTH_LIMIT = "5 per 15 minutes"
PASSWORD_RESET_LIMIT = "3 per hour"


def get_user_identifier(request: Request) -> str:
    """Rate limit key: authenticated user id when known, client IP otherwise"""
    user_id = getattr(request.state, 'user_id', None)
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_user_identifier,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
    strategy="fixed-window",
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Render slowapi's RateLimitExceeded in the standard error envelope"""
    logger.warning(
        f"[RateLimit] Exceeded for {get_user_identifier(request)}: {exc.detail}"
    )
    error = RateLimitError(
        "Too many requests. Please try again later.",
        details={"limit": str(exc.detail)},
    )
    return error_response(
        request,
        status_code=error.status_code,
        message=error.message,
        details=error.details,
        headers={"Retry-After": "60"},
    )


def auth_rate_limit():
    """Brute-force protection for register/login"""
    return limiter.limit(AUTH_LIMIT, key_func=get_user_identifier)


def password_reset_rate_limit():
    return limiter.limit(PASSWORD_RESET_LIMIT, key_func=get_user_identifier)
