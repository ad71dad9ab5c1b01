"""
HTTP middleware: request ids and timing, security headers, body size cap.
"""

import time
from typing import Callable, Dict, Set

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from masada.core.error_handlers import error_response
from masada.core.logging_config import (
    logger,
    set_request_id,
    set_user_id,
    generate_request_id,
)


QUIET_PATHS: Set[str] = {"/", "/health", "/favicon.ico", "/docs", "/redoc", "/openapi.json"}

SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def should_skip_logging(path: str) -> bool:
    """Health checks and the docs pages are not logged per request"""
    return path in QUIET_PATHS


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an id (taken from X-Request-ID when the client
    sends one) and reports how long it took. The id lives in the logging
    context for the duration of the request and is echoed back in the
    response headers with X-Response-Time.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            self._log_failure(request, exc, self._elapsed_ms(started))
            raise
        finally:
            set_user_id("")

        elapsed = self._elapsed_ms(started)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed:.2f}ms"

        if not should_skip_logging(request.url.path):
            self._log_completed(request, response.status_code, elapsed)

        set_request_id("")
        return response

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return (time.perf_counter() - started) * 1000

    @staticmethod
    def _log_completed(request: Request, status_code: int, elapsed: float) -> None:
        logger.log_request(
            request.method, request.url.path, status_code, elapsed,
            client_ip=request.client.host if request.client else "unknown",
            user_agent=request.headers.get("user-agent", ""),
        )
        logger.log_performance(f"{request.method} {request.url.path}", elapsed)

    @staticmethod
    def _log_failure(request: Request, exc: Exception, elapsed: float) -> None:
        logger.error(
            f"{request.method} {request.url.path} - {type(exc).__name__} after {elapsed:.2f}ms",
            exc_info=True,
            extra={
                "event_type": "http_request_error",
                "http_method": request.method,
                "http_path": request.url.path,
                "duration_ms": elapsed,
                "error_type": type(exc).__name__,
            },
        )
        set_request_id("")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """413 for any request whose Content-Length is above max_size bytes"""

    def __init__(self, app: ASGIApp, max_size: int = 10 * 1024 * 1024):
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self.max_size:
            logger.warning(
                f"Rejected {request.url.path}: body of {declared} bytes exceeds {self.max_size}",
                extra={"event_type": "request_too_large", "content_length": int(declared)},
            )
            return error_response(request, 413, "Request body too large")
        return await call_next(request)


__all__ = [
    "RequestLoggingMiddleware",
    "SecurityHeadersMiddleware",
    "RequestSizeLimitMiddleware",
    "should_skip_logging",
]
