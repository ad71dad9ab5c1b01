"""
Central exception handlers.

Every error leaves the API in the same envelope:

    {"error": "Client Error" | "Server Error", "message": ..., "status_code": ...,
     "timestamp": ..., "path": ..., "details": ...}
"""

import re
import traceback
from datetime import datetime
from typing import Any, Optional, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError
from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from masada.core.config import settings
from masada.core.exceptions import MasadaError
from masada.core.logging_config import logger


def error_response(
    request: Request,
    status_code: int,
    message: str,
    details: Optional[Any] = None,
    headers: Optional[Dict[str, str]] = None,
    exc: Optional[BaseException] = None,
) -> JSONResponse:
    """Build the JSON error envelope"""
    content: Dict[str, Any] = {
        "error": "Server Error" if status_code >= 500 else "Client Error",
        "message": message,
        "status_code": status_code,
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "path": request.url.path,
    }
    if details is not None and (status_code < 500 or settings.DEBUG):
        content["details"] = details
    if exc is not None and status_code >= 500 and settings.DEBUG:
        content["stack"] = traceback.format_exception(type(exc), exc, exc.__traceback__)

    return JSONResponse(status_code=status_code, content=content, headers=headers)


_UNIQUE_FIELD_PATTERNS = (
    re.compile(r"UNIQUE constraint failed: \w+\.(\w+)"),
    re.compile(r"Key \((\w+)\)=.* already exists"),
)


def describe_integrity_error(exc: IntegrityError) -> tuple:
    """Map an IntegrityError to (status_code, message)"""
    text = str(exc.orig) if exc.orig is not None else str(exc)
    lowered = text.lower()

    if "unique" in lowered or "duplicate" in lowered:
        for pattern in _UNIQUE_FIELD_PATTERNS:
            match = pattern.search(text)
            if match:
                return 409, f"{match.group(1)} already exists"
        return 409, "Record already exists"

    if "foreign key" in lowered:
        return 400, "Invalid reference to related record"

    return 400, "Invalid data for related record"


async def masada_error_handler(request: Request, exc: MasadaError):
    if exc.status_code >= 500:
        logger.log_error_with_context(exc, context=request.url.path)
    return error_response(request, exc.status_code, exc.message, exc.details, exc=exc)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return error_response(request, 400, "Validation failed", details)


async def integrity_error_handler(request: Request, exc: IntegrityError):
    status_code, message = describe_integrity_error(exc)
    logger.warning(f"[DB] Integrity error on {request.url.path}: {message}")
    return error_response(request, status_code, message)


async def no_result_handler(request: Request, exc: NoResultFound):
    return error_response(request, 404, "Record not found")


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.log_error_with_context(exc, context=request.url.path)
    return error_response(request, 500, "Database operation failed", str(exc), exc=exc)


async def jwt_error_handler(request: Request, exc: JWTError):
    if isinstance(exc, ExpiredSignatureError):
        return error_response(request, 401, "Authentication token expired")
    return error_response(request, 401, "Invalid authentication token")


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = f"Route {request.url.path} not found"
    else:
        message = str(exc.detail)
    return error_response(request, exc.status_code, message, headers=getattr(exc, "headers", None))


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return error_response(
        request,
        500,
        str(exc) if settings.DEBUG else "Internal server error",
        exc=exc,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MasadaError, masada_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(NoResultFound, no_result_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(JWTError, jwt_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
