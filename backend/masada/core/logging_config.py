"""
Logging for the API.

Every record carries the current request id and user id (set by the request
middleware and the auth dependency). Development gets readable single-line
output; production writes one JSON object per line so the log shipper can
index the structured fields passed through ``extra``.
"""

import json
import logging
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from masada.core.config import settings


request_id_var: ContextVar[str] = ContextVar('request_id', default='')
user_id_var: ContextVar[str] = ContextVar('user_id', default='')

SENSITIVE_PAYMENT_FIELDS = {"card_number", "cvv", "pin", "secret", "api_key", "password"}

# Attributes every LogRecord has; anything else came in through `extra`
_STANDARD_ATTRS = set(vars(logging.makeLogRecord({}))) | {'message', 'taskName', 'request_id', 'user_id'}

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024


def get_request_id() -> str:
    return request_id_var.get()


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def get_user_id() -> str:
    return user_id_var.get()


def set_user_id(user_id: str) -> None:
    user_id_var.set(user_id)


def generate_request_id() -> str:
    return uuid.uuid4().hex[:8]


def mask_sensitive(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of data with card numbers, pins, secrets and the like replaced by ***"""
    return {
        key: "***" if key.lower() in SENSITIVE_PAYMENT_FIELDS
        else mask_sensitive(value) if isinstance(value, dict)
        else value
        for key, value in data.items()
    }


class RequestContextFilter(logging.Filter):
    """Stamps request_id and user_id from the context vars onto each record"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or '-'
        record.user_id = get_user_id() or '-'
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for name in ("request_id", "user_id"):
            value = getattr(record, name, '-')
            if value != '-':
                entry[name] = value

        if record.exc_info and record.exc_info[0]:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        entry.update(
            (key, value) for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith('_')
        )
        return json.dumps(entry, default=str)


class MasadaLogger(logging.Logger):
    """Logger with helpers for the structured events the API emits"""

    def _event(self, level: int, event_type: str, message: str, fields: Dict[str, Any], **kwargs) -> None:
        self.log(level, message, extra={"event_type": event_type, **fields}, **kwargs)

    def log_request(self, method: str, path: str, status_code: int,
                    duration_ms: float, **fields) -> None:
        """Completed HTTP request; warning for 4xx, error for 5xx"""
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        self._event(
            level, "http_request", f"{method} {path} - {status_code} ({duration_ms:.2f}ms)",
            {"http_method": method, "http_path": path, "http_status": status_code,
             "duration_ms": duration_ms, **fields},
        )

    def log_auth_event(self, event: str, success: bool, user_email: Optional[str] = None,
                       reason: Optional[str] = None, **fields) -> None:
        parts = [f"Auth {event}: {'success' if success else 'failed'}"]
        parts += [part for part in (user_email, reason) if part]
        self._event(
            logging.INFO if success else logging.WARNING, "auth", " - ".join(parts),
            {"auth_event": event, "auth_success": success,
             "user_email": user_email, "failure_reason": reason, **fields},
        )

    def log_payment(self, event: str, payment_id: str, provider: Optional[str] = None,
                    data: Optional[Dict[str, Any]] = None, **fields) -> None:
        message = f"Payment {event}: {payment_id}" + (f" via {provider}" if provider else "")
        self._event(
            logging.INFO, "payment", message,
            {"payment_event": event, "payment_id": payment_id, "payment_provider": provider,
             "payment_data": mask_sensitive(data or {}), **fields},
        )

    def log_test_session(self, event: str, session_id: str, test_id: str,
                         tester_id: str, **fields) -> None:
        self._event(
            logging.INFO, "test_session", f"Session {session_id} {event} (test {test_id})",
            {"session_event": event, "session_id": session_id,
             "test_id": test_id, "tester_id": tester_id, **fields},
        )

    def log_error_with_context(self, error: Exception, context: Optional[str] = None, **fields) -> None:
        self._event(
            logging.ERROR, "error", f"Error in {context}: {type(error).__name__}: {error}",
            {"error_type": type(error).__name__, "error_message": str(error),
             "error_context": context, **fields},
            exc_info=True,
        )

    def log_performance(self, operation: str, duration_ms: float,
                        threshold_ms: float = 1000, **fields) -> None:
        """Debug-level timing; promoted to a warning when over threshold_ms"""
        slow = duration_ms > threshold_ms
        message = f"{operation} took {duration_ms:.2f}ms"
        if slow:
            message += f" (slower than {threshold_ms}ms)"
        self._event(
            logging.WARNING if slow else logging.DEBUG, "performance", message,
            {"operation": operation, "duration_ms": duration_ms,
             "threshold_ms": threshold_ms, "exceeded_threshold": slow, **fields},
        )


def _formatters():
    """(console, file) formatters for the current environment"""
    if settings.is_production:
        json_formatter = JSONFormatter()
        return json_formatter, json_formatter
    console = logging.Formatter("%(levelname)-8s | %(message)s")
    detailed = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | [%(request_id)s] [%(user_id)s] | "
        "%(module)s.%(funcName)s:%(lineno)d | %(message)s"
    )
    return console, detailed


def setup_logging() -> MasadaLogger:
    logging.setLoggerClass(MasadaLogger)
    logger = logging.getLogger("masada")
    logger.__class__ = MasadaLogger
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    logger.handlers.clear()
    logger.filters.clear()
    logger.addFilter(RequestContextFilter())

    console_formatter, file_formatter = _formatters()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if settings.LOG_FILE:
        log_file = Path(settings.LOG_FILE)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=10 if settings.is_production else 5,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    for noisy in ("httpx", "uvicorn.access", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info(
        f"Logging initialized ({settings.ENVIRONMENT}, level {settings.LOG_LEVEL})",
        extra={"json_logging": settings.is_production},
    )
    return logger


logger: MasadaLogger = setup_logging()


__all__ = [
    'logger',
    'setup_logging',
    'get_request_id',
    'set_request_id',
    'get_user_id',
    'set_user_id',
    'generate_request_id',
    'mask_sensitive',
    'MasadaLogger',
]
