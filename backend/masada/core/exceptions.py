"""
Custom Exceptions for Masada
============================

Raise these from services and endpoints instead of bare HTTPException so the
central error handlers can render one consistent error envelope.

Usage:
    from masada.core.exceptions import NotFoundError, ConflictError

    if not test:
        raise NotFoundError("Test")
"""

from typing import Optional, Any


class MasadaError(Exception):
    """Base exception for all Masada API errors"""

    status_code: int = 500
    default_message: str = "Internal server error"
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Any] = None,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message or self.default_message
        self.details = details
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        data = {
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
        }
        if self.details is not None:
            data["details"] = self.details
        return data


# ============================================
# Client errors (4xx)
# ============================================

class ValidationError(MasadaError):
    """Request data failed validation"""
    status_code = 400
    default_message = "Validation failed"
    default_code = "VALIDATION_ERROR"


class AuthenticationError(MasadaError):
    """User authentication failed"""
    status_code = 401
    default_message = "Authentication required"
    default_code = "AUTH_FAILED"


class AuthorizationError(MasadaError):
    """User not authorized for this action"""
    status_code = 403
    default_message = "Insufficient permissions"
    default_code = "NOT_AUTHORIZED"


class NotFoundError(MasadaError):
    """Requested resource does not exist"""
    status_code = 404
    default_code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource", message: Optional[str] = None):
        super().__init__(message or f"{resource} not found")
        self.resource = resource


class ConflictError(MasadaError):
    """Resource state conflicts with the request"""
    status_code = 409
    default_message = "Resource already exists"
    default_code = "CONFLICT"


class PaymentError(MasadaError):
    """Payment provider rejected or failed the operation"""
    status_code = 402
    default_message = "Payment failed"
    default_code = "PAYMENT_FAILED"

    def __init__(self, message: Optional[str] = None, provider: Optional[str] = None):
        super().__init__(message, details={"provider": provider} if provider else None)
        self.provider = provider


class PayloadTooLargeError(MasadaError):
    status_code = 413
    default_message = "File size too large"
    default_code = "PAYLOAD_TOO_LARGE"


class RateLimitError(MasadaError):
    status_code = 429
    default_message = "Too many requests"
    default_code = "RATE_LIMITED"


# ============================================
# Marketplace errors
# ============================================

class TestCapacityError(ConflictError):
    """All tester slots of a test are taken"""
    __test__ = False  # not a pytest test class

    default_message = "Test has reached maximum capacity"
    default_code = "TEST_CAPACITY_REACHED"
