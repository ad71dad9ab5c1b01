# Re-export all models for convenient imports
from masada.models.user import User, UserType, UserStatus, TesterLevel, CustomerProfile, TesterProfile, RefreshToken
from masada.models.test import Test, TestType, Platform, TestStatus, TestAsset
from masada.models.session import TestSession, TesterSession, SessionStatus, ACTIVE_SESSION_STATUSES
from masada.models.payment import Payment, PaymentMethod, PaymentStatus, Currency, Earning, EarningStatus
from masada.models.notification import Notification, NotificationType
from masada.models.analytics import Analytics

__all__ = [
    # Users
    "User",
    "UserType",
    "UserStatus",
    "TesterLevel",
    "CustomerProfile",
    "TesterProfile",
    "RefreshToken",
    # Tests
    "Test",
    "TestType",
    "Platform",
    "TestStatus",
    "TestAsset",
    # Sessions
    "TestSession",
    "TesterSession",
    "SessionStatus",
    "ACTIVE_SESSION_STATUSES",
    # Money
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "Currency",
    "Earning",
    "EarningStatus",
    # Notifications / analytics
    "Notification",
    "NotificationType",
    "Analytics",
]
