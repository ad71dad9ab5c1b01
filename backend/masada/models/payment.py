from sqlalchemy import Column, String, DateTime, Enum as SQLEnum, Float, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from masada.core.database import Base
from masada.core.types import GUID, generate_uuid


class PaymentMethod(str, enum.Enum):
    CREDIT_CARD = "CREDIT_CARD"
    CHAPA = "CHAPA"
    TELEBIRR = "TELEBIRR"
    CBE_BIRR = "CBE_BIRR"
    BANK_TRANSFER = "BANK_TRANSFER"


class Currency(str, enum.Enum):
    ETB = "ETB"
    USD = "USD"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class EarningStatus(str, enum.Enum):
    PENDING = "PENDING"
    AVAILABLE = "AVAILABLE"
    PAID = "PAID"


class Payment(Base):
    """Money paid in by a customer"""
    __tablename__ = "payments"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    customer_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)

    amount = Column(Float, nullable=False)
    currency = Column(SQLEnum(Currency), default=Currency.ETB, nullable=False)
    method = Column(SQLEnum(PaymentMethod), nullable=False)
    status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True)
    description = Column(Text, nullable=True)

    transaction_id = Column(String(100), unique=True, nullable=True)
    payment_url = Column(String(500), nullable=True)
    # "metadata" is reserved on declarative classes
    payment_metadata = Column("metadata", JSON, nullable=True)

    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("User")

    def __repr__(self):
        return f"<Payment {self.amount} {self.currency.value if self.currency else ''} ({self.status.value if self.status else '-'})>"


class Earning(Base):
    """Payable record created when a tester completes a session"""
    __tablename__ = "earnings"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    tester_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    tester_session_id = Column(GUID, ForeignKey("tester_sessions.id", ondelete="SET NULL"), unique=True, nullable=True)
    test_id = Column(GUID, ForeignKey("tests.id", ondelete="SET NULL"), nullable=True)

    amount = Column(Float, nullable=False)
    currency = Column(SQLEnum(Currency), default=Currency.ETB, nullable=False)
    status = Column(SQLEnum(EarningStatus), default=EarningStatus.PENDING, nullable=False, index=True)
    description = Column(Text, nullable=True)

    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    tester_session = relationship("TesterSession", back_populates="earning")

    def __repr__(self):
        return f"<Earning {self.amount} ({self.status.value if self.status else '-'})>"
