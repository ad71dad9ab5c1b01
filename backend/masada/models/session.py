from sqlalchemy import Column, String, DateTime, Enum as SQLEnum, Integer, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from masada.core.database import Base
from masada.core.types import GUID, generate_uuid


class SessionStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


ACTIVE_SESSION_STATUSES = (SessionStatus.PENDING, SessionStatus.IN_PROGRESS)


class TestSession(Base):
    """Customer-side run of a test; groups the tester sessions of one test"""
    __tablename__ = "test_sessions"
    __test__ = False

    id = Column(GUID, primary_key=True, default=generate_uuid)
    test_id = Column(GUID, ForeignKey("tests.id", ondelete="CASCADE"), index=True, nullable=False)
    customer_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(SQLEnum(SessionStatus), default=SessionStatus.IN_PROGRESS, nullable=False)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    test = relationship("Test", back_populates="test_sessions")
    tester_sessions = relationship("TesterSession", back_populates="test_session")


class TesterSession(Base):
    """One tester's attempt at a specific test"""
    __tablename__ = "tester_sessions"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    test_id = Column(GUID, ForeignKey("tests.id", ondelete="CASCADE"), index=True, nullable=False)
    tester_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    test_session_id = Column(GUID, ForeignKey("test_sessions.id", ondelete="SET NULL"), nullable=True)
    status = Column(SQLEnum(SessionStatus), default=SessionStatus.PENDING, nullable=False, index=True)

    device_info = Column(JSON, nullable=True)
    feedback = Column(Text, nullable=True)
    rating = Column(Integer, nullable=True)
    task_results = Column(JSON, nullable=True)
    recording_url = Column(String(500), nullable=True)
    recording_duration = Column(Integer, nullable=True)  # seconds
    duration = Column(Integer, nullable=True)  # seconds from start to completion

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    test = relationship("Test", back_populates="tester_sessions")
    test_session = relationship("TestSession", back_populates="tester_sessions")
    tester = relationship("User")
    earning = relationship("Earning", back_populates="tester_session", uselist=False)

    def __repr__(self):
        return f"<TesterSession {self.id} ({self.status.value if self.status else '-'})>"
