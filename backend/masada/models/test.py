from sqlalchemy import Column, String, DateTime, Enum as SQLEnum, Integer, Float, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from masada.core.database import Base
from masada.core.types import GUID, generate_uuid


class TestType(str, enum.Enum):
    __test__ = False

    USABILITY = "USABILITY"
    FEEDBACK = "FEEDBACK"
    SURVEY = "SURVEY"
    INTERVIEW = "INTERVIEW"


class Platform(str, enum.Enum):
    WEB = "WEB"
    MOBILE_APP = "MOBILE_APP"
    DESKTOP = "DESKTOP"


class TestStatus(str, enum.Enum):
    __test__ = False

    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Test(Base):
    """A usability test a customer publishes for testers"""
    __tablename__ = "tests"
    __test__ = False

    id = Column(GUID, primary_key=True, default=generate_uuid)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    instructions = Column(Text, nullable=True)
    test_type = Column(SQLEnum(TestType), default=TestType.USABILITY, nullable=False)
    platform = Column(SQLEnum(Platform), default=Platform.WEB, nullable=False)
    target_url = Column(String(500), nullable=True)
    status = Column(SQLEnum(TestStatus), default=TestStatus.DRAFT, nullable=False, index=True)

    max_testers = Column(Integer, default=10, nullable=False)
    current_testers = Column(Integer, default=0, nullable=False)
    payment_per_tester = Column(Float, nullable=False)
    estimated_duration = Column(Integer, nullable=False)  # minutes

    requirements = Column(JSON, default=list, nullable=False)
    tasks = Column(JSON, nullable=True)
    demographics = Column(JSON, nullable=True)

    created_by_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)

    published_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    created_by = relationship("User")
    tester_sessions = relationship("TesterSession", back_populates="test", cascade="all, delete-orphan")
    test_sessions = relationship("TestSession", back_populates="test", cascade="all, delete-orphan")
    assets = relationship("TestAsset", back_populates="test", cascade="all, delete-orphan")

    @property
    def has_capacity(self) -> bool:
        return self.current_testers < self.max_testers

    def __repr__(self):
        return f"<Test {self.title} ({self.status.value if self.status else '-'})>"


class TestAsset(Base):
    """File uploaded for a test (mockups, instructions, media)"""
    __tablename__ = "test_assets"
    __test__ = False

    id = Column(GUID, primary_key=True, default=generate_uuid)
    test_id = Column(GUID, ForeignKey("tests.id", ondelete="CASCADE"), index=True, nullable=False)
    uploaded_by_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    file_name = Column(String(255), unique=True, nullable=False)
    original_name = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=False)
    size = Column(Integer, nullable=False)
    url = Column(String(500), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    test = relationship("Test", back_populates="assets")

    def __repr__(self):
        return f"<TestAsset {self.original_name}>"
