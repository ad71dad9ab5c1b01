from sqlalchemy import Column, String, Boolean, DateTime, Enum as SQLEnum, Integer, Float, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from masada.core.database import Base
from masada.core.types import GUID, generate_uuid


class UserType(str, enum.Enum):
    """Marketplace side of a user"""
    CUSTOMER = "CUSTOMER"
    TESTER = "TESTER"
    ADMIN = "ADMIN"


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"


class TesterLevel(str, enum.Enum):
    NEW_TESTER = "NEW_TESTER"
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"


class User(Base):
    """User model"""
    __tablename__ = "users"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    avatar = Column(Text, nullable=True)

    user_type = Column(SQLEnum(UserType), default=UserType.CUSTOMER, nullable=False)
    status = Column(SQLEnum(UserStatus), default=UserStatus.PENDING_VERIFICATION, nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)
    email_verified_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_login_at = Column(DateTime, nullable=True)

    # Profiles are loaded eagerly; most handlers need them
    customer_profile = relationship(
        "CustomerProfile", back_populates="user", uselist=False,
        lazy="selectin", cascade="all, delete-orphan"
    )
    tester_profile = relationship(
        "TesterProfile", back_populates="user", uselist=False,
        lazy="selectin", cascade="all, delete-orphan"
    )
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def __repr__(self):
        return f"<User {self.email} ({self.user_type.value if self.user_type else '-'})>"


class CustomerProfile(Base):
    """Company-side details of a CUSTOMER user"""
    __tablename__ = "customer_profiles"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    company = Column(String(255), nullable=True)
    website = Column(String(500), nullable=True)
    industry = Column(String(100), nullable=True)
    company_size = Column(String(20), nullable=True)
    plan = Column(String(50), default="starter", nullable=False)
    tests_created = Column(Integer, default=0, nullable=False)
    total_spent = Column(Float, default=0.0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="customer_profile")

    def __repr__(self):
        return f"<CustomerProfile {self.company}>"


class TesterProfile(Base):
    """Demographics and track record of a TESTER user"""
    __tablename__ = "tester_profiles"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    phone = Column(String(20), nullable=True)
    city = Column(String(100), nullable=True)
    region = Column(String(50), nullable=True)
    age = Column(String(10), nullable=True)
    education = Column(String(50), nullable=True)
    occupation = Column(String(100), nullable=True)
    experience = Column(String(20), nullable=True)
    languages = Column(JSON, default=list, nullable=False)
    devices = Column(JSON, default=list, nullable=False)
    internet_speed = Column(String(10), nullable=True)
    availability = Column(String(10), nullable=True)
    motivation = Column(Text, nullable=True)

    rating = Column(Float, default=0.0, nullable=False)
    completed_tests = Column(Integer, default=0, nullable=False)
    total_earnings = Column(Float, default=0.0, nullable=False)
    level = Column(SQLEnum(TesterLevel), default=TesterLevel.NEW_TESTER, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    verified_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="tester_profile")

    def __repr__(self):
        return f"<TesterProfile {self.city}, {self.region}>"


class RefreshToken(Base):
    """Persisted refresh token; rows are deleted on rotation and logout"""
    __tablename__ = "refresh_tokens"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    token = Column(String(512), unique=True, index=True, nullable=False)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="refresh_tokens")

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= datetime.utcnow()
