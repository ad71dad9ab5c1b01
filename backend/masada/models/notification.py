from sqlalchemy import Column, String, Boolean, DateTime, Enum as SQLEnum, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from masada.core.database import Base
from masada.core.types import GUID, generate_uuid


class NotificationType(str, enum.Enum):
    TEST_INVITATION = "TEST_INVITATION"
    TEST_COMPLETED = "TEST_COMPLETED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    EARNING_AVAILABLE = "EARNING_AVAILABLE"
    SYSTEM_UPDATE = "SYSTEM_UPDATE"
    ACCOUNT_UPDATE = "ACCOUNT_UPDATE"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    type = Column(SQLEnum(NotificationType), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)

    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="notifications")

    def __repr__(self):
        return f"<Notification {self.type.value if self.type else '-'} -> {self.user_id}>"
