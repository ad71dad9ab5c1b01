from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Text
from datetime import datetime

from masada.core.database import Base
from masada.core.types import GUID, generate_uuid


class Analytics(Base):
    """Raw analytics event (client events, session progress, screen events)"""
    __tablename__ = "analytics"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True)
    test_id = Column(GUID, ForeignKey("tests.id", ondelete="SET NULL"), index=True, nullable=True)
    event = Column(String(100), nullable=False, index=True)
    data = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<Analytics {self.event}>"
