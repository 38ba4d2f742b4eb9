import uuid

from sqlalchemy import JSON, Boolean, Column, ForeignKey, String, Text
from sqlalchemy.sql import func

from app.core.database import Base, UTCDateTime


class Notification(Base):
    """In-app notification addressed to one profile."""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), ForeignKey("profiles.id"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    meta = Column(JSON, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
