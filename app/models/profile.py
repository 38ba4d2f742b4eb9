import uuid

from sqlalchemy import Boolean, Column, Numeric, String, Text
from sqlalchemy.sql import func

from app.core.database import Base, UTCDateTime


class Profile(Base):
    """User, provider and admin profiles mirrored from the identity provider."""

    __tablename__ = "profiles"

    # Core identity (id is issued by the identity provider)
    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="user", index=True)

    # Profile information
    avatar_url = Column(String, nullable=True)
    timezone = Column(String(64), nullable=True)

    # Provider-only details
    specialty = Column(String(255), nullable=True)
    bio = Column(Text, nullable=True)
    telehealth = Column(Boolean, nullable=True)
    hourly_rate = Column(Numeric(10, 2), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Audit timestamps
    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Profile(id={self.id}, role={self.role}, email='{self.email}')>"
