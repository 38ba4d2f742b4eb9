import uuid

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String, Time
from sqlalchemy.sql import func

from app.core.database import Base, UTCDateTime


class ProviderAvailability(Base):
    """Recurring weekly open hours for a provider (day 0 = Sunday)."""

    __tablename__ = "provider_availability"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    provider_id = Column(
        String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )

    # Schedule details
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    created_at = Column(UTCDateTime, server_default=func.now())

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="check_day_of_week"),
        CheckConstraint("end_time > start_time", name="check_end_after_start"),
        Index("ix_provider_availability_provider", "provider_id", "day_of_week"),
    )

    def __repr__(self):
        return (
            f"<ProviderAvailability(provider_id={self.provider_id}, "
            f"day={self.day_of_week}: {self.start_time}-{self.end_time})>"
        )
