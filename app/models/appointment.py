import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base, UTCDateTime
from app.schemas.appointment import AppointmentStatus


class Appointment(Base):
    """Telehealth appointment. Rows are never deleted; cancellation is a status."""

    __tablename__ = "appointments"

    # Core identity
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Appointment participants (referenced, not owned)
    user_id = Column(String(64), ForeignKey("profiles.id"), nullable=False, index=True)
    provider_id = Column(
        String(64), ForeignKey("profiles.id"), nullable=False, index=True
    )

    # Scheduling details
    appointment_type = Column(String(50), nullable=True)
    starts_at = Column(UTCDateTime, nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=False)

    # Status management
    status = Column(
        String(20), nullable=False, default=AppointmentStatus.PENDING.value, index=True
    )
    notes = Column(Text, nullable=True)
    cancelled_reason = Column(Text, nullable=True)
    rescheduled_from = Column(UTCDateTime, nullable=True)
    created_by = Column(String(64), nullable=True)

    # Audit timestamps
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
    updated_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="check_positive_duration"),
        CheckConstraint(
            "(status = 'cancelled') = (cancelled_reason IS NOT NULL)",
            name="check_cancelled_reason_iff_cancelled",
        ),
        Index("ix_appointments_provider_starts", "provider_id", "starts_at"),
    )

    status_changes = relationship(
        "AppointmentStatusChange",
        back_populates="appointment",
        order_by="AppointmentStatusChange.id",
    )

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, status='{self.status}', "
            f"starts_at='{self.starts_at}', "
            f"user_id={self.user_id}, provider_id={self.provider_id})>"
        )


class AppointmentStatusChange(Base):
    """Append-only status history, written with each status update."""

    __tablename__ = "appointment_status_changes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    appointment_id = Column(
        String(36), ForeignKey("appointments.id"), nullable=False, index=True
    )
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    operation = Column(String(32), nullable=False)
    actor_role = Column(String(20), nullable=False)
    reason = Column(Text, nullable=True)
    changed_at = Column(UTCDateTime, nullable=False)

    appointment = relationship("Appointment", back_populates="status_changes")
