from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED})


class ActorRole(str, Enum):
    USER = "user"
    PROVIDER = "provider"
    ADMIN = "admin"
    SYSTEM = "system"


class TransitionOperation(str, Enum):
    CONFIRM = "confirm"
    DECLINE = "decline"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    OVERRIDE_RESCHEDULE = "override_reschedule"
    COMPLETE = "complete"


class ActorContext(BaseModel):
    """Who is asking. Resolved by the identity layer in front of the core."""

    role: ActorRole
    profile_id: Optional[str] = None


# Records exchanged with the persistence port
class AppointmentRecord(BaseModel):
    id: str
    user_id: str
    provider_id: str
    starts_at: datetime
    duration_minutes: int
    status: AppointmentStatus
    notes: Optional[str] = None
    cancelled_reason: Optional[str] = None
    appointment_type: Optional[str] = None
    rescheduled_from: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.duration_minutes)

    @property
    def blocks_calendar(self) -> bool:
        """Every appointment except a cancelled one occupies provider time."""
        return self.status != AppointmentStatus.CANCELLED

    def overlaps(self, starts_at: datetime, ends_at: datetime) -> bool:
        return self.starts_at < ends_at and starts_at < self.ends_at


class NewAppointment(BaseModel):
    user_id: str
    provider_id: str
    starts_at: datetime
    duration_minutes: int = Field(..., gt=0)
    notes: Optional[str] = None
    appointment_type: Optional[str] = None
    created_by: Optional[str] = None
    status: AppointmentStatus = AppointmentStatus.PENDING
    created_at: datetime
    # Recorded in the status history only
    booked_by_role: ActorRole = ActorRole.USER

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.duration_minutes)


class AppointmentChanges(BaseModel):
    """Field updates that ride along with a conditional status update."""

    starts_at: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(None, gt=0)
    notes: Optional[str] = None
    cancelled_reason: Optional[str] = None
    rescheduled_from: Optional[datetime] = None
    updated_at: datetime

    @property
    def moves_calendar(self) -> bool:
        return self.starts_at is not None or self.duration_minutes is not None


class StatusChange(BaseModel):
    id: Optional[int] = None
    appointment_id: str
    from_status: Optional[AppointmentStatus] = None
    to_status: AppointmentStatus
    operation: str
    actor_role: ActorRole
    reason: Optional[str] = None
    changed_at: datetime

    model_config = {"from_attributes": True}


class AppointmentFilter(BaseModel):
    user_id: Optional[str] = None
    provider_id: Optional[str] = None
    statuses: Optional[List[AppointmentStatus]] = None


# Read model handed to callers
class AppointmentView(AppointmentRecord):
    """Appointment with display names looked up at read time.

    The names are convenience only and never stored on the appointment.
    """

    provider_name: str = "Provider"
    provider_avatar: Optional[str] = None
    user_name: str = "Patient"


# Request schemas
class BookingRequest(BaseModel):
    user_id: str
    provider_id: str
    starts_at: datetime
    duration_minutes: int = 60
    notes: Optional[str] = None
    appointment_type: Optional[str] = None


class TransitionFields(BaseModel):
    """Optional inputs an operation may need (new time, reason, notes)."""

    starts_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None
    cancelled_reason: Optional[str] = None


class TransitionRequest(TransitionFields):
    operation: TransitionOperation


class AppointmentList(BaseModel):
    appointments: List[AppointmentView]
    total_count: int


class CompletionSweepResponse(BaseModel):
    completed: List[AppointmentView]
    total_completed: int
