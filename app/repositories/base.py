"""
Persistence port for the booking core.

Every method is a coroutine and may raise ``StorageError``. Implementations
never hand out references to their internal state: callers always receive
fresh copies.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from app.schemas.appointment import (
    AppointmentChanges,
    AppointmentFilter,
    AppointmentRecord,
    AppointmentStatus,
    NewAppointment,
    StatusChange,
)
from app.schemas.availability import AvailabilitySlot
from app.schemas.notification import NotificationRecord
from app.schemas.profile import Profile, Role


class PersistencePort(ABC):
    """Storage contract consumed by the booking coordinator and lifecycle engine."""

    # Profiles
    @abstractmethod
    async def get_profile(self, profile_id: str) -> Optional[Profile]:
        """Retrieve a profile by id."""

    @abstractmethod
    async def find_profile_by_email(self, email: str) -> Optional[Profile]:
        """Retrieve a profile by (case-insensitive) email."""

    @abstractmethod
    async def list_providers(self, active_only: bool = True) -> List[Profile]:
        """List provider profiles ordered by name."""

    @abstractmethod
    async def list_profiles(self, role: Optional[Role] = None) -> List[Profile]:
        """List every profile, optionally of one role, ordered by name."""

    @abstractmethod
    async def upsert_profile(self, profile: Profile) -> Profile:
        """Create or replace a profile mirrored from the identity provider."""

    # Availability
    @abstractmethod
    async def get_availability(self, provider_id: str) -> List[AvailabilitySlot]:
        """Return the provider's weekly availability."""

    @abstractmethod
    async def replace_availability(
        self, provider_id: str, slots: List[AvailabilitySlot]
    ) -> List[AvailabilitySlot]:
        """Atomically swap the provider's whole availability set."""

    # Appointments
    @abstractmethod
    async def get_appointment(self, appointment_id: str) -> Optional[AppointmentRecord]:
        """Retrieve an appointment by id."""

    @abstractmethod
    async def list_appointments(
        self, filter: Optional[AppointmentFilter] = None
    ) -> List[AppointmentRecord]:
        """List appointments matching the filter, ascending by ``starts_at``."""

    @abstractmethod
    async def create_appointment(self, data: NewAppointment) -> AppointmentRecord:
        """Insert an appointment.

        Re-checks inside the write that no non-cancelled appointment of the same
        provider overlaps ``[starts_at, starts_at + duration)`` and raises
        ``SlotUnavailable`` otherwise.
        """

    @abstractmethod
    async def update_appointment_status(
        self,
        appointment_id: str,
        expected_status: AppointmentStatus,
        new_status: AppointmentStatus,
        fields: AppointmentChanges,
        change: StatusChange,
    ) -> AppointmentRecord:
        """Conditionally move an appointment from ``expected_status``.

        Raises ``AppointmentNotFound`` for an unknown id, ``StaleStatusError``
        if the stored status is no longer ``expected_status`` and
        ``SlotUnavailable`` if the update moves the appointment onto a busy
        range. ``change`` is appended to the status history in the same unit.
        """

    @abstractmethod
    async def list_status_history(self, appointment_id: str) -> List[StatusChange]:
        """Status changes of one appointment, oldest first."""

    # Notifications
    @abstractmethod
    async def create_notification(
        self, user_id: str, message: str, meta: Optional[Dict[str, Any]] = None
    ) -> NotificationRecord:
        """Store an in-app notification."""

    @abstractmethod
    async def list_notifications(self, user_id: str) -> List[NotificationRecord]:
        """Notifications for a profile, newest first."""

    @abstractmethod
    async def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        """Retrieve a notification by id."""

    @abstractmethod
    async def mark_notification_read(self, notification_id: str) -> bool:
        """Flag a notification as read; False when it does not exist."""


def apply_changes(
    new_status: AppointmentStatus, fields: AppointmentChanges
) -> Dict[str, Any]:
    """Column updates for a status change; ``None`` fields stay untouched."""
    update: Dict[str, Any] = {"status": new_status, "updated_at": fields.updated_at}
    for name in (
        "starts_at",
        "duration_minutes",
        "notes",
        "cancelled_reason",
        "rescheduled_from",
    ):
        value = getattr(fields, name)
        if value is not None:
            update[name] = value
    return update
