import asyncio
import itertools
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from app.core.exceptions import AppointmentNotFound, SlotUnavailable, StaleStatusError
from app.repositories.base import PersistencePort, apply_changes
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

logger = structlog.get_logger(__name__)


class MemoryPersistence(PersistencePort):
    """Process-local persistence used when no database is configured.

    A single ``asyncio.Lock`` serialises every write, which gives the same
    read-check-write atomicity the SQL backend gets from its transactions.
    """

    def __init__(self):
        self._profiles: Dict[str, Profile] = {}
        self._availability: Dict[str, List[AvailabilitySlot]] = {}
        self._appointments: Dict[str, AppointmentRecord] = {}
        self._history: Dict[str, List[StatusChange]] = {}
        self._notifications: Dict[str, NotificationRecord] = {}
        self._history_ids = itertools.count(1)
        self._lock = asyncio.Lock()

    # Profiles
    async def get_profile(self, profile_id: str) -> Optional[Profile]:
        profile = self._profiles.get(profile_id)
        return profile.model_copy() if profile else None

    async def find_profile_by_email(self, email: str) -> Optional[Profile]:
        needle = email.strip().lower()
        for profile in self._profiles.values():
            if profile.email.lower() == needle:
                return profile.model_copy()
        return None

    async def list_providers(self, active_only: bool = True) -> List[Profile]:
        providers = [
            p.model_copy()
            for p in self._profiles.values()
            if p.role == Role.PROVIDER and (p.is_active or not active_only)
        ]
        return sorted(providers, key=lambda p: p.full_name)

    async def list_profiles(self, role: Optional[Role] = None) -> List[Profile]:
        profiles = [
            p.model_copy()
            for p in self._profiles.values()
            if role is None or p.role == role
        ]
        return sorted(profiles, key=lambda p: p.full_name)

    async def upsert_profile(self, profile: Profile) -> Profile:
        async with self._lock:
            stored = profile.model_copy()
            if stored.created_at is None:
                existing = self._profiles.get(stored.id)
                stored.created_at = (
                    existing.created_at if existing else datetime.now(timezone.utc)
                )
            self._profiles[stored.id] = stored
            return stored.model_copy()

    # Availability
    async def get_availability(self, provider_id: str) -> List[AvailabilitySlot]:
        return [s.model_copy() for s in self._availability.get(provider_id, [])]

    async def replace_availability(
        self, provider_id: str, slots: List[AvailabilitySlot]
    ) -> List[AvailabilitySlot]:
        async with self._lock:
            stored = [
                slot.model_copy(
                    update={"id": str(uuid.uuid4()), "provider_id": provider_id}
                )
                for slot in slots
            ]
            self._availability[provider_id] = stored
            return [s.model_copy() for s in stored]

    # Appointments
    async def get_appointment(self, appointment_id: str) -> Optional[AppointmentRecord]:
        record = self._appointments.get(appointment_id)
        return record.model_copy() if record else None

    async def list_appointments(
        self, filter: Optional[AppointmentFilter] = None
    ) -> List[AppointmentRecord]:
        filter = filter or AppointmentFilter()
        records = [
            r.model_copy()
            for r in self._appointments.values()
            if self._matches(r, filter)
        ]
        return sorted(records, key=lambda r: (r.starts_at, r.created_at))

    async def create_appointment(self, data: NewAppointment) -> AppointmentRecord:
        async with self._lock:
            self._ensure_free(data.provider_id, data.starts_at, data.ends_at)

            record = AppointmentRecord(
                id=str(uuid.uuid4()),
                **data.model_dump(exclude={"booked_by_role"}),
            )
            self._appointments[record.id] = record
            self._history[record.id] = [
                StatusChange(
                    id=next(self._history_ids),
                    appointment_id=record.id,
                    from_status=None,
                    to_status=record.status,
                    operation="book",
                    actor_role=data.booked_by_role,
                    changed_at=record.created_at,
                )
            ]
            return record.model_copy()

    async def update_appointment_status(
        self,
        appointment_id: str,
        expected_status: AppointmentStatus,
        new_status: AppointmentStatus,
        fields: AppointmentChanges,
        change: StatusChange,
    ) -> AppointmentRecord:
        async with self._lock:
            current = self._appointments.get(appointment_id)
            if current is None:
                raise AppointmentNotFound(
                    f"Appointment {appointment_id} not found",
                    appointment_id=appointment_id,
                )
            if current.status != expected_status:
                raise StaleStatusError(
                    appointment_id, expected_status.value, current.status.value
                )

            updated = current.model_copy(
                update=apply_changes(new_status, fields), deep=True
            )
            if fields.moves_calendar and updated.blocks_calendar:
                self._ensure_free(
                    updated.provider_id,
                    updated.starts_at,
                    updated.ends_at,
                    exclude_id=appointment_id,
                )

            self._appointments[appointment_id] = updated
            self._history.setdefault(appointment_id, []).append(
                change.model_copy(
                    update={
                        "id": next(self._history_ids),
                        "appointment_id": appointment_id,
                        "from_status": expected_status,
                        "to_status": new_status,
                    }
                )
            )
            return updated.model_copy()

    async def list_status_history(self, appointment_id: str) -> List[StatusChange]:
        return [c.model_copy() for c in self._history.get(appointment_id, [])]

    # Notifications
    async def create_notification(
        self, user_id: str, message: str, meta: Optional[Dict[str, Any]] = None
    ) -> NotificationRecord:
        async with self._lock:
            record = NotificationRecord(
                id=str(uuid.uuid4()),
                user_id=user_id,
                message=message,
                read=False,
                meta=dict(meta) if meta else None,
                created_at=datetime.now(timezone.utc),
            )
            self._notifications[record.id] = record
            return record.model_copy()

    async def list_notifications(self, user_id: str) -> List[NotificationRecord]:
        notes = [
            n.model_copy() for n in self._notifications.values() if n.user_id == user_id
        ]
        return sorted(notes, key=lambda n: n.created_at, reverse=True)

    async def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        note = self._notifications.get(notification_id)
        return note.model_copy() if note else None

    async def mark_notification_read(self, notification_id: str) -> bool:
        async with self._lock:
            note = self._notifications.get(notification_id)
            if note is None:
                return False
            note.read = True
            return True

    # Helpers
    @staticmethod
    def _matches(record: AppointmentRecord, filter: AppointmentFilter) -> bool:
        if filter.user_id and record.user_id != filter.user_id:
            return False
        if filter.provider_id and record.provider_id != filter.provider_id:
            return False
        if filter.statuses and record.status not in filter.statuses:
            return False
        return True

    def _ensure_free(
        self,
        provider_id: str,
        starts_at: datetime,
        ends_at: datetime,
        exclude_id: Optional[str] = None,
    ) -> None:
        for other in self._appointments.values():
            if (
                other.provider_id == provider_id
                and other.id != exclude_id
                and other.blocks_calendar
                and other.overlaps(starts_at, ends_at)
            ):
                logger.info(
                    "Overlap detected at write time",
                    provider_id=provider_id,
                    conflicting_appointment_id=other.id,
                )
                raise SlotUnavailable(
                    "Requested time overlaps an existing appointment",
                    provider_id=provider_id,
                    conflicting_appointment_id=other.id,
                )

