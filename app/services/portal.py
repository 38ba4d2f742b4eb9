from datetime import datetime
from typing import List, Optional

import structlog

from app.core.exceptions import AppointmentNotFound, NotFoundError, ValidationError
from app.core.redis import RedisClient
from app.repositories.base import PersistencePort
from app.schemas.appointment import (
    ActorContext,
    AppointmentFilter,
    AppointmentStatus,
    AppointmentView,
    StatusChange,
    TransitionFields,
    TransitionOperation,
)
from app.schemas.availability import AvailabilitySlot
from app.schemas.notification import NotificationList, NotificationRecord
from app.schemas.profile import (
    Profile,
    ProfileUpdate,
    ProviderWithAvailability,
    Role,
)
from app.schemas.scheduling import SlotList
from app.services.availability import AvailabilityService
from app.services.booking import BookingCoordinator
from app.services.holidays import HolidayService
from app.services.lifecycle import LifecycleEngine
from app.services.notifications import (
    NotificationDispatcher,
    NotificationSink,
    build_notification_sink,
)
from app.services.slots import SlotService
from app.services.views import AppointmentViewBuilder
from app.utils.time import Clock, utc_now

logger = structlog.get_logger(__name__)

REQUIRED_PROFILE_FIELDS = ("email", "full_name", "role")


class BookingPortal:
    """Entry point used by the API layer and background tasks.

    Wires the availability, slot, booking and lifecycle services around one
    persistence backend and one notification sink.
    """

    def __init__(
        self,
        persistence: PersistencePort,
        sink: Optional[NotificationSink] = None,
        lock_client: Optional[RedisClient] = None,
        holiday_service: Optional[HolidayService] = None,
        clock: Clock = utc_now,
    ):
        self.persistence = persistence
        self.clock = clock
        self.dispatcher = NotificationDispatcher(
            sink or build_notification_sink(persistence)
        )
        self.availability = AvailabilityService(persistence)
        self.slots = SlotService(persistence, holiday_service)
        self.booking = BookingCoordinator(
            persistence, self.slots, self.dispatcher, lock_client, clock
        )
        self.lifecycle = LifecycleEngine(
            persistence, self.slots, self.dispatcher, clock
        )
        self.views = AppointmentViewBuilder(persistence)

    # Providers and availability
    async def list_providers(self) -> List[ProviderWithAvailability]:
        providers = await self.persistence.list_providers()
        return [
            ProviderWithAvailability(
                **provider.model_dump(),
                availability=await self.persistence.get_availability(provider.id),
            )
            for provider in providers
        ]

    async def get_availability(self, provider_id: str) -> List[AvailabilitySlot]:
        return await self.availability.get_availability(provider_id)

    async def set_availability(
        self, provider_id: str, slots: List[AvailabilitySlot]
    ) -> List[AvailabilitySlot]:
        return await self.availability.replace_availability(provider_id, slots)

    async def generate_slots(
        self,
        provider_id: str,
        horizon_days: Optional[int] = None,
        granularity_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> SlotList:
        return await self.slots.list_slots(
            provider_id, now or self.clock(), horizon_days, granularity_minutes
        )

    # Appointments
    async def book_appointment(
        self,
        user_id: str,
        provider_id: str,
        starts_at: datetime,
        duration_minutes: int,
        notes: Optional[str] = None,
        appointment_type: Optional[str] = None,
        actor: Optional[ActorContext] = None,
    ) -> AppointmentView:
        return await self.booking.create_appointment(
            user_id,
            provider_id,
            starts_at,
            duration_minutes,
            notes=notes,
            appointment_type=appointment_type,
            actor=actor,
        )

    async def transition_appointment(
        self,
        appointment_id: str,
        operation: TransitionOperation,
        actor: ActorContext,
        fields: Optional[TransitionFields] = None,
    ) -> AppointmentView:
        return await self.lifecycle.transition(appointment_id, operation, actor, fields)

    async def get_appointment(self, appointment_id: str) -> AppointmentView:
        record = await self.persistence.get_appointment(appointment_id)
        if record is None:
            raise AppointmentNotFound(
                f"Appointment {appointment_id} not found",
                appointment_id=appointment_id,
            )
        return await self.views.build(record)

    async def list_appointments(
        self,
        user_id: Optional[str] = None,
        provider_id: Optional[str] = None,
        statuses: Optional[List[AppointmentStatus]] = None,
    ) -> List[AppointmentView]:
        records = await self.persistence.list_appointments(
            AppointmentFilter(
                user_id=user_id, provider_id=provider_id, statuses=statuses or None
            )
        )
        return await self.views.build_many(records)

    async def get_status_history(self, appointment_id: str) -> List[StatusChange]:
        return await self.lifecycle.get_status_history(appointment_id)

    async def complete_elapsed(self) -> List[AppointmentView]:
        return await self.lifecycle.complete_elapsed()

    # Profiles and notifications
    async def list_profiles(self, role: Optional[Role] = None) -> List[Profile]:
        return await self.persistence.list_profiles(role)

    async def upsert_profile(self, profile_id: str, update: ProfileUpdate) -> Profile:
        """Create or merge a profile mirrored from the identity provider."""
        existing = await self.persistence.get_profile(profile_id)
        changes = update.model_dump(exclude_unset=True)

        missing = [
            field
            for field in REQUIRED_PROFILE_FIELDS
            if changes.get(field, getattr(existing, field, None)) is None
        ]
        if missing:
            raise ValidationError(
                f"{', '.join(missing)} required for profile {profile_id}",
                profile_id=profile_id,
            )

        if changes.get("email"):
            owner = await self.persistence.find_profile_by_email(changes["email"])
            if owner is not None and owner.id != profile_id:
                raise ValidationError(
                    f"{changes['email']} is already registered to another profile",
                    profile_id=profile_id,
                )

        if existing is None:
            profile = Profile(id=profile_id, **changes)
        else:
            profile = existing.model_copy(update=changes)
        stored = await self.persistence.upsert_profile(profile)

        logger.info(
            "Profile saved",
            profile_id=profile_id,
            role=stored.role.value,
            created=existing is None,
        )
        return stored

    async def find_profile_by_email(self, email: str) -> Profile:
        if not email or not email.strip():
            raise ValidationError("email is required")
        profile = await self.persistence.find_profile_by_email(email)
        if profile is None:
            raise NotFoundError(f"No profile registered for {email}")
        return profile

    async def list_notifications(self, user_id: str) -> NotificationList:
        notifications = await self.persistence.list_notifications(user_id)
        return NotificationList(
            notifications=notifications,
            unread_count=sum(1 for n in notifications if not n.read),
        )

    async def get_notification(self, notification_id: str) -> NotificationRecord:
        notification = await self.persistence.get_notification(notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        return notification

    async def mark_notification_read(self, notification_id: str) -> None:
        if not await self.persistence.mark_notification_read(notification_id):
            raise NotFoundError(f"Notification {notification_id} not found")
