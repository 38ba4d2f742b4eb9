from datetime import datetime
from typing import Optional

import structlog

from app.core.exceptions import InvalidDuration, SlotUnavailable, UserNotFound
from app.core.redis import RedisClient
from app.repositories.base import PersistencePort
from app.schemas.appointment import (
    ActorContext,
    ActorRole,
    AppointmentView,
    NewAppointment,
)
from app.services.notifications import (
    REQUEST_RECEIVED,
    REQUEST_SUBMITTED,
    NotificationDispatcher,
)
from app.services.slots import SlotService
from app.services.views import AppointmentViewBuilder
from app.utils.time import Clock, as_utc, utc_now

logger = structlog.get_logger(__name__)


class BookingCoordinator:
    """Validates and records new appointment requests."""

    def __init__(
        self,
        persistence: PersistencePort,
        slot_service: SlotService,
        dispatcher: NotificationDispatcher,
        lock_client: Optional[RedisClient] = None,
        clock: Clock = utc_now,
    ):
        self.persistence = persistence
        self.slot_service = slot_service
        self.dispatcher = dispatcher
        self.lock_client = lock_client
        self.clock = clock
        self.views = AppointmentViewBuilder(persistence)

    async def create_appointment(
        self,
        user_id: str,
        provider_id: str,
        starts_at: datetime,
        duration_minutes: int,
        notes: Optional[str] = None,
        appointment_type: Optional[str] = None,
        actor: Optional[ActorContext] = None,
    ) -> AppointmentView:
        """Book ``[starts_at, starts_at + duration)`` as a pending appointment.

        Raises:
            InvalidDuration: duration is not positive.
            ProviderNotFound / UserNotFound: a participant does not resolve.
            SlotUnavailable: the start is not on offer or the range is taken.
        """
        if duration_minutes is None or duration_minutes <= 0:
            raise InvalidDuration(
                "duration_minutes must be a positive integer",
                duration_minutes=duration_minutes,
            )
        starts_at = as_utc(starts_at)

        provider = await self.slot_service.get_provider(provider_id)
        user = await self.persistence.get_profile(user_id)
        if not user:
            raise UserNotFound(f"User {user_id} not found", user_id=user_id)

        locked = False
        if self.lock_client is not None:
            locked = await self.lock_client.acquire_slot_lock(provider_id, starts_at)
            if not locked:
                raise SlotUnavailable(
                    "This time is being booked by someone else",
                    provider_id=provider_id,
                    starts_at=starts_at.isoformat(),
                )

        try:
            now = self.clock()
            if not await self.slot_service.is_bookable(provider, starts_at, now):
                logger.info(
                    "Requested start is not an available slot",
                    provider_id=provider_id,
                    starts_at=starts_at.isoformat(),
                )
                raise SlotUnavailable(
                    "Requested time is not an available slot",
                    provider_id=provider_id,
                    starts_at=starts_at.isoformat(),
                )

            record = await self.persistence.create_appointment(
                NewAppointment(
                    user_id=user_id,
                    provider_id=provider_id,
                    starts_at=starts_at,
                    duration_minutes=duration_minutes,
                    notes=notes,
                    appointment_type=appointment_type,
                    created_by=(actor.profile_id if actor else None) or user_id,
                    created_at=now,
                    booked_by_role=actor.role if actor else ActorRole.USER,
                )
            )
        finally:
            if locked:
                await self.lock_client.release_slot_lock(provider_id, starts_at)

        logger.info(
            "Appointment requested",
            appointment_id=record.id,
            provider_id=provider_id,
            user_id=user_id,
            starts_at=record.starts_at.isoformat(),
        )

        meta = {"appointment_id": record.id, "status": record.status.value}
        await self.dispatcher.notify(user_id, REQUEST_SUBMITTED, meta)
        await self.dispatcher.notify(provider_id, REQUEST_RECEIVED, meta)

        return await self.views.build(record)
