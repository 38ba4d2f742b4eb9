"""
Slot generation.

Turns a provider's recurring weekly availability into concrete bookable
instants over a rolling horizon.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import AbstractSet, Iterable, Iterator, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.config import settings
from app.core.exceptions import ProviderNotFound, ValidationError
from app.repositories.base import PersistencePort
from app.schemas.appointment import AppointmentFilter, AppointmentRecord, AppointmentStatus
from app.schemas.availability import AvailabilitySlot
from app.schemas.profile import Profile, Role
from app.schemas.scheduling import BookableSlot, SlotList
from app.services.holidays import HolidayService
from app.utils.time import as_utc, utc_now


logger = logging.getLogger(__name__)

BLOCKING_STATUSES = [
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.RESCHEDULED,
    AppointmentStatus.COMPLETED,
]


def sunday_based_weekday(d: date) -> int:
    """Python counts Monday as 0; availability counts Sunday as 0."""
    return (d.weekday() + 1) % 7


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    for candidate in (name, settings.DEFAULT_TIMEZONE):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {candidate!r}, falling back")
    return ZoneInfo("UTC")


class SlotGenerator:
    """Restartable iterable of bookable slots.

    Each call to ``iter()`` walks the horizon again from scratch, so the same
    generator can be consumed more than once with identical results.
    """

    def __init__(
        self,
        availability: Sequence[AvailabilitySlot],
        horizon_days: int,
        granularity_minutes: int = 60,
        now: Optional[datetime] = None,
        existing_appointments: Iterable[AppointmentRecord] = (),
        tz: tzinfo = timezone.utc,
        closed_dates: AbstractSet[date] = frozenset(),
    ):
        if horizon_days < 0:
            raise ValidationError(
                "horizon_days must not be negative", horizon_days=horizon_days
            )
        if granularity_minutes <= 0:
            raise ValidationError(
                "granularity_minutes must be positive",
                granularity_minutes=granularity_minutes,
            )

        self.availability = list(availability)
        self.horizon_days = horizon_days
        self.step = timedelta(minutes=granularity_minutes)
        self.now = as_utc(now) if now is not None else utc_now()
        self.busy = [a for a in existing_appointments if a.blocks_calendar]
        self.tz = tz
        self.closed_dates = frozenset(closed_dates)

    def __iter__(self) -> Iterator[BookableSlot]:
        first_day = self.now.astimezone(self.tz).date()
        for offset in range(self.horizon_days):
            day = first_day + timedelta(days=offset)
            if day in self.closed_dates:
                logger.debug(f"Skipping closed date {day}")
                continue
            yield from self._slots_for_day(day)

    def _slots_for_day(self, day: date) -> Iterator[BookableSlot]:
        weekday = sunday_based_weekday(day)
        starts = set()
        for window in self.availability:
            if window.day_of_week != weekday:
                continue
            window_end = self._instant(day, window.end_time)
            current = self._instant(day, window.start_time)
            while current < window_end:
                starts.add(current)
                current += self.step

        for starts_at in sorted(starts):
            if starts_at <= self.now:
                continue
            ends_at = starts_at + self.step
            if any(a.overlaps(starts_at, ends_at) for a in self.busy):
                continue
            yield BookableSlot(starts_at=starts_at, ends_at=ends_at)

    def _instant(self, day: date, clock: time) -> datetime:
        return datetime.combine(day, clock, tzinfo=self.tz).astimezone(timezone.utc)


def generate_slots(
    availability: Sequence[AvailabilitySlot],
    horizon_days: int,
    granularity_minutes: int = 60,
    now: Optional[datetime] = None,
    existing_appointments: Iterable[AppointmentRecord] = (),
    tz: tzinfo = timezone.utc,
    closed_dates: AbstractSet[date] = frozenset(),
) -> SlotGenerator:
    """Bookable slots over ``horizon_days`` starting at ``now``'s calendar date.

    Slots are ascending, strictly after ``now``, deduplicated across
    overlapping availability windows and never overlap a non-cancelled
    appointment. ``ends_at`` is ``starts_at + granularity_minutes``.
    """
    return SlotGenerator(
        availability,
        horizon_days,
        granularity_minutes=granularity_minutes,
        now=now,
        existing_appointments=existing_appointments,
        tz=tz,
        closed_dates=closed_dates,
    )


class SlotService:
    """Loads a provider's calendar from persistence and runs the generator."""

    def __init__(
        self,
        persistence: PersistencePort,
        holiday_service: Optional[HolidayService] = None,
    ):
        self.persistence = persistence
        self.holiday_service = holiday_service or HolidayService()

    async def get_provider(self, provider_id: str) -> Profile:
        provider = await self.persistence.get_profile(provider_id)
        if not provider or provider.role != Role.PROVIDER or not provider.is_active:
            raise ProviderNotFound(
                f"Provider {provider_id} not found", provider_id=provider_id
            )
        return provider

    async def generator_for(
        self,
        provider: Profile,
        now: datetime,
        horizon_days: Optional[int] = None,
        granularity_minutes: Optional[int] = None,
        exclude_appointment_id: Optional[str] = None,
    ) -> SlotGenerator:
        horizon = settings.SLOT_HORIZON_DAYS if horizon_days is None else horizon_days
        horizon = min(horizon, settings.MAX_SLOT_HORIZON_DAYS)
        granularity = granularity_minutes or settings.SLOT_GRANULARITY_MINUTES
        tz = resolve_timezone(provider.timezone)
        now = as_utc(now)

        availability = await self.persistence.get_availability(provider.id)
        appointments = await self.persistence.list_appointments(
            AppointmentFilter(provider_id=provider.id, statuses=BLOCKING_STATUSES)
        )
        if exclude_appointment_id:
            appointments = [a for a in appointments if a.id != exclude_appointment_id]

        first_day = now.astimezone(tz).date()
        closed_dates = self.holiday_service.closed_dates(first_day, horizon)
        for day in sorted(closed_dates):
            logger.info(
                f"No slots for provider {provider.id} on {day}: "
                f"{self.holiday_service.get_holiday_name(day)}"
            )
        return generate_slots(
            availability,
            horizon,
            granularity_minutes=granularity,
            now=now,
            existing_appointments=appointments,
            tz=tz,
            closed_dates=closed_dates,
        )

    async def list_slots(
        self,
        provider_id: str,
        now: datetime,
        horizon_days: Optional[int] = None,
        granularity_minutes: Optional[int] = None,
    ) -> SlotList:
        provider = await self.get_provider(provider_id)
        generator = await self.generator_for(
            provider, now, horizon_days, granularity_minutes
        )
        slots: List[BookableSlot] = list(generator)
        logger.info(
            f"Generated {len(slots)} slots for provider {provider_id} "
            f"over {generator.horizon_days} days"
        )
        return SlotList(
            provider_id=provider_id,
            timezone=str(generator.tz),
            horizon_days=generator.horizon_days,
            granularity_minutes=int(generator.step.total_seconds() // 60),
            slots=slots,
        )

    async def is_bookable(
        self,
        provider: Profile,
        starts_at: datetime,
        now: datetime,
        exclude_appointment_id: Optional[str] = None,
    ) -> bool:
        """Whether ``starts_at`` falls inside a slot currently on offer."""
        generator = await self.generator_for(
            provider, now, exclude_appointment_id=exclude_appointment_id
        )
        return any(slot.contains(starts_at) for slot in generator)
