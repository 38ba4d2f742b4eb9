from typing import Iterable, List

import structlog

from app.core.exceptions import InvalidDay, InvalidRange, ProviderNotFound
from app.repositories.base import PersistencePort
from app.schemas.availability import DAYS_OF_WEEK, AvailabilitySlot
from app.schemas.profile import Role

logger = structlog.get_logger(__name__)


def validate_availability(slots: Iterable[AvailabilitySlot]) -> None:
    """Reject malformed windows. Overlapping windows on one day are fine."""
    for slot in slots:
        if not 0 <= slot.day_of_week <= 6:
            raise InvalidDay(
                f"day_of_week must be between 0 (Sunday) and 6, got {slot.day_of_week}",
                day_of_week=slot.day_of_week,
            )
        if slot.start_time.tzinfo is not None or slot.end_time.tzinfo is not None:
            # Windows are wall-clock times in the provider's own timezone
            raise InvalidRange(
                f"{DAYS_OF_WEEK[slot.day_of_week]} window must not carry a UTC offset",
                day_of_week=slot.day_of_week,
            )
        if slot.start_time >= slot.end_time:
            raise InvalidRange(
                f"start_time {slot.start_time:%H:%M} must be before "
                f"end_time {slot.end_time:%H:%M}",
                day_of_week=slot.day_of_week,
            )


def normalize_availability(slots: Iterable[AvailabilitySlot]) -> List[AvailabilitySlot]:
    """Drop exact duplicates and order by (day, start, end)."""
    unique = {}
    for slot in slots:
        unique.setdefault(
            slot.sort_key,
            AvailabilitySlot(
                day_of_week=slot.day_of_week,
                start_time=slot.start_time,
                end_time=slot.end_time,
            ),
        )
    return [unique[key] for key in sorted(unique)]


class AvailabilityService:
    """Weekly availability of providers."""

    def __init__(self, persistence: PersistencePort):
        self.persistence = persistence

    async def _ensure_provider(self, provider_id: str) -> None:
        profile = await self.persistence.get_profile(provider_id)
        if not profile or profile.role != Role.PROVIDER:
            raise ProviderNotFound(
                f"Provider {provider_id} not found", provider_id=provider_id
            )

    async def get_availability(self, provider_id: str) -> List[AvailabilitySlot]:
        await self._ensure_provider(provider_id)
        return await self.persistence.get_availability(provider_id)

    async def replace_availability(
        self, provider_id: str, slots: List[AvailabilitySlot]
    ) -> List[AvailabilitySlot]:
        """Validate and atomically replace the provider's whole weekly set."""
        validate_availability(slots)
        await self._ensure_provider(provider_id)

        normalized = normalize_availability(slots)
        stored = await self.persistence.replace_availability(provider_id, normalized)

        logger.info(
            "Availability replaced",
            provider_id=provider_id,
            submitted=len(slots),
            stored=len(stored),
            days=sorted({DAYS_OF_WEEK[s.day_of_week] for s in stored}),
        )
        return stored
