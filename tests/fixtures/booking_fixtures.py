from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from app.repositories.base import PersistencePort
from app.schemas.appointment import ActorContext, ActorRole
from app.schemas.availability import AvailabilitySlot
from app.schemas.profile import Profile, Role


# Monday, 2024-01-01 08:00 UTC
FIXED_NOW = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


def at(day_offset: int, hour: int, minute: int = 0) -> datetime:
    """UTC instant relative to FIXED_NOW's date."""
    return (FIXED_NOW + timedelta(days=day_offset)).replace(
        hour=hour, minute=minute, second=0, microsecond=0
    )


def actor_headers(role: str, profile_id: Optional[str] = None) -> Dict[str, str]:
    headers = {"X-Actor-Role": role}
    if profile_id:
        headers["X-Actor-Id"] = profile_id
    return headers


class FakeClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSink:
    def __init__(self):
        self.sent: List[Tuple[str, str, Optional[Dict[str, Any]]]] = []

    async def emit(
        self, user_id: str, message: str, meta: Optional[Dict[str, Any]] = None
    ) -> None:
        self.sent.append((user_id, message, meta))

    def recipients(self) -> List[str]:
        return [user_id for user_id, _, _ in self.sent]


class FailingSink:
    async def emit(self, user_id, message, meta=None):
        raise ConnectionError("notification backend down")


def window(day: int, start: str, end: str) -> AvailabilitySlot:
    start_h, start_m = map(int, start.split(":"))
    end_h, end_m = map(int, end.split(":"))
    return AvailabilitySlot(
        day_of_week=day, start_time=time(start_h, start_m), end_time=time(end_h, end_m)
    )


TEST_PROFILES = [
    Profile(id="user-1", email="jane@example.com", full_name="Jane Doe", role=Role.USER),
    Profile(id="user-2", email="sam@example.com", full_name="Sam Lee", role=Role.USER),
    Profile(
        id="provider-1",
        email="dr.smith@example.com",
        full_name="Dr. Sarah Smith",
        role=Role.PROVIDER,
        specialty="Clinical Psychologist",
        avatar_url="https://example.com/sarah.png",
        timezone="UTC",
        hourly_rate=150,
    ),
    Profile(
        id="provider-2",
        email="dr.jones@example.com",
        full_name="Dr. Michael Jones",
        role=Role.PROVIDER,
        specialty="Psychiatrist",
        timezone="UTC",
    ),
    Profile(
        id="provider-inactive",
        email="dr.away@example.com",
        full_name="Dr. Away",
        role=Role.PROVIDER,
        is_active=False,
    ),
    Profile(
        id="admin-1", email="admin@example.com", full_name="System Admin", role=Role.ADMIN
    ),
]

# Sunday = 0, so 1 is Monday and 3 is Wednesday
TEST_AVAILABILITY = {
    "provider-1": [window(1, "09:00", "12:00"), window(3, "10:00", "12:00")],
    "provider-2": [window(2, "11:00", "15:00")],
}


async def seed_directory(persistence: PersistencePort) -> None:
    for profile in TEST_PROFILES:
        await persistence.upsert_profile(profile)
    for provider_id, slots in TEST_AVAILABILITY.items():
        await persistence.replace_availability(provider_id, slots)


@pytest.fixture
def user_actor() -> ActorContext:
    return ActorContext(role=ActorRole.USER, profile_id="user-1")


@pytest.fixture
def provider_actor() -> ActorContext:
    return ActorContext(role=ActorRole.PROVIDER, profile_id="provider-1")


@pytest.fixture
def admin_actor() -> ActorContext:
    return ActorContext(role=ActorRole.ADMIN, profile_id="admin-1")
