from datetime import datetime, time, timedelta
from typing import Optional

import structlog

from app.repositories.base import PersistencePort
from app.schemas.appointment import ActorRole, AppointmentStatus, NewAppointment
from app.schemas.availability import AvailabilitySlot
from app.schemas.profile import Profile, Role
from app.utils.time import utc_now

logger = structlog.get_logger(__name__)


DEMO_PROFILES = [
    Profile(
        id="user-1",
        email="jane@example.com",
        full_name="Jane Doe",
        role=Role.USER,
        avatar_url="https://i.pravatar.cc/150?u=jane",
        timezone="America/New_York",
    ),
    Profile(
        id="admin-1",
        email="admin@spring2life.com",
        full_name="System Admin",
        role=Role.ADMIN,
        avatar_url="https://i.pravatar.cc/150?u=admin",
    ),
    Profile(
        id="provider-1",
        email="dr.smith@spring2life.com",
        full_name="Dr. Sarah Smith",
        role=Role.PROVIDER,
        specialty="Clinical Psychologist",
        bio=(
            "Specializing in CBT and anxiety disorders with 10+ years of "
            "experience. I focus on a holistic approach to mental wellness."
        ),
        telehealth=True,
        hourly_rate=150,
        avatar_url="https://i.pravatar.cc/150?u=sarah",
    ),
    Profile(
        id="provider-2",
        email="dr.jones@spring2life.com",
        full_name="Dr. Michael Jones",
        role=Role.PROVIDER,
        specialty="Psychiatrist",
        bio=(
            "Expert in medication management and mood disorders. Dedicated to "
            "finding the right balance for your life."
        ),
        telehealth=True,
        hourly_rate=200,
        avatar_url="https://i.pravatar.cc/150?u=michael",
    ),
]

DEMO_AVAILABILITY = {
    "provider-1": [
        AvailabilitySlot(day_of_week=1, start_time=time(9), end_time=time(17)),
        AvailabilitySlot(day_of_week=3, start_time=time(10), end_time=time(16)),
        AvailabilitySlot(day_of_week=5, start_time=time(9), end_time=time(14)),
    ],
    "provider-2": [
        AvailabilitySlot(day_of_week=2, start_time=time(11), end_time=time(19)),
        AvailabilitySlot(day_of_week=4, start_time=time(11), end_time=time(19)),
    ],
}


async def seed_demo_data(
    persistence: PersistencePort, now: Optional[datetime] = None
) -> bool:
    """Load the demo directory into an empty store. Returns False if skipped."""
    if await persistence.list_providers(active_only=False):
        logger.info("Persistence already has providers, skipping demo seed")
        return False

    now = now or utc_now()
    for profile in DEMO_PROFILES:
        await persistence.upsert_profile(profile)
    for provider_id, slots in DEMO_AVAILABILITY.items():
        await persistence.replace_availability(provider_id, slots)

    await persistence.create_appointment(
        NewAppointment(
            user_id="user-1",
            provider_id="provider-1",
            starts_at=now + timedelta(days=1),
            duration_minutes=60,
            status=AppointmentStatus.CONFIRMED,
            notes="Initial consultation for anxiety",
            created_by="admin-1",
            created_at=now,
            booked_by_role=ActorRole.SYSTEM,
        )
    )
    await persistence.create_appointment(
        NewAppointment(
            user_id="user-1",
            provider_id="provider-2",
            starts_at=now - timedelta(days=1),
            duration_minutes=45,
            status=AppointmentStatus.CONFIRMED,
            created_by="admin-1",
            created_at=now,
            booked_by_role=ActorRole.SYSTEM,
        )
    )

    await persistence.create_notification(
        "user-1",
        "Welcome back! You have an upcoming session with Dr. Sarah Smith.",
    )
    await persistence.create_notification(
        "provider-1", "New appointment request from Jane Doe pending review."
    )

    logger.info("Demo data seeded", profiles=len(DEMO_PROFILES))
    return True
