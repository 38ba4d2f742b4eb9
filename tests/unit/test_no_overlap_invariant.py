"""Randomized booking and transition sequences never double-book a provider."""

import random
from itertools import combinations

import pytest

from app.core.exceptions import SchedulingError
from app.schemas.appointment import ActorContext, ActorRole, TransitionFields
from tests.fixtures.booking_fixtures import at

ACTORS = [
    ActorContext(role=ActorRole.USER),
    ActorContext(role=ActorRole.PROVIDER),
    ActorContext(role=ActorRole.ADMIN),
]
OPERATIONS = ["confirm", "decline", "cancel", "reschedule", "override_reschedule"]


def random_instant(rng: random.Random):
    return at(rng.randrange(0, 10), rng.randrange(8, 13), rng.choice([0, 15, 30, 45]))


async def assert_no_overlap(portal, provider_id):
    appointments = [
        a
        for a in await portal.list_appointments(provider_id=provider_id)
        if a.blocks_calendar
    ]
    for first, second in combinations(appointments, 2):
        assert not first.overlaps(second.starts_at, second.ends_at), (first, second)


@pytest.mark.parametrize("seed", range(8))
async def test_random_sequences_keep_calendar_free_of_overlaps(portal, seed):
    rng = random.Random(seed)
    users = ["user-1", "user-2"]
    providers = ["provider-1", "provider-2"]
    booked = []

    for _ in range(60):
        try:
            if not booked or rng.random() < 0.5:
                appointment = await portal.book_appointment(
                    rng.choice(users),
                    rng.choice(providers),
                    random_instant(rng),
                    rng.choice([30, 45, 60, 90]),
                )
                booked.append(appointment.id)
            else:
                await portal.transition_appointment(
                    rng.choice(booked),
                    rng.choice(OPERATIONS),
                    rng.choice(ACTORS),
                    TransitionFields(
                        starts_at=random_instant(rng),
                        duration_minutes=rng.choice([None, 30, 60, 120]),
                        cancelled_reason=rng.choice([None, "Changed plans"]),
                    ),
                )
        except SchedulingError:
            pass

        for provider_id in providers:
            await assert_no_overlap(portal, provider_id)
