"""Persistence port contract, run against both the memory and SQL backends."""

from datetime import time

import pytest

from app.core.exceptions import (
    AppointmentNotFound,
    SlotUnavailable,
    StaleStatusError,
    ValidationError,
)
from app.schemas.appointment import (
    ActorRole,
    AppointmentChanges,
    AppointmentFilter,
    AppointmentStatus,
    NewAppointment,
    StatusChange,
)
from app.schemas.profile import Profile, ProfileUpdate, Role
from app.services.holidays import HolidayService
from app.services.portal import BookingPortal
from tests.fixtures.booking_fixtures import FIXED_NOW, RecordingSink, at, window


@pytest.fixture(params=["memory", "sql"])
def store(request):
    fixture = "persistence" if request.param == "memory" else "sql_persistence"
    return request.getfixturevalue(fixture)


def new_appointment(starts_at, minutes=60, provider_id="provider-1", **kwargs):
    return NewAppointment(
        user_id=kwargs.pop("user_id", "user-1"),
        provider_id=provider_id,
        starts_at=starts_at,
        duration_minutes=minutes,
        created_at=FIXED_NOW,
        **kwargs,
    )


def change(appointment_id, operation, to_status, reason=None):
    return StatusChange(
        appointment_id=appointment_id,
        to_status=to_status,
        operation=operation,
        actor_role=ActorRole.ADMIN,
        reason=reason,
        changed_at=FIXED_NOW,
    )


class TestProfiles:
    async def test_get_profile(self, store):
        profile = await store.get_profile("provider-1")

        assert profile.full_name == "Dr. Sarah Smith"
        assert profile.role == Role.PROVIDER
        assert profile.hourly_rate == 150

    async def test_missing_profile(self, store):
        assert await store.get_profile("nobody") is None

    async def test_find_by_email_ignores_case(self, store):
        profile = await store.find_profile_by_email("Jane@Example.com")

        assert profile.id == "user-1"

    async def test_list_providers(self, store):
        active = await store.list_providers()
        everyone = await store.list_providers(active_only=False)

        assert [p.id for p in active] == ["provider-2", "provider-1"]
        assert {p.id for p in everyone} == {"provider-1", "provider-2", "provider-inactive"}

    async def test_list_profiles(self, store):
        everyone = await store.list_profiles()
        admins = await store.list_profiles(Role.ADMIN)

        assert [p.full_name for p in everyone] == sorted(p.full_name for p in everyone)
        assert {p.id for p in everyone} >= {"user-1", "user-2", "provider-1", "admin-1"}
        assert [p.id for p in admins] == ["admin-1"]

    async def test_upsert_updates_existing(self, store):
        await store.upsert_profile(
            Profile(
                id="user-1",
                email="jane@example.com",
                full_name="Jane Q. Doe",
                role=Role.USER,
            )
        )

        assert (await store.get_profile("user-1")).full_name == "Jane Q. Doe"


class TestAvailability:
    async def test_ordered_by_day_and_time(self, store):
        await store.replace_availability(
            "provider-2", [window(4, "11:00", "12:00"), window(2, "09:00", "10:00")]
        )

        slots = await store.get_availability("provider-2")

        assert [s.sort_key for s in slots] == [(2, time(9), time(10)), (4, time(11), time(12))]
        assert all(s.provider_id == "provider-2" for s in slots)

    async def test_replace_removes_old(self, store):
        await store.replace_availability("provider-1", [window(6, "08:00", "09:00")])

        slots = await store.get_availability("provider-1")

        assert [s.day_of_week for s in slots] == [6]


class TestAppointments:
    async def test_create_and_get(self, store):
        created = await store.create_appointment(new_appointment(at(0, 9), notes="hi"))

        fetched = await store.get_appointment(created.id)

        assert fetched.status == AppointmentStatus.PENDING
        assert fetched.starts_at == at(0, 9)
        assert fetched.starts_at.tzinfo is not None
        assert fetched.notes == "hi"

    async def test_overlap_rejected(self, store):
        await store.create_appointment(new_appointment(at(0, 9)))

        with pytest.raises(SlotUnavailable):
            await store.create_appointment(new_appointment(at(0, 9, 30), user_id="user-2"))

    async def test_touching_ranges_allowed(self, store):
        await store.create_appointment(new_appointment(at(0, 9)))

        later = await store.create_appointment(new_appointment(at(0, 10)))

        assert later.starts_at == at(0, 10)

    async def test_other_provider_not_blocked(self, store):
        await store.create_appointment(new_appointment(at(0, 9)))

        other = await store.create_appointment(
            new_appointment(at(0, 9), provider_id="provider-2")
        )

        assert other.provider_id == "provider-2"

    async def test_list_filters_and_orders(self, store):
        late = await store.create_appointment(new_appointment(at(1, 9)))
        early = await store.create_appointment(new_appointment(at(0, 9), user_id="user-2"))
        await store.create_appointment(new_appointment(at(0, 9), provider_id="provider-2"))

        provider_one = await store.list_appointments(
            AppointmentFilter(provider_id="provider-1")
        )
        user_two = await store.list_appointments(AppointmentFilter(user_id="user-2"))

        assert [a.id for a in provider_one] == [early.id, late.id]
        assert [a.id for a in user_two] == [early.id]

    async def test_conditional_update(self, store):
        created = await store.create_appointment(new_appointment(at(0, 9)))

        updated = await store.update_appointment_status(
            created.id,
            AppointmentStatus.PENDING,
            AppointmentStatus.CONFIRMED,
            AppointmentChanges(updated_at=FIXED_NOW),
            change(created.id, "confirm", AppointmentStatus.CONFIRMED),
        )

        assert updated.status == AppointmentStatus.CONFIRMED
        assert updated.updated_at == FIXED_NOW
        assert (await store.get_appointment(created.id)).status == AppointmentStatus.CONFIRMED

    async def test_stale_expected_status(self, store):
        created = await store.create_appointment(new_appointment(at(0, 9)))

        with pytest.raises(StaleStatusError) as exc_info:
            await store.update_appointment_status(
                created.id,
                AppointmentStatus.CONFIRMED,
                AppointmentStatus.COMPLETED,
                AppointmentChanges(updated_at=FIXED_NOW),
                change(created.id, "complete", AppointmentStatus.COMPLETED),
            )

        assert exc_info.value.actual == "pending"
        assert (await store.get_appointment(created.id)).status == AppointmentStatus.PENDING

    async def test_update_unknown(self, store):
        with pytest.raises(AppointmentNotFound):
            await store.update_appointment_status(
                "missing",
                AppointmentStatus.PENDING,
                AppointmentStatus.CONFIRMED,
                AppointmentChanges(updated_at=FIXED_NOW),
                change("missing", "confirm", AppointmentStatus.CONFIRMED),
            )

    async def test_cancel_frees_range(self, store):
        created = await store.create_appointment(new_appointment(at(0, 9)))
        await store.update_appointment_status(
            created.id,
            AppointmentStatus.PENDING,
            AppointmentStatus.CANCELLED,
            AppointmentChanges(cancelled_reason="No longer needed", updated_at=FIXED_NOW),
            change(created.id, "cancel", AppointmentStatus.CANCELLED, "No longer needed"),
        )

        replacement = await store.create_appointment(
            new_appointment(at(0, 9), user_id="user-2")
        )

        assert replacement.id != created.id
        cancelled = await store.get_appointment(created.id)
        assert cancelled.cancelled_reason == "No longer needed"

    async def test_move_onto_busy_range_rejected(self, store):
        first = await store.create_appointment(new_appointment(at(0, 9)))
        await store.create_appointment(new_appointment(at(0, 11), user_id="user-2"))

        with pytest.raises(SlotUnavailable):
            await store.update_appointment_status(
                first.id,
                AppointmentStatus.PENDING,
                AppointmentStatus.RESCHEDULED,
                AppointmentChanges(
                    starts_at=at(0, 10, 30), rescheduled_from=at(0, 9), updated_at=FIXED_NOW
                ),
                change(first.id, "override_reschedule", AppointmentStatus.RESCHEDULED),
            )

        unchanged = await store.get_appointment(first.id)
        assert unchanged.status == AppointmentStatus.PENDING
        assert unchanged.starts_at == at(0, 9)

    async def test_move_within_own_range(self, store):
        first = await store.create_appointment(new_appointment(at(0, 9)))

        moved = await store.update_appointment_status(
            first.id,
            AppointmentStatus.PENDING,
            AppointmentStatus.RESCHEDULED,
            AppointmentChanges(starts_at=at(0, 9, 30), updated_at=FIXED_NOW),
            change(first.id, "override_reschedule", AppointmentStatus.RESCHEDULED),
        )

        assert moved.starts_at == at(0, 9, 30)

    async def test_history(self, store):
        created = await store.create_appointment(new_appointment(at(0, 9)))
        await store.update_appointment_status(
            created.id,
            AppointmentStatus.PENDING,
            AppointmentStatus.CONFIRMED,
            AppointmentChanges(updated_at=FIXED_NOW),
            change(created.id, "confirm", AppointmentStatus.CONFIRMED),
        )

        history = await store.list_status_history(created.id)

        assert [(h.from_status, h.to_status) for h in history] == [
            (None, AppointmentStatus.PENDING),
            (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED),
        ]
        assert history[1].actor_role == ActorRole.ADMIN


class TestNotifications:
    async def test_create_list_and_read(self, store):
        note = await store.create_notification("user-1", "Hello", {"appointment_id": "a1"})

        assert await store.mark_notification_read(note.id) is True
        notes = await store.list_notifications("user-1")

        assert [(n.message, n.read, n.meta) for n in notes] == [
            ("Hello", True, {"appointment_id": "a1"})
        ]

    async def test_mark_unknown(self, store):
        assert await store.mark_notification_read("missing") is False

    async def test_get_notification(self, store):
        note = await store.create_notification("user-2", "Hello")

        fetched = await store.get_notification(note.id)

        assert (fetched.user_id, fetched.message, fetched.read) == ("user-2", "Hello", False)
        assert await store.get_notification("missing") is None


class TestProfileDirectory:
    @pytest.fixture
    def directory(self, store):
        return BookingPortal(
            store, sink=RecordingSink(), holiday_service=HolidayService(country="")
        )

    async def test_creates_profile(self, directory, store):
        created = await directory.upsert_profile(
            "user-9",
            ProfileUpdate(email="kim@example.com", full_name="Kim Park", role=Role.USER),
        )

        assert created.is_active is True
        assert created.created_at is not None
        assert (await store.find_profile_by_email("KIM@example.com")).id == "user-9"

    async def test_merges_into_existing(self, directory, store):
        updated = await directory.upsert_profile(
            "provider-1", ProfileUpdate(full_name="Dr. Sarah Smith-Lee")
        )

        stored = await store.get_profile("provider-1")
        assert updated.full_name == stored.full_name == "Dr. Sarah Smith-Lee"
        assert stored.email == "dr.smith@example.com"
        assert stored.role == Role.PROVIDER
        assert stored.hourly_rate == 150

    async def test_new_profile_requires_identity_fields(self, directory, store):
        with pytest.raises(ValidationError, match="email, role required"):
            await directory.upsert_profile("user-9", ProfileUpdate(full_name="Kim Park"))

        assert await store.get_profile("user-9") is None

    async def test_rejects_email_of_other_profile(self, directory):
        with pytest.raises(ValidationError):
            await directory.upsert_profile(
                "user-2", ProfileUpdate(email="jane@example.com")
            )

    async def test_lists_by_role(self, directory):
        providers = await directory.list_profiles(Role.PROVIDER)

        assert {p.id for p in providers} == {"provider-1", "provider-2", "provider-inactive"}


class TestMemoryCopies:
    async def test_returned_records_are_copies(self, persistence):
        created = await persistence.create_appointment(new_appointment(at(0, 9)))
        created.notes = "mutated"

        assert (await persistence.get_appointment(created.id)).notes is None
