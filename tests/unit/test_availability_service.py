from datetime import time, timezone

import pytest

from app.core.exceptions import InvalidDay, InvalidRange, ProviderNotFound
from app.schemas.availability import AvailabilitySlot
from app.services.availability import normalize_availability, validate_availability
from tests.fixtures.booking_fixtures import window


class TestValidation:
    def test_accepts_overlapping_windows(self):
        validate_availability([window(1, "09:00", "12:00"), window(1, "10:00", "13:00")])

    def test_rejects_inverted_range(self):
        with pytest.raises(InvalidRange) as exc_info:
            validate_availability([window(1, "12:00", "09:00")])
        assert exc_info.value.kind == "invalid_range"

    def test_rejects_empty_range(self):
        with pytest.raises(InvalidRange):
            validate_availability([window(2, "09:00", "09:00")])

    def test_rejects_clock_time_with_offset(self):
        slot = AvailabilitySlot(
            day_of_week=2, start_time=time(9, tzinfo=timezone.utc), end_time=time(15)
        )

        with pytest.raises(InvalidRange) as exc_info:
            validate_availability([slot])
        assert exc_info.value.reason == "Tuesday window must not carry a UTC offset"

    @pytest.mark.parametrize("day", [-1, 7])
    def test_rejects_day_outside_week(self, day):
        with pytest.raises(InvalidDay) as exc_info:
            validate_availability(
                [AvailabilitySlot(day_of_week=day, start_time=time(9), end_time=time(10))]
            )
        assert exc_info.value.status_code == 422

    def test_normalize_drops_duplicates_and_sorts(self):
        slots = [
            window(3, "10:00", "12:00"),
            window(1, "09:00", "12:00"),
            window(3, "10:00", "12:00"),
            window(1, "08:00", "09:00"),
        ]

        result = normalize_availability(slots)

        assert [s.sort_key for s in result] == [
            (1, time(8), time(9)),
            (1, time(9), time(12)),
            (3, time(10), time(12)),
        ]


class TestAvailabilityService:
    async def test_replace_swaps_whole_set(self, portal):
        stored = await portal.set_availability(
            "provider-1", [window(0, "13:00", "15:00")]
        )

        assert [s.day_of_week for s in stored] == [0]
        assert all(s.provider_id == "provider-1" and s.id for s in stored)
        current = await portal.get_availability("provider-1")
        assert [s.sort_key for s in current] == [(0, time(13), time(15))]

    async def test_replace_is_idempotent(self, portal):
        slots = [window(1, "09:00", "12:00"), window(1, "09:00", "12:00")]

        await portal.set_availability("provider-1", slots)
        await portal.set_availability("provider-1", slots)

        current = await portal.get_availability("provider-1")
        assert [s.sort_key for s in current] == [(1, time(9), time(12))]

    async def test_replace_with_empty_clears(self, portal):
        await portal.set_availability("provider-1", [])

        assert await portal.get_availability("provider-1") == []
        assert (await portal.generate_slots("provider-1")).slots == []

    async def test_invalid_set_leaves_existing(self, portal):
        before = await portal.get_availability("provider-1")

        with pytest.raises(InvalidRange):
            await portal.set_availability(
                "provider-1", [window(1, "09:00", "10:00"), window(2, "11:00", "10:00")]
            )

        assert await portal.get_availability("provider-1") == before

    async def test_unknown_provider(self, portal):
        with pytest.raises(ProviderNotFound):
            await portal.set_availability("missing", [window(1, "09:00", "10:00")])

    async def test_non_provider_profile(self, portal):
        with pytest.raises(ProviderNotFound):
            await portal.get_availability("user-1")
