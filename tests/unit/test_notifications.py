from unittest.mock import patch

import pytest

from app.core.exceptions import NotFoundError
from app.services.holidays import HolidayService
from app.services.notifications import (
    CeleryNotificationSink,
    LogNotificationSink,
    NotificationDispatcher,
    StoreNotificationSink,
    build_notification_sink,
)
from app.services.portal import BookingPortal
from tests.fixtures.booking_fixtures import FailingSink, RecordingSink, at


class TestSinkFactory:
    async def test_store(self, persistence):
        sink = build_notification_sink(persistence, "store")
        assert isinstance(sink, StoreNotificationSink)

    async def test_celery(self, persistence):
        assert isinstance(build_notification_sink(persistence, "celery"), CeleryNotificationSink)

    async def test_log(self, persistence):
        assert isinstance(build_notification_sink(persistence, "log"), LogNotificationSink)

    async def test_unknown(self, persistence):
        with pytest.raises(ValueError):
            build_notification_sink(persistence, "carrier-pigeon")


class TestDispatcher:
    async def test_delivers(self):
        sink = RecordingSink()

        delivered = await NotificationDispatcher(sink).notify(
            "user-1", "Hello", {"appointment_id": "a1"}
        )

        assert delivered is True
        assert sink.sent == [("user-1", "Hello", {"appointment_id": "a1"})]

    async def test_failure_is_logged_not_raised(self):
        with patch("app.services.notifications.logger") as mock_logger:
            delivered = await NotificationDispatcher(FailingSink()).notify("user-1", "Hello")

        assert delivered is False
        mock_logger.error.assert_called_once()
        _, kwargs = mock_logger.error.call_args
        assert kwargs["kind"] == "notification_delivery_error"
        assert kwargs["user_id"] == "user-1"


class TestSinks:
    async def test_store_sink_persists(self, persistence):
        await StoreNotificationSink(persistence).emit("user-1", "Saved", {"k": "v"})

        stored = await persistence.list_notifications("user-1")
        assert [(n.message, n.meta, n.read) for n in stored] == [("Saved", {"k": "v"}, False)]

    async def test_celery_sink_queues_task(self):
        with patch("app.services.notification_service.deliver_notification") as task:
            await CeleryNotificationSink().emit("user-1", "Queued", None)

        task.delay.assert_called_once_with("user-1", "Queued", None)

    async def test_log_sink(self):
        with patch("app.services.notifications.logger") as mock_logger:
            await LogNotificationSink().emit("user-1", "Logged")

        mock_logger.info.assert_called_once()


class TestPortalNotifications:
    async def test_list_and_mark_read(self, persistence, portal):
        first = await persistence.create_notification("user-1", "One")
        await persistence.create_notification("user-1", "Two")

        await portal.mark_notification_read(first.id)
        result = await portal.list_notifications("user-1")

        assert result.unread_count == 1
        assert {n.message for n in result.notifications} == {"One", "Two"}

    async def test_mark_unknown(self, portal):
        with pytest.raises(NotFoundError):
            await portal.mark_notification_read("missing")

    async def test_booking_stores_notifications_by_default(self, persistence, clock):
        portal = BookingPortal(
            persistence,
            sink=StoreNotificationSink(persistence),
            holiday_service=HolidayService(country=""),
            clock=clock,
        )
        await portal.book_appointment("user-1", "provider-1", at(0, 9), 60)

        provider_notes = await portal.list_notifications("provider-1")
        assert [n.message for n in provider_notes.notifications] == [
            "New appointment request received."
        ]
        assert provider_notes.unread_count == 1

