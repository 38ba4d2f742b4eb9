"""
Notification sinks and the dispatcher the booking core talks to.

A sink only has to implement ``emit``. The dispatcher wraps every call so a
failing sink is logged and never undoes the booking or transition that
triggered it.
"""

from typing import Any, Dict, Optional, Protocol

import structlog

from app.core.config import settings
from app.core.exceptions import NotificationDeliveryError
from app.repositories.base import PersistencePort

logger = structlog.get_logger(__name__)


# Messages
REQUEST_SUBMITTED = "Appointment request submitted."
REQUEST_RECEIVED = "New appointment request received."
APPOINTMENT_CONFIRMED = "Your appointment has been confirmed."
APPOINTMENT_DECLINED = "Your appointment request was declined."
APPOINTMENT_CANCELLED = "Appointment cancelled."
APPOINTMENT_RESCHEDULED = "Appointment rescheduled."
APPOINTMENT_COMPLETED = "Appointment completed."


class NotificationSink(Protocol):
    async def emit(
        self, user_id: str, message: str, meta: Optional[Dict[str, Any]] = None
    ) -> None:
        ...


class StoreNotificationSink:
    """Persists in-app notifications through the persistence port."""

    def __init__(self, persistence: PersistencePort):
        self.persistence = persistence

    async def emit(
        self, user_id: str, message: str, meta: Optional[Dict[str, Any]] = None
    ) -> None:
        await self.persistence.create_notification(user_id, message, meta)


class CeleryNotificationSink:
    """Queues delivery on the ``notifications`` Celery queue."""

    async def emit(
        self, user_id: str, message: str, meta: Optional[Dict[str, Any]] = None
    ) -> None:
        from app.services.notification_service import deliver_notification

        deliver_notification.delay(user_id, message, meta)


class LogNotificationSink:
    """Writes notifications to the log only."""

    async def emit(
        self, user_id: str, message: str, meta: Optional[Dict[str, Any]] = None
    ) -> None:
        logger.info("Notification", user_id=user_id, message=message, meta=meta)


def build_notification_sink(
    persistence: PersistencePort, backend: Optional[str] = None
) -> NotificationSink:
    backend = backend or settings.NOTIFICATION_BACKEND
    if backend == "store":
        return StoreNotificationSink(persistence)
    if backend == "celery":
        return CeleryNotificationSink()
    if backend == "log":
        return LogNotificationSink()
    raise ValueError(f"Unknown notification backend: {backend}")


class NotificationDispatcher:
    def __init__(self, sink: NotificationSink):
        self.sink = sink

    async def notify(
        self, user_id: str, message: str, meta: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Emit one notification; returns False if the sink failed."""
        try:
            await self.sink.emit(user_id, message, meta)
            return True
        except Exception as e:
            error = NotificationDeliveryError(
                f"Failed to deliver notification to {user_id}", user_id=user_id
            )
            logger.error(
                "Notification delivery failed",
                kind=error.kind,
                user_id=user_id,
                notification_message=message,
                exc_info=e,
            )
            return False
