from typing import Any, Optional


class SchedulingError(Exception):
    """Base class for every failure the booking core reports to callers.

    Each subclass carries a stable ``kind`` string, an HTTP status code used by
    the API layer, and whether the caller may retry the same request.
    """

    kind = "scheduling_error"
    status_code = 400
    retryable = False

    def __init__(self, reason: str, **context: Any):
        super().__init__(reason)
        self.reason = reason
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "detail": self.reason}


# Caller-side validation
class ValidationError(SchedulingError):
    kind = "validation_error"
    status_code = 422


class InvalidRange(ValidationError):
    kind = "invalid_range"


class InvalidDay(ValidationError):
    kind = "invalid_day"


class InvalidDuration(ValidationError):
    kind = "invalid_duration"


# Lookups
class NotFoundError(SchedulingError):
    kind = "not_found"
    status_code = 404


class ProviderNotFound(NotFoundError):
    kind = "provider_not_found"


class UserNotFound(NotFoundError):
    kind = "user_not_found"


class AppointmentNotFound(NotFoundError):
    kind = "appointment_not_found"


class SlotUnavailable(SchedulingError):
    """Requested time is not currently bookable; re-fetch slots and retry."""

    kind = "slot_unavailable"
    status_code = 409
    retryable = True


# Lifecycle guards
class InvalidTransition(SchedulingError):
    kind = "invalid_transition"
    status_code = 409


class AlreadyInState(SchedulingError):
    kind = "already_in_state"
    status_code = 409


class StorageError(SchedulingError):
    """Persistence failure.

    ``unknown_outcome`` is set when the failure happened after a conditional
    write was issued, so the caller must re-query before retrying.
    """

    kind = "storage_error"
    status_code = 503
    retryable = True

    def __init__(self, reason: str, unknown_outcome: bool = False, **context: Any):
        super().__init__(reason, **context)
        self.unknown_outcome = unknown_outcome

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["unknown_outcome"] = self.unknown_outcome
        return data


class NotificationDeliveryError(SchedulingError):
    """Logged by the notification dispatcher; never raised to callers."""

    kind = "notification_delivery_error"
    status_code = 502


class StaleStatusError(Exception):
    """Raised by the persistence layer when a conditional status update loses.

    Internal to the lifecycle engine, which translates it into
    ``AlreadyInState`` or ``InvalidTransition``.
    """

    def __init__(self, appointment_id: str, expected: str, actual: Optional[str]):
        super().__init__(
            f"Appointment {appointment_id} is {actual}, expected {expected}"
        )
        self.appointment_id = appointment_id
        self.expected = expected
        self.actual = actual
