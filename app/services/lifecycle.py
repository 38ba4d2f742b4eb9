"""
Appointment lifecycle engine.

Every status change goes through ``LifecycleEngine.transition``, which checks
the actor and the current status against ``TRANSITION_RULES``, runs the
operation's guard and then asks the persistence port for a conditional
update keyed on the status it just read.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, List, Optional

import structlog

from app.core.config import settings
from app.core.exceptions import (
    AlreadyInState,
    AppointmentNotFound,
    InvalidDuration,
    InvalidTransition,
    ProviderNotFound,
    SlotUnavailable,
    StaleStatusError,
    ValidationError,
)
from app.repositories.base import PersistencePort
from app.schemas.appointment import (
    TERMINAL_STATUSES,
    ActorContext,
    ActorRole,
    AppointmentChanges,
    AppointmentFilter,
    AppointmentRecord,
    AppointmentStatus,
    AppointmentView,
    StatusChange,
    TransitionFields,
    TransitionOperation,
)
from app.services import notifications
from app.services.notifications import NotificationDispatcher
from app.services.slots import SlotService
from app.services.views import AppointmentViewBuilder
from app.utils.time import Clock, as_utc, utc_now

logger = structlog.get_logger(__name__)

PATIENT_CANCEL_REASON = "Cancelled by patient"


@dataclass(frozen=True)
class TransitionRule:
    sources: FrozenSet[AppointmentStatus]
    target: AppointmentStatus
    actors: FrozenSet[ActorRole]
    message: str
    notify_provider: bool = True


TRANSITION_RULES = {
    TransitionOperation.CONFIRM: TransitionRule(
        sources=frozenset({AppointmentStatus.PENDING, AppointmentStatus.RESCHEDULED}),
        target=AppointmentStatus.CONFIRMED,
        actors=frozenset({ActorRole.PROVIDER, ActorRole.ADMIN}),
        message=notifications.APPOINTMENT_CONFIRMED,
        notify_provider=False,
    ),
    TransitionOperation.DECLINE: TransitionRule(
        sources=frozenset({AppointmentStatus.PENDING}),
        target=AppointmentStatus.CANCELLED,
        actors=frozenset({ActorRole.PROVIDER, ActorRole.ADMIN}),
        message=notifications.APPOINTMENT_DECLINED,
    ),
    TransitionOperation.CANCEL: TransitionRule(
        sources=frozenset(
            {
                AppointmentStatus.PENDING,
                AppointmentStatus.CONFIRMED,
                AppointmentStatus.RESCHEDULED,
            }
        ),
        target=AppointmentStatus.CANCELLED,
        actors=frozenset({ActorRole.USER, ActorRole.PROVIDER, ActorRole.ADMIN}),
        message=notifications.APPOINTMENT_CANCELLED,
    ),
    TransitionOperation.RESCHEDULE: TransitionRule(
        sources=frozenset({AppointmentStatus.CONFIRMED}),
        target=AppointmentStatus.RESCHEDULED,
        actors=frozenset({ActorRole.USER, ActorRole.PROVIDER, ActorRole.ADMIN}),
        message=notifications.APPOINTMENT_RESCHEDULED,
    ),
    TransitionOperation.OVERRIDE_RESCHEDULE: TransitionRule(
        sources=frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED}),
        target=AppointmentStatus.RESCHEDULED,
        actors=frozenset({ActorRole.ADMIN}),
        message=notifications.APPOINTMENT_RESCHEDULED,
    ),
    TransitionOperation.COMPLETE: TransitionRule(
        sources=frozenset({AppointmentStatus.CONFIRMED}),
        target=AppointmentStatus.COMPLETED,
        actors=frozenset({ActorRole.SYSTEM, ActorRole.ADMIN}),
        message=notifications.APPOINTMENT_COMPLETED,
        notify_provider=False,
    ),
}


class LifecycleEngine:
    def __init__(
        self,
        persistence: PersistencePort,
        slot_service: SlotService,
        dispatcher: NotificationDispatcher,
        clock: Clock = utc_now,
    ):
        self.persistence = persistence
        self.slot_service = slot_service
        self.dispatcher = dispatcher
        self.clock = clock
        self.views = AppointmentViewBuilder(persistence)

    async def transition(
        self,
        appointment_id: str,
        operation: TransitionOperation,
        actor: ActorContext,
        fields: Optional[TransitionFields] = None,
    ) -> AppointmentView:
        """Apply one lifecycle operation on behalf of ``actor``.

        Raises ``AppointmentNotFound``, ``InvalidTransition``,
        ``AlreadyInState``, ``ValidationError`` or ``SlotUnavailable``; all
        of them before anything is written.
        """
        try:
            operation = TransitionOperation(operation)
        except ValueError:
            raise InvalidTransition(
                f"Unknown operation {operation!r}",
                appointment_id=appointment_id,
            ) from None
        fields = fields or TransitionFields()
        rule = TRANSITION_RULES[operation]

        current = await self.persistence.get_appointment(appointment_id)
        if current is None:
            raise AppointmentNotFound(
                f"Appointment {appointment_id} not found",
                appointment_id=appointment_id,
            )

        self._check_actor(current, operation, rule, actor)

        if current.status == rule.target:
            raise AlreadyInState(
                f"Appointment is already {rule.target.value}",
                appointment_id=appointment_id,
                status=current.status.value,
            )
        if current.status in TERMINAL_STATUSES:
            raise InvalidTransition(
                f"Appointment is {current.status.value} and can no longer change",
                appointment_id=appointment_id,
                status=current.status.value,
            )
        if current.status not in rule.sources:
            raise InvalidTransition(
                f"Cannot {operation.value} an appointment that is {current.status.value}",
                appointment_id=appointment_id,
                status=current.status.value,
            )

        now = self.clock()
        changes = await self._guard(current, operation, actor, fields, now)

        try:
            updated = await self.persistence.update_appointment_status(
                appointment_id,
                current.status,
                rule.target,
                changes,
                StatusChange(
                    appointment_id=appointment_id,
                    from_status=current.status,
                    to_status=rule.target,
                    operation=operation.value,
                    actor_role=actor.role,
                    reason=changes.cancelled_reason,
                    changed_at=now,
                ),
            )
        except StaleStatusError as e:
            logger.info(
                "Lost conditional status update",
                appointment_id=appointment_id,
                operation=operation.value,
                expected=e.expected,
                actual=e.actual,
            )
            if e.actual == rule.target.value:
                raise AlreadyInState(
                    f"Appointment is already {rule.target.value}",
                    appointment_id=appointment_id,
                ) from e
            raise InvalidTransition(
                f"Appointment changed to {e.actual} while processing {operation.value}",
                appointment_id=appointment_id,
            ) from e

        logger.info(
            "Appointment transitioned",
            appointment_id=appointment_id,
            operation=operation.value,
            actor_role=actor.role.value,
            from_status=current.status.value,
            to_status=updated.status.value,
        )

        meta = {
            "appointment_id": appointment_id,
            "status": updated.status.value,
            "operation": operation.value,
        }
        await self.dispatcher.notify(updated.user_id, rule.message, meta)
        if rule.notify_provider:
            await self.dispatcher.notify(updated.provider_id, rule.message, meta)

        return await self.views.build(updated)

    async def complete_elapsed(
        self, now: Optional[datetime] = None
    ) -> List[AppointmentView]:
        """Complete every confirmed appointment whose end has passed."""
        now = now or self.clock()
        confirmed = await self.persistence.list_appointments(
            AppointmentFilter(statuses=[AppointmentStatus.CONFIRMED])
        )

        completed = []
        for record in confirmed:
            if record.ends_at > now:
                continue
            try:
                completed.append(
                    await self.transition(
                        record.id,
                        TransitionOperation.COMPLETE,
                        ActorContext(role=ActorRole.SYSTEM),
                    )
                )
            except (AlreadyInState, InvalidTransition) as e:
                # Someone else moved it first
                logger.info(
                    "Skipping appointment in completion sweep",
                    appointment_id=record.id,
                    reason=e.reason,
                )

        logger.info("Completion sweep finished", completed=len(completed))
        return completed

    async def get_status_history(self, appointment_id: str) -> List[StatusChange]:
        if await self.persistence.get_appointment(appointment_id) is None:
            raise AppointmentNotFound(
                f"Appointment {appointment_id} not found",
                appointment_id=appointment_id,
            )
        return await self.persistence.list_status_history(appointment_id)

    @staticmethod
    def _check_actor(
        current: AppointmentRecord,
        operation: TransitionOperation,
        rule: TransitionRule,
        actor: ActorContext,
    ) -> None:
        if actor.role not in rule.actors:
            raise InvalidTransition(
                f"A {actor.role.value} may not {operation.value} an appointment",
                appointment_id=current.id,
                actor_role=actor.role.value,
            )
        if actor.profile_id is None:
            return
        if actor.role == ActorRole.USER and actor.profile_id != current.user_id:
            raise InvalidTransition(
                "Only the booking patient may change this appointment",
                appointment_id=current.id,
            )
        if actor.role == ActorRole.PROVIDER and actor.profile_id != current.provider_id:
            raise InvalidTransition(
                "Only the appointment's provider may change this appointment",
                appointment_id=current.id,
            )

    async def _guard(
        self,
        current: AppointmentRecord,
        operation: TransitionOperation,
        actor: ActorContext,
        fields: TransitionFields,
        now: datetime,
    ) -> AppointmentChanges:
        if operation in (TransitionOperation.DECLINE, TransitionOperation.CANCEL):
            reason = (fields.cancelled_reason or "").strip() or None
            if reason is None:
                if (
                    operation == TransitionOperation.CANCEL
                    and actor.role == ActorRole.USER
                    and current.status == AppointmentStatus.PENDING
                ):
                    reason = PATIENT_CANCEL_REASON
                else:
                    raise ValidationError(
                        f"cancelled_reason is required to {operation.value}",
                        appointment_id=current.id,
                    )
            return AppointmentChanges(cancelled_reason=reason, updated_at=now)

        if operation in (
            TransitionOperation.RESCHEDULE,
            TransitionOperation.OVERRIDE_RESCHEDULE,
        ):
            return await self._reschedule_changes(current, operation, fields, now)

        if operation == TransitionOperation.COMPLETE and current.ends_at > now:
            raise InvalidTransition(
                "Appointment has not ended yet",
                appointment_id=current.id,
                ends_at=current.ends_at.isoformat(),
            )

        return AppointmentChanges(notes=fields.notes, updated_at=now)

    async def _reschedule_changes(
        self,
        current: AppointmentRecord,
        operation: TransitionOperation,
        fields: TransitionFields,
        now: datetime,
    ) -> AppointmentChanges:
        if fields.starts_at is None:
            raise ValidationError(
                "starts_at is required to reschedule", appointment_id=current.id
            )
        starts_at = as_utc(fields.starts_at)
        if starts_at <= now:
            raise ValidationError(
                "New start time must be in the future",
                appointment_id=current.id,
                starts_at=starts_at.isoformat(),
            )
        if fields.duration_minutes is not None and fields.duration_minutes <= 0:
            raise InvalidDuration(
                "duration_minutes must be a positive integer",
                duration_minutes=fields.duration_minutes,
            )

        if (
            operation == TransitionOperation.RESCHEDULE
            and settings.RESCHEDULE_REVALIDATES_AVAILABILITY
        ):
            provider = await self.persistence.get_profile(current.provider_id)
            if provider is None:
                raise ProviderNotFound(
                    f"Provider {current.provider_id} not found",
                    provider_id=current.provider_id,
                )
            if not await self.slot_service.is_bookable(
                provider, starts_at, now, exclude_appointment_id=current.id
            ):
                raise SlotUnavailable(
                    "Requested time is not an available slot",
                    appointment_id=current.id,
                    starts_at=starts_at.isoformat(),
                )

        return AppointmentChanges(
            starts_at=starts_at,
            duration_minutes=fields.duration_minutes,
            notes=fields.notes,
            rescheduled_from=current.starts_at,
            updated_at=now,
        )
