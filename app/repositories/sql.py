import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import (
    AppointmentNotFound,
    SlotUnavailable,
    StaleStatusError,
    StorageError,
)
from app.models.appointment import Appointment, AppointmentStatusChange
from app.models.availability import ProviderAvailability
from app.models.notification import Notification
from app.models.profile import Profile as ProfileModel
from app.repositories.base import PersistencePort, apply_changes
from app.schemas.appointment import (
    AppointmentChanges,
    AppointmentFilter,
    AppointmentRecord,
    AppointmentStatus,
    NewAppointment,
    StatusChange,
)
from app.schemas.availability import AvailabilitySlot
from app.schemas.notification import NotificationRecord
from app.schemas.profile import Profile, Role

logger = structlog.get_logger(__name__)


class SqlPersistence(PersistencePort):
    """SQLAlchemy-backed persistence; one transaction per port call."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _transaction(
        self, operation: str, unknown_outcome: bool = False
    ) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            logger.error(
                "Storage operation failed",
                operation=operation,
                unknown_outcome=unknown_outcome,
                exc_info=e,
            )
            raise StorageError(
                f"Storage failure during {operation}",
                unknown_outcome=unknown_outcome,
                operation=operation,
            ) from e

    # Profiles
    async def get_profile(self, profile_id: str) -> Optional[Profile]:
        async with self._transaction("get_profile") as session:
            row = await session.get(ProfileModel, profile_id)
            return Profile.model_validate(row) if row else None

    async def find_profile_by_email(self, email: str) -> Optional[Profile]:
        async with self._transaction("find_profile_by_email") as session:
            result = await session.execute(
                select(ProfileModel).where(
                    func.lower(ProfileModel.email) == email.strip().lower()
                )
            )
            row = result.scalars().first()
            return Profile.model_validate(row) if row else None

    async def list_providers(self, active_only: bool = True) -> List[Profile]:
        async with self._transaction("list_providers") as session:
            query = select(ProfileModel).where(
                ProfileModel.role == Role.PROVIDER.value
            )
            if active_only:
                query = query.where(ProfileModel.is_active.is_(True))
            result = await session.execute(query.order_by(ProfileModel.full_name))
            return [Profile.model_validate(row) for row in result.scalars().all()]

    async def list_profiles(self, role: Optional[Role] = None) -> List[Profile]:
        async with self._transaction("list_profiles") as session:
            query = select(ProfileModel)
            if role is not None:
                query = query.where(ProfileModel.role == role.value)
            result = await session.execute(query.order_by(ProfileModel.full_name))
            return [Profile.model_validate(row) for row in result.scalars().all()]

    async def upsert_profile(self, profile: Profile) -> Profile:
        async with self._transaction("upsert_profile") as session:
            values = profile.model_dump(exclude={"created_at"})
            values["role"] = profile.role.value
            row = await session.get(ProfileModel, profile.id)
            if row is None:
                row = ProfileModel(**values)
                if profile.created_at is not None:
                    row.created_at = profile.created_at
                session.add(row)
            else:
                for field, value in values.items():
                    setattr(row, field, value)
            await session.flush()
            await session.refresh(row)
            return Profile.model_validate(row)

    # Availability
    async def get_availability(self, provider_id: str) -> List[AvailabilitySlot]:
        async with self._transaction("get_availability") as session:
            result = await session.execute(
                select(ProviderAvailability)
                .where(ProviderAvailability.provider_id == provider_id)
                .order_by(
                    ProviderAvailability.day_of_week,
                    ProviderAvailability.start_time,
                    ProviderAvailability.end_time,
                )
            )
            return [AvailabilitySlot.model_validate(row) for row in result.scalars()]

    async def replace_availability(
        self, provider_id: str, slots: List[AvailabilitySlot]
    ) -> List[AvailabilitySlot]:
        async with self._transaction("replace_availability") as session:
            await session.execute(
                delete(ProviderAvailability).where(
                    ProviderAvailability.provider_id == provider_id
                )
            )
            rows = [
                ProviderAvailability(
                    provider_id=provider_id,
                    day_of_week=slot.day_of_week,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                )
                for slot in slots
            ]
            session.add_all(rows)
            await session.flush()
            return [AvailabilitySlot.model_validate(row) for row in rows]

    # Appointments
    async def get_appointment(self, appointment_id: str) -> Optional[AppointmentRecord]:
        async with self._transaction("get_appointment") as session:
            row = await session.get(Appointment, appointment_id)
            return AppointmentRecord.model_validate(row) if row else None

    async def list_appointments(
        self, filter: Optional[AppointmentFilter] = None
    ) -> List[AppointmentRecord]:
        filter = filter or AppointmentFilter()
        async with self._transaction("list_appointments") as session:
            query = select(Appointment)
            if filter.user_id:
                query = query.where(Appointment.user_id == filter.user_id)
            if filter.provider_id:
                query = query.where(Appointment.provider_id == filter.provider_id)
            if filter.statuses:
                query = query.where(
                    Appointment.status.in_([s.value for s in filter.statuses])
                )
            query = query.order_by(Appointment.starts_at, Appointment.created_at)
            result = await session.execute(query)
            return [AppointmentRecord.model_validate(row) for row in result.scalars()]

    async def create_appointment(self, data: NewAppointment) -> AppointmentRecord:
        async with self._transaction("create_appointment") as session:
            await self._lock_provider(session, data.provider_id)
            await self._ensure_free(
                session, data.provider_id, data.starts_at, data.ends_at
            )

            row = Appointment(
                user_id=data.user_id,
                provider_id=data.provider_id,
                starts_at=data.starts_at,
                duration_minutes=data.duration_minutes,
                status=data.status.value,
                notes=data.notes,
                appointment_type=data.appointment_type,
                created_by=data.created_by,
                created_at=data.created_at,
            )
            session.add(row)
            await session.flush()

            session.add(
                AppointmentStatusChange(
                    appointment_id=row.id,
                    from_status=None,
                    to_status=data.status.value,
                    operation="book",
                    actor_role=data.booked_by_role.value,
                    changed_at=data.created_at,
                )
            )
            await session.flush()
            await session.refresh(row)
            return AppointmentRecord.model_validate(row)

    async def update_appointment_status(
        self,
        appointment_id: str,
        expected_status: AppointmentStatus,
        new_status: AppointmentStatus,
        fields: AppointmentChanges,
        change: StatusChange,
    ) -> AppointmentRecord:
        async with self._transaction(
            "update_appointment_status", unknown_outcome=True
        ) as session:
            result = await session.execute(
                select(Appointment)
                .where(Appointment.id == appointment_id)
                .with_for_update()
            )
            current = result.scalar_one_or_none()
            if current is None:
                raise AppointmentNotFound(
                    f"Appointment {appointment_id} not found",
                    appointment_id=appointment_id,
                )
            if current.status != expected_status.value:
                raise StaleStatusError(
                    appointment_id, expected_status.value, current.status
                )

            values = apply_changes(new_status, fields)
            values["status"] = new_status.value

            if fields.moves_calendar and new_status != AppointmentStatus.CANCELLED:
                record = AppointmentRecord.model_validate(current).model_copy(
                    update=values
                )
                await self._lock_provider(session, record.provider_id)
                await self._ensure_free(
                    session,
                    record.provider_id,
                    record.starts_at,
                    record.ends_at,
                    exclude_id=appointment_id,
                )

            # Compare-and-set on the status column
            outcome = await session.execute(
                update(Appointment)
                .where(
                    and_(
                        Appointment.id == appointment_id,
                        Appointment.status == expected_status.value,
                    )
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if outcome.rowcount == 0:
                raise StaleStatusError(appointment_id, expected_status.value, None)

            session.add(
                AppointmentStatusChange(
                    appointment_id=appointment_id,
                    from_status=expected_status.value,
                    to_status=new_status.value,
                    operation=change.operation,
                    actor_role=change.actor_role.value,
                    reason=change.reason,
                    changed_at=change.changed_at,
                )
            )
            await session.flush()

            refreshed = await session.execute(
                select(Appointment)
                .where(Appointment.id == appointment_id)
                .execution_options(populate_existing=True)
            )
            return AppointmentRecord.model_validate(refreshed.scalar_one())

    async def list_status_history(self, appointment_id: str) -> List[StatusChange]:
        async with self._transaction("list_status_history") as session:
            result = await session.execute(
                select(AppointmentStatusChange)
                .where(AppointmentStatusChange.appointment_id == appointment_id)
                .order_by(AppointmentStatusChange.id)
            )
            return [StatusChange.model_validate(row) for row in result.scalars()]

    # Notifications
    async def create_notification(
        self, user_id: str, message: str, meta: Optional[Dict[str, Any]] = None
    ) -> NotificationRecord:
        async with self._transaction("create_notification") as session:
            row = Notification(user_id=user_id, message=message, meta=meta, read=False)
            session.add(row)
            await session.flush()
            await session.refresh(row)
            return NotificationRecord.model_validate(row)

    async def list_notifications(self, user_id: str) -> List[NotificationRecord]:
        async with self._transaction("list_notifications") as session:
            result = await session.execute(
                select(Notification)
                .where(Notification.user_id == user_id)
                .order_by(Notification.created_at.desc())
            )
            return [NotificationRecord.model_validate(row) for row in result.scalars()]

    async def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        async with self._transaction("get_notification") as session:
            row = await session.get(Notification, notification_id)
            return NotificationRecord.model_validate(row) if row else None

    async def mark_notification_read(self, notification_id: str) -> bool:
        async with self._transaction("mark_notification_read") as session:
            result = await session.execute(
                update(Notification)
                .where(Notification.id == notification_id)
                .values(read=True)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    # Helpers
    @staticmethod
    async def _lock_provider(session: AsyncSession, provider_id: str) -> None:
        """Serialise writes per provider (no-op on backends without row locks)."""
        await session.execute(
            select(ProfileModel.id)
            .where(ProfileModel.id == provider_id)
            .with_for_update()
        )

    @staticmethod
    async def _ensure_free(
        session: AsyncSession,
        provider_id: str,
        starts_at: datetime,
        ends_at: datetime,
        exclude_id: Optional[str] = None,
    ) -> None:
        query = select(Appointment).where(
            and_(
                Appointment.provider_id == provider_id,
                Appointment.status != AppointmentStatus.CANCELLED.value,
                Appointment.starts_at < ends_at,
            )
        )
        if exclude_id:
            query = query.where(Appointment.id != exclude_id)

        result = await session.execute(query)
        for row in result.scalars():
            other = AppointmentRecord.model_validate(row)
            if other.overlaps(starts_at, ends_at):
                logger.info(
                    "Overlap detected at write time",
                    provider_id=provider_id,
                    conflicting_appointment_id=other.id,
                )
                raise SlotUnavailable(
                    "Requested time overlaps an existing appointment",
                    provider_id=provider_id,
                    conflicting_appointment_id=other.id,
                )
