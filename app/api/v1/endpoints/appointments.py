from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.deps.actor import ensure_acting_for, get_actor, require_admin
from app.api.deps.portal import get_portal
from app.schemas.appointment import (
    ActorContext,
    ActorRole,
    AppointmentList,
    AppointmentStatus,
    AppointmentView,
    BookingRequest,
    CompletionSweepResponse,
    StatusChange,
    TransitionFields,
    TransitionRequest,
)
from app.services.portal import BookingPortal

router = APIRouter()


@router.post("", response_model=AppointmentView, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    booking: BookingRequest,
    portal: BookingPortal = Depends(get_portal),
    actor: ActorContext = Depends(get_actor),
):
    """Request an appointment; it starts out pending."""
    if actor.role == ActorRole.USER:
        ensure_acting_for(actor, booking.user_id)

    return await portal.book_appointment(
        booking.user_id,
        booking.provider_id,
        booking.starts_at,
        booking.duration_minutes,
        notes=booking.notes,
        appointment_type=booking.appointment_type,
        actor=actor,
    )


@router.get("", response_model=AppointmentList)
async def list_appointments(
    user_id: Optional[str] = Query(None),
    provider_id: Optional[str] = Query(None),
    statuses: Optional[List[AppointmentStatus]] = Query(None, alias="status"),
    portal: BookingPortal = Depends(get_portal),
):
    appointments = await portal.list_appointments(
        user_id=user_id, provider_id=provider_id, statuses=statuses
    )
    return AppointmentList(appointments=appointments, total_count=len(appointments))


@router.post("/complete-elapsed", response_model=CompletionSweepResponse)
async def complete_elapsed(
    portal: BookingPortal = Depends(get_portal),
    actor: ActorContext = Depends(require_admin),
):
    """Run the completion sweep now instead of waiting for the beat schedule."""
    completed = await portal.complete_elapsed()
    return CompletionSweepResponse(completed=completed, total_completed=len(completed))


@router.get("/{appointment_id}", response_model=AppointmentView)
async def get_appointment(
    appointment_id: str, portal: BookingPortal = Depends(get_portal)
):
    return await portal.get_appointment(appointment_id)


@router.post("/{appointment_id}/transitions", response_model=AppointmentView)
async def transition_appointment(
    appointment_id: str,
    request: TransitionRequest,
    portal: BookingPortal = Depends(get_portal),
    actor: ActorContext = Depends(get_actor),
):
    """Apply a lifecycle operation (confirm, decline, cancel, reschedule, ...)."""
    fields = TransitionFields(**request.model_dump(exclude={"operation"}))
    return await portal.transition_appointment(
        appointment_id, request.operation, actor, fields
    )


@router.get("/{appointment_id}/history", response_model=List[StatusChange])
async def get_status_history(
    appointment_id: str, portal: BookingPortal = Depends(get_portal)
):
    return await portal.get_status_history(appointment_id)
