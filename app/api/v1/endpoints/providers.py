from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps.actor import ensure_acting_for, get_actor
from app.api.deps.portal import get_portal
from app.schemas.appointment import ActorContext, ActorRole
from app.schemas.availability import AvailabilityReplace, AvailabilityResponse
from app.schemas.profile import ProviderWithAvailability
from app.schemas.scheduling import SlotList
from app.services.portal import BookingPortal

router = APIRouter()


@router.get("", response_model=List[ProviderWithAvailability])
async def list_providers(portal: BookingPortal = Depends(get_portal)):
    """Active providers with their weekly availability."""
    return await portal.list_providers()


@router.get("/{provider_id}/availability", response_model=AvailabilityResponse)
async def get_availability(
    provider_id: str, portal: BookingPortal = Depends(get_portal)
):
    slots = await portal.get_availability(provider_id)
    return AvailabilityResponse(provider_id=provider_id, slots=slots)


@router.put("/{provider_id}/availability", response_model=AvailabilityResponse)
async def set_availability(
    provider_id: str,
    body: AvailabilityReplace,
    portal: BookingPortal = Depends(get_portal),
    actor: ActorContext = Depends(get_actor),
):
    """Replace the provider's whole weekly availability."""
    if actor.role not in (ActorRole.PROVIDER, ActorRole.ADMIN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the provider or an admin may change availability",
        )
    ensure_acting_for(actor, provider_id)

    slots = await portal.set_availability(provider_id, body.slots)
    return AvailabilityResponse(provider_id=provider_id, slots=slots)


@router.get("/{provider_id}/slots", response_model=SlotList)
async def get_slots(
    provider_id: str,
    horizon_days: Optional[int] = Query(None, ge=0),
    granularity_minutes: Optional[int] = Query(None, gt=0),
    portal: BookingPortal = Depends(get_portal),
):
    """Bookable slots over the coming days."""
    return await portal.generate_slots(provider_id, horizon_days, granularity_minutes)
