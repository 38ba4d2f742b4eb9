from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps.actor import ensure_acting_for, get_actor, require_admin
from app.api.deps.portal import get_portal
from app.schemas.appointment import ActorContext, ActorRole
from app.schemas.profile import Profile, ProfileUpdate, Role
from app.services.portal import BookingPortal

router = APIRouter()


@router.get("", response_model=List[Profile])
async def list_profiles(
    role: Optional[Role] = Query(None),
    portal: BookingPortal = Depends(get_portal),
    actor: ActorContext = Depends(require_admin),
):
    """Every registered profile, for the admin directory."""
    return await portal.list_profiles(role)


@router.get("/lookup", response_model=Profile)
async def lookup_profile(
    email: str = Query(..., min_length=3),
    portal: BookingPortal = Depends(get_portal),
):
    """Resolve a profile by email, as used after sign-in."""
    return await portal.find_profile_by_email(email)


@router.put("/{profile_id}", response_model=Profile)
async def upsert_profile(
    profile_id: str,
    update: ProfileUpdate,
    portal: BookingPortal = Depends(get_portal),
    actor: ActorContext = Depends(get_actor),
):
    """Create or update a profile after sign-up or sign-in."""
    ensure_acting_for(actor, profile_id, require_id=True)
    if update.role == Role.ADMIN and actor.role not in (
        ActorRole.ADMIN,
        ActorRole.SYSTEM,
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only an admin may grant the admin role",
        )

    return await portal.upsert_profile(profile_id, update)
