from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.api.deps.actor import ensure_acting_for, get_actor
from app.api.deps.portal import get_portal
from app.schemas.appointment import ActorContext
from app.schemas.notification import NotificationList
from app.services.portal import BookingPortal

router = APIRouter()


@router.get("", response_model=NotificationList)
async def list_notifications(
    user_id: Optional[str] = Query(None),
    portal: BookingPortal = Depends(get_portal),
    actor: ActorContext = Depends(get_actor),
):
    """Notifications for a profile, newest first. Defaults to the caller."""
    user_id = user_id or actor.profile_id
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="user_id is required"
        )
    ensure_acting_for(actor, user_id, require_id=True)
    return await portal.list_notifications(user_id)


@router.post("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_notification_read(
    notification_id: str,
    portal: BookingPortal = Depends(get_portal),
    actor: ActorContext = Depends(get_actor),
):
    """Mark one of the caller's notifications as read."""
    notification = await portal.get_notification(notification_id)
    ensure_acting_for(actor, notification.user_id, require_id=True)
    await portal.mark_notification_read(notification_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
