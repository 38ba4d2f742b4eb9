from typing import Optional

import structlog
from fastapi import Depends, Header, HTTPException, status

from app.schemas.appointment import ActorContext, ActorRole

logger = structlog.get_logger(__name__)


async def get_actor(
    x_actor_role: Optional[str] = Header(None),
    x_actor_id: Optional[str] = Header(None),
) -> ActorContext:
    """
    Actor context forwarded by the identity layer in front of this service.

    The identity provider authenticates the caller and sets ``X-Actor-Role``
    (user, provider, admin or system) and ``X-Actor-Id`` (profile id).
    """
    if not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Actor-Role header",
        )
    try:
        role = ActorRole(x_actor_role.strip().lower())
    except ValueError:
        logger.warning("Rejected unknown actor role", role=x_actor_role)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown actor role: {x_actor_role}",
        )
    return ActorContext(role=role, profile_id=(x_actor_id or "").strip() or None)


async def require_admin(actor: ActorContext = Depends(get_actor)) -> ActorContext:
    if actor.role not in (ActorRole.ADMIN, ActorRole.SYSTEM):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return actor


def ensure_acting_for(
    actor: ActorContext, profile_id: str, require_id: bool = False
) -> None:
    """Users and providers may only act on their own records.

    With ``require_id`` a user or provider that did not identify itself is
    refused as well.
    """
    if actor.role in (ActorRole.ADMIN, ActorRole.SYSTEM):
        return
    if actor.profile_id is None and not require_id:
        return
    if actor.profile_id != profile_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to act for another profile",
        )
