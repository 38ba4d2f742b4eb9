from fastapi import Request

from app.services.portal import BookingPortal


def get_portal(request: Request) -> BookingPortal:
    """The booking portal built at start-up (see ``app.main.lifespan``)."""
    return request.app.state.portal
