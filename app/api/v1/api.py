from fastapi import APIRouter

from app.api.v1.endpoints import (
    appointments,
    health,
    notifications,
    profiles,
    providers,
)

api_router = APIRouter()

# Provider directory, availability and slots
api_router.include_router(providers.router, prefix="/providers", tags=["providers"])

# Booking and lifecycle endpoints
api_router.include_router(
    appointments.router, prefix="/appointments", tags=["appointments"]
)

# Profile lookup
api_router.include_router(profiles.router, prefix="/profiles", tags=["profiles"])

# In-app notifications
api_router.include_router(
    notifications.router, prefix="/notifications", tags=["notifications"]
)

# Health check
api_router.include_router(health.router, tags=["health"])
