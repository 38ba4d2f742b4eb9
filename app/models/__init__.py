# Import all models to ensure they are registered with SQLAlchemy
from . import (
    appointment,
    availability,
    notification,
    profile,
)

__all__ = [
    "appointment",
    "availability",
    "notification",
    "profile",
]
