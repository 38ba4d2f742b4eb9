from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.availability import AvailabilitySlot


class Role(str, Enum):
    USER = "user"
    PROVIDER = "provider"
    ADMIN = "admin"


class Profile(BaseModel):
    id: str
    email: str
    full_name: str
    role: Role
    avatar_url: Optional[str] = None
    timezone: Optional[str] = None
    specialty: Optional[str] = None
    bio: Optional[str] = None
    telehealth: Optional[bool] = None
    hourly_rate: Optional[float] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ProviderWithAvailability(Profile):
    availability: List[AvailabilitySlot] = Field(default_factory=list)


class ProfileUpdate(BaseModel):
    """Profile fields mirrored from the identity provider at sign-in.

    Fields left out keep their stored value. ``email``, ``full_name`` and
    ``role`` are required when the profile does not exist yet.
    """

    email: Optional[str] = Field(None, min_length=3)
    full_name: Optional[str] = Field(None, min_length=1)
    role: Optional[Role] = None
    avatar_url: Optional[str] = None
    timezone: Optional[str] = None
    specialty: Optional[str] = None
    bio: Optional[str] = None
    telehealth: Optional[bool] = None
    hourly_rate: Optional[float] = Field(None, ge=0)
    is_active: bool = True
