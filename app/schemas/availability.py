from datetime import time
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer


DAYS_OF_WEEK = [
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
]


class AvailabilitySlot(BaseModel):
    """One recurring weekly open-hours window.

    ``day_of_week`` counts from Sunday = 0. The range check and the
    ``start_time < end_time`` check live in the availability service so that
    they surface as ``invalid_day`` / ``invalid_range`` rather than a generic
    parse error.
    """

    day_of_week: int
    start_time: time
    end_time: time
    id: Optional[str] = None
    provider_id: Optional[str] = None

    model_config = {"from_attributes": True}

    @field_serializer("start_time", "end_time")
    def serialize_clock(self, value: time) -> str:
        return value.strftime("%H:%M")

    @property
    def sort_key(self) -> tuple[int, time, time]:
        return (self.day_of_week, self.start_time, self.end_time)


class AvailabilityReplace(BaseModel):
    slots: List[AvailabilitySlot] = Field(default_factory=list)


class AvailabilityResponse(BaseModel):
    provider_id: str
    slots: List[AvailabilitySlot]
