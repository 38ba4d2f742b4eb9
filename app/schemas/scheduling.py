from datetime import datetime
from typing import List

from pydantic import BaseModel


class BookableSlot(BaseModel):
    starts_at: datetime
    ends_at: datetime

    def contains(self, instant: datetime) -> bool:
        return self.starts_at <= instant < self.ends_at


class SlotList(BaseModel):
    provider_id: str
    timezone: str
    horizon_days: int
    granularity_minutes: int
    slots: List[BookableSlot]
