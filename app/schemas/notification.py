from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class NotificationRecord(BaseModel):
    id: str
    user_id: str
    message: str
    read: bool = False
    meta: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationList(BaseModel):
    notifications: List[NotificationRecord]
    unread_count: int
