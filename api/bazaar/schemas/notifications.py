from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class NotificationOut(BaseModel):
    id: str
    user_id: str
    type: str
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    read_at: datetime | None = None
    created_at: datetime


class BulkNotificationRequest(BaseModel):
    user_ids: list[str] = Field(min_length=1, max_length=1000)
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=2000)
    type: str = "general"
    data: dict[str, Any] = Field(default_factory=dict)


class NotificationCountOut(BaseModel):
    count: int
