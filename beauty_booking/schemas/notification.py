from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from beauty_booking.schemas.booking import CamelModel


class NotificationCreate(BaseModel):
    user_id: str
    type: str
    title: str
    message: str | None = None
    data: dict[str, Any] | None = None


class NotificationRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    type: str
    title: str
    message: str | None = None
    data: dict[str, Any] | None = None
    is_read: bool = False
    created_at: datetime | None = None


class NotificationListResponse(CamelModel):
    notifications: list[NotificationRecord]
    unread_count: int


class MarkReadRequest(CamelModel):
    notification_ids: list[str] | None = None
    mark_all_read: bool = False


class MarkReadResponse(BaseModel):
    updated: int
