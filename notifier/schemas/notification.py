from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from notifier.models.notification import NotificationStatus


class NotificationPayload(BaseModel):
    """Payload handed to the delivery transport."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    notification_id: str = Field(..., alias="notificationId")
    event_id: str = Field(..., alias="eventId")
    recipient: str
    message: str
    timestamp: str


class NotificationStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    event_type: str
    status: NotificationStatus
    attempt_count: int
    last_attempt_timestamp: Optional[datetime] = None


class EventAcceptedResponse(BaseModel):
    """Returned once an event is on the main queue"""
    event_id: str
    status: NotificationStatus = NotificationStatus.QUEUED
