from .event import Event, EventCreate, EventPayload
from .notification import EventAcceptedResponse, NotificationPayload, NotificationStatusResponse

__all__ = [
    "Event",
    "EventCreate",
    "EventPayload",
    "EventAcceptedResponse",
    "NotificationPayload",
    "NotificationStatusResponse",
]
