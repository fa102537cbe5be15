# Models package
from .notification import NotificationRecord, NotificationStatus, TERMINAL_STATUSES, notification_id_for

__all__ = [
    "NotificationRecord",
    "NotificationStatus",
    "TERMINAL_STATUSES",
    "notification_id_for",
]
