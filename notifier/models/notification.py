from sqlalchemy import Column, String, Text, Integer, DateTime, Index, Enum as SQLEnum
from sqlalchemy.sql import func
from enum import Enum

from notifier.core.database import Base, CHAR_LENGTH


class NotificationStatus(str, Enum):
    """Delivery status tracked per event. SENT and FAILED_DLQ are terminal."""
    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED_RETRYING = "FAILED_RETRYING"
    FAILED_DLQ = "FAILED_DLQ"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({NotificationStatus.SENT, NotificationStatus.FAILED_DLQ})


NOTIFICATION_ID_PREFIX = "notif-"
# Both event_id and the derived notification id must fit the ledger columns
MAX_EVENT_ID_LENGTH = CHAR_LENGTH - len(NOTIFICATION_ID_PREFIX)


def notification_id_for(event_id: str) -> str:
    return f"{NOTIFICATION_ID_PREFIX}{event_id}"


class NotificationRecord(Base):
    """Idempotency ledger row, one per event identity"""
    __tablename__ = "notifications"
    __table_args__ = (
        Index('idx_notifications_status', 'status'),
    )

    id = Column(String(CHAR_LENGTH), primary_key=True)
    event_id = Column(String(CHAR_LENGTH), unique=True, nullable=False, index=True)
    event_type = Column(String(CHAR_LENGTH), nullable=False)
    payload = Column(Text, nullable=False)
    status = Column(
        SQLEnum(NotificationStatus, name="notification_status", native_enum=False, length=32),
        nullable=False,
        default=NotificationStatus.QUEUED,
    )
    attempt_count = Column(Integer, nullable=False, default=0)
    last_attempt_timestamp = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "status": self.status.value if self.status else None,
            "attempt_count": self.attempt_count,
            "last_attempt_timestamp": self.last_attempt_timestamp.isoformat() if self.last_attempt_timestamp else None,
        }

    def __repr__(self):
        return f"<NotificationRecord(event_id='{self.event_id}', status={self.status}, attempt_count={self.attempt_count})>"
