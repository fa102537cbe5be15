import asyncio
import logging
from datetime import datetime, timezone

from notifier.core.config import settings
from notifier.core.exceptions import DeliveryException
from notifier.models.notification import notification_id_for
from notifier.schemas.event import Event
from notifier.schemas.notification import NotificationPayload

logger = logging.getLogger(__name__)


class NotificationService:
    """Renders notification payloads and hands them to the delivery transport.

    The transport is simulated: it waits ``latency_seconds`` and fails for any
    recipient containing ``failure_marker``.
    """

    def __init__(
        self,
        latency_seconds: float = settings.DELIVERY_LATENCY_SECONDS,
        failure_marker: str = settings.DELIVERY_FAILURE_MARKER,
    ):
        self.latency_seconds = latency_seconds
        self.failure_marker = failure_marker

    def generate_payload(self, event: Event) -> NotificationPayload:
        """Transform an event into the payload the transport expects."""
        return NotificationPayload(
            notification_id=notification_id_for(event.id),
            event_id=event.id,
            recipient=event.payload.email,
            message=f"Hello {event.payload.username}, welcome! (Type: {event.event_type})",
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    async def send_notification(self, notification: NotificationPayload) -> bool:
        """Send through the external provider. Raises DeliveryException on any failure."""
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

        logger.info(
            f"Sending notification {notification.notification_id} to {notification.recipient}"
        )

        if self.failure_marker and self.failure_marker in notification.recipient:
            raise DeliveryException(
                "Simulated External Service Failure (Network Timeout)",
                recipient=notification.recipient,
            )

        return True
