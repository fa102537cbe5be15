"""
Per-message state machine of the notification consumer.

For every dequeued event: skip it if the ledger shows it handled, make sure
a ledger record exists, render and send, then record the outcome. Delivery
failures are retried through the delay tiers until the retry budget is spent
and then dead-lettered. Any bookkeeping failure (ledger or publish) leaves the
message unacknowledged and requeued so nothing is lost.
"""
import logging
from enum import Enum
from typing import Optional, Protocol

from notifier.core.config import settings
from notifier.core.events.publisher import EventPublisher
from notifier.core.events.topology import DeliveryTopology
from notifier.core.exceptions import MalformedMessageException
from notifier.core.utils.logging import structured_logger
from notifier.models.notification import NotificationStatus
from notifier.schemas.event import Event
from notifier.services.ledger import IdempotencyLedger
from notifier.services.notification import NotificationService

logger = logging.getLogger(__name__)


class ProcessingOutcome(str, Enum):
    SKIPPED = "skipped"
    SENT = "sent"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"
    DROPPED = "dropped"


class Delivery(Protocol):
    """A message handed over by the broker; settled by exactly one ack or requeue."""

    body: bytes

    async def ack(self) -> None:
        ...

    async def requeue(self) -> None:
        ...


class NotificationEventProcessor:
    def __init__(
        self,
        ledger: IdempotencyLedger,
        publisher: EventPublisher,
        notification_service: NotificationService,
        topology: DeliveryTopology,
        max_retries: int = settings.MAX_RETRIES,
    ):
        self.ledger = ledger
        self.publisher = publisher
        self.notification_service = notification_service
        self.topology = topology
        self.max_retries = max_retries

    async def handle(self, delivery: Delivery) -> Optional[ProcessingOutcome]:
        """Process one delivery and settle it. Returns None when it was requeued."""
        try:
            outcome = await self.process(delivery.body)
        except Exception as e:
            structured_logger.error(
                message="Bookkeeping failed, requeueing message",
                metadata={"error_type": type(e).__name__},
                exception=e,
            )
            await delivery.requeue()
            return None

        await delivery.ack()
        return outcome

    async def process(self, raw: bytes) -> ProcessingOutcome:
        """Run the state machine for one message body. Bookkeeping errors propagate."""
        try:
            event = Event.from_message(raw)
        except MalformedMessageException as e:
            logger.error(f"Dropping malformed message: {e.message}")
            return ProcessingOutcome.DROPPED

        logger.info(f"Processing event {event.id} (retryCount={event.retry_count})")

        if await self.ledger.is_handled(event.id):
            logger.info(f"Event {event.id} already processed. Skipping.")
            return ProcessingOutcome.SKIPPED

        await self.ledger.create_if_absent(event)

        notification = self.notification_service.generate_payload(event)
        try:
            await self.notification_service.send_notification(notification)
        except Exception as e:
            # The transport's failure cause does not matter; every failure is retryable
            logger.warning(f"Delivery failed for event {event.id}: {e}")
            return await self._handle_delivery_failure(event)

        await self.ledger.update_status(event.id, NotificationStatus.SENT)
        logger.info(f"Notification {notification.notification_id} sent for event {event.id}")
        return ProcessingOutcome.SENT

    async def _handle_delivery_failure(self, event: Event) -> ProcessingOutcome:
        if event.retry_count < self.max_retries:
            next_retry = event.retry_count + 1
            delay_ms = self.topology.delay_for_retry(next_retry)
            logger.warning(
                f"Scheduling retry for event {event.id} "
                f"(Attempt {next_retry}/{self.max_retries}) in {delay_ms}ms"
            )
            await self.ledger.update_status(event.id, NotificationStatus.FAILED_RETRYING)
            await self.publisher.publish_retry(event.with_retry_count(next_retry), delay_ms)
            return ProcessingOutcome.RETRY_SCHEDULED

        structured_logger.error(
            message="Max retries reached, moving event to dead-letter queue",
            event_id=event.id,
            metadata={"retry_count": event.retry_count, "max_retries": self.max_retries},
        )
        # FAILED_DLQ short-circuits redeliveries, so the dead-letter copy must exist first
        await self.publisher.publish_dead_letter(event)
        await self.ledger.update_status(event.id, NotificationStatus.FAILED_DLQ)
        return ProcessingOutcome.DEAD_LETTERED
