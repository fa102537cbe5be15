"""
Event Publisher Module - Puts events onto the delivery topology
"""
import logging
import time
import uuid

from aiokafka.errors import KafkaError

from notifier.core.exceptions import PublishException
from notifier.core.kafka import KafkaClient
from notifier.schemas.event import Event, EventCreate
from .topology import DelayTier, DeliveryTopology

logger = logging.getLogger(__name__)


class EventPublisher:
    """
    Publishes events to the main queue, the delay tiers and the dead-letter queue.

    Every publish waits for the broker acknowledgement; a refused or failed
    publish raises PublishException.
    """

    def __init__(self, kafka: KafkaClient, topology: DeliveryTopology):
        self.kafka = kafka
        self.topology = topology

    async def _publish(self, topic: str, event: Event):
        if self.kafka.producer is None:
            raise PublishException("Broker connection is not established", topic=topic)

        try:
            await self.kafka.producer.send_and_wait(
                topic,
                value=event.to_message(),
                key=event.id.encode("utf-8"),
                # Delay tiers measure their TTL from this timestamp
                timestamp_ms=int(time.time() * 1000),
            )
        except KafkaError as e:
            logger.error(f"Failed to publish event {event.id} to {topic}: {e}")
            raise PublishException(f"Failed to publish event {event.id} to {topic}: {e}", topic=topic) from e

        logger.debug(f"Published event {event.id} to {topic} (retryCount={event.retry_count})")

    async def ingest(self, event_in: EventCreate) -> Event:
        """
        Accept a validated ingestion request and place it on the main queue.

        Args:
            event_in: Validated request; ``id`` is honoured when supplied

        Returns:
            Event: The published event carrying its final id and retryCount 0
        """
        event = Event(
            id=event_in.id or str(uuid.uuid4()),
            event_type=event_in.event_type,
            timestamp=event_in.timestamp,
            payload=event_in.payload,
            retry_count=0,
        )
        await self.publish_event(event)
        logger.info(f"Event {event.id} ({event.event_type}) queued for delivery")
        return event

    async def publish_event(self, event: Event):
        await self._publish(self.topology.main_queue, event)

    async def publish_retry(self, event: Event, delay_ms: int) -> DelayTier:
        """Route an event through the retry exchange to the tier covering ``delay_ms``."""
        routing_key = self.topology.routing_key_for(delay_ms)
        tier = self.topology.retry_exchange.route(routing_key)
        await self._publish(tier.topic, event)
        return tier

    async def publish_dead_letter(self, event: Event):
        await self._publish(self.topology.dead_letter_queue, event)
