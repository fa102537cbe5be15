"""Test doubles shared across the unit, integration and chaos suites."""
import json
from collections import defaultdict
from typing import Dict, List

from aiokafka.errors import KafkaTimeoutError

from notifier.core.events.topology import DeliveryTopology
from notifier.schemas.event import Event
from notifier.services.notification import NotificationService
from notifier.services.processor import NotificationEventProcessor

MAIN_QUEUE = "notification_events"
DEAD_LETTER_QUEUE = "notification_dead_letter_queue"


def make_event(event_id: str = "evt-1", email: str = "ada@example.com", retry_count: int = 0, **overrides) -> Event:
    data = {
        "id": event_id,
        "eventType": "USER_SIGNUP",
        "timestamp": "2024-01-01T12:00:00Z",
        "payload": {"email": email, "username": "ada", "userId": "u-1"},
        "retryCount": retry_count,
    }
    data.update(overrides)
    return Event.model_validate(data)


class FakeDelivery:
    """Delivery double recording its terminal action"""

    def __init__(self, body: bytes):
        self.body = body
        self.acked = False
        self.requeued = False

    async def ack(self):
        self.acked = True

    async def requeue(self):
        self.requeued = True


class InMemoryBroker:
    """Topic store standing in for the Kafka client: producer, tiers and queues in one place."""

    def __init__(self):
        self.topics: Dict[str, List[bytes]] = defaultdict(list)
        self.producer = self
        self.fail_next_publishes = 0

    async def send_and_wait(self, topic, value=None, key=None, timestamp_ms=None, **kwargs):
        if self.fail_next_publishes:
            self.fail_next_publishes -= 1
            raise KafkaTimeoutError()
        self.topics[topic].append(value)

    def messages(self, topic: str) -> List[dict]:
        return [json.loads(body) for body in self.topics[topic]]

    def expire_tiers(self, topology: DeliveryTopology) -> List[str]:
        """Do what the redelivery scheduler does once every TTL has elapsed."""
        moved = []
        for tier in topology.tiers:
            for body in self.topics[tier.topic]:
                self.topics[topology.main_queue].append(body)
                moved.append(tier.topic)
            self.topics[tier.topic] = []
        return moved

    async def drain(self, processor: NotificationEventProcessor, topology: DeliveryTopology, max_steps: int = 50):
        """Consume the main queue until empty. Requeued bodies go back to the head."""
        outcomes = []
        queue = self.topics[topology.main_queue]
        for _ in range(max_steps):
            if not queue:
                break
            body = queue.pop(0)
            delivery = FakeDelivery(body)
            outcomes.append(await processor.handle(delivery))
            if delivery.requeued:
                queue.insert(0, body)
        return outcomes


class RecordingNotificationService(NotificationService):
    """Simulated transport without latency that remembers every send attempt"""

    def __init__(self, failure_marker: str = "fail"):
        super().__init__(latency_seconds=0, failure_marker=failure_marker)
        self.sent: List[str] = []

    async def send_notification(self, notification):
        self.sent.append(notification.event_id)
        return await super().send_notification(notification)
