"""
Event-driven delivery core on Kafka.
Implements the delivery topology, delayed redelivery tiers, the producer and the main-queue consumer.
"""

from .topology import DelayTier, RetryExchange, DeliveryTopology, tier_topic_name
from .publisher import EventPublisher
from .scheduler import DelayedRedeliveryScheduler
from .consumer import KafkaDelivery, NotificationConsumer

__all__ = [
    'DelayTier',
    'RetryExchange',
    'DeliveryTopology',
    'tier_topic_name',
    'EventPublisher',
    'DelayedRedeliveryScheduler',
    'KafkaDelivery',
    'NotificationConsumer'
]
