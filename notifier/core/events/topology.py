"""
Delivery topology: main queue, delay tiers, retry exchange and dead-letter queue.

Every queue is a durable Kafka topic. A delay tier holds a message for its
TTL and then hands it back to the main queue (see scheduler.py); the retry
exchange routes ``retry.<ttlMs>`` to exactly one tier.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import KafkaError, TopicAlreadyExistsError

from notifier.core.exceptions import PublishException, TopologyConfigurationException

logger = logging.getLogger(__name__)

# Dead-lettered events are kept until someone deals with them
DEAD_LETTER_RETENTION_MS = -1


def tier_topic_name(ttl_ms: int) -> str:
    if ttl_ms % 1000 == 0:
        return f"delay_queue_{ttl_ms // 1000}s"
    return f"delay_queue_{ttl_ms}ms"


@dataclass(frozen=True)
class DelayTier:
    ttl_ms: int
    topic: str

    @property
    def routing_key(self) -> str:
        return f"retry.{self.ttl_ms}"


class RetryExchange:
    """Topic-routed fan-in point for delayed retries. One binding per tier."""

    def __init__(self, name: str):
        self.name = name
        self.bindings: Dict[str, DelayTier] = {}

    def bind(self, tier: DelayTier) -> None:
        bound = self.bindings.get(tier.routing_key)
        if bound is not None and bound != tier:
            raise TopologyConfigurationException(
                f"Routing key {tier.routing_key} on {self.name} is already bound to {bound.topic}"
            )
        self.bindings[tier.routing_key] = tier

    def route(self, routing_key: str) -> DelayTier:
        tier = self.bindings.get(routing_key)
        if tier is None:
            raise PublishException(f"No delay tier bound to {routing_key} on {self.name}")
        return tier


class DeliveryTopology:
    """Declarative description of the queues plus idempotent broker setup."""

    def __init__(
        self,
        main_queue: str,
        dead_letter_queue: str,
        retry_exchange: str,
        tier_delays_ms: Iterable[int],
        partitions: int = 1,
        replication_factor: int = 1,
    ):
        delays = list(tier_delays_ms)
        if not delays:
            raise TopologyConfigurationException("At least one delay tier is required")
        if any(delay <= 0 for delay in delays):
            raise TopologyConfigurationException(f"Delay tiers must be positive, got {delays}")
        if len(set(delays)) != len(delays):
            raise TopologyConfigurationException(f"Delay tiers must be unique, got {delays}")
        if partitions < 1 or replication_factor < 1:
            raise TopologyConfigurationException("Partitions and replication factor must be at least 1")

        self.main_queue = main_queue
        self.dead_letter_queue = dead_letter_queue
        self.partitions = partitions
        self.replication_factor = replication_factor
        self.tiers: List[DelayTier] = [
            DelayTier(ttl_ms=delay, topic=tier_topic_name(delay)) for delay in sorted(delays)
        ]

        names = [main_queue, dead_letter_queue] + [tier.topic for tier in self.tiers]
        if len(set(names)) != len(names):
            raise TopologyConfigurationException(f"Queue names must be distinct, got {names}")

        self.retry_exchange = RetryExchange(retry_exchange)
        for tier in self.tiers:
            self.retry_exchange.bind(tier)

    @classmethod
    def from_settings(cls, settings) -> "DeliveryTopology":
        return cls(
            main_queue=settings.KAFKA_TOPIC_NOTIFICATION_EVENTS,
            dead_letter_queue=settings.KAFKA_TOPIC_DEAD_LETTER,
            retry_exchange=settings.KAFKA_RETRY_EXCHANGE,
            tier_delays_ms=settings.RETRY_DELAY_TIERS_MS,
            partitions=settings.KAFKA_TOPIC_PARTITIONS,
            replication_factor=settings.KAFKA_REPLICATION_FACTOR,
        )

    @property
    def queues(self) -> List[str]:
        return [self.main_queue, self.dead_letter_queue] + [tier.topic for tier in self.tiers]

    def select_tier(self, delay_ms: int) -> DelayTier:
        """Smallest tier whose TTL covers the delay, else the longest tier."""
        for tier in self.tiers:
            if tier.ttl_ms >= delay_ms:
                return tier
        return self.tiers[-1]

    def routing_key_for(self, delay_ms: int) -> str:
        return self.select_tier(delay_ms).routing_key

    def delay_for_retry(self, retry_count: int) -> int:
        """Delay before retry number ``retry_count`` (1-based), holding at the longest tier."""
        if retry_count < 1:
            raise ValueError(f"retry_count must be at least 1, got {retry_count}")
        return self.tiers[min(retry_count, len(self.tiers)) - 1].ttl_ms

    def tier_for_topic(self, topic: str) -> Optional[DelayTier]:
        for tier in self.tiers:
            if tier.topic == topic:
                return tier
        return None

    def _topic_configs(self, name: str) -> Dict[str, str]:
        if name == self.dead_letter_queue:
            return {"retention.ms": str(DEAD_LETTER_RETENTION_MS)}
        tier = self.tier_for_topic(name)
        if tier is not None:
            # Records must outlive their TTL with a generous margin for slow forwarding
            return {"retention.ms": str(max(tier.ttl_ms * 100, 24 * 60 * 60 * 1000))}
        return {}

    def _verify_existing(self, described: List[dict]) -> None:
        for topic in described:
            name = topic.get("topic")
            partitions = topic.get("partitions") or []
            if topic.get("error_code"):
                raise TopologyConfigurationException(
                    f"Cannot describe existing queue {name}: error code {topic['error_code']}"
                )
            if len(partitions) != self.partitions:
                raise TopologyConfigurationException(
                    f"Queue {name} exists with {len(partitions)} partition(s), "
                    f"declared {self.partitions}"
                )
            for partition in partitions:
                replicas = partition.get("replicas")
                if replicas is not None and len(replicas) != self.replication_factor:
                    raise TopologyConfigurationException(
                        f"Queue {name} exists with replication factor {len(replicas)}, "
                        f"declared {self.replication_factor}"
                    )

    async def setup(self, admin: AIOKafkaAdminClient) -> None:
        """Assert every queue. Existing queues with matching parameters are left alone."""
        existing = set(await admin.list_topics())
        present = [name for name in self.queues if name in existing]
        missing = [name for name in self.queues if name not in existing]

        if present:
            self._verify_existing(await admin.describe_topics(present))

        if missing:
            new_topics = [
                NewTopic(
                    name=name,
                    num_partitions=self.partitions,
                    replication_factor=self.replication_factor,
                    topic_configs=self._topic_configs(name),
                )
                for name in missing
            ]
            try:
                response = await admin.create_topics(new_topics)
            except TopicAlreadyExistsError:
                # Another instance created them in between; verify what it created
                response = None
            except KafkaError as e:
                raise TopologyConfigurationException(f"Failed to create queues {missing}: {e}") from e

            for entry in getattr(response, "topic_errors", None) or []:
                name, error_code = entry[0], entry[1]
                if error_code and error_code != TopicAlreadyExistsError.errno:
                    raise TopologyConfigurationException(
                        f"Failed to create queue {name}: error code {error_code}"
                    )

            if response is None:
                self._verify_existing(await admin.describe_topics(missing))

        logger.info(
            f"Delivery topology ready: main={self.main_queue}, dlq={self.dead_letter_queue}, "
            f"exchange={self.retry_exchange.name}, tiers={[t.routing_key for t in self.tiers]}"
        )
