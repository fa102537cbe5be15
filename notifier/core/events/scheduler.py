"""
Delayed redelivery for the delay tiers.

Each tier topic gets its own consumer. A record becomes due ``ttl_ms`` after
the broker timestamp it was published with; once due, its body is forwarded
unchanged to the main queue and only then is the tier offset committed, so a
crash in between re-forwards rather than loses the event.
"""
import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from aiokafka import AIOKafkaConsumer, TopicPartition
from aiokafka.errors import KafkaError

from notifier.core.config import settings
from notifier.core.kafka import KafkaClient
from .topology import DelayTier, DeliveryTopology

logger = logging.getLogger(__name__)


class DelayedRedeliveryScheduler:
    """Returns expired delay-tier messages to the main queue"""

    def __init__(
        self,
        kafka: KafkaClient,
        topology: DeliveryTopology,
        group_id: str = settings.KAFKA_DELAY_CONSUMER_GROUP,
        retry_backoff_seconds: float = settings.REQUEUE_BACKOFF_SECONDS,
        clock: Callable[[], float] = time.time,
        on_failure: Optional[Callable[[BaseException], None]] = None,
    ):
        self.kafka = kafka
        self.topology = topology
        self.group_id = group_id
        self.retry_backoff_seconds = retry_backoff_seconds
        self.clock = clock
        self.on_failure = on_failure
        self.failure: Optional[BaseException] = None
        self._consumers: Dict[str, AIOKafkaConsumer] = {}
        self._tasks: List[asyncio.Task] = []
        self._running = False

    async def start(self):
        if self._running:
            return
        self._running = True
        for tier in self.topology.tiers:
            consumer = self.kafka.create_consumer(
                tier.topic,
                group_id=f"{self.group_id}.{tier.topic}",
                max_poll_records=1,
            )
            await consumer.start()
            self._consumers[tier.topic] = consumer
            task = asyncio.create_task(self._run_tier(tier, consumer))
            task.add_done_callback(self._on_tier_done)
            self._tasks.append(task)
            logger.info(f"Delay tier {tier.topic} ({tier.routing_key}) started")

    def _on_tier_done(self, task: asyncio.Task):
        if task.cancelled() or task.exception() is None:
            return
        self.failure = task.exception()
        logger.critical(f"Delay tier task died: {self.failure!r}", exc_info=self.failure)
        if self.on_failure is not None:
            self.on_failure(self.failure)

    async def stop(self):
        """Stop all tiers. Records not yet forwarded stay uncommitted and are picked up on restart."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        for topic, consumer in self._consumers.items():
            try:
                await consumer.stop()
            except KafkaError as e:
                logger.error(f"Delay tier {topic} did not stop cleanly: {e}")
                continue
            logger.info(f"Delay tier {topic} stopped")
        self._consumers = {}

    def seconds_until_due(self, tier: DelayTier, timestamp_ms: int) -> float:
        due_at = (timestamp_ms + tier.ttl_ms) / 1000
        return max(0.0, due_at - self.clock())

    async def _run_tier(self, tier: DelayTier, consumer: AIOKafkaConsumer):
        while self._running:
            try:
                async for record in consumer:
                    await self.forward(tier, consumer, record)
                    if not self._running:
                        return
                # Iteration ends once the consumer is stopped
                return
            except KafkaError as e:
                logger.error(
                    f"Fetch from delay tier {tier.topic} failed: {e}. "
                    f"Retrying in {self.retry_backoff_seconds}s"
                )
                await asyncio.sleep(self.retry_backoff_seconds)

    async def forward(self, tier: DelayTier, consumer: AIOKafkaConsumer, record):
        """Hold ``record`` until its TTL expires, then hand it back to the main queue."""
        wait = self.seconds_until_due(tier, record.timestamp)
        if wait > 0:
            await asyncio.sleep(wait)

        while True:
            try:
                await self.kafka.producer.send_and_wait(
                    self.topology.main_queue,
                    value=record.value,
                    key=record.key,
                )
                break
            except KafkaError as e:
                # The record must not be skipped; keep trying until the broker recovers
                logger.error(
                    f"Failed to return record {record.topic}[{record.partition}]@{record.offset} "
                    f"to {self.topology.main_queue}: {e}. Retrying in {self.retry_backoff_seconds}s"
                )
                await asyncio.sleep(self.retry_backoff_seconds)

        try:
            await consumer.commit({
                TopicPartition(record.topic, record.partition): record.offset + 1
            })
        except KafkaError as e:
            # Whoever owns the partition next forwards it again; the ledger absorbs the duplicate
            logger.warning(
                f"Forwarded record {record.topic}[{record.partition}]@{record.offset} "
                f"but could not commit it: {e}"
            )
            return

        logger.debug(
            f"Record {record.topic}[{record.partition}]@{record.offset} expired after "
            f"{tier.ttl_ms}ms and returned to {self.topology.main_queue}"
        )

    @property
    def running(self) -> bool:
        return self._running
