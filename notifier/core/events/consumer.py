"""
Main-queue consumer.

Records are fetched at most ``prefetch`` at a time and handed to the event
processor one by one, in order, per partition. Offsets are committed only
when the processor acknowledges a record; a requeued record is fetched again
from the same offset after a short pause.
"""
import asyncio
import logging
from typing import Callable, List, Optional

from aiokafka import AIOKafkaConsumer, TopicPartition
from aiokafka.errors import IllegalStateError, KafkaError

from notifier.core.config import settings
from notifier.core.kafka import KafkaClient
from .topology import DeliveryTopology

logger = logging.getLogger(__name__)


class KafkaDelivery:
    """A fetched record awaiting exactly one of ack() or requeue()."""

    def __init__(self, consumer: AIOKafkaConsumer, record):
        self.consumer = consumer
        self.record = record
        self.acked = False
        self.requeued = False

    @property
    def body(self) -> bytes:
        return self.record.value

    @property
    def partition(self) -> TopicPartition:
        return TopicPartition(self.record.topic, self.record.partition)

    @property
    def settled(self) -> bool:
        return self.acked or self.requeued

    async def ack(self):
        try:
            await self.consumer.commit({self.partition: self.record.offset + 1})
        except KafkaError as e:
            # Uncommitted records are redelivered; the ledger turns that into a skip
            logger.warning(f"Could not commit offset {self.record.offset} on {self.partition}: {e}")
        self.acked = True

    async def requeue(self):
        try:
            self.consumer.seek(self.partition, self.record.offset)
        except IllegalStateError as e:
            # Partition was revoked; its new owner resumes from the last committed offset
            logger.warning(f"Could not rewind {self.partition} to {self.record.offset}: {e}")
        self.requeued = True


class NotificationConsumer:
    """Drives the event processor from the main queue"""

    def __init__(
        self,
        kafka: KafkaClient,
        topology: DeliveryTopology,
        processor,
        group_id: str = settings.KAFKA_CONSUMER_GROUP,
        prefetch: int = settings.CONSUMER_PREFETCH,
        requeue_backoff_seconds: float = settings.REQUEUE_BACKOFF_SECONDS,
        poll_timeout_ms: int = 1000,
        on_failure: Optional[Callable[[BaseException], None]] = None,
    ):
        self.kafka = kafka
        self.topology = topology
        self.processor = processor
        self.group_id = group_id
        self.prefetch = max(1, prefetch)
        self.requeue_backoff_seconds = requeue_backoff_seconds
        self.poll_timeout_ms = poll_timeout_ms
        self.on_failure = on_failure
        self.failure: Optional[BaseException] = None
        self.consumer: Optional[AIOKafkaConsumer] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    async def start(self):
        if self._task is not None:
            return
        self.consumer = self.kafka.create_consumer(
            self.topology.main_queue,
            group_id=self.group_id,
            max_poll_records=self.prefetch,
        )
        await self.consumer.start()
        self._stopping.clear()
        self._task = asyncio.create_task(self.run())
        self._task.add_done_callback(self._on_run_done)
        logger.info(
            f"Consuming {self.topology.main_queue} as {self.group_id} (prefetch={self.prefetch})"
        )

    def _on_run_done(self, task: asyncio.Task):
        if task.cancelled() or task.exception() is None:
            return
        self.failure = task.exception()
        logger.critical(f"Notification consumer loop died: {self.failure!r}", exc_info=self.failure)
        if self.on_failure is not None:
            self.on_failure(self.failure)

    async def stop(self):
        """Stop fetching, let in-flight records finish, then leave the group."""
        self._stopping.set()
        try:
            if self._task is not None:
                await self._task
        except Exception as e:
            # Already reported by _on_run_done
            logger.debug(f"Consumer loop ended with {e!r}")
        finally:
            self._task = None
            if self.consumer is not None:
                await self.consumer.stop()
                self.consumer = None
        logger.info("Notification consumer stopped")

    async def run(self):
        while not self._stopping.is_set():
            try:
                batches = await self.consumer.getmany(
                    timeout_ms=self.poll_timeout_ms, max_records=self.prefetch
                )
            except KafkaError as e:
                logger.error(
                    f"Fetch from {self.topology.main_queue} failed: {e}. "
                    f"Retrying in {self.requeue_backoff_seconds}s"
                )
                await asyncio.sleep(self.requeue_backoff_seconds)
                continue
            if not batches:
                continue

            requeued = await asyncio.gather(*(
                self._drain_partition(records) for records in batches.values()
            ))
            if any(requeued):
                await asyncio.sleep(self.requeue_backoff_seconds)

    async def _drain_partition(self, records: List) -> bool:
        """Handle one partition's records in order. True if one was requeued."""
        for record in records:
            delivery = KafkaDelivery(self.consumer, record)
            await self.processor.handle(delivery)
            if delivery.requeued:
                # Later records were fetched past the seek point and will be fetched again
                return True
            if not delivery.settled:
                logger.error(
                    f"Record {record.topic}[{record.partition}]@{record.offset} was left unsettled; requeueing"
                )
                await delivery.requeue()
                return True
        return False
