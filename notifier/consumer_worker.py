"""
Notification worker process: ledger, topology, delay tiers and the consumer.

Run with ``notifier-worker`` or ``python -m notifier.consumer_worker``.
"""
import asyncio
import logging
import signal
import sys
from typing import List

from aiokafka.errors import KafkaError

from notifier.core.config import settings
from notifier.core.database import db_manager, initialize_db
from notifier.core.events import (
    DelayedRedeliveryScheduler,
    DeliveryTopology,
    EventPublisher,
    NotificationConsumer,
)
from notifier.core.exceptions import DatabaseException, NotifierException
from notifier.core.kafka import KafkaClient, connect_with_retry
from notifier.core.logging_config import setup_logging
from notifier.services.ledger import IdempotencyLedger
from notifier.services.notification import NotificationService
from notifier.services.processor import NotificationEventProcessor

logger = logging.getLogger(__name__)


async def _connect_database():
    await db_manager.ping()
    await db_manager.create_tables()


async def _shutdown(steps):
    """Run every shutdown step even when an earlier one fails."""
    for name, close in steps:
        try:
            await close()
        except Exception as e:
            logger.error(f"Error while stopping {name}: {e}", exc_info=True)


async def run_worker(stop_event: asyncio.Event = None):
    """Run until ``stop_event`` is set (SIGINT/SIGTERM set it when not supplied).

    Raises NotifierException when the consumer or a delay tier dies, so the
    process exits instead of staying up with nothing consuming.
    """
    if stop_event is None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

    failures: List[BaseException] = []

    def on_failure(exc: BaseException):
        failures.append(exc)
        stop_event.set()

    topology = DeliveryTopology.from_settings(settings)

    initialize_db(
        settings.SQLALCHEMY_DATABASE_URI,
        settings.ENVIRONMENT == "local",
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )
    kafka = KafkaClient()
    scheduler = None
    consumer = None

    try:
        await connect_with_retry(
            _connect_database,
            resource="database",
            retry_on=(DatabaseException, OSError),
            error_class=DatabaseException,
        )
        await connect_with_retry(kafka.connect, resource="Kafka", retry_on=(KafkaError, OSError))
        await topology.setup(kafka.admin)

        processor = NotificationEventProcessor(
            ledger=IdempotencyLedger(db_manager.session_factory),
            publisher=EventPublisher(kafka, topology),
            notification_service=NotificationService(),
            topology=topology,
        )

        scheduler = DelayedRedeliveryScheduler(kafka, topology, on_failure=on_failure)
        await scheduler.start()
        consumer = NotificationConsumer(kafka, topology, processor, on_failure=on_failure)
        await consumer.start()

        logger.info("Notification worker started. Waiting for events...")
        await stop_event.wait()
        if failures:
            raise NotifierException(
                f"Notification worker stopped after a background task failed: {failures[0]!r}",
                metadata={"error_type": type(failures[0]).__name__},
            ) from failures[0]
        logger.info("Shutdown requested")
    finally:
        steps = []
        if consumer is not None:
            steps.append(("consumer", consumer.stop))
        if scheduler is not None:
            steps.append(("delay tiers", scheduler.stop))
        steps.append(("Kafka", kafka.close))
        steps.append(("database", db_manager.close))
        await _shutdown(steps)
        logger.info("Notification worker stopped")


def main():
    setup_logging(settings.LOG_LEVEL)
    try:
        asyncio.run(run_worker())
    except NotifierException as e:
        logger.critical(f"Notification worker failed: {e.message}")
        sys.exit(1)
    except Exception as e:
        logger.critical(f"Notification worker crashed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
