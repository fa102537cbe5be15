"""
Broker connection shared by the producer, the consumer and the delay tiers.

Message bodies travel as raw bytes; events serialize themselves, and the
delay tiers forward what they receive untouched.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from aiokafka.admin import AIOKafkaAdminClient

from notifier.core.config import settings
from notifier.core.exceptions import BrokerConnectionException, NotifierException

logger = logging.getLogger(__name__)


class KafkaClient:
    """Owns the producer and the admin client for one process"""

    def __init__(
        self,
        bootstrap_servers: str = settings.KAFKA_BOOTSTRAP_SERVERS,
        client_id: str = settings.KAFKA_CLIENT_ID,
    ):
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self.producer: Optional[AIOKafkaProducer] = None
        self.admin: Optional[AIOKafkaAdminClient] = None

    @property
    def is_connected(self) -> bool:
        return self.producer is not None and self.admin is not None

    async def connect(self):
        """Start the producer and the admin client. No-op when already connected."""
        if self.is_connected:
            return

        producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            acks='all',
            retry_backoff_ms=settings.KAFKA_RETRY_BACKOFF_MS,
            request_timeout_ms=settings.KAFKA_REQUEST_TIMEOUT_MS,
            linger_ms=settings.KAFKA_LINGER_MS,
        )
        admin = AIOKafkaAdminClient(
            bootstrap_servers=self.bootstrap_servers,
            client_id=f"{self.client_id}-admin",
            request_timeout_ms=settings.KAFKA_REQUEST_TIMEOUT_MS,
        )

        try:
            await producer.start()
            await admin.start()
        except BaseException:
            await producer.stop()
            await admin.close()
            raise

        self.producer = producer
        self.admin = admin
        logger.info(f"Connected to Kafka at {self.bootstrap_servers}")

    def create_consumer(self, *topics: str, group_id: str, **overrides) -> AIOKafkaConsumer:
        """Build (but do not start) a manually-committed consumer on this cluster."""
        config = dict(
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            group_id=group_id,
            auto_offset_reset=settings.KAFKA_AUTO_OFFSET_RESET,
            enable_auto_commit=False,  # Offsets are committed per message after handling
            session_timeout_ms=settings.KAFKA_SESSION_TIMEOUT_MS,
            heartbeat_interval_ms=settings.KAFKA_HEARTBEAT_INTERVAL_MS,
            request_timeout_ms=settings.KAFKA_REQUEST_TIMEOUT_MS,
            retry_backoff_ms=settings.KAFKA_RETRY_BACKOFF_MS,
        )
        config.update(overrides)
        return AIOKafkaConsumer(*topics, **config)

    async def close(self):
        if self.producer:
            await self.producer.stop()
        if self.admin:
            await self.admin.close()
        self.producer = None
        self.admin = None
        logger.info("Kafka connection closed")

    async def __aenter__(self) -> "KafkaClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


async def connect_with_retry(
    connect: Callable[[], Awaitable[None]],
    *,
    resource: str,
    max_attempts: int = settings.STARTUP_MAX_ATTEMPTS,
    delay_seconds: float = settings.STARTUP_RETRY_DELAY_SECONDS,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    error_class: Type[NotifierException] = BrokerConnectionException,
):
    """Run ``connect`` until it succeeds, pausing between attempts.

    Raises ``error_class`` once ``max_attempts`` attempts have failed.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            await connect()
            logger.info(f"Connected to {resource} (attempt {attempt}/{max_attempts})")
            return
        except retry_on as e:
            if attempt == max_attempts:
                logger.error(f"Giving up on {resource} after {max_attempts} attempts: {e}")
                raise error_class(
                    message=f"Could not connect to {resource} after {max_attempts} attempts: {e}",
                    metadata={"resource": resource, "attempts": max_attempts},
                ) from e
            logger.warning(
                f"Failed to connect to {resource} (attempt {attempt}/{max_attempts}): {e}. "
                f"Retrying in {delay_seconds}s..."
            )
            await asyncio.sleep(delay_seconds)
