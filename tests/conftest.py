import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from notifier.core.database import Base
from notifier.core.events.publisher import EventPublisher
from notifier.core.events.topology import DeliveryTopology
from notifier.models import NotificationRecord  # noqa: F401
from notifier.services.ledger import IdempotencyLedger
from notifier.services.processor import NotificationEventProcessor
from tests.support import (
    DEAD_LETTER_QUEUE,
    MAIN_QUEUE,
    InMemoryBroker,
    RecordingNotificationService,
    make_event,
)


# Test database setup
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        TEST_DB_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def ledger(session_factory) -> IdempotencyLedger:
    return IdempotencyLedger(session_factory)


@pytest.fixture
def topology() -> DeliveryTopology:
    return DeliveryTopology(
        main_queue=MAIN_QUEUE,
        dead_letter_queue=DEAD_LETTER_QUEUE,
        retry_exchange="retry_exchange",
        tier_delays_ms=[1000, 5000, 30000],
    )


@pytest.fixture
def broker() -> InMemoryBroker:
    return InMemoryBroker()


@pytest.fixture
def publisher(broker, topology) -> EventPublisher:
    return EventPublisher(broker, topology)


@pytest.fixture
def notification_service() -> RecordingNotificationService:
    return RecordingNotificationService()


@pytest.fixture
def processor(ledger, publisher, notification_service, topology) -> NotificationEventProcessor:
    return NotificationEventProcessor(
        ledger=ledger,
        publisher=publisher,
        notification_service=notification_service,
        topology=topology,
        max_retries=3,
    )


@pytest.fixture
def event_factory():
    return make_event
