import logging
from contextlib import asynccontextmanager

from aiokafka.errors import KafkaError
from fastapi import FastAPI, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from notifier.core.config import settings
from notifier.core.database import db_manager, initialize_db
from notifier.core.events import DeliveryTopology, EventPublisher
from notifier.core.exceptions import (
    APIException,
    DatabaseException,
    PublishException,
    api_exception_handler,
    database_exception_handler,
    general_exception_handler,
    http_exception_handler,
    publish_exception_handler,
)
from notifier.core.kafka import KafkaClient, connect_with_retry
from notifier.core.logging_config import setup_logging
from notifier.routes.events import router as event_router
from notifier.routes.health import router as health_router
from notifier.routes.notifications import router as notification_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)

    initialize_db(
        settings.SQLALCHEMY_DATABASE_URI,
        settings.ENVIRONMENT == "local",
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )
    kafka = KafkaClient()
    try:
        await connect_with_retry(kafka.connect, resource="Kafka", retry_on=(KafkaError, OSError))
        # Topics are declared by the worker; the API only publishes to the main queue
        app.state.publisher = EventPublisher(kafka, DeliveryTopology.from_settings(settings))
        logger.info("Notifier API started")
        yield
    finally:
        app.state.publisher = None
        await kafka.close()
        await db_manager.close()
        logger.info("Notifier API stopped")


app = FastAPI(
    title="Notifier API",
    description="Event ingestion and a read-only view of the notification delivery ledger.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(event_router, prefix="/v1")
app.include_router(notification_router, prefix="/v1")


@app.get("/")
async def read_root():
    return {
        "service": "Notifier API",
        "status": "Running",
        "version": "1.0.0",
    }


# Register exception handlers
app.add_exception_handler(APIException, api_exception_handler)
app.add_exception_handler(DatabaseException, database_exception_handler)
app.add_exception_handler(SQLAlchemyError, database_exception_handler)
app.add_exception_handler(PublishException, publish_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)
