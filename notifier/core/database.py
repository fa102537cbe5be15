from sqlalchemy.orm import declarative_base
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import time
from typing import Optional

from notifier.core.utils.logging import structured_logger
from notifier.core.exceptions import DatabaseException

Base = declarative_base()
CHAR_LENGTH = 255


class DatabaseManager:
    """Database manager owning the async engine and the shared session pool."""

    def __init__(self):
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self._connection_failures = 0
        self._last_health_check = 0

    def initialize(
        self,
        database_uri: str,
        env_is_local: bool,
        pool_size: int = 10,
        max_overflow: int = 0,
    ):
        """Initializes the database engine and session factory."""
        if self.engine and self.session_factory:  # Prevent re-initialization
            return

        engine = create_async_engine(
            database_uri,
            echo=False,
            pool_pre_ping=True,
            pool_recycle=3600,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=30
        )

        session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
        self.set_engine_and_session_factory(engine, session_factory)
        structured_logger.info(
            message="Database engine initialized",
            metadata={"pool_size": pool_size, "max_overflow": max_overflow, "local": env_is_local}
        )

    def set_engine_and_session_factory(self, engine, session_factory):
        self.engine = engine
        self.session_factory = session_factory

    async def create_tables(self):
        """Create the ledger schema if it does not exist yet."""
        if not self.engine:
            raise DatabaseException(message="Database not initialized.")
        # Register models on the metadata before create_all
        from notifier.models import NotificationRecord  # noqa: F401

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            raise DatabaseException(
                message=f"Could not create ledger schema: {e}",
                metadata={"error_type": type(e).__name__},
            ) from e

    async def ping(self):
        """Round-trip a trivial query. Raises DatabaseException when storage is unreachable."""
        if not self.session_factory:
            raise DatabaseException(message="Database session factory not initialized.")
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            self._connection_failures += 1
            raise DatabaseException(
                message=f"Database unreachable: {e}",
                metadata={"error_type": type(e).__name__},
            ) from e

    async def health_check(self) -> dict:
        """Perform database health check."""
        if not self.engine or not self.session_factory:
            return {"status": "uninitialized", "message": "Database not initialized."}

        start_time = time.time()

        try:
            await self.ping()
            response_time = (time.time() - start_time) * 1000

            self._connection_failures = 0
            self._last_health_check = time.time()

            return {
                "status": "healthy",
                "response_time_ms": response_time,
                "connection_failures": self._connection_failures,
                "last_check": self._last_health_check,
            }

        except DatabaseException as e:
            response_time = (time.time() - start_time) * 1000

            structured_logger.error(
                message="Database health check failed",
                metadata={
                    "response_time_ms": response_time,
                    "connection_failures": self._connection_failures,
                },
                exception=e,
            )

            return {
                "status": "unhealthy",
                "response_time_ms": response_time,
                "connection_failures": self._connection_failures,
                "error": e.message,
                "last_check": time.time(),
            }

    async def close(self):
        """Dispose of the engine and release every pooled connection."""
        if self.engine:
            await self.engine.dispose()
        self.engine = None
        self.session_factory = None


# Process-wide database manager; initialized explicitly by each entry point
db_manager = DatabaseManager()


def initialize_db(database_uri: str, env_is_local: bool, pool_size: int = 10, max_overflow: int = 0):
    """Initializes the database manager with engine and session factory."""
    db_manager.initialize(database_uri, env_is_local, pool_size=pool_size, max_overflow=max_overflow)


async def get_db_health() -> dict:
    """Get database health status."""
    return await db_manager.health_check()
