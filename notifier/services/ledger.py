"""
Idempotency ledger: one persistent record per event identity.

The unique constraint on ``event_id`` is the only guard against duplicate
records when redeliveries race; no in-process locking is used. Every storage
failure is raised as LedgerException so the consumer leaves the message
unacknowledged.
"""
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notifier.core.exceptions import LedgerException
from notifier.models.notification import (
    NotificationRecord,
    NotificationStatus,
    notification_id_for,
)
from notifier.schemas.event import Event

logger = logging.getLogger(__name__)


class IdempotencyLedger:
    """Ledger service over the ``notifications`` table"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str, event_id: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Ledger {operation} failed for event {event_id}: {e}")
            raise LedgerException(
                message=f"Ledger {operation} failed for event {event_id}: {e}",
                metadata={"event_id": event_id, "operation": operation, "error_type": type(e).__name__},
            ) from e

    async def is_handled(self, event_id: str) -> bool:
        """True iff the event already reached SENT or FAILED_DLQ."""
        async with self._session("lookup", event_id) as session:
            result = await session.execute(
                select(NotificationRecord.status).where(NotificationRecord.event_id == event_id)
            )
            status = result.scalar_one_or_none()

        return status is not None and NotificationStatus(status).is_terminal

    async def create_if_absent(self, event: Event) -> bool:
        """Insert a QUEUED record. Returns False when the event already has one."""
        async with self._session("create", event.id) as session:
            session.add(NotificationRecord(
                id=notification_id_for(event.id),
                event_id=event.id,
                event_type=event.event_type,
                payload=json.dumps(event.payload.model_dump(by_alias=True, exclude_none=True)),
                status=NotificationStatus.QUEUED,
                attempt_count=0,
            ))
            try:
                await session.commit()
            except IntegrityError:
                # Unique constraint violation: we are reprocessing this event
                await session.rollback()
                logger.info(f"Notification record for event {event.id} already exists.")
                return False

        logger.debug(f"Created ledger record for event {event.id}")
        return True

    async def update_status(self, event_id: str, status: NotificationStatus) -> None:
        """Set status, stamp the attempt time and count the attempt. Safe to repeat."""
        async with self._session("update", event_id) as session:
            result = await session.execute(
                update(NotificationRecord)
                .where(NotificationRecord.event_id == event_id)
                .values(
                    status=status,
                    last_attempt_timestamp=datetime.now(timezone.utc),
                    attempt_count=NotificationRecord.attempt_count + 1,
                )
            )
            await session.commit()

        if result.rowcount == 0:
            logger.warning(f"No ledger record to update for event {event_id} (status {status.value})")
        else:
            logger.debug(f"Ledger status for event {event_id} set to {status.value}")

    async def get_record(self, event_id: str) -> Optional[NotificationRecord]:
        async with self._session("lookup", event_id) as session:
            result = await session.execute(
                select(NotificationRecord).where(NotificationRecord.event_id == event_id)
            )
            return result.scalar_one_or_none()
