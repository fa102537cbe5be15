import logging

from fastapi import APIRouter, Depends

from notifier.core.database import db_manager
from notifier.core.exceptions import NotFoundException, ServiceUnavailableException
from notifier.core.utils.response import Response
from notifier.schemas.notification import NotificationStatusResponse
from notifier.services.ledger import IdempotencyLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_ledger() -> IdempotencyLedger:
    if not db_manager.session_factory:
        raise ServiceUnavailableException(message="Ledger storage is not initialized", service="database")
    return IdempotencyLedger(db_manager.session_factory)


@router.get("/{event_id}")
async def get_notification_status(event_id: str, ledger: IdempotencyLedger = Depends(get_ledger)):
    """Current ledger record for an event"""
    record = await ledger.get_record(event_id)
    if record is None:
        raise NotFoundException(message=f"No notification recorded for event {event_id}", resource="notification")

    logger.info(f"API Call Success: get_notification_status for event {event_id}")
    return Response.success(data=NotificationStatusResponse.model_validate(record))
