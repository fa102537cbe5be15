import logging

from fastapi import APIRouter, Depends, Request, status

from notifier.core.events.publisher import EventPublisher
from notifier.core.exceptions import ServiceUnavailableException
from notifier.core.utils.response import Response
from notifier.schemas.event import EventCreate
from notifier.schemas.notification import EventAcceptedResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


def get_publisher(request: Request) -> EventPublisher:
    publisher = getattr(request.app.state, "publisher", None)
    if publisher is None:
        raise ServiceUnavailableException(message="Broker connection is not established", service="kafka")
    return publisher


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def ingest_event(event_in: EventCreate, publisher: EventPublisher = Depends(get_publisher)):
    """
    Queue an event for notification delivery.

    The event id is assigned here unless the caller supplies one; delivery
    happens asynchronously, so the response only confirms the event is queued.
    """
    event = await publisher.ingest(event_in)

    logger.info(f"API Call Success: ingest_event {event.id} ({event.event_type})")
    return Response.success(
        data=EventAcceptedResponse(event_id=event.id),
        message="Event accepted",
        status_code=status.HTTP_202_ACCEPTED,
    )
