from datetime import datetime, timezone
from typing import Optional
import logging
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api_exceptions import APIException
from .pipeline import DatabaseException, PublishException

logger = logging.getLogger(__name__)


def _error_response(
    status_code: int,
    message: str,
    error_code: str,
    correlation_id: Optional[str] = None,
    timestamp: Optional[str] = None,
    detail: Optional[str] = None,
) -> JSONResponse:
    content = {
        "success": False,
        "message": message,
        "error_code": error_code,
        "correlation_id": correlation_id or str(uuid.uuid4()),
        "timestamp": timestamp or datetime.now(timezone.utc).isoformat(),
    }
    if detail and detail != message:
        content["detail"] = detail
    return JSONResponse(status_code=status_code, content=content)


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    return _error_response(
        exc.status_code,
        exc.message,
        exc.error_code,
        correlation_id=exc.correlation_id,
        timestamp=exc.timestamp,
        detail=exc.detail,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes and method mismatches"""
    return _error_response(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")


async def database_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Ledger storage errors. Wrapped ledger failures are transient (503);
    a raw SQLAlchemy error escaping the ledger is a bug (500).
    """
    correlation_id = str(uuid.uuid4())
    logger.error(f"Database error [{correlation_id}] on {request.url.path}: {exc}", exc_info=exc)

    return _error_response(
        503 if isinstance(exc, DatabaseException) else 500,
        "A database error occurred",
        "DATABASE_ERROR",
        correlation_id=correlation_id,
    )


async def publish_exception_handler(request: Request, exc: PublishException) -> JSONResponse:
    """The broker did not accept an ingested event; the caller may retry"""
    correlation_id = str(uuid.uuid4())
    logger.error(f"Publish error [{correlation_id}] on {request.url.path}: {exc}")

    return _error_response(503, "Event could not be queued", "BROKER_UNAVAILABLE", correlation_id=correlation_id)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    correlation_id = str(uuid.uuid4())
    logger.error(f"Unexpected error [{correlation_id}] on {request.url.path}: {exc}", exc_info=exc)

    return _error_response(500, "An unexpected error occurred", "INTERNAL_ERROR", correlation_id=correlation_id)
