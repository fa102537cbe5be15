# Health check endpoints for the status API

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, status

from notifier.core.database import get_db_health
from notifier.core.utils.response import Response

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/live")
async def liveness_check():
    """
    Basic liveness check - returns 200 if the process is running
    """
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "notifier-api"
    }


@router.get("")
async def health_check():
    """Liveness plus ledger storage health. 503 when the database is unreachable."""
    database = await get_db_health()
    healthy = database.get("status") == "healthy"
    data = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {"database": database},
    }
    if not healthy:
        logger.warning(f"Health check degraded: database {database.get('status')}")
        return Response.error("Service unhealthy", status_code=status.HTTP_503_SERVICE_UNAVAILABLE, data=data)

    return Response.success(data=data, message="Service healthy")
