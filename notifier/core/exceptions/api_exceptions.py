from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException


class APIException(HTTPException):
    """HTTP API error rendered into the standard error envelope"""

    def __init__(
        self,
        status_code: int,
        message: str,
        error_code: Optional[str] = None,
        detail: Optional[str] = None,
    ):
        self.message = message
        self.detail = detail or message
        self.error_code = error_code or f"ERR_{status_code}"
        self.correlation_id = str(uuid4())
        self.timestamp = datetime.now(timezone.utc).isoformat()

        super().__init__(status_code=status_code, detail=self.detail)


class NotFoundException(APIException):
    """No ledger record exists for the requested resource"""

    def __init__(self, message: str = "Resource not found", resource: Optional[str] = None):
        self.resource = resource
        super().__init__(404, message, error_code="NOT_FOUND")


class ServiceUnavailableException(APIException):
    """A backing service (ledger storage) is not ready to answer"""

    def __init__(self, message: str = "Service temporarily unavailable", service: Optional[str] = None):
        self.service = service
        super().__init__(503, message, error_code="SERVICE_UNAVAILABLE")
