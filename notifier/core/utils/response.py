"""
``{success, data, message}`` envelope for status API responses
"""
from datetime import date, datetime
from enum import Enum
from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel


def to_jsonable(data: Any) -> Any:
    """Ledger schemas, enums and timestamps into plain JSON values"""
    if isinstance(data, BaseModel):
        return data.model_dump(mode='json')
    if isinstance(data, Enum):
        return data.value
    if isinstance(data, (datetime, date)):
        return data.isoformat()
    if isinstance(data, (list, tuple)):
        return [to_jsonable(item) for item in data]
    if isinstance(data, dict):
        return {key: to_jsonable(value) for key, value in data.items()}
    return data


class Response(JSONResponse):
    """Directly returnable from FastAPI routes"""

    def __init__(
        self,
        success: bool = True,
        data: Any = None,
        message: str = "Success",
        status_code: int = status.HTTP_200_OK,
    ):
        super().__init__(
            content={"success": success, "data": to_jsonable(data), "message": message},
            status_code=status_code,
        )

    @staticmethod
    def success(data: Any = None, message: str = "Success", status_code: int = status.HTTP_200_OK) -> "Response":
        return Response(success=True, data=data, message=message, status_code=status_code)

    @staticmethod
    def error(
        message: str,
        status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE,
        data: Any = None,
    ) -> "Response":
        return Response(success=False, data=data, message=message, status_code=status_code)
