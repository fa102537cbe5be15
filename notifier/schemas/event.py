import json
from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from notifier.core.exceptions import MalformedMessageException
from notifier.models.notification import MAX_EVENT_ID_LENGTH


class EventPayload(BaseModel):
    """Recipient data carried by an event. Unknown fields are preserved."""
    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    email: str = Field(..., min_length=3)
    username: str = Field(..., min_length=1)
    user_id: Optional[str] = Field(default=None, alias="userId")


class EventCreate(BaseModel):
    """Validated ingestion contract handed over by the request layer."""
    model_config = ConfigDict(populate_by_name=True)

    # Externally supplied identity; assigned by the producer when absent
    id: Optional[str] = Field(default=None, min_length=1, max_length=MAX_EVENT_ID_LENGTH)
    event_type: str = Field(..., alias="eventType", min_length=1)
    timestamp: str
    payload: EventPayload

    @field_validator("timestamp")
    @classmethod
    def _iso_timestamp(cls, value: str) -> str:
        try:
            datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError(f"timestamp must be ISO-8601, got {value!r}")
        return value


class Event(BaseModel):
    """Immutable unit of work travelling through the topology.

    Only ``retry_count`` ever changes, and only by the consumer producing a new
    copy through :meth:`with_retry_count`.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., min_length=1, max_length=MAX_EVENT_ID_LENGTH, validation_alias=AliasChoices("id", "eventId"))
    event_type: str = Field(..., alias="eventType", min_length=1)
    timestamp: str
    payload: EventPayload
    retry_count: int = Field(default=0, alias="retryCount", ge=0)

    def with_retry_count(self, retry_count: int) -> "Event":
        return self.model_copy(update={"retry_count": retry_count})

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_message(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")

    @classmethod
    def from_message(cls, raw: bytes) -> "Event":
        """Parse a broker message body. Any structural defect is a MalformedMessageException."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise MalformedMessageException(f"Message body is not valid JSON: {e}", raw=raw) from e

        if not isinstance(data, dict):
            raise MalformedMessageException("Message body is not a JSON object", raw=raw)

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedMessageException(f"Message body is not a valid event: {e.error_count()} error(s)", raw=raw) from e
