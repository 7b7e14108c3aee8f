from datetime import datetime
from typing import Any, Literal

from pydantic import ConfigDict, Field, field_validator

from feedback_analytics.schemas.common import CamelModel, UTCDatetimeMixin
from feedback_analytics.services.periods import to_utc

SourceService = Literal["feedback", "user", "notification", "system"]


class EventIn(CamelModel):
    """Schema for a single inbound analytics event."""

    source_service: SourceService
    event_type: str = Field(..., min_length=1, max_length=128)
    event_data: dict[str, Any]
    user_id: str | None = Field(None, max_length=64)
    company_id: str | None = Field(None, max_length=64)
    resource_id: str | None = Field(None, max_length=64)
    resource_type: str | None = Field(None, max_length=64)
    metadata: dict[str, Any] | None = None
    timestamp: datetime | None = None

    @field_validator("user_id", "company_id", "resource_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        # Upstream services send numeric ids as well as strings
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, v: datetime | None) -> datetime | None:
        # Naive timestamps are UTC
        return to_utc(v) if v is not None else None


class EventBatchRequest(CamelModel):
    """Events are validated one by one so a bad entry cannot sink the batch."""

    events: list[Any] = Field(..., min_length=1, max_length=1000)


class RejectedEvent(CamelModel):
    index: int
    errors: list[dict[str, Any]]


class EventCreatedResponse(UTCDatetimeMixin, CamelModel):
    event_id: int
    timestamp: datetime


class EventBatchResponse(CamelModel):
    inserted_count: int
    event_ids: list[int]
    rejected: list[RejectedEvent] = Field(default_factory=list)


class EventResponse(UTCDatetimeMixin, CamelModel):
    """Schema for event response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    source_service: str
    event_type: str
    event_data: dict[str, Any]
    user_id: str | None
    company_id: str | None
    resource_id: str | None
    resource_type: str | None
    metadata: dict[str, Any] | None = Field(None, validation_alias="event_metadata")
    timestamp: datetime
    processed: bool
    processed_at: datetime | None
    created_at: datetime


class MarkProcessedRequest(CamelModel):
    event_ids: list[int] = Field(..., min_length=1)


class MarkProcessedResponse(CamelModel):
    matched_count: int
    modified_count: int
