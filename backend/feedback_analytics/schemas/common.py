from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from feedback_analytics.services.periods import to_utc

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base schema serialized with camelCase keys; accepts either casing on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageResponse(BaseModel):
    """Simple message response."""

    message: str


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class PaginatedResponse(CamelModel, Generic[T]):
    """Paginated response wrapper."""

    items: list[T]
    pagination: Pagination


class UTCDatetimeMixin(BaseModel):
    """Coerces every datetime field to aware UTC (SQLite hands back naive values)."""

    @field_validator("*", mode="after")
    @classmethod
    def _utc_datetimes(cls, v):
        if isinstance(v, datetime):
            return to_utc(v)
        return v
