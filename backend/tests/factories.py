"""Event and datetime builders shared by the test modules."""

from datetime import datetime, timezone
from typing import Any


def make_event(
    source: str,
    event_type: str,
    timestamp: datetime,
    *,
    company_id: str | None = None,
    user_id: str | None = None,
    resource_id: str | None = None,
    **data: Any,
):
    """Build an unsaved AnalyticsEvent row."""
    from feedback_analytics.models.event import AnalyticsEvent

    return AnalyticsEvent(
        source_service=source,
        event_type=event_type,
        event_data={"type": event_type, **data},
        user_id=user_id,
        company_id=company_id,
        resource_id=resource_id,
        resource_type=source if resource_id else None,
        timestamp=timestamp,
        processed=False,
    )


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
