import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from feedback_analytics.core.exceptions import EventValidationError, NotFoundError
from feedback_analytics.models.event import AnalyticsEvent
from feedback_analytics.schemas.event import EventIn, RejectedEvent

logger = logging.getLogger(__name__)

# Envelope field carrying the resource id, per source service
RESOURCE_ID_FIELDS = {
    "feedback": "feedbackId",
    "notification": "notificationId",
    "user": "userId",
}

# Envelope fields copied into event metadata, per source service
METADATA_FIELDS = {
    "feedback": ("category", "priority", "status"),
    "user": ("role", "action"),
    "notification": ("channel", "status"),
}


def event_from_envelope(source: str, envelope: dict[str, Any]) -> EventIn:
    """Map an upstream service's queue envelope to an inbound event.

    Envelopes look like ``{"type": "feedback.created", "feedbackId": ...,
    "companyId": ..., "userId": ..., "timestamp": ...}``; the whole envelope
    becomes the event payload.

    Raises:
        EventValidationError: If the envelope cannot be mapped.
    """
    if source not in RESOURCE_ID_FIELDS:
        raise EventValidationError(f"Unknown event source {source!r}")
    if not isinstance(envelope, dict) or not envelope.get("type"):
        raise EventValidationError("Event envelope requires a 'type'")

    metadata = {
        field: envelope[field] for field in METADATA_FIELDS[source] if field in envelope
    }
    try:
        return EventIn(
            source_service=source,
            event_type=envelope["type"],
            event_data=envelope,
            user_id=envelope.get("userId"),
            company_id=envelope.get("companyId"),
            resource_id=envelope.get(RESOURCE_ID_FIELDS[source]),
            resource_type=source,
            metadata=metadata or None,
            timestamp=envelope.get("timestamp"),
        )
    except ValidationError as e:
        raise EventValidationError("Invalid event envelope", errors=_error_list(e)) from None


def _error_list(error: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
        for err in error.errors()
    ]


class EventService:
    """Service for event ingestion and querying."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def to_model(event_in: EventIn, received_at: datetime | None = None) -> AnalyticsEvent:
        return AnalyticsEvent(
            source_service=event_in.source_service,
            event_type=event_in.event_type,
            event_data=event_in.event_data,
            user_id=event_in.user_id,
            company_id=event_in.company_id,
            resource_id=event_in.resource_id,
            resource_type=event_in.resource_type,
            event_metadata=event_in.metadata,
            timestamp=event_in.timestamp or received_at or datetime.now(timezone.utc),
            processed=False,
        )

    async def create(self, event_in: EventIn) -> AnalyticsEvent:
        """Persist a single event; timestamp defaults to arrival time."""
        event = self.to_model(event_in, datetime.now(timezone.utc))
        self.db.add(event)
        await self.db.flush()
        await self.db.refresh(event)
        logger.info(
            "Created analytics event %s (id=%s, source=%s, company=%s)",
            event.event_type,
            event.id,
            event.source_service,
            event.company_id,
        )
        return event

    async def create_batch(
        self, raw_events: list[Any]
    ) -> tuple[list[AnalyticsEvent], list[RejectedEvent]]:
        """Validate each raw event independently and persist the valid subset.

        Returns (inserted events, rejected entries with their validation errors).
        """
        received_at = datetime.now(timezone.utc)
        valid: list[AnalyticsEvent] = []
        rejected: list[RejectedEvent] = []

        for index, raw in enumerate(raw_events):
            try:
                event_in = EventIn.model_validate(raw)
            except ValidationError as e:
                rejected.append(RejectedEvent(index=index, errors=_error_list(e)))
                continue
            valid.append(self.to_model(event_in, received_at))

        if valid:
            self.db.add_all(valid)
            await self.db.flush()

        if rejected:
            logger.warning(
                "Rejected %d of %d events in batch", len(rejected), len(raw_events)
            )
        logger.info(
            "Created %d analytics events in batch (sources=%s)",
            len(valid),
            sorted({e.source_service for e in valid}),
        )
        return valid, rejected

    async def get(self, event_id: int) -> AnalyticsEvent:
        result = await self.db.execute(
            select(AnalyticsEvent).where(AnalyticsEvent.id == event_id)
        )
        event = result.scalar_one_or_none()
        if not event:
            raise NotFoundError("Analytics event not found")
        return event

    async def list_events(
        self,
        *,
        source_service: str | None = None,
        event_type: str | None = None,
        user_id: str | None = None,
        company_id: str | None = None,
        resource_id: str | None = None,
        resource_type: str | None = None,
        processed: bool | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AnalyticsEvent], int]:
        """Filter events, newest first, with pagination."""
        filters = []
        if source_service:
            filters.append(AnalyticsEvent.source_service == source_service)
        if event_type:
            filters.append(AnalyticsEvent.event_type == event_type)
        if user_id:
            filters.append(AnalyticsEvent.user_id == user_id)
        if company_id:
            filters.append(AnalyticsEvent.company_id == company_id)
        if resource_id:
            filters.append(AnalyticsEvent.resource_id == resource_id)
        if resource_type:
            filters.append(AnalyticsEvent.resource_type == resource_type)
        if processed is not None:
            filters.append(AnalyticsEvent.processed.is_(processed))
        if start:
            filters.append(AnalyticsEvent.timestamp >= start)
        if end:
            filters.append(AnalyticsEvent.timestamp <= end)

        count_result = await self.db.execute(
            select(func.count()).select_from(AnalyticsEvent).where(*filters)
        )
        total = count_result.scalar_one()

        result = await self.db.execute(
            select(AnalyticsEvent)
            .where(*filters)
            .order_by(AnalyticsEvent.timestamp.desc(), AnalyticsEvent.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    async def mark_processed(self, event_ids: list[int]) -> tuple[int, int]:
        """Flip ``processed`` on the given events.

        Returns (matched_count, modified_count).
        """
        matched_result = await self.db.execute(
            select(func.count())
            .select_from(AnalyticsEvent)
            .where(AnalyticsEvent.id.in_(event_ids))
        )
        matched = matched_result.scalar_one()

        result = await self.db.execute(
            update(AnalyticsEvent)
            .where(AnalyticsEvent.id.in_(event_ids), AnalyticsEvent.processed.is_(False))
            .values(processed=True, processed_at=datetime.now(timezone.utc))
        )
        modified = result.rowcount or 0
        logger.info("Marked %d of %d events as processed", modified, matched)
        return matched, modified
