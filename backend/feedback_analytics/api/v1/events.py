import logging
import math
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status

from feedback_analytics.api.deps import get_event_service
from feedback_analytics.core.config import settings
from feedback_analytics.core.exceptions import EventValidationError
from feedback_analytics.core.limiter import limiter
from feedback_analytics.schemas.common import PaginatedResponse, Pagination
from feedback_analytics.schemas.event import (
    EventBatchRequest,
    EventBatchResponse,
    EventCreatedResponse,
    EventIn,
    EventResponse,
    MarkProcessedRequest,
    MarkProcessedResponse,
    SourceService,
)
from feedback_analytics.services.event_service import EventService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=EventCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    data: EventIn,
    service: EventService = Depends(get_event_service),
):
    """Record a single event. ``timestamp`` defaults to arrival time."""
    event = await service.create(data)
    return EventCreatedResponse(event_id=event.id, timestamp=event.timestamp)


@router.post(
    "/batch", response_model=EventBatchResponse, status_code=status.HTTP_201_CREATED
)
async def create_events_batch(
    data: EventBatchRequest,
    service: EventService = Depends(get_event_service),
):
    """Record many events at once.

    Each event is validated on its own: invalid entries are reported in
    ``rejected`` and the valid subset is still stored. Fails with 422 only
    when no event in the batch is valid.
    """
    events, rejected = await service.create_batch(data.events)
    if not events:
        raise EventValidationError(
            "No valid events in batch",
            errors=[entry.model_dump() for entry in rejected],
        )
    return EventBatchResponse(
        inserted_count=len(events),
        event_ids=[event.id for event in events],
        rejected=rejected,
    )


@router.get("", response_model=PaginatedResponse[EventResponse])
@limiter.limit(f"{settings.RATE_LIMIT_PER_MINUTE}/minute")
async def list_events(
    request: Request,
    source_service: SourceService | None = Query(None, alias="sourceService"),
    event_type: str | None = Query(None, alias="eventType"),
    user_id: str | None = Query(None, alias="userId"),
    company_id: str | None = Query(None, alias="companyId"),
    resource_id: str | None = Query(None, alias="resourceId"),
    resource_type: str | None = Query(None, alias="resourceType"),
    processed: bool | None = Query(None),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    service: EventService = Depends(get_event_service),
):
    """List events, newest first."""
    events, total = await service.list_events(
        source_service=source_service,
        event_type=event_type,
        user_id=user_id,
        company_id=company_id,
        resource_id=resource_id,
        resource_type=resource_type,
        processed=processed,
        start=start_date,
        end=end_date,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return PaginatedResponse[EventResponse](
        items=[EventResponse.model_validate(event) for event in events],
        pagination=Pagination(
            page=page, limit=limit, total=total, pages=math.ceil(total / limit)
        ),
    )


@router.put("/mark-processed", response_model=MarkProcessedResponse)
async def mark_events_processed(
    data: MarkProcessedRequest,
    service: EventService = Depends(get_event_service),
):
    """Flag events as processed; already-processed events are left as they are."""
    matched, modified = await service.mark_processed(data.event_ids)
    return MarkProcessedResponse(matched_count=matched, modified_count=modified)


@router.get("/{event_id}", response_model=EventResponse)
@limiter.limit(f"{settings.RATE_LIMIT_PER_MINUTE}/minute")
async def get_event(
    request: Request,
    event_id: int,
    service: EventService = Depends(get_event_service),
):
    return EventResponse.model_validate(await service.get(event_id))
