import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, Response, status

from feedback_analytics.api.deps import get_metrics_service, get_scheduler
from feedback_analytics.core.cache import (
    FEEDBACK_METRICS_PREFIX,
    SUMMARY_PREFIX,
    USER_METRICS_PREFIX,
    generate_cache_key,
    get_cached_json,
    set_cached_json,
)
from feedback_analytics.core.config import settings
from feedback_analytics.core.exceptions import NotFoundError
from feedback_analytics.core.limiter import limiter
from feedback_analytics.schemas.common import MessageResponse
from feedback_analytics.schemas.metrics import (
    AggregationTriggerRequest,
    AggregationTriggerResponse,
    FeedbackMetricsDocument,
    JobStateResponse,
    MetricsSummary,
    UserMetricsDocument,
)
from feedback_analytics.services.metrics_service import MetricsService
from feedback_analytics.services.periods import parse_period
from feedback_analytics.services.scheduler import AggregationScheduler, job_name_for

logger = logging.getLogger(__name__)

router = APIRouter()


def _query_params(
    period: str,
    company_id: str | None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int | None = None,
) -> dict:
    return {
        "period": parse_period(period).value,
        "companyId": company_id,
        "startDate": start_date,
        "endDate": end_date,
        "limit": limit,
    }


@router.get("/feedback", response_model=list[FeedbackMetricsDocument])
@limiter.limit(f"{settings.RATE_LIMIT_PER_MINUTE}/minute")
async def get_feedback_metrics(
    request: Request,
    response: Response,
    company_id: str | None = Query(None, alias="companyId"),
    period: str = Query("monthly"),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    limit: int = Query(50, ge=1, le=500),
    service: MetricsService = Depends(get_metrics_service),
):
    """Feedback metrics documents for one scope, newest window first."""
    key = generate_cache_key(
        FEEDBACK_METRICS_PREFIX,
        _query_params(period, company_id, start_date, end_date, limit),
    )
    cached = await get_cached_json(key, client=service.redis)
    if cached is not None:
        response.headers["X-Cache"] = "HIT"
        return cached

    documents = await service.list_feedback_metrics(
        period=period, company_id=company_id, start=start_date, end=end_date, limit=limit
    )
    await set_cached_json(
        key,
        [doc.model_dump(mode="json", by_alias=True) for doc in documents],
        client=service.redis,
    )
    response.headers["X-Cache"] = "MISS"
    return documents


@router.get("/users", response_model=list[UserMetricsDocument])
@limiter.limit(f"{settings.RATE_LIMIT_PER_MINUTE}/minute")
async def get_user_metrics(
    request: Request,
    response: Response,
    company_id: str | None = Query(None, alias="companyId"),
    period: str = Query("monthly"),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    limit: int = Query(50, ge=1, le=500),
    service: MetricsService = Depends(get_metrics_service),
):
    """User metrics documents for one scope, newest window first."""
    key = generate_cache_key(
        USER_METRICS_PREFIX,
        _query_params(period, company_id, start_date, end_date, limit),
    )
    cached = await get_cached_json(key, client=service.redis)
    if cached is not None:
        response.headers["X-Cache"] = "HIT"
        return cached

    documents = await service.list_user_metrics(
        period=period, company_id=company_id, start=start_date, end=end_date, limit=limit
    )
    await set_cached_json(
        key,
        [doc.model_dump(mode="json", by_alias=True) for doc in documents],
        client=service.redis,
    )
    response.headers["X-Cache"] = "MISS"
    return documents


@router.get("/summary", response_model=MetricsSummary)
@limiter.limit(f"{settings.RATE_LIMIT_PER_MINUTE}/minute")
async def get_metrics_summary(
    request: Request,
    response: Response,
    company_id: str | None = Query(None, alias="companyId"),
    period: str = Query("monthly"),
    service: MetricsService = Depends(get_metrics_service),
):
    """Latest documents for a period with the change against the window before."""
    key = generate_cache_key(SUMMARY_PREFIX, _query_params(period, company_id))
    cached = await get_cached_json(key, client=service.redis)
    if cached is not None:
        response.headers["X-Cache"] = "HIT"
        return cached

    summary = await service.get_summary(period=period, company_id=company_id)
    await set_cached_json(
        key, summary.model_dump(mode="json", by_alias=True), client=service.redis
    )
    response.headers["X-Cache"] = "MISS"
    return summary


@router.post(
    "/aggregate",
    response_model=AggregationTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_aggregation(
    data: AggregationTriggerRequest,
    scheduler: AggregationScheduler = Depends(get_scheduler),
):
    """Start an aggregation run in the background.

    Returns immediately; the outcome is reported by ``GET /metrics/jobs``.
    A run is not started when the same period is already aggregating.
    """
    job_name = job_name_for(data.period)
    accepted = scheduler.trigger(
        data.period,
        company_id=data.company_id,
        start=data.start_date,
        end=data.end_date,
    )
    logger.info(
        "Manual %s trigger %s (company=%s)",
        job_name,
        "accepted" if accepted else "skipped",
        data.company_id,
    )
    return AggregationTriggerResponse(
        accepted=accepted,
        job_name=job_name,
        message=(
            f"{data.period} aggregation started"
            if accepted
            else f"{data.period} aggregation already running"
        ),
        period=data.period,
        company_id=data.company_id,
        start_date=data.start_date,
        end_date=data.end_date,
    )


@router.get("/jobs", response_model=list[JobStateResponse])
async def list_jobs(scheduler: AggregationScheduler = Depends(get_scheduler)):
    """Aggregation job states: status, last outcome, counters, last result."""
    return [JobStateResponse(**state.as_dict()) for state in scheduler.job_states()]


@router.post(
    "/jobs/{job_name}/cancel",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def cancel_job(
    job_name: str,
    scheduler: AggregationScheduler = Depends(get_scheduler),
):
    if not scheduler.cancel(job_name):
        raise NotFoundError(f"No running job named {job_name!r}")
    return {"message": f"{job_name} cancellation requested"}
