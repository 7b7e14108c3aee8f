import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from feedback_analytics.core.exceptions import ServiceUnavailableError
from feedback_analytics.core.redis import get_redis_dep
from feedback_analytics.db.session import get_db
from feedback_analytics.services.event_service import EventService
from feedback_analytics.services.metrics_service import MetricsService
from feedback_analytics.services.scheduler import AggregationScheduler


async def get_scheduler(request: Request) -> AggregationScheduler:
    """Dependency returning the scheduler created in the app lifespan."""
    scheduler: AggregationScheduler | None = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise ServiceUnavailableError("Aggregation scheduler not running")
    return scheduler


async def get_event_service(db: AsyncSession = Depends(get_db)) -> EventService:
    return EventService(db)


async def get_metrics_service(
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis_dep),
) -> MetricsService:
    return MetricsService(db, redis_client)
