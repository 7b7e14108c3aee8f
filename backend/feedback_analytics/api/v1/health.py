import logging

import redis.asyncio as redis
from fastapi import APIRouter, Depends
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feedback_analytics.core.exceptions import ServiceUnavailableError
from feedback_analytics.core.redis import get_redis_dep
from feedback_analytics.db.session import get_db
from feedback_analytics.schemas.common import MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=MessageResponse)
async def health_check():
    """Basic health check endpoint."""
    return {"message": "healthy"}


@router.get("/ready", response_model=MessageResponse)
async def readiness_check(
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis_dep),
):
    """Readiness check - verifies the database and Redis are reachable."""
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.error("Readiness check failed: database connection error")
        raise ServiceUnavailableError(detail="Service not ready") from None
    try:
        await redis_client.ping()
    except (RedisError, ConnectionError, OSError):
        logger.error("Readiness check failed: redis connection error")
        raise ServiceUnavailableError(detail="Service not ready") from None
    return {"message": "ready"}
