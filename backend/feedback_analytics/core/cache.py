"""Read-through cache for metrics listings and summaries."""

import json
import logging
from datetime import date, datetime
from typing import Any

import redis.asyncio as redis

from feedback_analytics.core.config import settings
from feedback_analytics.core.redis import (
    safe_redis_delete_pattern,
    safe_redis_get,
    safe_redis_setex,
)

logger = logging.getLogger(__name__)

FEEDBACK_METRICS_PREFIX = "feedback-metrics"
USER_METRICS_PREFIX = "user-metrics"
SUMMARY_PREFIX = "metrics-summary"
METRICS_CACHE_PREFIXES = (FEEDBACK_METRICS_PREFIX, USER_METRICS_PREFIX, SUMMARY_PREFIX)


def _key_value(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def generate_cache_key(prefix: str, params: dict[str, Any] | None = None) -> str:
    """Build ``prefix:name:value:...`` from the non-null params, sorted by name.

    Equal parameter sets always produce the same key regardless of order.
    """
    parts = [prefix]
    for name, value in sorted((params or {}).items()):
        if value is None:
            continue
        parts.append(f"{name}:{_key_value(value)}")
    return ":".join(parts)


async def get_cached_json(key: str, *, client: redis.Redis | None = None) -> Any | None:
    raw = await safe_redis_get(key, client=client)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding undecodable cache entry %s", key)
        return None


async def set_cached_json(
    key: str,
    value: Any,
    *,
    ttl: int | None = None,
    client: redis.Redis | None = None,
) -> bool:
    return await safe_redis_setex(
        key,
        ttl or settings.METRICS_CACHE_TTL_SECONDS,
        json.dumps(value, default=str),
        client=client,
    )


async def invalidate_period_metrics(
    period: str, *, client: redis.Redis | None = None
) -> int:
    """Drop every cached listing and summary that covers ``period``."""
    deleted = 0
    for prefix in METRICS_CACHE_PREFIXES:
        deleted += await safe_redis_delete_pattern(
            f"{prefix}:*period:{period}*", client=client
        )
    if deleted:
        logger.debug("Invalidated %d cached %s metrics entries", deleted, period)
    return deleted
