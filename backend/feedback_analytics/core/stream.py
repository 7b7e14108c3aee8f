"""Redis stream helpers for the upstream event queue."""

import json
import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from feedback_analytics.core.redis import get_redis

logger = logging.getLogger(__name__)

# Stream / consumer-group constants
STREAM_KEY = "analytics:events"
GROUP_NAME = "analytics_workers"


async def push_event_envelope(
    source: str,
    envelope: dict[str, Any],
    *,
    redis: Redis | None = None,
) -> str | None:
    """XADD an upstream service envelope to the analytics stream.

    Returns the stream message ID on success, or None if Redis is unavailable.
    """
    try:
        r = redis or await get_redis()
        payload = {
            "source": source,
            "data": json.dumps(envelope, default=str),
        }
        msg_id: str = await r.xadd(STREAM_KEY, payload)  # type: ignore[arg-type]
        return msg_id
    except (RedisError, ConnectionError, OSError) as exc:
        logger.warning("XADD to %s failed: %s", STREAM_KEY, exc)
        return None


async def ensure_consumer_group(*, redis: Redis | None = None) -> None:
    """Create the consumer group if it doesn't already exist."""
    try:
        r = redis or await get_redis()
        await r.xgroup_create(STREAM_KEY, GROUP_NAME, id="0", mkstream=True)
        logger.info("Created consumer group %s on %s", GROUP_NAME, STREAM_KEY)
    except RedisError as exc:
        # BUSYGROUP means the group already exists
        if "BUSYGROUP" not in str(exc):
            logger.warning("xgroup_create failed: %s", exc)


async def read_stream_batch(
    consumer_name: str,
    count: int = 100,
    block_ms: int = 2000,
    *,
    redis: Redis | None = None,
) -> list[tuple[str, dict[str, str]]]:
    """XREADGROUP: read new messages from the stream.

    Returns a list of (message_id, fields) tuples.
    """
    try:
        r = redis or await get_redis()
        result = await r.xreadgroup(
            GROUP_NAME,
            consumer_name,
            {STREAM_KEY: ">"},
            count=count,
            block=block_ms,
        )
        if not result:
            return []
        # result is [[stream_name, [(msg_id, fields), ...]]]
        messages: list[tuple[str, dict[str, str]]] = result[0][1]
        return messages
    except (RedisError, ConnectionError, OSError) as exc:
        logger.warning("XREADGROUP failed: %s", exc)
        return []


async def ack_messages(message_ids: list[str], *, redis: Redis | None = None) -> int:
    """XACK processed messages."""
    if not message_ids:
        return 0
    try:
        r = redis or await get_redis()
        return int(await r.xack(STREAM_KEY, GROUP_NAME, *message_ids))
    except (RedisError, ConnectionError, OSError) as exc:
        logger.warning("XACK failed: %s", exc)
        return 0
