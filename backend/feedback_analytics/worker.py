"""Background worker: drains the upstream event stream into analytics_events.

Run as a separate process:
    python -m feedback_analytics.worker
"""

import asyncio
import json
import logging
import os
import signal
import socket

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from feedback_analytics.core.config import settings, setup_logging
from feedback_analytics.core.exceptions import EventValidationError
from feedback_analytics.core.redis import close_redis
from feedback_analytics.core.stream import (
    ack_messages,
    ensure_consumer_group,
    read_stream_batch,
)
from feedback_analytics.models.event import AnalyticsEvent
from feedback_analytics.services.event_service import EventService, event_from_envelope

logger = logging.getLogger(__name__)

# Worker settings
BATCH_SIZE = 200
POLL_INTERVAL_MS = 2000

_shutdown = asyncio.Event()


def _handle_signal(*_):
    logger.info("Shutdown signal received")
    _shutdown.set()


def parse_message(msg_id: str, fields: dict[str, str]) -> AnalyticsEvent | None:
    """Map one stream message to an event row; None if it cannot be parsed."""
    try:
        envelope = json.loads(fields["data"])
        event_in = event_from_envelope(fields.get("source", ""), envelope)
    except (KeyError, ValueError) as exc:
        # EventValidationError and JSONDecodeError are both ValueErrors
        detail = exc.errors if isinstance(exc, EventValidationError) else exc
        logger.warning("Dropping unparseable stream message %s: %s", msg_id, detail)
        return None
    return EventService.to_model(event_in)


async def persist_batch(
    session_factory: async_sessionmaker[AsyncSession],
    messages: list[tuple[str, dict[str, str]]],
) -> list[str]:
    """Parse stream messages and bulk-insert them.

    Returns the message IDs to acknowledge. Unparseable messages are acked
    too so they never block the stream.
    """
    acked_ids: list[str] = []
    events_to_add: list[AnalyticsEvent] = []

    for msg_id, fields in messages:
        event = parse_message(msg_id, fields)
        if event is not None:
            events_to_add.append(event)
        acked_ids.append(msg_id)

    if events_to_add:
        async with session_factory() as session:
            session.add_all(events_to_add)
            await session.commit()
        logger.info("Persisted %d events from the stream", len(events_to_add))

    return acked_ids


async def run_worker() -> None:
    """Main worker loop."""
    setup_logging()
    logger.info("Starting event stream worker")

    engine = create_async_engine(settings.DATABASE_URL)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    consumer_name = f"worker-{socket.gethostname()}-{os.getpid()}"

    await ensure_consumer_group()

    while not _shutdown.is_set():
        messages = await read_stream_batch(
            consumer_name=consumer_name,
            count=BATCH_SIZE,
            block_ms=POLL_INTERVAL_MS,
        )

        if messages:
            try:
                acked = await persist_batch(session_factory, messages)
            except Exception:
                # Left unacked in the pending entries list
                logger.exception("Failed to persist %d stream messages", len(messages))
                continue
            await ack_messages(acked)

    await close_redis()
    await engine.dispose()
    logger.info("Worker shut down cleanly")


if __name__ == "__main__":
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handle_signal)
    asyncio.run(run_worker())
