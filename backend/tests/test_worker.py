"""Stream worker tests against fakeredis."""

import json

import pytest
from sqlalchemy import select

from feedback_analytics.core.stream import (
    STREAM_KEY,
    ack_messages,
    ensure_consumer_group,
    push_event_envelope,
    read_stream_batch,
)
from feedback_analytics.models.event import AnalyticsEvent
from feedback_analytics.worker import parse_message, persist_batch


def test_parse_feedback_envelope():
    event = parse_message(
        "1-0",
        {
            "source": "feedback",
            "data": json.dumps(
                {
                    "type": "feedback.created",
                    "feedbackId": "fb-1",
                    "companyId": "acme",
                    "userId": 42,
                    "priority": "high",
                    "timestamp": "2025-03-10T09:00:00Z",
                }
            ),
        },
    )
    assert event is not None
    assert event.source_service == "feedback"
    assert event.event_type == "feedback.created"
    assert event.resource_id == "fb-1"
    assert event.resource_type == "feedback"
    assert event.user_id == "42"
    assert event.event_metadata == {"priority": "high"}
    assert event.event_data["priority"] == "high"
    assert event.timestamp.isoformat() == "2025-03-10T09:00:00+00:00"


def test_parse_notification_envelope_without_timestamp():
    event = parse_message(
        "1-1",
        {
            "source": "notification",
            "data": json.dumps(
                {"type": "notification.read", "notificationId": "n-1", "channel": "email"}
            ),
        },
    )
    assert event is not None
    assert event.resource_id == "n-1"
    assert event.timestamp is not None


@pytest.mark.parametrize(
    "fields",
    [
        {"source": "feedback", "data": "not json"},
        {"source": "feedback"},
        {"source": "billing", "data": json.dumps({"type": "invoice.paid"})},
        {"source": "user", "data": json.dumps({"userId": "u1"})},
        {"source": "user", "data": json.dumps(["user.created"])},
    ],
)
def test_unparseable_messages_are_dropped(fields):
    assert parse_message("1-2", fields) is None


@pytest.mark.asyncio
async def test_persist_batch_acks_everything(session_factory):
    messages = [
        ("1-0", {"source": "user", "data": json.dumps({"type": "user.login", "userId": "u1"})}),
        ("1-1", {"source": "user", "data": "{broken"}),
        ("1-2", {"source": "feedback", "data": json.dumps({"type": "feedback.closed"})}),
    ]

    acked = await persist_batch(session_factory, messages)

    assert acked == ["1-0", "1-1", "1-2"]
    async with session_factory() as session:
        rows = (await session.execute(select(AnalyticsEvent))).scalars().all()
    assert sorted(r.event_type for r in rows) == ["feedback.closed", "user.login"]


@pytest.mark.asyncio
async def test_stream_round_trip(fake_redis, session_factory):
    await ensure_consumer_group(redis=fake_redis)
    # Second call hits BUSYGROUP and is ignored
    await ensure_consumer_group(redis=fake_redis)

    msg_id = await push_event_envelope(
        "feedback", {"type": "feedback.created", "feedbackId": "fb-9"}, redis=fake_redis
    )
    assert msg_id is not None

    messages = await read_stream_batch("test-consumer", block_ms=10, redis=fake_redis)
    assert [m[0] for m in messages] == [msg_id]

    acked = await persist_batch(session_factory, messages)
    assert await ack_messages(acked, redis=fake_redis) == 1

    pending = await fake_redis.xpending(STREAM_KEY, "analytics_workers")
    assert pending["pending"] == 0
    assert await read_stream_batch("test-consumer", block_ms=10, redis=fake_redis) == []


@pytest.mark.asyncio
async def test_ack_nothing():
    assert await ack_messages([]) == 0
