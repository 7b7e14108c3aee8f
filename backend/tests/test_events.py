from datetime import datetime, timezone

import pytest
from httpx import AsyncClient

from feedback_analytics.schemas.event import EventIn


def _event(event_type: str = "feedback.created", **overrides) -> dict:
    body = {
        "sourceService": "feedback",
        "eventType": event_type,
        "eventData": {"type": event_type, "priority": "high"},
        "companyId": "acme",
        "userId": "u1",
        "resourceId": "fb-1",
        "resourceType": "feedback",
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_create_single_event(client: AsyncClient):
    response = await client.post(
        "/api/v1/events", json=_event(timestamp="2025-03-10T09:00:00Z")
    )
    assert response.status_code == 201
    data = response.json()
    assert isinstance(data["eventId"], int)
    assert data["timestamp"].startswith("2025-03-10T09:00:00")

    fetched = await client.get(f"/api/v1/events/{data['eventId']}")
    assert fetched.status_code == 200
    event = fetched.json()
    assert event["eventType"] == "feedback.created"
    assert event["eventData"]["priority"] == "high"
    assert event["processed"] is False


@pytest.mark.asyncio
async def test_timestamp_defaults_to_arrival_time(client: AsyncClient):
    response = await client.post("/api/v1/events", json=_event())
    assert response.status_code == 201
    assert response.json()["timestamp"]


@pytest.mark.asyncio
async def test_numeric_identifiers_are_accepted(client: AsyncClient):
    response = await client.post("/api/v1/events", json=_event(userId=42, companyId=7))
    assert response.status_code == 201

    event = (await client.get(f"/api/v1/events/{response.json()['eventId']}")).json()
    assert event["userId"] == "42"
    assert event["companyId"] == "7"


@pytest.mark.asyncio
async def test_create_event_missing_fields(client: AsyncClient):
    response = await client.post("/api/v1/events", json={"sourceService": "feedback"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_event_unknown_source(client: AsyncClient):
    response = await client.post("/api/v1/events", json=_event(sourceService="billing"))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_batch_stores_valid_subset(client: AsyncClient):
    response = await client.post(
        "/api/v1/events/batch",
        json={
            "events": [
                _event(),
                {"sourceService": "user"},
                _event("feedback.resolved"),
            ]
        },
    )
    assert response.status_code == 201
    data = response.json()
    assert data["insertedCount"] == 2
    assert len(data["eventIds"]) == 2
    assert [r["index"] for r in data["rejected"]] == [1]
    assert data["rejected"][0]["errors"]


@pytest.mark.asyncio
async def test_batch_rejects_non_object_entries(client: AsyncClient):
    response = await client.post(
        "/api/v1/events/batch",
        json={"events": [_event(), "not-an-event", None, _event("feedback.closed")]},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["insertedCount"] == 2
    assert [r["index"] for r in data["rejected"]] == [1, 2]


def test_event_timestamps_normalized_to_utc():
    naive = EventIn.model_validate(_event(timestamp="2025-03-10T09:00:00"))
    assert naive.timestamp == datetime(2025, 3, 10, 9, tzinfo=timezone.utc)

    offset = EventIn.model_validate(_event(timestamp="2025-03-10T09:00:00+02:00"))
    assert offset.timestamp.tzinfo == timezone.utc
    assert offset.timestamp.hour == 7


@pytest.mark.asyncio
async def test_batch_with_no_valid_events(client: AsyncClient):
    response = await client.post(
        "/api/v1/events/batch",
        json={"events": [{"eventType": "x"}, {"sourceService": "user"}]},
    )
    assert response.status_code == 422
    data = response.json()
    assert data["detail"] == "No valid events in batch"
    assert len(data["errors"]) == 2


@pytest.mark.asyncio
async def test_empty_batch_rejected(client: AsyncClient):
    response = await client.post("/api/v1/events/batch", json={"events": []})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_events_filters_and_pagination(client: AsyncClient):
    events = [
        _event(timestamp="2025-03-10T09:00:00Z"),
        _event("feedback.resolved", timestamp="2025-03-10T11:00:00Z"),
        _event(companyId="globex", timestamp="2025-03-10T10:00:00Z"),
        _event("user.login", sourceService="user", timestamp="2025-03-11T08:00:00Z"),
    ]
    await client.post("/api/v1/events/batch", json={"events": events})

    response = await client.get("/api/v1/events", params={"companyId": "acme"})
    assert response.status_code == 200
    data = response.json()
    assert data["pagination"]["total"] == 3
    # newest first
    assert [e["eventType"] for e in data["items"]] == [
        "user.login",
        "feedback.resolved",
        "feedback.created",
    ]

    response = await client.get(
        "/api/v1/events",
        params={"sourceService": "feedback", "startDate": "2025-03-10T09:30:00Z"},
    )
    assert {e["eventType"] for e in response.json()["items"]} == {
        "feedback.resolved",
        "feedback.created",
    }
    assert response.json()["pagination"]["total"] == 2

    response = await client.get("/api/v1/events", params={"limit": 3, "page": 2})
    data = response.json()
    assert len(data["items"]) == 1
    assert data["pagination"] == {"page": 2, "limit": 3, "total": 4, "pages": 2}


@pytest.mark.asyncio
async def test_get_missing_event(client: AsyncClient):
    response = await client.get("/api/v1/events/999999")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_mark_processed(client: AsyncClient):
    created = await client.post(
        "/api/v1/events/batch", json={"events": [_event(), _event(), _event()]}
    )
    ids = created.json()["eventIds"]

    response = await client.put("/api/v1/events/mark-processed", json={"eventIds": ids[:2]})
    assert response.status_code == 200
    assert response.json() == {"matchedCount": 2, "modifiedCount": 2}

    response = await client.put(
        "/api/v1/events/mark-processed", json={"eventIds": ids + [999999]}
    )
    assert response.json() == {"matchedCount": 3, "modifiedCount": 1}

    listed = await client.get("/api/v1/events", params={"processed": "true"})
    assert listed.json()["pagination"]["total"] == 3
    assert all(e["processedAt"] for e in listed.json()["items"])
