"""Generate realistic fake platform events for development and demos.

Usage:
    python -m scripts.seed_events [--url http://localhost:8000]
    python -m scripts.seed_events --days 30 --feedback 500 --companies 3 --aggregate monthly
"""

import argparse
import random
import sys
import uuid
from datetime import datetime, timedelta, timezone

import httpx

PRIORITIES = [("low", 30), ("medium", 40), ("high", 22), ("critical", 8)]
CATEGORIES = ["bug", "feature-request", "billing", "usability", "performance"]
ROLES = [("customer", 70), ("agent", 18), ("manager", 9), ("admin", 3)]
CHANNELS = ["email", "sms", "push", "inApp"]


def _weighted(choices: list[tuple[str, int]]) -> str:
    return random.choices([c[0] for c in choices], weights=[c[1] for c in choices], k=1)[0]


def _event(source: str, event_type: str, ts: datetime, company: str, **fields) -> dict:
    """Build an event in the API's camelCase wire format."""
    user_id = fields.pop("userId", None)
    resource_id = fields.pop("resourceId", None)
    return {
        "sourceService": source,
        "eventType": event_type,
        "eventData": {"type": event_type, **fields},
        "userId": user_id,
        "companyId": company,
        "resourceId": resource_id,
        "resourceType": source if resource_id else None,
        "timestamp": ts.isoformat(),
    }


def generate_users(companies: list[str], per_company: int, start: datetime, days: int) -> tuple[list[dict], dict[str, list[str]]]:
    events = []
    users: dict[str, list[str]] = {}
    for company in companies:
        users[company] = []
        for i in range(per_company):
            user_id = f"{company}-user-{i}"
            users[company].append(user_id)
            created = start + timedelta(seconds=random.randint(0, days * 86400 // 2))
            events.append(
                _event("user", "user.created", created, company,
                       userId=user_id, resourceId=user_id, role=_weighted(ROLES))
            )
            for _ in range(random.randint(0, 12)):
                login = created + timedelta(seconds=random.randint(0, days * 86400 // 2))
                events.append(
                    _event("user", "user.login", login, company,
                           userId=user_id, sessionDuration=random.randint(60_000, 3_600_000))
                )
    return events, users


def generate_feedback(count: int, users: dict[str, list[str]], start: datetime, days: int) -> list[dict]:
    events = []
    companies = list(users)
    for _ in range(count):
        company = random.choice(companies)
        author = random.choice(users[company])
        feedback_id = uuid.uuid4().hex[:24]
        created = start + timedelta(seconds=random.randint(0, days * 86400))
        events.append(
            _event("feedback", "feedback.created", created, company,
                   userId=author, resourceId=feedback_id,
                   priority=_weighted(PRIORITIES), categoryId=random.choice(CATEGORIES))
        )

        ts = created
        if random.random() < 0.8:
            ts += timedelta(minutes=random.randint(5, 24 * 60))
            events.append(
                _event("feedback", "feedback.responded", ts, company,
                       userId=random.choice(users[company]), resourceId=feedback_id)
            )
        for _ in range(random.randint(0, 4)):
            events.append(
                _event("feedback", "feedback.commented", ts + timedelta(minutes=random.randint(1, 600)),
                       company, userId=random.choice(users[company]), resourceId=feedback_id,
                       commentType=random.choice(["internal", "external"]))
            )
        if random.random() < 0.1:
            events.append(
                _event("feedback", "feedback.escalated", ts + timedelta(hours=1), company,
                       resourceId=feedback_id, escalationLevel=random.randint(1, 3))
            )
        if random.random() < 0.6:
            ts += timedelta(hours=random.randint(1, 72))
            events.append(
                _event("feedback", "feedback.resolved", ts, company,
                       userId=random.choice(users[company]), resourceId=feedback_id)
            )
            if random.random() < 0.5:
                events.append(
                    _event("feedback", "feedback.satisfaction", ts + timedelta(hours=2), company,
                           userId=author, resourceId=feedback_id, score=random.randint(1, 5))
                )
    return events


def generate_notifications(count: int, users: dict[str, list[str]], start: datetime, days: int) -> list[dict]:
    events = []
    companies = list(users)
    for _ in range(count):
        company = random.choice(companies)
        user_id = random.choice(users[company])
        notification_id = uuid.uuid4().hex[:24]
        channel = random.choice(CHANNELS)
        ts = start + timedelta(seconds=random.randint(0, days * 86400))
        for event_type, chance in (
            ("notification.sent", 1.0),
            ("notification.delivered", 0.9),
            ("notification.opened", 0.5),
            ("notification.read", 0.4),
        ):
            if random.random() > chance:
                break
            events.append(
                _event("notification", event_type, ts, company,
                       userId=user_id, resourceId=notification_id, channel=channel)
            )
            ts += timedelta(minutes=random.randint(1, 120))
    return events


def main():
    parser = argparse.ArgumentParser(description="Seed feedback platform events")
    parser.add_argument("--url", default="http://localhost:8000", help="API base URL")
    parser.add_argument("--days", type=int, default=7, help="Days of history")
    parser.add_argument("--companies", type=int, default=2, help="Number of companies")
    parser.add_argument("--users", type=int, default=25, help="Users per company")
    parser.add_argument("--feedback", type=int, default=200, help="Feedback items")
    parser.add_argument("--notifications", type=int, default=300, help="Notifications")
    parser.add_argument("--batch-size", type=int, default=500, help="Events per request")
    parser.add_argument(
        "--aggregate",
        choices=["daily", "weekly", "monthly", "quarterly", "yearly", "all_time"],
        help="Trigger an aggregation run for this period once seeding is done",
    )
    args = parser.parse_args()

    now = datetime.now(timezone.utc)
    start = now - timedelta(days=args.days)
    companies = [f"company-{i}" for i in range(1, args.companies + 1)]

    print(f"Generating events for {len(companies)} companies over {args.days} days...")
    events, users = generate_users(companies, args.users, start, args.days)
    events += generate_feedback(args.feedback, users, start, args.days)
    events += generate_notifications(args.notifications, users, start, args.days)

    # Sort by timestamp for realistic ordering; drop anything in the future
    events = sorted((e for e in events if e["timestamp"] <= now.isoformat()), key=lambda e: e["timestamp"])

    print(f"Sending {len(events)} events to {args.url}...")
    total_sent = 0
    with httpx.Client(base_url=args.url, timeout=30) as client:
        for i in range(0, len(events), args.batch_size):
            batch = events[i : i + args.batch_size]
            resp = client.post("/api/v1/events/batch", json={"events": batch})
            if resp.status_code == 201:
                total_sent += resp.json()["insertedCount"]
                print(f"  Sent {total_sent}/{len(events)} events")
            else:
                print(f"  Error: {resp.status_code} - {resp.text}", file=sys.stderr)
                sys.exit(1)

        if args.aggregate:
            resp = client.post("/api/v1/metrics/aggregate", json={"period": args.aggregate})
            print(f"Aggregation trigger: {resp.status_code} - {resp.text}")

    print(f"Done! Seeded {total_sent} events.")


if __name__ == "__main__":
    main()
