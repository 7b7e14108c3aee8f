"""Read-only, pre-grouped queries over raw analytics events.

Every query is bounded by a period window (``start <= timestamp < end``) and
optionally scoped to one company. No match means an empty result, never an
error; database failures surface as ``StoreUnavailableError``.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import Select, and_, distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from feedback_analytics.core.exceptions import StoreUnavailableError
from feedback_analytics.models.event import AnalyticsEvent
from feedback_analytics.services.periods import PeriodWindow, to_utc

logger = logging.getLogger(__name__)


class EventStoreReader:
    """Grouped queries used by the metric assemblers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _rows(self, stmt: Select) -> Sequence[Any]:
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("Event store query failed: %s", exc)
            raise StoreUnavailableError("Event store unavailable") from exc
        return result.all()

    @staticmethod
    def _scoped(
        stmt: Select,
        window: PeriodWindow,
        company_id: str | None,
        model: Any = AnalyticsEvent,
    ) -> Select:
        stmt = stmt.where(model.timestamp >= window.start, model.timestamp < window.end)
        if company_id:
            stmt = stmt.where(model.company_id == company_id)
        return stmt

    async def count_by_event_type(
        self,
        source: str,
        event_types: Iterable[str],
        window: PeriodWindow,
        company_id: str | None = None,
    ) -> dict[str, int]:
        """Event counts grouped by event type."""
        stmt = (
            select(AnalyticsEvent.event_type, func.count().label("cnt"))
            .where(
                AnalyticsEvent.source_service == source,
                AnalyticsEvent.event_type.in_(list(event_types)),
            )
            .group_by(AnalyticsEvent.event_type)
        )
        rows = await self._rows(self._scoped(stmt, window, company_id))
        return {row[0]: row[1] for row in rows}

    async def count_by_payload_field(
        self,
        source: str,
        event_type: str,
        field: str,
        window: PeriodWindow,
        company_id: str | None = None,
    ) -> dict[str, int]:
        """Counts of one event type grouped by a payload field (e.g. ``priority``).

        Events lacking the field are left out of the grouping.
        """
        key = AnalyticsEvent.event_data[field].as_string()
        stmt = (
            select(key.label("key"), func.count().label("cnt"))
            .where(
                AnalyticsEvent.source_service == source,
                AnalyticsEvent.event_type == event_type,
            )
            .group_by(key)
        )
        rows = await self._rows(self._scoped(stmt, window, company_id))
        grouped: dict[str, int] = {}
        for value, count in rows:
            if value is None:
                continue
            grouped[str(value)] = grouped.get(str(value), 0) + count
        return grouped

    async def count_by_channel_and_type(
        self,
        event_types: Iterable[str],
        window: PeriodWindow,
        company_id: str | None = None,
    ) -> dict[tuple[str, str | None], int]:
        """Notification counts keyed by ``(event_type, payload.channel)``."""
        channel = AnalyticsEvent.event_data["channel"].as_string()
        stmt = (
            select(AnalyticsEvent.event_type, channel.label("channel"), func.count().label("cnt"))
            .where(
                AnalyticsEvent.source_service == "notification",
                AnalyticsEvent.event_type.in_(list(event_types)),
            )
            .group_by(AnalyticsEvent.event_type, channel)
        )
        rows = await self._rows(self._scoped(stmt, window, company_id))
        return {
            (event_type, str(ch) if ch is not None else None): count
            for event_type, ch, count in rows
        }

    async def payload_values(
        self,
        source: str,
        event_type: str,
        field: str,
        window: PeriodWindow,
        company_id: str | None = None,
    ) -> list[Any]:
        """Raw payload values of one field, for reducers that need every sample."""
        stmt = select(AnalyticsEvent.event_data).where(
            AnalyticsEvent.source_service == source,
            AnalyticsEvent.event_type == event_type,
        )
        rows = await self._rows(self._scoped(stmt, window, company_id))
        return [row[0].get(field) for row in rows if isinstance(row[0], dict) and field in row[0]]

    async def paired_durations(
        self,
        start_type: str,
        end_type: str,
        window: PeriodWindow,
        company_id: str | None = None,
        source: str = "feedback",
    ) -> list[float]:
        """Milliseconds between a creation event and its paired end event.

        Pairs are joined on ``resource_id``: each ``end_type`` event inside the
        window is matched with the earliest ``start_type`` event for the same
        resource at or before it (the creation may precede the window). End
        events without a matching creation are excluded from the sample.
        """
        end_evt = aliased(AnalyticsEvent)
        start_evt = aliased(AnalyticsEvent)
        stmt = (
            select(
                end_evt.id,
                end_evt.timestamp.label("ended_at"),
                func.min(start_evt.timestamp).label("started_at"),
            )
            .join(
                start_evt,
                and_(
                    start_evt.resource_id == end_evt.resource_id,
                    start_evt.source_service == source,
                    start_evt.event_type == start_type,
                    start_evt.timestamp <= end_evt.timestamp,
                ),
            )
            .where(
                end_evt.source_service == source,
                end_evt.event_type == end_type,
                end_evt.resource_id.isnot(None),
            )
            .group_by(end_evt.id, end_evt.timestamp)
            .order_by(end_evt.id)
        )
        rows = await self._rows(self._scoped(stmt, window, company_id, model=end_evt))

        durations: list[float] = []
        for _, ended_at, started_at in rows:
            if ended_at is None or started_at is None:
                continue
            delta = to_utc(_as_datetime(ended_at)) - to_utc(_as_datetime(started_at))
            durations.append(delta.total_seconds() * 1000)
        return durations

    async def per_user_counts(
        self,
        source: str,
        event_type: str,
        window: PeriodWindow,
        company_id: str | None = None,
    ) -> dict[str, int]:
        """Event counts per user id (events without a user are skipped)."""
        stmt = (
            select(AnalyticsEvent.user_id, func.count().label("cnt"))
            .where(
                AnalyticsEvent.source_service == source,
                AnalyticsEvent.event_type == event_type,
                AnalyticsEvent.user_id.isnot(None),
            )
            .group_by(AnalyticsEvent.user_id)
        )
        rows = await self._rows(self._scoped(stmt, window, company_id))
        return {row[0]: row[1] for row in rows}

    async def count_distinct_users(
        self,
        source: str,
        event_types: Iterable[str],
        window: PeriodWindow,
        company_id: str | None = None,
    ) -> int:
        stmt = select(func.count(distinct(AnalyticsEvent.user_id))).where(
            AnalyticsEvent.source_service == source,
            AnalyticsEvent.event_type.in_(list(event_types)),
            AnalyticsEvent.user_id.isnot(None),
        )
        rows = await self._rows(self._scoped(stmt, window, company_id))
        return int(rows[0][0] or 0) if rows else 0

    async def count_users_created_before(
        self, before: datetime, company_id: str | None = None
    ) -> int:
        """Distinct users with a ``user.created`` event before ``before``."""
        stmt = select(func.count(distinct(AnalyticsEvent.user_id))).where(
            AnalyticsEvent.source_service == "user",
            AnalyticsEvent.event_type == "user.created",
            AnalyticsEvent.user_id.isnot(None),
            AnalyticsEvent.timestamp < before,
        )
        if company_id:
            stmt = stmt.where(AnalyticsEvent.company_id == company_id)
        rows = await self._rows(stmt)
        return int(rows[0][0] or 0) if rows else 0

    async def engagement_by_event_type(
        self,
        source: str,
        event_types: Iterable[str],
        window: PeriodWindow,
        company_id: str | None = None,
    ) -> dict[str, tuple[int, int]]:
        """Per event type: ``(distinct users, total events)`` for user-attributed events."""
        stmt = (
            select(
                AnalyticsEvent.event_type,
                func.count(distinct(AnalyticsEvent.user_id)).label("users"),
                func.count().label("total"),
            )
            .where(
                AnalyticsEvent.source_service == source,
                AnalyticsEvent.event_type.in_(list(event_types)),
                AnalyticsEvent.user_id.isnot(None),
            )
            .group_by(AnalyticsEvent.event_type)
        )
        rows = await self._rows(self._scoped(stmt, window, company_id))
        return {row[0]: (row[1], row[2]) for row in rows}

    async def distinct_company_ids(self) -> list[str]:
        """Every company that has produced at least one event."""
        stmt = (
            select(distinct(AnalyticsEvent.company_id))
            .where(AnalyticsEvent.company_id.isnot(None))
            .order_by(AnalyticsEvent.company_id)
        )
        rows = await self._rows(stmt)
        return [row[0] for row in rows]


def _as_datetime(value: datetime | str) -> datetime:
    # Aggregates over DateTime columns come back as strings on some drivers
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)
