import logging
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feedback_analytics.core.cache import invalidate_period_metrics
from feedback_analytics.core.exceptions import StoreUnavailableError
from feedback_analytics.models.metrics import FeedbackMetrics, UserMetrics, scope_key_for
from feedback_analytics.schemas.metrics import (
    FeedbackMetricsDocument,
    FeedbackSummary,
    MetricChange,
    MetricsSummary,
    UserMetricsDocument,
    UserSummary,
)
from feedback_analytics.services.periods import (
    PeriodWindow,
    calculate_period_window,
    parse_period,
    previous_period_window,
)

logger = logging.getLogger(__name__)

MetricsModel = type[FeedbackMetrics] | type[UserMetrics]

FEEDBACK_SECTIONS = (
    "counts",
    "by_priority",
    "by_category",
    "response_times",
    "resolution_times",
    "satisfaction",
    "escalations",
    "comments",
)
USER_SECTIONS = ("counts", "by_role", "activity", "engagement", "performance", "notifications")


def calculate_change(current: float | None, previous: float | None) -> MetricChange | None:
    """Change between two windows; ``None`` when there is nothing to compare against."""
    if current is None or previous is None or previous == 0:
        return None
    return MetricChange(
        value=current,
        previous_value=previous,
        change=current - previous,
        percent_change=(current - previous) / previous * 100,
    )


def _section_value(row: Any, section: str, field: str) -> float | None:
    if row is None:
        return None
    return (getattr(row, section) or {}).get(field, 0)


class MetricsService:
    """Reads and writes materialized metrics documents."""

    def __init__(self, db: AsyncSession, redis_client: redis.Redis | None = None):
        self.db = db
        self.redis = redis_client

    async def _upsert(
        self,
        model: MetricsModel,
        sections: tuple[str, ...],
        window: PeriodWindow,
        company_id: str | None,
        document: dict[str, Any],
    ) -> Any:
        """Create or fully replace the document at ``(period, start, scope)``.

        Runs in a single transaction: on failure nothing is written and the
        prior document is left as it was.
        """
        scope_key = scope_key_for(company_id)
        try:
            result = await self.db.execute(
                select(model).where(
                    model.period == window.kind.value,
                    model.period_start == window.start,
                    model.scope_key == scope_key,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = model(
                    period=window.kind.value,
                    period_start=window.start,
                    scope_key=scope_key,
                    company_id=company_id,
                )
                self.db.add(row)

            row.period_end = window.end
            for section in sections:
                setattr(row, section, document[section])
            row.calculated_at = datetime.now(timezone.utc)

            await self.db.flush()
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(
                "Upsert of %s failed (period=%s, start=%s, scope=%s): %s",
                model.__tablename__,
                window.kind.value,
                window.start.isoformat(),
                scope_key,
                exc,
            )
            raise StoreUnavailableError("Metrics store unavailable") from exc

        await invalidate_period_metrics(window.kind.value, client=self.redis)
        return row

    async def upsert_feedback_metrics(
        self,
        window: PeriodWindow,
        company_id: str | None,
        document: dict[str, Any],
    ) -> FeedbackMetrics:
        row: FeedbackMetrics = await self._upsert(
            FeedbackMetrics, FEEDBACK_SECTIONS, window, company_id, document
        )
        return row

    async def upsert_user_metrics(
        self,
        window: PeriodWindow,
        company_id: str | None,
        document: dict[str, Any],
    ) -> UserMetrics:
        row: UserMetrics = await self._upsert(
            UserMetrics, USER_SECTIONS, window, company_id, document
        )
        return row

    async def _list(
        self,
        model: MetricsModel,
        period: str,
        company_id: str | None,
        start: datetime | None,
        end: datetime | None,
        limit: int,
    ) -> list[Any]:
        stmt = select(model).where(
            model.period == parse_period(period).value,
            model.scope_key == scope_key_for(company_id),
        )
        if start:
            stmt = stmt.where(model.period_start >= start)
        if end:
            stmt = stmt.where(model.period_start <= end)
        stmt = stmt.order_by(model.period_start.desc()).limit(limit)
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("Metrics store unavailable") from exc
        return list(result.scalars().all())

    async def list_feedback_metrics(
        self,
        period: str = "monthly",
        company_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
    ) -> list[FeedbackMetricsDocument]:
        """Feedback documents for one scope, newest window first."""
        rows = await self._list(FeedbackMetrics, period, company_id, start, end, limit)
        return [FeedbackMetricsDocument.model_validate(row) for row in rows]

    async def list_user_metrics(
        self,
        period: str = "monthly",
        company_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
    ) -> list[UserMetricsDocument]:
        """User documents for one scope, newest window first."""
        rows = await self._list(UserMetrics, period, company_id, start, end, limit)
        return [UserMetricsDocument.model_validate(row) for row in rows]

    async def _at(
        self, model: MetricsModel, window: PeriodWindow | None, company_id: str | None
    ) -> Any:
        if window is None:
            return None
        result = await self.db.execute(
            select(model).where(
                model.period == window.kind.value,
                model.period_start == window.start,
                model.scope_key == scope_key_for(company_id),
            )
        )
        return result.scalar_one_or_none()

    async def _latest(self, model: MetricsModel, period: str, company_id: str | None) -> Any:
        rows = await self._list(model, period, company_id, None, None, 1)
        return rows[0] if rows else None

    async def get_summary(
        self, period: str = "monthly", company_id: str | None = None
    ) -> MetricsSummary:
        """Latest documents of ``period`` compared with the window before them."""
        kind = parse_period(period)
        try:
            latest_feedback = await self._latest(FeedbackMetrics, kind.value, company_id)
            latest_users = await self._latest(UserMetrics, kind.value, company_id)

            previous_feedback = previous_users = None
            if latest_feedback is not None:
                window = calculate_period_window(kind, latest_feedback.period_start)
                previous_feedback = await self._at(
                    FeedbackMetrics, previous_period_window(window), company_id
                )
            if latest_users is not None:
                window = calculate_period_window(kind, latest_users.period_start)
                previous_users = await self._at(
                    UserMetrics, previous_period_window(window), company_id
                )
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("Metrics store unavailable") from exc

        def feedback_change(section: str, field: str) -> MetricChange | None:
            return calculate_change(
                _section_value(latest_feedback, section, field),
                _section_value(previous_feedback, section, field),
            )

        def user_change(section: str, field: str) -> MetricChange | None:
            return calculate_change(
                _section_value(latest_users, section, field),
                _section_value(previous_users, section, field),
            )

        top_categories: list[dict[str, Any]] = []
        if latest_feedback is not None:
            ranked = sorted(
                (latest_feedback.by_category or {}).items(), key=lambda item: (-item[1], item[0])
            )
            top_categories = [{"name": name, "count": count} for name, count in ranked[:3]]

        return MetricsSummary(
            period=kind.value,
            company_id=company_id,
            period_start=latest_feedback.period_start if latest_feedback else None,
            period_end=latest_feedback.period_end if latest_feedback else None,
            feedback=FeedbackSummary(
                total=feedback_change("counts", "total"),
                resolved=feedback_change("counts", "resolved"),
                average_response_time=feedback_change("response_times", "average"),
                average_resolution_time=feedback_change("resolution_times", "average"),
                satisfaction_score=feedback_change("satisfaction", "average"),
                top_categories=top_categories,
            ),
            users=UserSummary(
                total=user_change("counts", "total"),
                active=user_change("counts", "active"),
                new=user_change("counts", "new"),
                notification_read_rate=user_change("notifications", "read_rate"),
            ),
        )
