"""Aggregated metrics documents, materialized by the aggregation runner.

Each section of a document is stored as a JSON column. The natural key is
``(period, period_start, scope_key)``; ``scope_key`` mirrors ``company_id``
but is never NULL so the unique constraint also covers platform-wide rows.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from feedback_analytics.db.base import Base
from feedback_analytics.models.base import TimestampMixin

PLATFORM_SCOPE = "platform"


def scope_key_for(company_id: str | None) -> str:
    return company_id if company_id else PLATFORM_SCOPE


class MetricsDocumentMixin(TimestampMixin):
    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    period: Mapped[str] = mapped_column(String(16), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    scope_key: Mapped[str] = mapped_column(String(64), nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class FeedbackMetrics(Base, MetricsDocumentMixin):
    __tablename__ = "feedback_metrics"

    counts: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    by_priority: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    by_category: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    response_times: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    resolution_times: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    satisfaction: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    escalations: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    comments: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        UniqueConstraint("period", "period_start", "scope_key", name="uq_feedback_metrics_key"),
        Index("ix_feedback_metrics_scope_period", "scope_key", "period", "period_start"),
    )


class UserMetrics(Base, MetricsDocumentMixin):
    __tablename__ = "user_metrics"

    counts: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    by_role: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    activity: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    engagement: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    performance: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    notifications: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    __table_args__ = (
        UniqueConstraint("period", "period_start", "scope_key", name="uq_user_metrics_key"),
        Index("ix_user_metrics_scope_period", "scope_key", "period", "period_start"),
    )
