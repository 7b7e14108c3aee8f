import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feedback_analytics.core.config import settings
from feedback_analytics.models.metrics import PLATFORM_SCOPE
from feedback_analytics.services.assemblers import (
    FeedbackMetricsAssembler,
    UserMetricsAssembler,
)
from feedback_analytics.services.event_store import EventStoreReader
from feedback_analytics.services.metrics_service import MetricsService
from feedback_analytics.services.periods import (
    PeriodKind,
    PeriodWindow,
    calculate_period_window,
    iter_period_windows,
    parse_period,
    to_utc,
)
from feedback_analytics.services.user_directory import UserDirectoryClient

logger = logging.getLogger(__name__)


@dataclass
class AggregationRunResult:
    """Outcome of one aggregation run across windows and scopes."""

    period: str
    windows: list[PeriodWindow] = field(default_factory=list)
    scopes: list[str | None] = field(default_factory=list)
    succeeded: int = 0
    failed: int = 0
    failed_scopes: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "windows": [w.start.isoformat() for w in self.windows],
            "scopes": len(self.scopes),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failedScopes": self.failed_scopes,
        }


class AggregationService:
    """Runs both metric assemblers over every scope of a period.

    Scopes are the platform-wide aggregate plus every known company, or just
    the requested company. Each scope runs in its own session under its own
    timeout; a failing scope is logged and counted without stopping the rest.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        redis_client: redis.Redis | None = None,
        directory: UserDirectoryClient | None = None,
        scope_timeout: float | None = None,
    ):
        self.session_factory = session_factory
        self.redis = redis_client
        self.directory = directory or UserDirectoryClient()
        self.scope_timeout = scope_timeout or settings.AGGREGATION_SCOPE_TIMEOUT_SECONDS

    async def known_companies(self) -> list[str]:
        async with self.session_factory() as session:
            return await EventStoreReader(session).distinct_company_ids()

    async def aggregate_scope(self, window: PeriodWindow, company_id: str | None) -> None:
        """Assemble and upsert both documents for one window and scope."""
        async with self.session_factory() as session:
            reader = EventStoreReader(session)
            metrics = MetricsService(session, self.redis)
            await FeedbackMetricsAssembler(reader, metrics).assemble_and_upsert(window, company_id)
            await UserMetricsAssembler(reader, metrics, self.directory).assemble_and_upsert(
                window, company_id
            )

    @staticmethod
    def resolve_windows(
        kind: PeriodKind,
        reference: datetime,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[PeriodWindow]:
        """One window for ``reference``, or every window covering a backfill range."""
        if start is None and end is None:
            return [calculate_period_window(kind, reference)]
        range_end = to_utc(end) if end else reference
        range_start = to_utc(start) if start else range_end
        if range_start > range_end:
            range_start, range_end = range_end, range_start
        return list(iter_period_windows(kind, range_start, range_end))

    async def run(
        self,
        period: PeriodKind | str,
        reference: datetime | None = None,
        company_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> AggregationRunResult:
        """Aggregate ``period`` for every scope.

        Raises:
            InvalidPeriodError: If ``period`` is unknown (before any work).
            StoreUnavailableError: If the known companies cannot be listed.
        """
        kind = parse_period(period)
        reference = to_utc(reference) if reference else datetime.now(timezone.utc)
        windows = self.resolve_windows(kind, reference, start, end)

        scopes: list[str | None] = [company_id] if company_id else [None]
        if not company_id:
            scopes.extend(await self.known_companies())

        result = AggregationRunResult(period=kind.value, windows=windows, scopes=scopes)
        logger.info(
            "Starting %s aggregation: %d window(s), %d scope(s)",
            kind.value,
            len(windows),
            len(scopes),
        )

        for window in windows:
            for scope in scopes:
                scope_name = scope or PLATFORM_SCOPE
                try:
                    await asyncio.wait_for(
                        self.aggregate_scope(window, scope), timeout=self.scope_timeout
                    )
                except asyncio.TimeoutError:
                    result.failed += 1
                    result.failed_scopes.append(scope_name)
                    logger.error(
                        "%s aggregation timed out after %ss (scope=%s, start=%s)",
                        kind.value,
                        self.scope_timeout,
                        scope_name,
                        window.start.isoformat(),
                    )
                except Exception:
                    result.failed += 1
                    result.failed_scopes.append(scope_name)
                    logger.exception(
                        "%s aggregation failed (scope=%s, start=%s)",
                        kind.value,
                        scope_name,
                        window.start.isoformat(),
                    )
                else:
                    result.succeeded += 1

        logger.info(
            "Finished %s aggregation: %d succeeded, %d failed",
            kind.value,
            result.succeeded,
            result.failed,
        )
        return result
