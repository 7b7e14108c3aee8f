"""Aggregation scheduler: cron ticks and manual triggers with per-job state.

Job names are shared between cron ticks and manual triggers of the same
period (``daily-aggregation``, ...), so at most one run per period is ever in
flight. A trigger that finds its job already running is skipped, not queued.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from feedback_analytics.core.config import settings
from feedback_analytics.services.aggregation_service import (
    AggregationRunResult,
    AggregationService,
)
from feedback_analytics.services.periods import PeriodKind, parse_period

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class JobState:
    name: str
    status: JobStatus = JobStatus.IDLE
    last_outcome: JobStatus | None = None
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    run_count: int = 0
    skipped_count: int = 0
    last_error: str | None = None
    last_result: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["last_outcome"] = self.last_outcome.value if self.last_outcome else None
        return data


def default_schedules() -> dict[PeriodKind, str]:
    return {
        PeriodKind.DAILY: settings.DAILY_AGGREGATION_SCHEDULE,
        PeriodKind.WEEKLY: settings.WEEKLY_AGGREGATION_SCHEDULE,
        PeriodKind.MONTHLY: settings.MONTHLY_AGGREGATION_SCHEDULE,
    }


def job_name_for(period: PeriodKind | str) -> str:
    return f"{parse_period(period).value}-aggregation"


class AggregationScheduler:
    """Owns the cron scheduler, the job states and the in-flight run tasks."""

    def __init__(
        self,
        service: AggregationService,
        schedules: dict[PeriodKind, str] | None = None,
    ):
        self.service = service
        self.schedules = default_schedules() if schedules is None else schedules
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self._states: dict[str, JobState] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        for period in self.schedules:
            self._state(job_name_for(period))

    def _state(self, name: str) -> JobState:
        if name not in self._states:
            self._states[name] = JobState(name=name)
        return self._states[name]

    def start(self) -> None:
        """Register the cron jobs and start the scheduler on the running loop."""
        for period, expression in self.schedules.items():
            self.scheduler.add_job(
                self.run_job,
                trigger=CronTrigger.from_crontab(expression, timezone="UTC"),
                id=job_name_for(period),
                name=job_name_for(period),
                args=[period.value],
                max_instances=1,
                coalesce=True,
                misfire_grace_time=300,
                replace_existing=True,
            )
            logger.info("Scheduled %s with cron '%s' (UTC)", job_name_for(period), expression)
        self.scheduler.start()

    async def shutdown(self) -> None:
        """Stop the cron scheduler, then cancel in-flight runs and wait for them to unwind."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Aggregation scheduler stopped")

    def _launch(
        self,
        period: PeriodKind | str,
        *,
        reference: datetime | None = None,
        company_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> asyncio.Task | None:
        kind = parse_period(period)
        state = self._state(job_name_for(kind))

        # No await between the check and the mark: the guard is atomic on the loop
        if state.status is JobStatus.RUNNING:
            state.skipped_count += 1
            logger.warning("Skipping %s: previous run still in progress", state.name)
            return None

        state.status = JobStatus.RUNNING
        state.last_started_at = datetime.now(timezone.utc)
        state.run_count += 1

        task = asyncio.create_task(
            self._execute(state, kind, reference, company_id, start, end),
            name=state.name,
        )
        self._tasks[state.name] = task
        task.add_done_callback(lambda done: self._on_done(state, done))
        return task

    def _on_done(self, state: JobState, task: asyncio.Task) -> None:
        self._tasks.pop(state.name, None)
        # Cancelled before its first step, so _execute never recorded an outcome
        if state.status is JobStatus.RUNNING:
            self._finish(state, JobStatus.FAILED, error="cancelled")

    async def _execute(
        self,
        state: JobState,
        kind: PeriodKind,
        reference: datetime | None,
        company_id: str | None,
        start: datetime | None,
        end: datetime | None,
    ) -> AggregationRunResult | None:
        try:
            result = await self.service.run(
                kind, reference=reference, company_id=company_id, start=start, end=end
            )
        except asyncio.CancelledError:
            self._finish(state, JobStatus.FAILED, error="cancelled")
            logger.warning("%s cancelled", state.name)
            raise
        except Exception as exc:
            self._finish(state, JobStatus.FAILED, error=str(exc) or type(exc).__name__)
            logger.exception("%s failed", state.name)
            return None

        self._finish(state, JobStatus.SUCCEEDED, result=result.as_dict())
        return result

    @staticmethod
    def _finish(
        state: JobState,
        outcome: JobStatus,
        *,
        error: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> None:
        state.last_outcome = outcome
        state.last_finished_at = datetime.now(timezone.utc)
        state.last_error = error
        state.last_result = result
        state.status = JobStatus.IDLE

    def trigger(
        self,
        period: PeriodKind | str,
        *,
        company_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        reference: datetime | None = None,
    ) -> bool:
        """Start a run in the background; False when the job is already running.

        Raises:
            InvalidPeriodError: If ``period`` is unknown.
        """
        task = self._launch(
            period, reference=reference, company_id=company_id, start=start, end=end
        )
        return task is not None

    async def run_job(
        self,
        period: PeriodKind | str,
        *,
        company_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        reference: datetime | None = None,
    ) -> AggregationRunResult | None:
        """Run a job and wait for it. Returns None when skipped, failed or cancelled."""
        task = self._launch(
            period, reference=reference, company_id=company_id, start=start, end=end
        )
        if task is None:
            return None
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    async def join(self, job_name: str) -> None:
        """Wait for the in-flight run of ``job_name`` to finish, if any."""
        task = self._tasks.get(job_name)
        if task is not None:
            await asyncio.wait({task})

    def cancel(self, job_name: str) -> bool:
        """Cancel the in-flight run of ``job_name``, if any."""
        task = self._tasks.get(job_name)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def is_running(self, job_name: str) -> bool:
        state = self._states.get(job_name)
        return state is not None and state.status is JobStatus.RUNNING

    def job_states(self) -> list[JobState]:
        return [self._states[name] for name in sorted(self._states)]
