import asyncio

import pytest

from feedback_analytics.core.exceptions import InvalidPeriodError
from feedback_analytics.services.aggregation_service import AggregationRunResult
from feedback_analytics.services.periods import PeriodKind
from feedback_analytics.services.scheduler import (
    AggregationScheduler,
    JobStatus,
    default_schedules,
    job_name_for,
)
from tests.factories import make_event, utc


class StubService:
    """Aggregation service double that blocks until released."""

    def __init__(self, fail: Exception | None = None):
        self.calls: list[dict] = []
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.fail = fail

    async def run(self, period, reference=None, company_id=None, start=None, end=None):
        self.calls.append({"period": period, "company_id": company_id})
        self.started.set()
        await self.release.wait()
        if self.fail is not None:
            raise self.fail
        return AggregationRunResult(period=PeriodKind(period).value, succeeded=1)


@pytest.fixture
async def stub_scheduler():
    service = StubService()
    sched = AggregationScheduler(service, schedules={})  # type: ignore[arg-type]
    yield sched, service
    await sched.shutdown()


def test_job_names():
    assert job_name_for("daily") == "daily-aggregation"
    assert job_name_for(PeriodKind.ALL_TIME) == "all_time-aggregation"


def test_default_schedules_cover_cron_periods():
    schedules = default_schedules()
    assert set(schedules) == {PeriodKind.DAILY, PeriodKind.WEEKLY, PeriodKind.MONTHLY}
    assert schedules[PeriodKind.DAILY] == "0 0 * * *"


@pytest.mark.asyncio
async def test_second_trigger_is_skipped_while_running(stub_scheduler):
    sched, service = stub_scheduler

    assert sched.trigger("daily") is True
    assert sched.trigger("daily") is False
    await service.started.wait()

    assert len(service.calls) == 1
    state = sched._states["daily-aggregation"]
    assert state.status is JobStatus.RUNNING
    assert state.skipped_count == 1
    assert sched.is_running("daily-aggregation")

    service.release.set()
    await sched.join("daily-aggregation")

    assert state.status is JobStatus.IDLE
    assert state.last_outcome is JobStatus.SUCCEEDED
    assert state.run_count == 1
    assert state.last_result["succeeded"] == 1


@pytest.mark.asyncio
async def test_different_periods_run_concurrently(stub_scheduler):
    sched, service = stub_scheduler

    assert sched.trigger("daily") is True
    assert sched.trigger("weekly") is True

    service.release.set()
    await sched.join("daily-aggregation")
    await sched.join("weekly-aggregation")

    assert sorted(call["period"] for call in service.calls) == [
        PeriodKind.DAILY,
        PeriodKind.WEEKLY,
    ]


@pytest.mark.asyncio
async def test_job_can_run_again_after_finishing(stub_scheduler):
    sched, service = stub_scheduler
    service.release.set()

    first = await sched.run_job("monthly")
    second = await sched.run_job("monthly", company_id="acme")

    assert first is not None and second is not None
    assert sched._states["monthly-aggregation"].run_count == 2
    assert service.calls[1]["company_id"] == "acme"


@pytest.mark.asyncio
async def test_invalid_period_raises(stub_scheduler):
    sched, service = stub_scheduler

    with pytest.raises(InvalidPeriodError):
        sched.trigger("hourly")
    assert service.calls == []


@pytest.mark.asyncio
async def test_failure_is_recorded_and_job_returns_to_idle():
    service = StubService(fail=RuntimeError("boom"))
    service.release.set()
    sched = AggregationScheduler(service, schedules={})  # type: ignore[arg-type]

    result = await sched.run_job("weekly")

    assert result is None
    state = sched._states["weekly-aggregation"]
    assert state.status is JobStatus.IDLE
    assert state.last_outcome is JobStatus.FAILED
    assert state.last_error == "boom"
    assert sched.trigger("weekly") is True
    await sched.join("weekly-aggregation")


@pytest.mark.asyncio
async def test_cancel_running_job(stub_scheduler):
    sched, service = stub_scheduler

    sched.trigger("quarterly")
    await service.started.wait()

    assert sched.cancel("quarterly-aggregation") is True
    await sched.join("quarterly-aggregation")

    state = sched._states["quarterly-aggregation"]
    assert state.status is JobStatus.IDLE
    assert state.last_outcome is JobStatus.FAILED
    assert state.last_error == "cancelled"
    assert sched.cancel("quarterly-aggregation") is False


@pytest.mark.asyncio
async def test_cancel_before_first_step_still_finishes_state(stub_scheduler):
    sched, service = stub_scheduler

    sched.trigger("yearly")
    sched.cancel("yearly-aggregation")
    await sched.join("yearly-aggregation")

    state = sched._states["yearly-aggregation"]
    assert state.status is JobStatus.IDLE
    assert state.last_outcome is JobStatus.FAILED


@pytest.mark.asyncio
async def test_shutdown_waits_for_cancelled_runs():
    service = StubService()
    sched = AggregationScheduler(service, schedules={})  # type: ignore[arg-type]
    sched.trigger("daily")
    await service.started.wait()
    task = sched._tasks["daily-aggregation"]

    await sched.shutdown()

    assert task.done()
    state = sched._states["daily-aggregation"]
    assert state.status is JobStatus.IDLE
    assert state.last_error == "cancelled"
    assert sched._tasks == {}


@pytest.mark.asyncio
async def test_start_registers_cron_jobs():
    service = StubService()
    sched = AggregationScheduler(
        service,  # type: ignore[arg-type]
        schedules={PeriodKind.DAILY: "0 1 * * *", PeriodKind.MONTHLY: "0 3 1 * *"},
    )
    sched.start()
    try:
        daily = sched.scheduler.get_job("daily-aggregation")
        monthly = sched.scheduler.get_job("monthly-aggregation")
        assert daily is not None and monthly is not None
        assert daily.next_run_time.hour == 1
        assert monthly.next_run_time.day == 1
        assert [s.name for s in sched.job_states()] == [
            "daily-aggregation",
            "monthly-aggregation",
        ]
    finally:
        await sched.shutdown()
    assert not sched.scheduler.running


@pytest.mark.asyncio
async def test_runs_real_aggregation(scheduler, add_events):
    await add_events(
        make_event("feedback", "feedback.created", utc(2025, 3, 10, 9), company_id="acme"),
    )

    result = await scheduler.run_job("daily", reference=utc(2025, 3, 10, 12))

    assert result is not None
    assert result.succeeded == 2
    state = scheduler._states["daily-aggregation"].as_dict()
    assert state["status"] == "idle"
    assert state["last_outcome"] == "succeeded"
    assert state["last_result"]["scopes"] == 2
