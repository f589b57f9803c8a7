"""
Tests for the detection scheduler.

Covers the single-flight guard, pass timeout and failure handling, and
the APScheduler lifecycle.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from issue_engine.detection.engine import DetectionEngine, DetectionPassResult
from issue_engine.detection.exceptions import DataUnavailable, SchedulerOverlapError
from issue_engine.detection.scheduler import IssueDetectionScheduler, SchedulerState


class BlockingEngine:
    """Engine double whose pass waits until released."""

    def __init__(self):
        self.release = asyncio.Event()
        self.calls = []

    async def run_pass(self, trigger="scheduled", as_of=None):
        self.calls.append(trigger)
        await self.release.wait()
        return DetectionPassResult(trigger=trigger, run_at=datetime.now(timezone.utc))


class FailingEngine:
    def __init__(self, error):
        self.error = error

    async def run_pass(self, trigger="scheduled", as_of=None):
        raise self.error


class SlowEngine:
    async def run_pass(self, trigger="scheduled", as_of=None):
        await asyncio.sleep(5)


async def wait_for_status(scheduler, key, value=1, attempts=200):
    for _ in range(attempts):
        if scheduler.get_status()[key] >= value:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"{key} never reached {value}: {scheduler.get_status()}")


@pytest.fixture
def engine(loader, repository):
    return DetectionEngine(loader, repository)


# =============================================================================
# Passes
# =============================================================================

class TestRunOnce:

    @pytest.mark.asyncio
    async def test_successful_pass_updates_status(self, engine, repository):
        scheduler = IssueDetectionScheduler(engine)

        result = await scheduler.run_once("on_demand")

        assert result.alerts_created == 5
        status = scheduler.get_status()
        assert status["state"] == "idle"
        assert status["runs_completed"] == 1
        assert status["runs_failed"] == 0
        assert status["last_result"]["persistence"]["alerts_created"] == 5
        assert status["last_error"] is None
        assert status["last_completed_at"] is not None

    @pytest.mark.asyncio
    async def test_overlapping_pass_is_rejected(self):
        engine = BlockingEngine()
        scheduler = IssueDetectionScheduler(engine)

        first = asyncio.create_task(scheduler.run_once("scheduled"))
        await asyncio.sleep(0)
        assert scheduler.state == SchedulerState.RUNNING

        assert await scheduler.run_once("on_demand") is None
        assert scheduler.trigger_now() == {"triggered": False, "reason": "detection pass already running"}

        engine.release.set()
        assert await first is not None

        status = scheduler.get_status()
        assert engine.calls == ["scheduled"]
        assert status["runs_rejected"] == 2
        assert status["runs_completed"] == 1
        assert status["state"] == "idle"

    @pytest.mark.asyncio
    async def test_pass_timeout_is_recorded_and_releases_guard(self, engine):
        scheduler = IssueDetectionScheduler(SlowEngine(), pass_timeout_seconds=0.05)

        assert await scheduler.run_once() is None

        status = scheduler.get_status()
        assert status["runs_failed"] == 1
        assert "budget" in status["last_error"]
        assert scheduler.state == SchedulerState.IDLE

        # The guard is free again for the next pass
        scheduler.engine = engine
        assert await scheduler.run_once() is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error, fragment", [
        (DataUnavailable("db down"), "data unavailable"),
        (RuntimeError("boom"), "Unexpected error"),
    ])
    async def test_failed_pass_is_recorded(self, error, fragment):
        scheduler = IssueDetectionScheduler(FailingEngine(error))

        assert await scheduler.run_once() is None

        status = scheduler.get_status()
        assert status["runs_failed"] == 1
        assert fragment in status["last_error"]
        assert status["state"] == "idle"

    @pytest.mark.asyncio
    async def test_success_clears_last_error(self, engine):
        scheduler = IssueDetectionScheduler(FailingEngine(RuntimeError("boom")))
        await scheduler.run_once()

        scheduler.engine = engine
        await scheduler.run_once()

        assert scheduler.get_status()["last_error"] is None


# =============================================================================
# On-demand trigger
# =============================================================================

class TestTriggerNow:

    @pytest.mark.asyncio
    async def test_returns_immediately_and_completes_in_background(self):
        engine = BlockingEngine()
        scheduler = IssueDetectionScheduler(engine)

        assert scheduler.trigger_now() == {"triggered": True}
        # Guard is taken before the task starts
        assert scheduler.state == SchedulerState.RUNNING

        engine.release.set()
        await wait_for_status(scheduler, "runs_completed")

        assert engine.calls == ["on_demand"]
        assert scheduler.get_status()["last_result"]["trigger"] == "on_demand"

    def test_requires_running_loop(self, engine):
        scheduler = IssueDetectionScheduler(engine)

        with pytest.raises(RuntimeError):
            scheduler.trigger_now()
        assert scheduler.state == SchedulerState.IDLE

    @pytest.mark.asyncio
    async def test_busy_guard_raises_overlap_error(self):
        engine = BlockingEngine()
        scheduler = IssueDetectionScheduler(engine)
        scheduler.trigger_now()

        with pytest.raises(SchedulerOverlapError, match="on_demand"):
            scheduler._acquire("on_demand")

        engine.release.set()
        await wait_for_status(scheduler, "runs_completed")
        assert scheduler.get_status()["runs_rejected"] == 0


# =============================================================================
# Lifecycle
# =============================================================================

class TestSchedulerLifecycle:

    @pytest.mark.asyncio
    async def test_start_registers_interval_job(self, engine):
        scheduler = IssueDetectionScheduler(engine)

        scheduler.start(interval_minutes=5, run_immediately=False)
        try:
            job = scheduler._scheduler.get_job(IssueDetectionScheduler.JOB_ID)
            assert job is not None
            assert job.max_instances == 1
            assert job.coalesce is True
            assert scheduler.get_status()["scheduler_started"] is True
            assert scheduler.get_status()["interval_minutes"] == 5
        finally:
            scheduler.stop()

        assert scheduler.get_status()["scheduler_started"] is False
        assert scheduler.get_status()["interval_minutes"] is None

    @pytest.mark.asyncio
    async def test_second_start_is_ignored(self, engine):
        scheduler = IssueDetectionScheduler(engine)

        scheduler.start(interval_minutes=5, run_immediately=False)
        first = scheduler._scheduler
        scheduler.start(interval_minutes=1, run_immediately=False)
        try:
            assert scheduler._scheduler is first
            assert scheduler.interval_minutes == 5
        finally:
            scheduler.stop()

    @pytest.mark.asyncio
    async def test_run_immediately_executes_first_pass(self, engine):
        scheduler = IssueDetectionScheduler(engine)

        scheduler.start(interval_minutes=15)
        try:
            await wait_for_status(scheduler, "runs_completed")
        finally:
            scheduler.stop()

        assert scheduler.get_status()["last_result"]["trigger"] == "scheduled"

    def test_invalid_interval_rejected(self, engine):
        with pytest.raises(ValueError):
            IssueDetectionScheduler(engine).start(interval_minutes=0)

    def test_stop_without_start_is_safe(self, engine):
        scheduler = IssueDetectionScheduler(engine)

        scheduler.stop()

        assert scheduler.is_started is False

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_on_demand_pass(self):
        engine = BlockingEngine()
        scheduler = IssueDetectionScheduler(engine)
        scheduler.start(interval_minutes=15, run_immediately=False)
        scheduler.trigger_now()
        while not engine.calls:
            await asyncio.sleep(0.01)

        await scheduler.shutdown()

        assert scheduler._tasks == set()
        assert scheduler.is_started is False
        assert scheduler.state == SchedulerState.IDLE
        assert scheduler.get_status()["runs_completed"] == 0

    @pytest.mark.asyncio
    async def test_shutdown_when_idle_only_stops_timer(self, engine):
        scheduler = IssueDetectionScheduler(engine)
        scheduler.start(interval_minutes=5, run_immediately=False)

        await scheduler.shutdown()

        assert scheduler.is_started is False
