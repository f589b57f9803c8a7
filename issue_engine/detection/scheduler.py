"""
Detection Scheduler

Drives detection passes on a fixed interval (APScheduler) and accepts
on-demand triggers. Both paths funnel into one single-flight entry point:

    Idle --trigger--> Running --pass done/failed/timed out--> Idle

A trigger that arrives while Running is rejected, never queued. No pass
failure stops the timer.
"""

import asyncio
import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from issue_engine.config import settings
from .engine import DetectionEngine, DetectionPassResult, build_detection_engine
from .exceptions import DataUnavailable, PersistenceError, SchedulerOverlapError

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class IssueDetectionScheduler:
    """
    Runs detection passes on an interval and on demand, one at a time.

    Usage:
        scheduler = IssueDetectionScheduler(engine)
        scheduler.start(interval_minutes=15)
        scheduler.trigger_now()   # {"triggered": True}
        scheduler.get_status()
        scheduler.stop()
        await scheduler.shutdown()   # also cancels on-demand passes
    """

    JOB_ID = "issue_detection"

    def __init__(self, engine: DetectionEngine, pass_timeout_seconds: float = 300.0):
        self.engine = engine
        self.pass_timeout_seconds = pass_timeout_seconds
        self.interval_minutes: Optional[int] = None

        self._scheduler: Optional[AsyncIOScheduler] = None
        # Held for the whole load -> evaluate -> aggregate -> persist sequence
        self._pass_lock = threading.Lock()
        self._tasks: Set[asyncio.Task] = set()

        self._runs_completed = 0
        self._runs_failed = 0
        self._runs_rejected = 0
        self._last_started_at: Optional[datetime] = None
        self._last_completed_at: Optional[datetime] = None
        self._last_result: Optional[DetectionPassResult] = None
        self._last_error: Optional[str] = None

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.RUNNING if self._pass_lock.locked() else SchedulerState.IDLE

    @property
    def is_started(self) -> bool:
        return self._scheduler is not None

    def start(self, interval_minutes: int = 15, run_immediately: bool = True) -> None:
        """Start the recurring timer. Must be called with an event loop running."""
        if interval_minutes < 1:
            raise ValueError("interval_minutes must be at least 1")
        if self.is_started:
            logger.info("Issue detection scheduler already running")
            return

        scheduler = AsyncIOScheduler(timezone=timezone.utc)
        job_options: Dict[str, Any] = {}
        if run_immediately:
            job_options["next_run_time"] = datetime.now(timezone.utc)

        scheduler.add_job(
            self._run_scheduled_pass,
            "interval",
            minutes=interval_minutes,
            id=self.JOB_ID,
            name="Issue Detection Run",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **job_options,
        )
        scheduler.start()

        self._scheduler = scheduler
        self.interval_minutes = interval_minutes
        logger.info(f"Starting issue detection scheduler (runs every {interval_minutes} minutes)")

    def stop(self) -> None:
        """Stop the timer. A pass already in flight is allowed to finish."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        self.interval_minutes = None
        logger.info("Issue detection scheduler stopped")

    async def shutdown(self) -> None:
        """Stop the timer and cancel on-demand passes still in flight."""
        self.stop()
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info(f"Cancelled {len(pending)} on-demand detection pass(es) on shutdown")

    # ==========================================================================
    # Triggers
    # ==========================================================================

    def trigger_now(self) -> Dict[str, Any]:
        """
        Start an on-demand pass in the background and return immediately.

        Completion is observable through get_status().
        """
        try:
            self._acquire("on_demand")
        except SchedulerOverlapError as e:
            self._reject(e)
            return {"triggered": False, "reason": "detection pass already running"}

        try:
            task = asyncio.get_running_loop().create_task(self._run_locked("on_demand"))
        except RuntimeError:
            self._pass_lock.release()
            raise
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return {"triggered": True}

    async def run_once(self, trigger: str = "on_demand") -> Optional[DetectionPassResult]:
        """Run a pass and wait for it. Returns None if rejected or failed."""
        try:
            self._acquire(trigger)
        except SchedulerOverlapError as e:
            self._reject(e)
            return None
        return await self._run_locked(trigger)

    async def _run_scheduled_pass(self) -> None:
        await self.run_once("scheduled")

    def _acquire(self, trigger: str) -> None:
        """Take the pass guard without waiting."""
        if not self._pass_lock.acquire(blocking=False):
            raise SchedulerOverlapError(f"Ignoring {trigger} detection trigger: a pass is already running")

    def _reject(self, error: SchedulerOverlapError) -> None:
        self._runs_rejected += 1
        logger.warning(str(error))

    # ==========================================================================
    # Pass execution
    # ==========================================================================

    async def _run_locked(self, trigger: str) -> Optional[DetectionPassResult]:
        """Run one pass. Caller must hold _pass_lock; it is released here."""
        self._last_started_at = datetime.now(timezone.utc)
        logger.info(f"Running {trigger} issue detection...")

        try:
            result = await asyncio.wait_for(
                self.engine.run_pass(trigger=trigger),
                timeout=self.pass_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._record_failure(
                f"Detection pass exceeded its {self.pass_timeout_seconds}s budget and was abandoned"
            )
            return None
        except DataUnavailable as e:
            self._record_failure(f"Detection pass aborted, data unavailable: {e}")
            return None
        except PersistenceError as e:
            self._record_failure(f"Detection pass aborted, persistence failure: {e}")
            return None
        except Exception as e:
            logger.exception(f"Error during {trigger} issue detection: {e}")
            self._record_failure(f"Unexpected error: {e}", log=False)
            return None
        finally:
            self._last_completed_at = datetime.now(timezone.utc)
            self._pass_lock.release()

        self._runs_completed += 1
        self._last_result = result
        self._last_error = None

        by_severity = result.alerts_by_severity
        logger.info(
            f"Issue detection completed in {result.total_duration_ms}ms: "
            f"{result.alerts_created} alerts stored "
            f"({by_severity.get('critical', 0)} critical, {by_severity.get('high', 0)} high, "
            f"{by_severity.get('medium', 0)} medium, {by_severity.get('low', 0)} low), "
            f"{result.suppressed} suppressed, {result.persistence_failures} failed"
        )
        if by_severity.get("critical"):
            logger.warning("Critical issues detected requiring immediate attention")

        return result

    def _record_failure(self, message: str, log: bool = True) -> None:
        self._runs_failed += 1
        self._last_error = message
        if log:
            logger.error(message)

    # ==========================================================================
    # Status
    # ==========================================================================

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status including the last pass."""
        return {
            "state": self.state.value,
            "scheduler_started": self.is_started,
            "interval_minutes": self.interval_minutes,
            "runs_completed": self._runs_completed,
            "runs_failed": self._runs_failed,
            "runs_rejected": self._runs_rejected,
            "last_started_at": self._last_started_at.isoformat() if self._last_started_at else None,
            "last_completed_at": self._last_completed_at.isoformat() if self._last_completed_at else None,
            "last_result": self._last_result.to_dict() if self._last_result else None,
            "last_error": self._last_error,
        }


_detection_scheduler: Optional[IssueDetectionScheduler] = None


def get_detection_scheduler() -> IssueDetectionScheduler:
    """Process-wide scheduler, built on first use from application settings."""
    global _detection_scheduler
    if _detection_scheduler is None:
        _detection_scheduler = IssueDetectionScheduler(
            build_detection_engine(settings),
            pass_timeout_seconds=settings.DETECTION_PASS_TIMEOUT_SECONDS,
        )
    return _detection_scheduler
