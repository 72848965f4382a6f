"""
APScheduler-based supervisor for the daily appointment reminder run.

One SchedulerSupervisor owns one cron trigger and one run lock. The cron
firing and operator-initiated runs both go through the same locked entry
point, so at most one batch run is ever in flight. The composition root
creates the supervisor and hands it to whatever needs control or status.

Lifecycle:
    uninitialized --initialize()--> stopped <--start()/stop()--> running
    shutdown() tears the underlying APScheduler down at process exit.
"""

import asyncio
import logging
import random
import string
from dataclasses import dataclass, replace
from datetime import date, datetime

import sentry_sdk
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from reminders.config import DEFAULT_CRON_SCHEDULE, OVERLAP_POLICIES, OVERLAP_REJECT
from reminders.notifications.batch import ReminderRunStats
from reminders.notifications.errors import (
    InvalidScheduleError,
    NotInitializedError,
    RunInProgressError,
)
from reminders.timezone import format_timestamp, timezone_label

logger = logging.getLogger(__name__)


REMINDER_JOB_ID = "appointment_reminders"

# Health check turns unhealthy at this failed-run ratio
UNHEALTHY_FAILURE_RATIO = 0.5


@dataclass
class SchedulerState:
    is_initialized: bool = False
    is_running: bool = False
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    skipped_runs: int = 0
    last_run_id: str | None = None
    last_error: str | None = None
    last_run_stats: ReminderRunStats | None = None

    @property
    def failure_ratio(self) -> float:
        """Unrounded failed/total ratio; health decisions use this."""
        if self.total_runs == 0:
            return 0.0
        return self.failed_runs / self.total_runs

    @property
    def error_rate(self) -> float:
        """Failed runs as a percentage of all runs, rounded for display."""
        return round(self.failure_ratio * 100, 2)

    def snapshot(self) -> "SchedulerState":
        stats = replace(self.last_run_stats) if self.last_run_stats else None
        return replace(self, last_run_stats=stats)

    def to_dict(self, tz_name: str) -> dict:
        return {
            "isInitialized": self.is_initialized,
            "isRunning": self.is_running,
            "lastRunAt": format_timestamp(self.last_run_at, tz_name),
            "nextRunAt": format_timestamp(self.next_run_at, tz_name),
            "totalRuns": self.total_runs,
            "successfulRuns": self.successful_runs,
            "failedRuns": self.failed_runs,
            "skippedRuns": self.skipped_runs,
            "lastRunId": self.last_run_id,
            "lastError": self.last_error,
            "lastRunStats": self.last_run_stats.to_dict() if self.last_run_stats else None,
        }


def generate_run_id(now: datetime) -> str:
    """Run identifier for log correlation, e.g. "REM-20240115-090000-K3Z"."""
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=3))
    return f"REM-{now:%Y%m%d-%H%M%S}-{suffix}"


class SchedulerSupervisor:
    """
    Owns the recurring reminder trigger and the no-overlap guarantee.

    Args:
        processor: ReminderBatchProcessor
        clock: Clock for the operational timezone (also the cron timezone)
        cron_schedule: 5-field crontab expression
        overlap_policy: "reject" raises RunInProgressError while a run is in
            flight; "queue" waits for it to finish and then runs
    """

    def __init__(
        self,
        processor,
        clock,
        cron_schedule: str = DEFAULT_CRON_SCHEDULE,
        overlap_policy: str = OVERLAP_REJECT,
    ):
        if overlap_policy not in OVERLAP_POLICIES:
            raise ValueError(f"Unknown overlap policy: {overlap_policy!r}")

        self.processor = processor
        self.clock = clock
        self.cron_schedule = cron_schedule
        self.overlap_policy = overlap_policy

        self._scheduler: AsyncIOScheduler | None = None
        self._trigger: CronTrigger | None = None
        self._run_lock = asyncio.Lock()
        self._state = SchedulerState()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> None:
        """
        Validate the cron expression and build the trigger, left stopped.

        Raises:
            InvalidScheduleError: The cron expression is invalid
        """
        if self._scheduler is not None:
            logger.warning("Reminder scheduler already initialized")
            return

        try:
            trigger = CronTrigger.from_crontab(self.cron_schedule, timezone=self.clock.tz)
        except ValueError as e:
            raise InvalidScheduleError(
                f"Invalid cron schedule {self.cron_schedule!r}: {e}"
            ) from e

        self._trigger = trigger
        self._scheduler = AsyncIOScheduler(
            timezone=self.clock.tz,
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,
                "misfire_grace_time": 3600,  # Allow 1 hour late execution
            },
        )
        self._state.is_initialized = True

        logger.info(
            f"Reminder scheduler configured with {self.cron_schedule!r} "
            f"({self.clock.tz_name}); next execution would be "
            f"{format_timestamp(self._compute_next_run(), self.clock.tz_name)}"
        )

    def start(self) -> None:
        """Arm the trigger. Must be called from within the running event loop."""
        self._require_initialized()

        if self._state.is_running:
            logger.warning("Reminder scheduler is already running")
            return

        if not self._scheduler.running:
            self._scheduler.start()

        self._scheduler.add_job(
            self._execute_scheduled_run,
            trigger=self._trigger,
            id=REMINDER_JOB_ID,
            name="Appointment reminders",
            replace_existing=True,
        )
        self._state.is_running = True
        self._state.next_run_at = self._compute_next_run()

        logger.info(
            f"Reminder scheduler started; next run at "
            f"{format_timestamp(self._state.next_run_at, self.clock.tz_name)}"
        )

    def stop(self) -> None:
        """Disarm the trigger. A run already in progress is left to finish."""
        self._require_initialized()

        if not self._state.is_running:
            logger.info("Reminder scheduler is already stopped")
            return

        try:
            self._scheduler.remove_job(REMINDER_JOB_ID)
        except JobLookupError:
            pass  # Already gone

        self._state.is_running = False
        self._state.next_run_at = None
        logger.info("Reminder scheduler stopped")

    def restart(self) -> None:
        logger.info("Restarting reminder scheduler")
        self.stop()
        self.start()

    def shutdown(self) -> None:
        """Tear down the underlying APScheduler. Call on process shutdown."""
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._state.is_running = False
        self._state.next_run_at = None
        logger.info("Reminder scheduler shut down")

    def _require_initialized(self) -> None:
        if self._scheduler is None:
            raise NotInitializedError(
                "Reminder scheduler not initialized. Call initialize() first."
            )

    def _compute_next_run(self) -> datetime | None:
        if self._trigger is None:
            return None
        return self._trigger.get_next_fire_time(None, self.clock.now())

    # =========================================================================
    # Runs
    # =========================================================================

    async def _run_exclusive(
        self, run_id: str, source: str, target_date: date | None = None
    ) -> ReminderRunStats:
        """
        Run the batch once while holding the run lock, recording the outcome.

        Raises:
            RunInProgressError: Another run holds the lock (reject policy)
            Exception: Whatever the batch raised, after it was recorded
        """
        if self.overlap_policy == OVERLAP_REJECT and self._run_lock.locked():
            raise RunInProgressError(
                f"Reminder run {self._state.last_run_id} is still in progress"
            )

        async with self._run_lock:
            state = self._state
            state.total_runs += 1
            state.last_run_at = self.clock.now()
            state.last_run_id = run_id
            state.next_run_at = self._compute_next_run() if state.is_running else None

            logger.info(
                f"[{run_id}] Starting {source} reminder run at "
                f"{format_timestamp(state.last_run_at, self.clock.tz_name)}"
            )

            try:
                stats = await self.processor.run_once(target_date)
            except Exception as e:
                state.failed_runs += 1
                state.last_error = f"{type(e).__name__}: {e}"
                logger.error(
                    f"[{run_id}] Reminder run failed "
                    f"(total={state.total_runs}, failed={state.failed_runs}): {e}",
                    exc_info=True,
                )
                sentry_sdk.capture_exception(e)
                raise

            state.successful_runs += 1
            state.last_error = None
            state.last_run_stats = stats

            logger.info(
                f"[{run_id}] Reminder run completed: {stats.citizen_reminders_sent} citizens, "
                f"{stats.officer_reminders_sent} officers notified"
            )
            if stats.failures > 0:
                logger.warning(
                    f"[{run_id}] {stats.failures} failures encountered during execution"
                )
            return stats

    async def _execute_scheduled_run(self) -> None:
        """Job function called by APScheduler. Never raises."""
        run_id = generate_run_id(self.clock.now())
        try:
            await self._run_exclusive(run_id, "scheduled")
        except RunInProgressError as e:
            self._state.skipped_runs += 1
            logger.warning(f"[{run_id}] Skipping scheduled reminder run: {e}")
            sentry_sdk.capture_message(
                f"Scheduled reminder run skipped: {e}", level="warning"
            )
        except Exception as e:
            # Already counted as a failed run; the supervisor keeps going
            logger.error(f"[{run_id}] Scheduled reminder run ended with error: {e}")

        logger.info(
            f"[{run_id}] Next execution scheduled for "
            f"{format_timestamp(self._state.next_run_at, self.clock.tz_name)}"
        )

    async def trigger_manually(
        self, reason: str | None = None, target_date: date | None = None
    ) -> ReminderRunStats:
        """
        Run the batch now, outside the schedule (operator catch-up).

        Raises:
            NotInitializedError: initialize() has not been called
            RunInProgressError: A run is already in flight (reject policy)
            AppointmentFetchError: The run could not load its appointments
        """
        self._require_initialized()

        run_id = generate_run_id(self.clock.now())
        logger.info(f"[{run_id}] Manual reminder run requested: {reason or 'Admin triggered'}")
        return await self._run_exclusive(run_id, "manual", target_date)

    # =========================================================================
    # Status
    # =========================================================================

    @property
    def is_run_in_progress(self) -> bool:
        return self._run_lock.locked()

    def get_status(self) -> SchedulerState:
        """Snapshot copy of the scheduler state."""
        state = self._state.snapshot()
        if state.is_running:
            state.next_run_at = self._compute_next_run()
        return state

    def health_check(self) -> dict:
        state = self.get_status()
        error_rate = state.error_rate
        is_healthy = (
            state.is_initialized
            and state.is_running
            and state.failure_ratio < UNHEALTHY_FAILURE_RATIO
        )
        return {
            "status": "healthy" if is_healthy else "unhealthy",
            "details": {
                "isInitialized": state.is_initialized,
                "isRunning": state.is_running,
                "lastRunAt": format_timestamp(state.last_run_at, self.clock.tz_name),
                "nextRunAt": format_timestamp(state.next_run_at, self.clock.tz_name),
                "errorRate": error_rate,
            },
        }

    def get_debug_info(self) -> dict:
        """Detailed scheduler information for debugging."""
        return {
            "cronSchedule": self.cron_schedule,
            "timezone": self.clock.tz_name,
            "timezoneLabel": timezone_label(self.clock.tz_name),
            "overlapPolicy": self.overlap_policy,
            "currentTime": format_timestamp(self.clock.now(), self.clock.tz_name),
            "triggerExists": self._trigger is not None,
            "runInProgress": self.is_run_in_progress,
            "schedulerStats": self.get_status().to_dict(self.clock.tz_name),
            "healthCheck": self.health_check(),
        }
