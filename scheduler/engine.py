"""APScheduler-backed engine that periodically runs due scheduled tasks."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import SchedulerConfig
from scheduler.execute import ExecuteScheduledTask
from scheduler.results import Outcome

logger = logging.getLogger(__name__)

TICK_JOB_ID = "panel-scheduler-tick"


class SchedulingEngine:
    """Fires one tick every ``check_interval_seconds`` that executes due tasks."""

    def __init__(self, executor: ExecuteScheduledTask, config: SchedulerConfig | None = None):
        self._executor = executor
        self._config = config or SchedulerConfig()
        self._aps = AsyncIOScheduler()
        self.ticks = 0
        self.executed_total = 0
        self.failed_total = 0
        self.last_tick_at: datetime | None = None
        self.last_error: str | None = None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._aps.running

    async def start(self) -> None:
        if self._aps.running:
            return
        self._aps.add_job(
            self.run_tick,
            trigger=IntervalTrigger(seconds=self._config.check_interval_seconds),
            id=TICK_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._aps.start()
        await self.catch_up()
        logger.info(
            "SchedulingEngine started",
            extra={"interval_s": self._config.check_interval_seconds,
                   "max_tasks": self._config.max_tasks_per_tick},
        )

    async def shutdown(self) -> None:
        if self._aps.running:
            self._aps.shutdown(wait=False)
        logger.info("SchedulingEngine stopped", extra={"ticks": self.ticks})

    # ── Ticks ────────────────────────────────────────────────────────────────

    async def run_tick(self, at: datetime | None = None) -> Outcome:
        """Execute every task due now (within the execution tolerance)."""
        self.ticks += 1
        self.last_tick_at = at or self._executor.now()
        outcome = await self._executor.execute_due_tasks(
            at=self.last_tick_at,
            tolerance_minutes=self._config.execution_tolerance_minutes,
            max_tasks=self._config.max_tasks_per_tick,
        )
        if not self._record(outcome):
            logger.error("Scheduler tick failed", extra={"error": outcome.error})
        elif outcome.data.get("total_due"):
            logger.info(
                "Scheduler tick",
                extra={"tick": self.ticks, "executed": outcome.data["executed"], "failed": outcome.data["failed"]},
            )
        return outcome

    async def catch_up(self, at: datetime | None = None) -> Outcome:
        """Run tasks missed while the engine was down, up to ``max_overdue_hours`` old."""
        outcome = await self._executor.execute_overdue_tasks(
            at=at or self._executor.now(),
            tolerance_minutes=self._config.execution_tolerance_minutes,
            max_overdue_hours=self._config.max_overdue_hours,
            max_tasks=self._config.max_tasks_per_tick,
        )
        if not self._record(outcome):
            logger.error("Scheduler catch-up failed", extra={"error": outcome.error})
        elif outcome.data.get("total_due") or outcome.data.get("skipped_stale"):
            logger.info(
                "Scheduler catch-up",
                extra={"executed": outcome.data["executed"], "failed": outcome.data["failed"],
                       "skipped_stale": outcome.data["skipped_stale"]},
            )
        return outcome

    def _record(self, outcome: Outcome) -> bool:
        if outcome.data:
            self.executed_total += outcome.data.get("executed", 0)
            self.failed_total += outcome.data.get("failed", 0)
        self.last_error = None if outcome.success else outcome.error
        return outcome.success

    def next_tick_time(self) -> datetime | None:
        job = self._aps.get_job(TICK_JOB_ID)
        return job.next_run_time if job else None

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "interval_seconds": self._config.check_interval_seconds,
            "ticks": self.ticks,
            "executed_total": self.executed_total,
            "failed_total": self.failed_total,
            "last_tick_at": self.last_tick_at,
            "last_error": self.last_error,
            "next_tick_at": self.next_tick_time() if self.running else None,
        }
