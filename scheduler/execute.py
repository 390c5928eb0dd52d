"""ExecuteScheduledTask: run due tasks against the panel with retry/backoff.

A failed attempt is retried while the task's failure count is below
``max_retries``: the next attempt is pushed ``5 * 2**failure_count`` minutes
past the execution time (5, 10, 20, 40, ... with no ceiling). Past the cap the
task is left FAILED with no next execution.

Executions of the same task inside one process are serialized with a per-task
asyncio.Lock. Saves are last-writer-wins, so two scheduler processes sharing a
database can still both run a task; running a single scheduler loop is
required for at-most-once execution.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any

from core.logging_config import get_trace_id, trace_scope
from core.state import ActionType, TaskStatus
from core.tracer import Tracer
from scheduler import events
from scheduler.base import UseCase
from scheduler.ports import AuditCategory
from scheduler.results import ErrorKind, Outcome
from schedule.task import ScheduledTask
from tools.base import ActionResult
from tools.registry import ActionRegistry

logger = logging.getLogger(__name__)

BASE_RETRY_DELAY_MINUTES = 5
OVERDUE_WARNING_MINUTES = 5
SYSTEM_ACTOR = "system"


def retry_delay_minutes(failure_count: int) -> int:
    """Backoff before the next attempt, given failures recorded before this one."""
    return BASE_RETRY_DELAY_MINUTES * 2 ** failure_count


class ExecuteScheduledTask(UseCase):
    def __init__(
        self,
        repository,
        actions: ActionRegistry,
        max_retries: int = 3,
        overdue_cutoff_minutes: int = 60,
        **kwargs,
    ):
        super().__init__(repository, **kwargs)
        self.actions = actions
        self.max_retries = max_retries
        self.overdue_cutoff_minutes = overdue_cutoff_minutes
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ── Single task ──────────────────────────────────────────────────────────

    async def execute(
        self,
        task_id: str,
        *,
        at: datetime | None = None,
        dry_run: bool = False,
        ignore_overdue: bool = False,
        max_retries: int | None = None,
        early_tolerance_minutes: int = 0,
        tracer: Tracer | None = None,
    ) -> Outcome:
        if not task_id:
            return Outcome.fail("task_id is required", details={"field": "task_id"})
        bound = get_trace_id()
        with trace_scope(bound if bound != "-" else None):
            try:
                async with self._locks[task_id]:
                    outcome = await self._execute_locked(
                        task_id,
                        at=at or self.now(),
                        dry_run=dry_run,
                        ignore_overdue=ignore_overdue,
                        max_retries=self.max_retries if max_retries is None else max_retries,
                        early_tolerance_minutes=early_tolerance_minutes,
                        tracer=tracer or Tracer(),
                    )
                if self._lock_retired(outcome):
                    self._locks.pop(task_id, None)
                return outcome
            except Exception as e:
                return Outcome.unexpected(e, "execute_scheduled_task", self.expose_errors, task_id=task_id)

    @staticmethod
    def _lock_retired(outcome: Outcome) -> bool:
        """True once the task cannot run again without being reactivated."""
        if outcome.kind is ErrorKind.NOT_FOUND or (outcome.details or {}).get("field") == "status":
            return True
        task = outcome.data.get("task") if isinstance(outcome.data, dict) else None
        return task is not None and task.status is not TaskStatus.ACTIVE

    async def _execute_locked(
        self,
        task_id: str,
        *,
        at: datetime,
        dry_run: bool,
        ignore_overdue: bool,
        max_retries: int,
        early_tolerance_minutes: int,
        tracer: Tracer,
    ) -> Outcome:
        started = time.monotonic()
        task = await self.repository.find_by_id(task_id)
        if task is None:
            return Outcome.not_found("Scheduled task", task_id)

        not_ready = self._check_readiness(task, at, ignore_overdue, early_tolerance_minutes)
        if not_ready:
            return not_ready

        warnings = await self._pre_execution_warnings(task, at)
        was_overdue = task.is_overdue(at, OVERDUE_WARNING_MINUTES)

        if dry_run:
            return Outcome.ok(
                {
                    "task": task,
                    "dry_run": True,
                    "would_execute": task.describe_action(),
                    "action_parameters": task.action_parameters,
                    "execution_time": at,
                    "warnings": warnings,
                },
                message="Dry run - execution simulated successfully",
            )

        with tracer.span(f"{task.action_type.value}:{task.task_id}", kind="execution") as span:
            result = await self._invoke_action(task)
            span.ok = result.success
            if not result.success:
                span.attrs["error"] = result.error

        will_retry = False
        if result.success:
            task.record_successful_execution(at)
        else:
            will_retry = self._record_failure(task, result.error or "System action failed", at, max_retries)
        await self.repository.save(task)

        duration = round(time.monotonic() - started, 4)
        await self._audit_execution(task, result, at, will_retry, duration)
        await self._publish_execution(task, result, at, will_retry)

        data: dict[str, Any] = {
            "task": task,
            "action_result": result,
            "execution_time": at,
            "duration_s": duration,
            "next_execution_time": task.next_execution_time,
            "was_overdue": was_overdue,
            "warnings": warnings,
        }
        if result.success:
            logger.info(
                "Scheduled task executed",
                extra={"task_id": task.task_id, "action_type": task.action_type.value, "duration_s": duration},
            )
            label = task.action_type.value.lower().replace("_", " ")
            return Outcome.ok(data, message=f"Successfully executed scheduled {label} task")

        data["will_retry"] = will_retry
        data["retry_count"] = task.failure_count
        logger.warning(
            "Scheduled task failed",
            extra={"task_id": task.task_id, "error": result.error, "will_retry": will_retry,
                   "failure_count": task.failure_count},
        )
        return Outcome.fail(
            f"Failed to execute scheduled task: {result.error}",
            ErrorKind.EXECUTION,
            details={"will_retry": will_retry, "retry_count": task.failure_count,
                     "next_execution_time": task.next_execution_time},
            data=data,
        )

    def _check_readiness(
        self, task: ScheduledTask, at: datetime, ignore_overdue: bool, early_tolerance_minutes: int
    ) -> Outcome | None:
        if task.status is not TaskStatus.ACTIVE:
            return Outcome.fail(
                "Task is not in active status",
                details={"field": "status", "current_status": task.status.value},
            )
        window = at + timedelta(minutes=early_tolerance_minutes)
        if task.next_execution_time is None or task.next_execution_time > window:
            return Outcome.fail(
                "Task is not ready for execution",
                details={"field": "timing", "next_execution_time": task.next_execution_time, "current_time": at},
            )
        if not ignore_overdue and task.is_overdue(at, self.overdue_cutoff_minutes):
            return Outcome.fail(
                "Task is too overdue to execute safely",
                details={"field": "timing", "overdue_minutes": int(task.overdue_minutes(at)),
                         "cutoff_minutes": self.overdue_cutoff_minutes},
            )
        return None

    async def _pre_execution_warnings(self, task: ScheduledTask, at: datetime) -> list[str]:
        warnings: list[str] = []
        try:
            state = await self.actions.get(task.action_type).current_state()
        except Exception:
            logger.warning("Could not read panel state", exc_info=True, extra={"task_id": task.task_id})
            state = None
        if state is not None:
            armed = bool(state.get("armed"))
            if task.action_type is ActionType.ARM_SYSTEM and armed:
                warnings.append("System is already armed")
            elif task.action_type is ActionType.DISARM_SYSTEM and not armed:
                warnings.append("System is already disarmed")

        local = at.astimezone(task.recurrence.zone) if at.tzinfo is not None else at
        if task.action_type is ActionType.ARM_SYSTEM and 6 <= local.hour <= 22:
            warnings.append("Arming system during typical waking hours")
        elif task.action_type is ActionType.DISARM_SYSTEM and (local.hour < 6 or local.hour > 10):
            warnings.append("Disarming system outside typical morning hours")

        if task.is_overdue(at, OVERDUE_WARNING_MINUTES):
            warnings.append(f"Task is {int(task.overdue_minutes(at))} minutes overdue")
        return warnings

    async def _invoke_action(self, task: ScheduledTask) -> ActionResult:
        try:
            action = self.actions.get(task.action_type)
        except KeyError as e:
            return ActionResult(success=False, error=str(e))
        try:
            return await action.execute(task.user_id, **task.action_parameters)
        except Exception as e:
            logger.exception("Panel action raised", extra={"task_id": task.task_id})
            return ActionResult(success=False, error=f"System action execution failed: {e}")

    @staticmethod
    def _record_failure(task: ScheduledTask, error: str, at: datetime, max_retries: int) -> bool:
        """Mark the attempt failed; return True when another attempt is scheduled."""
        prior_failures = task.failure_count
        if prior_failures < max_retries:
            task.mark_execution_failed(error, at)
            task.schedule_retry(at + timedelta(minutes=retry_delay_minutes(prior_failures)))
            return True
        task.mark_execution_failed(f"Max retries ({max_retries}) exceeded: {error}", at)
        return False

    async def _audit_execution(
        self, task: ScheduledTask, result: ActionResult, at: datetime, will_retry: bool, duration: float
    ) -> None:
        if result.success:
            category = AuditCategory.SCHEDULE_EXECUTED_SUCCESS
            message = f"Executed scheduled task: {task.describe()}"
        else:
            category = AuditCategory.SCHEDULE_EXECUTED_FAILED
            message = f"Scheduled task failed: {task.describe()} ({result.error})"
        await self.audit(
            category,
            message,
            SYSTEM_ACTOR,
            task_id=task.task_id,
            owner_id=task.user_id,
            action_type=task.action_type.value,
            execution_time=at,
            duration_s=duration,
            error=result.error,
            will_retry=will_retry,
            execution_count=task.execution_count,
            failure_count=task.failure_count,
            next_execution_time=task.next_execution_time,
        )

    async def _publish_execution(
        self, task: ScheduledTask, result: ActionResult, at: datetime, will_retry: bool
    ) -> None:
        if result.success:
            await self.publish(events.schedule_executed(task, at, result.system_state))
        else:
            await self.publish(events.schedule_failed(task, result.error or "", will_retry, at))

    # ── Batches ──────────────────────────────────────────────────────────────

    async def execute_due_tasks(
        self,
        *,
        at: datetime | None = None,
        tolerance_minutes: int = 5,
        max_tasks: int = 50,
        continue_on_error: bool = True,
    ) -> Outcome:
        at = at or self.now()
        try:
            due = await self.repository.find_by_next_execution_before(at + timedelta(minutes=tolerance_minutes))
            runnable = [t for t in due if t.status is TaskStatus.ACTIVE][:max_tasks]
            return await self._run_batch(runnable, at, tolerance_minutes, continue_on_error, "due")
        except Exception as e:
            return Outcome.unexpected(e, "execute_due_tasks", self.expose_errors)

    async def execute_overdue_tasks(
        self,
        *,
        at: datetime | None = None,
        tolerance_minutes: int = 5,
        max_overdue_hours: int = 24,
        max_tasks: int = 50,
    ) -> Outcome:
        """Catch up on overdue tasks, skipping any older than *max_overdue_hours*."""
        at = at or self.now()
        try:
            overdue = await self.repository.find_overdue(tolerance_minutes, now=at)
            cutoff = at - timedelta(hours=max_overdue_hours)
            recent = [t for t in overdue if t.next_execution_time is not None and t.next_execution_time >= cutoff]
            skipped = len(overdue) - len(recent)
            outcome = await self._run_batch(recent[:max_tasks], at, 0, True, "overdue")
            if outcome.success:
                outcome.data["skipped_stale"] = skipped
            return outcome
        except Exception as e:
            return Outcome.unexpected(e, "execute_overdue_tasks", self.expose_errors)

    async def _run_batch(
        self,
        tasks: list[ScheduledTask],
        at: datetime,
        tolerance_minutes: int,
        continue_on_error: bool,
        kind: str,
    ) -> Outcome:
        summary: dict[str, Any] = {"total_due": len(tasks), "executed": 0, "failed": 0, "skipped": 0, "results": []}
        if not tasks:
            return Outcome.ok(summary, message=f"No scheduled tasks {kind} for execution")

        with trace_scope() as trace_id:
            tracer = Tracer(trace_id)
            for index, task in enumerate(tasks):
                outcome = await self.execute(
                    task.task_id,
                    at=at,
                    ignore_overdue=True,
                    early_tolerance_minutes=tolerance_minutes,
                    tracer=tracer,
                )
                summary["results"].append({
                    "task_id": task.task_id,
                    "description": task.describe(),
                    "success": outcome.success,
                    "message": outcome.message or outcome.error,
                })
                if outcome.success:
                    summary["executed"] += 1
                    continue
                summary["failed"] += 1
                if not continue_on_error:
                    summary["skipped"] = len(tasks) - index - 1
                    logger.info("Stopping batch after failure", extra={"task_id": task.task_id})
                    break
            summary["trace_id"] = trace_id
            summary["failed_spans"] = [s.to_dict() for s in tracer.failed()]
            logger.debug("Batch trace\n%s", tracer.summary())

            await self.audit(
                AuditCategory.BATCH_SCHEDULE_EXECUTION,
                f"Batch execution: {summary['executed']} succeeded, {summary['failed']} failed "
                f"of {summary['total_due']} {kind} tasks",
                SYSTEM_ACTOR,
                kind=kind,
                execution_time=at,
                total_due=summary["total_due"],
                executed=summary["executed"],
                failed=summary["failed"],
                skipped=summary["skipped"],
            )
            logger.info(
                "Batch execution finished",
                extra={"kind": kind, "total_due": summary["total_due"], "executed": summary["executed"],
                       "failed": summary["failed"], "skipped": summary["skipped"]},
            )

        message = f"Executed {summary['executed']} of {summary['total_due']} {kind} tasks"
        if summary["failed"] and not continue_on_error:
            return Outcome.fail(message, ErrorKind.EXECUTION, details={"failed": summary["failed"]}, data=summary)
        return Outcome.ok(summary, message=message)
