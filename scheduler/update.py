"""UpdateScheduledTask: change a schedule's recurrence, parameters or status."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from core.errors import InvalidActionParameters, InvalidTransition
from core.state import SCHEDULABLE, TaskStatus
from scheduler import events
from scheduler.base import UseCase
from scheduler.create import coerce_recurrence, validation_failure
from scheduler.ports import AuditCategory
from scheduler.results import ErrorKind, Outcome
from schedule.recurrence import RecurrenceExpression
from schedule.task import ScheduledTask, validate_action_parameters
from schedule.validator import ScheduleValidator

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"recurrence", "weekdays", "time", "timezone", "action_parameters", "status"})
SETTABLE_STATUSES = frozenset({TaskStatus.ACTIVE, TaskStatus.CANCELLED, TaskStatus.COMPLETED})


class UpdateScheduledTask(UseCase):
    def __init__(self, repository, validator: ScheduleValidator | None = None, **kwargs):
        super().__init__(repository, **kwargs)
        self.validator = validator or ScheduleValidator()

    async def execute(
        self,
        task_id: str,
        user_id: str,
        updates: dict[str, Any],
        *,
        force: bool = False,
        skip_validation: bool = False,
    ) -> Outcome:
        try:
            if not task_id:
                return Outcome.fail("task_id is required", details={"field": "task_id"})
            if not updates:
                return Outcome.fail("No updates provided", details={"field": "updates"})
            unknown = sorted(set(updates) - UPDATABLE_FIELDS)
            if unknown:
                return Outcome.fail(f"Unknown fields: {', '.join(unknown)}", details={"fields": unknown})

            user, failure = await self.resolve_user(user_id)
            if failure:
                return failure
            if (force or skip_validation) and not user.is_admin:
                return Outcome.forbidden("Only administrators can force updates or skip validation")
            task, failure = await self.load_managed(task_id, user)
            if failure:
                return failure
            if task.status not in SCHEDULABLE and not force:
                return Outcome.fail(
                    f"Cannot update task with status: {task.status.value}",
                    details={"field": "status", "current_status": task.status.value},
                )

            now = self.now()
            try:
                new_recurrence = self._new_recurrence(task, updates)
                new_params = (
                    validate_action_parameters(task.action_type, updates["action_parameters"])
                    if "action_parameters" in updates else None
                )
                new_status = TaskStatus(updates["status"]) if updates.get("status") else None
            except InvalidActionParameters as e:
                return Outcome.fail(str(e), details={"field": e.field})
            except ValidationError as e:
                return Outcome.fail(f"Invalid recurrence: {e.errors()[0]['msg']}", details={"field": "recurrence"})
            except ValueError as e:
                return Outcome.fail(str(e), details={"field": "status" if "status" in str(e).lower() else "recurrence"})
            if new_status is not None and new_status not in SETTABLE_STATUSES:
                return Outcome.fail(
                    f"Status cannot be set to {new_status.value} directly", details={"field": "status"}
                )

            warnings: list[str] = []
            if new_recurrence is not None and not skip_validation:
                existing = await self.repository.find_by_user_id(task.user_id)
                result = self.validator.validate_schedule_update(
                    task, existing, now=now, recurrence=new_recurrence, action_parameters=new_params,
                )
                if not result.is_valid:
                    return validation_failure(result, self.validator)
                warnings = result.warnings

            changes = self._diff(task, new_recurrence, new_params, new_status)
            if not changes:
                return Outcome.ok({"task": task, "changes": {}, "warnings": warnings}, message="No changes to apply")

            try:
                self._apply(task, new_recurrence, new_params, new_status, now)
            except InvalidTransition as e:
                return Outcome.fail(str(e), ErrorKind.CONFLICT, details={"current_status": task.status.value})
            await self.repository.save(task)

            summary = "; ".join(f"{field}: {c['from']} -> {c['to']}" for field, c in changes.items())
            await self.audit(
                AuditCategory.SCHEDULE_UPDATED,
                f"Updated scheduled task {task.task_id}: {summary}",
                user.user_id,
                task_id=task.task_id,
                owner_id=task.user_id,
                changes=changes,
                forced=force,
            )
            await self.publish(events.schedule_updated(task, changes, user.user_id))
            logger.info("Scheduled task updated", extra={"task_id": task.task_id, "fields": list(changes)})
            return Outcome.ok(
                {"task": task, "changes": changes, "warnings": warnings,
                 "next_execution_time": task.next_execution_time},
                message="Scheduled task updated successfully",
            )
        except Exception as e:
            return Outcome.unexpected(e, "update_scheduled_task", self.expose_errors, task_id=task_id)

    # ── Helpers ──────────────────────────────────────────────────────────────

    async def reschedule(self, task_id: str, user_id: str, recurrence: RecurrenceExpression | dict, **kwargs) -> Outcome:
        return await self.execute(task_id, user_id, {"recurrence": recurrence}, **kwargs)

    async def update_action_parameters(self, task_id: str, user_id: str, params: dict, **kwargs) -> Outcome:
        return await self.execute(task_id, user_id, {"action_parameters": params}, **kwargs)

    async def activate(self, task_id: str, user_id: str, **kwargs) -> Outcome:
        return await self.execute(task_id, user_id, {"status": TaskStatus.ACTIVE.value}, **kwargs)

    async def update_bulk(
        self, user_id: str, criteria: dict[str, Any], updates: dict[str, Any], **kwargs
    ) -> Outcome:
        """Apply *updates* to every matching task; failures are collected, not raised."""
        try:
            user, failure = await self.resolve_user(user_id)
            if failure:
                return failure
            matches = await self.find_matching(criteria, user)
        except ValueError as e:
            return Outcome.fail(f"Invalid criteria: {e}", details={"field": "criteria"})
        except Exception as e:
            return Outcome.unexpected(e, "update_bulk", self.expose_errors, user_id=user_id)

        results = []
        for task in matches:
            outcome = await self.execute(task.task_id, user_id, dict(updates), **kwargs)
            results.append({"task_id": task.task_id, "success": outcome.success,
                            "error": outcome.error, "changes": (outcome.data or {}).get("changes")})
        updated = sum(1 for r in results if r["success"])
        return Outcome.ok(
            {"matched": len(matches), "updated": updated, "failed": len(matches) - updated, "results": results},
            message=f"Updated {updated} of {len(matches)} scheduled tasks",
        )

    @staticmethod
    def _new_recurrence(task: ScheduledTask, updates: dict[str, Any]) -> RecurrenceExpression | None:
        if "recurrence" in updates:
            return coerce_recurrence(updates["recurrence"], task.recurrence.timezone)
        if not {"weekdays", "time", "timezone"} & set(updates):
            return None
        current = task.recurrence
        return RecurrenceExpression.from_data(
            weekdays=updates.get("weekdays", current.weekdays),
            time=updates.get("time", current.time_of_day),
            timezone=updates.get("timezone", current.timezone),
        )

    @staticmethod
    def _diff(
        task: ScheduledTask,
        recurrence: RecurrenceExpression | None,
        params: dict | None,
        status: TaskStatus | None,
    ) -> dict[str, dict[str, Any]]:
        changes: dict[str, dict[str, Any]] = {}
        if recurrence is not None and recurrence != task.recurrence:
            changes["recurrence"] = {"from": task.recurrence.describe(), "to": recurrence.describe()}
            if recurrence.timezone != task.recurrence.timezone:
                changes["timezone"] = {"from": task.recurrence.timezone, "to": recurrence.timezone}
        if params is not None and params != task.action_parameters:
            changes["action_parameters"] = {"from": dict(task.action_parameters), "to": params}
        if status is not None and status is not task.status:
            changes["status"] = {"from": task.status.value, "to": status.value}
        return changes

    @staticmethod
    def _apply(task, recurrence, params, status, now) -> None:
        if recurrence is not None and recurrence != task.recurrence:
            task.update_schedule(recurrence, now)
        if params is not None:
            task.update_action_parameters(params, now)
        if status is TaskStatus.ACTIVE and task.status is not TaskStatus.ACTIVE:
            task.activate(now)
        elif status is TaskStatus.CANCELLED:
            task.cancel("Cancelled via update", now)
        elif status is TaskStatus.COMPLETED:
            task.complete(now)
