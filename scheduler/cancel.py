"""CancelScheduledTask: stop schedules singly, in bulk, or all at once."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from core.errors import InvalidTransition
from core.state import SCHEDULABLE, ActionType, TaskStatus
from scheduler import events
from scheduler.base import UseCase
from scheduler.ports import AuditCategory, User
from scheduler.results import ErrorKind, Outcome
from schedule.task import ScheduledTask

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Cancelled by user request"
IMPACT_HORIZON_DAYS = 30
BULK_CONFIRMATION_THRESHOLD = 10


class CancelScheduledTask(UseCase):
    async def execute(
        self,
        task_id: str,
        user_id: str,
        reason: str | None = None,
        *,
        force: bool = False,
    ) -> Outcome:
        try:
            if not task_id:
                return Outcome.fail("task_id is required", details={"field": "task_id"})
            user, failure = await self.resolve_user(user_id)
            if failure:
                return failure
            if force and not user.is_admin:
                return Outcome.forbidden("Only administrators can force cancellation")
            task, failure = await self.load_managed(task_id, user)
            if failure:
                return failure
            return await self._cancel(task, user, reason or DEFAULT_REASON, force=force)
        except Exception as e:
            return Outcome.unexpected(e, "cancel_scheduled_task", self.expose_errors, task_id=task_id)

    async def _cancel(self, task: ScheduledTask, user: User, reason: str, *, force: bool) -> Outcome:
        if task.status not in SCHEDULABLE and not force:
            return Outcome.fail(
                f"Cannot cancel task with status: {task.status.value}",
                ErrorKind.CONFLICT,
                details={"current_status": task.status.value},
            )

        now = self.now()
        original_status = task.status
        original_next = task.next_execution_time
        impact = await self.impact_of(task, now)

        try:
            task.cancel(reason, now)
        except InvalidTransition as e:
            return Outcome.fail(str(e), ErrorKind.CONFLICT, details={"current_status": task.status.value})
        await self.repository.save(task)

        await self.audit(
            AuditCategory.SCHEDULE_CANCELLED,
            f"Cancelled scheduled task {task.task_id}: {reason}",
            user.user_id,
            task_id=task.task_id,
            owner_id=task.user_id,
            original_status=original_status.value,
            reason=reason,
            forced=force,
            impact=impact,
        )
        await self.publish(
            events.schedule_cancelled(task, reason, user.user_id, original_status.value, original_next)
        )
        logger.info(
            "Scheduled task cancelled",
            extra={"task_id": task.task_id, "cancelled_by": user.user_id, "original_status": original_status.value},
        )
        return Outcome.ok(
            {"task": task, "task_id": task.task_id, "original_status": original_status.value,
             "reason": reason, "impact": impact},
            message="Scheduled task cancelled successfully",
        )

    async def impact_of(self, task: ScheduledTask, now: datetime) -> dict[str, Any]:
        """What stops happening once *task* is cancelled. Must run before the state change."""
        missed = task.get_upcoming_executions(IMPACT_HORIZON_DAYS, now)
        replacement = None
        for other in await self.repository.find_by_user_id_and_status(task.user_id, TaskStatus.ACTIVE):
            if other.task_id == task.task_id or other.action_type is not task.action_type:
                continue
            if other.next_execution_time is None:
                continue
            if replacement is None or other.next_execution_time < replacement.next_execution_time:
                replacement = other
        return {
            "action_type": task.action_type.value,
            "affected_zones": task.zone_ids,
            "system_wide": not task.zone_ids,
            "missed_executions": len(missed),
            "next_missed_execution": missed[0] if missed else None,
            "next_similar_task": (
                {"task_id": replacement.task_id, "next_execution_time": replacement.next_execution_time,
                 "description": replacement.describe()}
                if replacement else None
            ),
        }

    # ── Bulk ─────────────────────────────────────────────────────────────────

    async def cancel_bulk(
        self,
        user_id: str,
        criteria: dict[str, Any],
        reason: str | None = None,
        *,
        confirmed: bool = False,
        force: bool = False,
    ) -> Outcome:
        try:
            user, failure = await self.resolve_user(user_id)
            if failure:
                return failure
            if force and not user.is_admin:
                return Outcome.forbidden("Only administrators can force cancellation")
            try:
                matches = await self.find_matching(criteria, user)
            except ValueError as e:
                return Outcome.fail(f"Invalid criteria: {e}", details={"field": "criteria"})
            # Forced runs also reach FAILED tasks; terminal ones have nothing left to stop.
            matches = [t for t in matches if (not t.is_terminal if force else t.status in SCHEDULABLE)]
            if not matches:
                return Outcome.ok(
                    {"matched": 0, "cancelled": 0, "failed": 0, "results": []},
                    message="No scheduled tasks matched the criteria",
                )
            if len(matches) > BULK_CONFIRMATION_THRESHOLD and not confirmed:
                return Outcome.fail(
                    f"Cancelling {len(matches)} tasks requires confirmation",
                    details={"requires_confirmation": True, "matched": len(matches),
                             "task_ids": [t.task_id for t in matches]},
                )

            reason = reason or DEFAULT_REASON
            results = []
            for task in matches:
                try:
                    outcome = await self._cancel(task, user, reason, force=force)
                except Exception as e:
                    outcome = Outcome.unexpected(e, "cancel_bulk", self.expose_errors, task_id=task.task_id)
                results.append({"task_id": task.task_id, "success": outcome.success, "error": outcome.error})

            cancelled = sum(1 for r in results if r["success"])
            logger.info("Bulk cancellation finished", extra={"matched": len(matches), "cancelled": cancelled})
            return Outcome.ok(
                {"matched": len(matches), "cancelled": cancelled,
                 "failed": len(matches) - cancelled, "results": results},
                message=f"Cancelled {cancelled} of {len(matches)} scheduled tasks",
            )
        except Exception as e:
            return Outcome.unexpected(e, "cancel_bulk", self.expose_errors, user_id=user_id)

    async def cancel_by_days(self, user_id: str, weekdays: Any, **kwargs) -> Outcome:
        return await self.cancel_bulk(user_id, {"user_id": user_id, "weekdays": weekdays}, **kwargs)

    async def cancel_by_action_type(self, user_id: str, action_type: ActionType | str, **kwargs) -> Outcome:
        value = action_type.value if isinstance(action_type, ActionType) else action_type
        return await self.cancel_bulk(user_id, {"user_id": user_id, "action_type": value}, **kwargs)

    async def cancel_all(self, user_id: str, **kwargs) -> Outcome:
        return await self.cancel_bulk(user_id, {"user_id": user_id}, **kwargs)

    async def emergency_cancel(
        self, admin_id: str, reason: str, criteria: dict[str, Any] | None = None
    ) -> Outcome:
        """Cancel every matching task regardless of status or owner."""
        user, failure = await self.resolve_user(admin_id)
        if failure:
            return failure
        if not user.is_admin:
            return Outcome.forbidden("Emergency cancellation requires an administrator")
        if not reason:
            return Outcome.fail("A reason is required for emergency cancellation", details={"field": "reason"})
        logger.warning("Emergency cancellation requested", extra={"admin_id": admin_id, "reason": reason})
        try:
            return await self.cancel_bulk(
                admin_id, dict(criteria or {}), f"EMERGENCY: {reason}", confirmed=True, force=True
            )
        except Exception as e:
            return Outcome.unexpected(e, "emergency_cancel", self.expose_errors, admin_id=admin_id)
