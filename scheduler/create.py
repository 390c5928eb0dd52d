"""CreateScheduledTask: validate, activate, persist and announce a new schedule."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from core.errors import InvalidActionParameters, ScheduleParseError
from core.state import SCHEDULABLE, ActionType
from scheduler import events
from scheduler.base import UseCase
from scheduler.ports import AuditCategory
from scheduler.results import ErrorKind, Outcome
from schedule.parser import ScheduleParser
from schedule.recurrence import RecurrenceExpression
from schedule.task import ScheduledTask
from schedule.validator import ScheduleValidator, ValidationResult

logger = logging.getLogger(__name__)

UPCOMING_PREVIEW_DAYS = 7


def coerce_recurrence(value: Any, default_timezone: str = "UTC") -> RecurrenceExpression:
    """Accept a RecurrenceExpression or a ``{weekdays, time, timezone}`` mapping."""
    if isinstance(value, RecurrenceExpression):
        return value
    if isinstance(value, dict):
        return RecurrenceExpression.from_data(
            weekdays=value.get("weekdays"),
            time=value.get("time", value.get("time_of_day")),
            timezone=value.get("timezone") or default_timezone,
        )
    raise ValueError("recurrence must be an object with weekdays and time")


def validation_failure(result: ValidationResult, validator: ScheduleValidator) -> Outcome:
    kind = ErrorKind.CONFLICT if any("conflicts with" in e for e in result.errors) else ErrorKind.VALIDATION
    return Outcome.fail(
        "Schedule validation failed: " + "; ".join(result.errors),
        kind,
        details={
            "errors": result.errors,
            "warnings": result.warnings,
            "suggestions": validator.suggestions(result),
        },
    )


class CreateScheduledTask(UseCase):
    def __init__(
        self,
        repository,
        validator: ScheduleValidator | None = None,
        parser: ScheduleParser | None = None,
        **kwargs,
    ):
        super().__init__(repository, **kwargs)
        self.validator = validator or ScheduleValidator()
        self.parser = parser or ScheduleParser()

    async def execute(
        self,
        user_id: str,
        recurrence: RecurrenceExpression | dict | None,
        action_type: ActionType | str | None,
        action_parameters: dict | None = None,
        *,
        requested_by: str | None = None,
        auto_activate: bool = True,
        skip_validation: bool = False,
    ) -> Outcome:
        try:
            missing = [name for name, v in (
                ("user_id", user_id), ("recurrence", recurrence), ("action_type", action_type),
            ) if not v]
            if missing:
                return Outcome.fail(
                    f"Missing required fields: {', '.join(missing)}", details={"fields": missing}
                )

            actor, failure = await self.resolve_user(requested_by or user_id)
            if failure:
                return failure
            if actor.user_id != user_id and not actor.is_admin:
                return Outcome.forbidden("Only administrators can create schedules for other users")
            if skip_validation and not actor.is_admin:
                return Outcome.forbidden("Only administrators can skip schedule validation")

            now = self.now()
            try:
                expr = coerce_recurrence(recurrence, self.parser.default_timezone)
                task = ScheduledTask.create(user_id, expr, action_type, action_parameters, now=now)
            except InvalidActionParameters as e:
                return Outcome.fail(str(e), details={"field": e.field})
            except ValidationError as e:
                return Outcome.fail(f"Invalid recurrence: {e.errors()[0]['msg']}", details={"field": "recurrence"})
            except ValueError as e:
                return Outcome.fail(str(e), details={"field": "recurrence"})

            warnings: list[str] = []
            if not skip_validation:
                existing = await self.repository.find_by_user_id(user_id)
                result = self.validator.validate_new_schedule(task, existing, now=now)
                if not result.is_valid:
                    return validation_failure(result, self.validator)
                warnings = result.warnings

            if auto_activate:
                task.activate(now)
            await self.repository.save(task)

            await self.audit(
                AuditCategory.SCHEDULE_CREATED,
                f"Created scheduled task: {task.describe()}",
                actor.user_id,
                task_id=task.task_id,
                owner_id=task.user_id,
                action_type=task.action_type.value,
                schedule=task.recurrence.describe(),
                next_execution_time=task.next_execution_time,
            )
            await self.publish(events.schedule_created(task))
            logger.info(
                "Scheduled task created",
                extra={"task_id": task.task_id, "user_id": user_id, "description": task.describe()},
            )
            return Outcome.ok(self._response(task, warnings), message="Scheduled task created successfully")
        except Exception as e:
            return Outcome.unexpected(e, "create_scheduled_task", self.expose_errors, user_id=user_id)

    async def create_from_command(
        self, user_id: str, command: str, timezone: str | None = None, **kwargs
    ) -> Outcome:
        """Parse a phrase such as "arm stay weekdays at 9 PM" and create it."""
        try:
            parsed = self.parser.parse(command, timezone=timezone)
        except ScheduleParseError as e:
            return Outcome.fail(
                str(e),
                details={"stage": e.stage, "command": command, "suggestions": self.parser.suggestions(str(e))},
            )
        except Exception as e:
            return Outcome.unexpected(e, "parse_schedule_command", self.expose_errors, user_id=user_id)
        return await self.execute(user_id, parsed.recurrence, parsed.action_type, parsed.action_parameters, **kwargs)

    async def create_batch(self, user_id: str, items: list[str | dict], **kwargs) -> Outcome:
        """Create each item independently; one failure never stops the rest."""
        results: list[dict[str, Any]] = []
        for index, item in enumerate(items):
            if isinstance(item, str):
                outcome = await self.create_from_command(user_id, item, **kwargs)
            elif not isinstance(item, dict):
                outcome = Outcome.fail(
                    f"Item must be a command string or a schedule object, got {type(item).__name__}",
                    details={"field": "items", "index": index},
                )
            else:
                outcome = await self.execute(
                    user_id,
                    item.get("recurrence"),
                    item.get("action_type"),
                    item.get("action_parameters"),
                    **kwargs,
                )
            entry: dict[str, Any] = {"index": index, "success": outcome.success}
            if outcome.success:
                entry["task_id"] = outcome.data["task_id"]
            else:
                entry["error"] = outcome.error
            results.append(entry)

        created = sum(1 for r in results if r["success"])
        return Outcome.ok(
            {"total": len(items), "created": created, "failed": len(items) - created, "results": results},
            message=f"Created {created} of {len(items)} scheduled tasks",
        )

    async def user_quota(self, user_id: str) -> Outcome:
        try:
            tasks = await self.repository.find_by_user_id(user_id)
            used = sum(1 for t in tasks if t.status in SCHEDULABLE)
            total = self.validator.options.max_schedules_per_user
            return Outcome.ok({
                "used": used,
                "total": total,
                "remaining": max(total - used, 0),
                "percent_used": round(used / total * 100, 1),
            })
        except Exception as e:
            return Outcome.unexpected(e, "user_quota", self.expose_errors, user_id=user_id)

    def _response(self, task: ScheduledTask, warnings: list[str]) -> dict[str, Any]:
        return {
            "task": task,
            "task_id": task.task_id,
            "next_execution_time": task.next_execution_time,
            "description": task.describe(),
            "upcoming_executions": task.get_upcoming_executions(UPCOMING_PREVIEW_DAYS, self.now()),
            "warnings": warnings,
        }
