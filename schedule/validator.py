"""ScheduleValidator: rule pipeline run before a schedule is stored.

Stages, in order: basic constraints, time constraints, business rules
(advisory), user quota, conflicts. Errors block the operation; warnings are
handed back to the caller to show the user.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable

from pydantic import BaseModel, Field

from core.errors import InvalidActionParameters, InvalidTransition, NoMatchingOccurrence
from core.state import SCHEDULABLE, ActionType, TaskStatus
from schedule.recurrence import RecurrenceExpression
from schedule.task import ScheduledTask, utcnow, validate_action_parameters
from schedule.values import Time

logger = logging.getLogger(__name__)


class ValidatorOptions(BaseModel):
    max_schedules_per_user: int = Field(50, ge=1)
    conflict_tolerance_minutes: int = Field(5, ge=0, le=120)
    logical_conflict_minutes: int = Field(20, ge=0, le=240)
    min_advance_minutes: int = Field(5, ge=0)
    max_advance_days: int = Field(365, ge=1)
    allow_night_scheduling: bool = True
    night_start: Time = Time(hour=22, minute=0)
    night_end: Time = Time(hour=6, minute=0)
    business_hours_only: bool = False
    business_hours_start: Time = Time(hour=9, minute=0)
    business_hours_end: Time = Time(hour=18, minute=0)
    allow_weekend_scheduling: bool = True
    stay_mode_late_night: Time = Time(hour=23, minute=0)
    disarm_morning_start: Time = Time(hour=6, minute=0)
    disarm_morning_end: Time = Time(hour=10, minute=0)


class ValidationResult(BaseModel):
    errors: list[str] = []
    warnings: list[str] = []

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {"is_valid": self.is_valid, "errors": list(self.errors), "warnings": list(self.warnings)}


class BulkValidationItem(BaseModel):
    task_id: str
    validation: ValidationResult


_SUGGESTIONS: list[tuple[str, str]] = [
    ("minutes in the future", "Try scheduling a time at least a few minutes from now"),
    ("days in the future", "Pick a schedule whose next run falls within the allowed window"),
    ("night time scheduling", "Consider scheduling during daytime hours (6 AM - 10 PM)"),
    ("conflicts with", "Choose a different time or modify existing conflicting schedules"),
    ("maximum limit", "Cancel some existing schedules or contact an administrator for a higher limit"),
    ("business hours", "Schedule during business hours if required by policy"),
    ("weekend scheduling", "Remove Saturday and Sunday from the schedule"),
    ("requires mode", 'Specify the arm mode: "away" or "stay"'),
]


class ScheduleValidator:
    def __init__(self, options: ValidatorOptions | None = None):
        self.options = options or ValidatorOptions()

    # ── Public API ───────────────────────────────────────────────────────────

    def validate_new_schedule(
        self,
        task: ScheduledTask,
        existing: Iterable[ScheduledTask] = (),
        now: datetime | None = None,
    ) -> ValidationResult:
        now = now or utcnow()
        others = [t for t in existing if t.task_id != task.task_id and t.user_id == task.user_id]
        result = ValidationResult()
        next_run = self._check_basic(task, now, result)
        self._check_time(task, next_run, now, result)
        self._check_business_rules(task, result)
        self._check_quota(others, result)
        self._check_conflicts(task, others, result)
        if not result.is_valid:
            logger.info(
                "Schedule rejected by validator",
                extra={"task_id": task.task_id, "user_id": task.user_id, "errors": result.errors},
            )
        return result

    def validate_schedule_update(
        self,
        task: ScheduledTask,
        existing: Iterable[ScheduledTask] = (),
        now: datetime | None = None,
        recurrence: RecurrenceExpression | None = None,
        action_parameters: dict | None = None,
    ) -> ValidationResult:
        """Validate *task* as it would look after the update, ignoring itself."""
        now = now or utcnow()
        candidate = task.model_copy(deep=True)
        try:
            if recurrence is not None:
                candidate.recurrence = recurrence
            if action_parameters is not None:
                candidate.update_action_parameters(action_parameters, now=now)
        except (InvalidActionParameters, InvalidTransition) as e:
            return ValidationResult(errors=[str(e)])
        return self.validate_new_schedule(candidate, existing, now=now)

    def validate_bulk(
        self,
        tasks: Iterable[ScheduledTask],
        existing: Iterable[ScheduledTask] = (),
        now: datetime | None = None,
    ) -> list[BulkValidationItem]:
        pool = list(existing)
        items: list[BulkValidationItem] = []
        for task in tasks:
            result = self.validate_new_schedule(task, pool, now=now)
            items.append(BulkValidationItem(task_id=task.task_id, validation=result))
            if result.is_valid:
                pool.append(task)
        return items

    @staticmethod
    def suggestions(result: ValidationResult) -> list[str]:
        out: list[str] = []
        for error in result.errors:
            lowered = str(error).lower()
            for needle, hint in _SUGGESTIONS:
                if needle in lowered and hint not in out:
                    out.append(hint)
        return out

    def is_night_time(self, t: Time) -> bool:
        return t.is_between(self.options.night_start, self.options.night_end)

    def is_business_hours(self, t: Time) -> bool:
        return t.is_between(self.options.business_hours_start, self.options.business_hours_end)

    # ── Stages ───────────────────────────────────────────────────────────────

    def _check_basic(self, task: ScheduledTask, now: datetime, result: ValidationResult) -> datetime | None:
        if not task.recurrence.weekdays:
            result.errors.append("Schedule expression is invalid: no weekdays selected")
        try:
            validate_action_parameters(task.action_type, task.action_parameters)
        except InvalidActionParameters as e:
            result.errors.append(str(e))
        try:
            return task.recurrence.next_occurrence(now)
        except NoMatchingOccurrence:
            result.errors.append("Cannot calculate next execution time from schedule")
            return None

    def _check_time(
        self, task: ScheduledTask, next_run: datetime | None, now: datetime, result: ValidationResult
    ) -> None:
        opts = self.options
        at = task.recurrence.time_of_day

        if next_run is not None:
            lead = next_run - now
            if lead < timedelta(minutes=opts.min_advance_minutes):
                result.errors.append(
                    f"Schedule must be at least {opts.min_advance_minutes} minutes in the future"
                )
            if lead > timedelta(days=opts.max_advance_days):
                result.errors.append(
                    f"Schedule cannot be more than {opts.max_advance_days} days in the future"
                )

        if self.is_night_time(at):
            if opts.allow_night_scheduling:
                result.warnings.append("Schedule is set for night time hours")
            else:
                result.errors.append(
                    f"Night time scheduling ({opts.night_start.format_12h()} - "
                    f"{opts.night_end.format_12h()}) is not allowed"
                )

        if opts.business_hours_only and not self.is_business_hours(at):
            result.errors.append(
                f"Scheduling is only allowed during business hours "
                f"({opts.business_hours_start.format_12h()} - {opts.business_hours_end.format_12h()})"
            )

        if not opts.allow_weekend_scheduling and any(d.is_weekend for d in task.recurrence.weekdays):
            result.errors.append("Weekend scheduling is not allowed")

    def _check_business_rules(self, task: ScheduledTask, result: ValidationResult) -> None:
        opts = self.options
        at = task.recurrence.time_of_day
        if task.action_type is ActionType.ARM_SYSTEM and task.mode == "stay":
            if at >= opts.stay_mode_late_night:
                result.warnings.append(
                    'Scheduling "stay" mode very late at night may cause issues '
                    "if residents are still moving around"
                )
        if task.action_type is ActionType.DISARM_SYSTEM:
            if at < opts.disarm_morning_start or at > opts.disarm_morning_end:
                result.warnings.append(
                    f"Disarm schedules are typically set for morning hours "
                    f"({opts.disarm_morning_start.format_12h()} - {opts.disarm_morning_end.format_12h()})"
                )

    def _check_quota(self, others: list[ScheduledTask], result: ValidationResult) -> None:
        limit = self.options.max_schedules_per_user
        used = sum(1 for t in others if t.status in SCHEDULABLE)
        if used >= limit:
            result.errors.append(f"User has reached the maximum limit of {limit} active schedules")
        elif used == limit - 1:
            result.warnings.append(f"User is approaching the schedule limit ({used}/{limit})")

    def _check_conflicts(self, task: ScheduledTask, others: list[ScheduledTask], result: ValidationResult) -> None:
        opts = self.options
        active = [t for t in others if t.status is TaskStatus.ACTIVE]

        clashing = [
            t for t in active
            if task.recurrence.conflicts_with(t.recurrence, opts.conflict_tolerance_minutes)
        ]
        if clashing:
            ids = ", ".join(t.task_id for t in clashing)
            result.errors.append(
                f"Schedule conflicts with {len(clashing)} existing schedule(s). Conflicting schedules: {ids}"
            )

        for other in active:
            if other.action_type is task.action_type:
                continue
            apart = task.recurrence.minutes_apart(other.recurrence)
            if apart is not None and apart <= opts.logical_conflict_minutes:
                result.warnings.append(
                    f"Potential logical conflict: {task.action_type.value} scheduled {apart} minutes "
                    f"from existing {other.action_type.value} ({other.task_id})"
                )
