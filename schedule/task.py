"""ScheduledTask: the aggregate that owns a recurring arm/disarm action."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from core.errors import InvalidActionParameters, InvalidTransition, NoMatchingOccurrence
from core.state import SCHEDULABLE, ActionType, ArmMode, TaskStatus, can_transition
from schedule.recurrence import RecurrenceExpression


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize(instant: datetime) -> datetime:
    return instant.astimezone(timezone.utc) if instant.tzinfo is not None else instant


# ── Action parameters ─────────────────────────────────────────────────────────

class ArmSystemParameters(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mode: ArmMode
    zone_ids: list[str] = []


class DisarmSystemParameters(BaseModel):
    model_config = ConfigDict(extra="ignore")

    zone_ids: list[str] = []


_PARAMETER_SCHEMAS: dict[ActionType, type[BaseModel]] = {
    ActionType.ARM_SYSTEM: ArmSystemParameters,
    ActionType.DISARM_SYSTEM: DisarmSystemParameters,
}


def validate_action_parameters(action_type: ActionType | str, params: Any) -> dict[str, Any]:
    """Check *params* against the schema for *action_type*; return the normalized dict."""
    try:
        action_type = ActionType(action_type)
    except ValueError:
        raise InvalidActionParameters(f"Unknown action type: {action_type}", field="action_type") from None
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise InvalidActionParameters("action_parameters must be an object", field="action_parameters")

    try:
        model = _PARAMETER_SCHEMAS[action_type].model_validate(params)
    except ValidationError as e:
        field = str(e.errors()[0]["loc"][0]) if e.errors()[0]["loc"] else None
        if field == "mode":
            msg = f'{action_type.value} requires mode to be "away" or "stay"'
        elif field == "zone_ids":
            msg = "zone_ids must be a list of zone ids"
        else:
            msg = f"Invalid parameters for {action_type.value}: {e.errors()[0]['msg']}"
        raise InvalidActionParameters(msg, field=field) from e
    return model.model_dump(mode="json")


# ── Aggregate ─────────────────────────────────────────────────────────────────

class ScheduledTask(BaseModel):
    """A recurring arm/disarm action and its execution bookkeeping.

    Mutators take an explicit ``now``/``at`` so callers control the clock.
    Lifecycle moves are checked against ``core.state.ALLOWED_TRANSITIONS``
    and raise InvalidTransition when illegal.
    """

    task_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    recurrence: RecurrenceExpression
    action_type: ActionType
    action_parameters: dict[str, Any] = {}
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    next_execution_time: datetime | None = None
    last_execution_time: datetime | None = None
    execution_count: int = Field(0, ge=0)
    failure_count: int = Field(0, ge=0)
    last_error: str | None = None
    cancellation_reason: str | None = None

    @model_validator(mode="after")
    def _check_invariants(self) -> ScheduledTask:
        self.action_parameters = validate_action_parameters(self.action_type, self.action_parameters)
        if self.failure_count > self.execution_count:
            raise ValueError("failure_count cannot exceed execution_count")
        return self

    # ── Factories ─────────────────────────────────────────────────────────────

    @classmethod
    def create(
        cls,
        user_id: str,
        recurrence: RecurrenceExpression,
        action_type: ActionType | str,
        action_parameters: dict | None = None,
        task_id: str | None = None,
        now: datetime | None = None,
    ) -> ScheduledTask:
        now = now or utcnow()
        params = validate_action_parameters(action_type, action_parameters)
        action_type = ActionType(action_type)
        fields: dict[str, Any] = {}
        if task_id:
            fields["task_id"] = task_id
        task = cls(
            user_id=user_id,
            recurrence=recurrence,
            action_type=action_type,
            action_parameters=params,
            created_at=now,
            updated_at=now,
            **fields,
        )
        task._refresh_next_execution(now)
        return task

    @classmethod
    def create_arm_task(
        cls, user_id: str, recurrence: RecurrenceExpression, mode: str = "away",
        zone_ids: list[str] | None = None, now: datetime | None = None,
    ) -> ScheduledTask:
        params = {"mode": mode, "zone_ids": zone_ids or []}
        return cls.create(user_id, recurrence, ActionType.ARM_SYSTEM, params, now=now)

    @classmethod
    def create_disarm_task(
        cls, user_id: str, recurrence: RecurrenceExpression,
        zone_ids: list[str] | None = None, now: datetime | None = None,
    ) -> ScheduledTask:
        params = {"zone_ids": zone_ids or []}
        return cls.create(user_id, recurrence, ActionType.DISARM_SYSTEM, params, now=now)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def activate(self, now: datetime | None = None) -> None:
        now = now or utcnow()
        if self.status in (TaskStatus.CANCELLED, TaskStatus.COMPLETED):
            raise InvalidTransition(
                self.status.value, TaskStatus.ACTIVE.value, f"task is {self.status.value}"
            )
        self._move_to(TaskStatus.ACTIVE)
        self.updated_at = now
        self._refresh_next_execution(now)

    def record_successful_execution(self, at: datetime | None = None) -> None:
        at = at or utcnow()
        self._move_to(TaskStatus.ACTIVE)
        # An execution inside the early tolerance must not yield the same slot again
        reference = at
        if self.next_execution_time is not None and self.next_execution_time > at:
            reference = self.next_execution_time
        self.execution_count += 1
        self.last_execution_time = at
        self.last_error = None
        self.updated_at = at
        self._refresh_next_execution(reference)

    def mark_execution_failed(self, error: str, at: datetime | None = None) -> None:
        at = at or utcnow()
        self._move_to(TaskStatus.FAILED)
        self.execution_count += 1
        self.failure_count += 1
        self.last_error = error
        self.last_execution_time = at
        self.next_execution_time = None
        self.updated_at = at

    def schedule_retry(self, retry_at: datetime) -> None:
        """Put a failed task back in ACTIVE with an explicit next attempt time."""
        if self.status is not TaskStatus.FAILED:
            raise InvalidTransition(self.status.value, TaskStatus.ACTIVE.value, "only failed tasks can be retried")
        self._move_to(TaskStatus.ACTIVE)
        self.next_execution_time = _normalize(retry_at)

    def cancel(self, reason: str | None = None, now: datetime | None = None) -> None:
        now = now or utcnow()
        if self.status is TaskStatus.COMPLETED:
            raise InvalidTransition(self.status.value, TaskStatus.CANCELLED.value, "task is completed")
        self._move_to(TaskStatus.CANCELLED)
        self.cancellation_reason = reason
        self.next_execution_time = None
        self.updated_at = now

    def complete(self, now: datetime | None = None) -> None:
        now = now or utcnow()
        self._move_to(TaskStatus.COMPLETED)
        self.next_execution_time = None
        self.updated_at = now

    def update_schedule(self, recurrence: RecurrenceExpression, now: datetime | None = None) -> None:
        now = now or utcnow()
        self._reject_if_closed("update schedule")
        self.recurrence = recurrence
        self.updated_at = now
        if self.status in SCHEDULABLE:
            self._refresh_next_execution(now)

    def update_action_parameters(self, params: dict, now: datetime | None = None) -> None:
        self._reject_if_closed("update action parameters")
        self.action_parameters = validate_action_parameters(self.action_type, params)
        self.updated_at = now or utcnow()

    # ── Queries ───────────────────────────────────────────────────────────────

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.CANCELLED, TaskStatus.COMPLETED)

    @property
    def mode(self) -> str | None:
        return self.action_parameters.get("mode")

    @property
    def zone_ids(self) -> list[str]:
        return list(self.action_parameters.get("zone_ids") or [])

    @property
    def success_count(self) -> int:
        return self.execution_count - self.failure_count

    def is_ready_for_execution(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return (
            self.status is TaskStatus.ACTIVE
            and self.next_execution_time is not None
            and self.next_execution_time <= now
        )

    def overdue_minutes(self, now: datetime | None = None) -> float:
        if self.next_execution_time is None:
            return 0.0
        delta = (now or utcnow()) - self.next_execution_time
        return max(delta.total_seconds() / 60, 0.0)

    def is_overdue(self, now: datetime | None = None, tolerance_minutes: int = 5) -> bool:
        if self.status is not TaskStatus.ACTIVE or self.next_execution_time is None:
            return False
        return (now or utcnow()) > self.next_execution_time + timedelta(minutes=tolerance_minutes)

    def get_upcoming_executions(self, days: int = 7, now: datetime | None = None) -> list[datetime]:
        if self.status is not TaskStatus.ACTIVE:
            return []
        return [_normalize(t) for t in self.recurrence.upcoming_occurrences(days, now or utcnow())]

    def can_be_managed_by(self, user_id: str, is_admin: bool = False) -> bool:
        return is_admin or self.user_id == user_id

    def describe_action(self) -> str:
        zones = ", ".join(self.zone_ids)
        if self.action_type is ActionType.ARM_SYSTEM:
            target = f"zones {zones}" if zones else "system"
            return f"Arm {target} in {self.mode} mode"
        return f"Disarm zones {zones}" if zones else "Disarm system"

    def describe(self) -> str:
        return f"{self.describe_action()} {self.recurrence.describe()}"

    def execution_stats(self) -> dict[str, Any]:
        rate = (self.success_count / self.execution_count * 100) if self.execution_count else 0.0
        return {
            "execution_count": self.execution_count,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "success_rate": round(rate, 2),
            "last_execution_time": self.last_execution_time,
            "last_error": self.last_error,
        }

    # ── Internal ──────────────────────────────────────────────────────────────

    def _move_to(self, target: TaskStatus) -> None:
        if not can_transition(self.status, target):
            raise InvalidTransition(self.status.value, target.value)
        self.status = target

    def _reject_if_closed(self, what: str) -> None:
        if self.is_terminal:
            raise InvalidTransition(self.status.value, self.status.value, f"cannot {what} on a {self.status.value} task")

    def _refresh_next_execution(self, reference: datetime) -> None:
        try:
            nxt = self.recurrence.next_occurrence(reference)
        except NoMatchingOccurrence as e:
            self.status = TaskStatus.FAILED
            self.next_execution_time = None
            self.last_error = f"Failed to calculate next execution time: {e}"
            return
        self.next_execution_time = _normalize(nxt)
