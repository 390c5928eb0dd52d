"""API request and response models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, model_validator

from core.state import ActionType, TaskStatus
from schedule.task import ScheduledTask


class CreateScheduleRequest(BaseModel):
    """Either a free-text ``command`` or the structured fields."""

    command: str | None = None
    weekdays: list[str] | str | None = None
    time: str | None = None
    timezone: str | None = None
    action_type: ActionType | None = None
    action_parameters: dict[str, Any] | None = None
    user_id: str | None = None
    skip_validation: bool = False

    @model_validator(mode="after")
    def _command_or_fields(self) -> "CreateScheduleRequest":
        if self.command:
            return self
        missing = [name for name in ("weekdays", "time", "action_type") if not getattr(self, name)]
        if missing:
            raise ValueError(f"Provide a command or all of: {', '.join(missing)}")
        return self

    def recurrence(self) -> dict[str, Any]:
        return {"weekdays": self.weekdays, "time": self.time, "timezone": self.timezone}


class ParseRequest(BaseModel):
    command: str
    timezone: str | None = None


class ParseResponse(BaseModel):
    command: str
    action_type: str
    action_parameters: dict[str, Any]
    weekdays: list[str]
    time: str
    timezone: str
    description: str


class UpdateScheduleRequest(BaseModel):
    weekdays: list[str] | str | None = None
    time: str | None = None
    timezone: str | None = None
    action_parameters: dict[str, Any] | None = None
    status: TaskStatus | None = None
    force: bool = False
    skip_validation: bool = False

    def updates(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True, exclude={"force", "skip_validation"})
        if "status" in data:
            data["status"] = data["status"].value
        return data


class ExecuteRequest(BaseModel):
    dry_run: bool = False
    ignore_overdue: bool = False


class BulkCancelRequest(BaseModel):
    user_id: str | None = None
    action_type: ActionType | None = None
    status: list[TaskStatus] | None = None
    weekdays: list[str] | str | None = None
    reason: str | None = None
    confirmed: bool = False
    force: bool = False

    def criteria(self) -> dict[str, Any]:
        criteria: dict[str, Any] = {}
        if self.user_id:
            criteria["user_id"] = self.user_id
        if self.action_type:
            criteria["action_type"] = self.action_type.value
        if self.status:
            criteria["status"] = [s.value for s in self.status]
        if self.weekdays:
            criteria["weekdays"] = self.weekdays
        return criteria


class EmergencyCancelRequest(BaseModel):
    reason: str
    user_id: str | None = None
    action_type: ActionType | None = None


class TaskResponse(BaseModel):
    task_id: str
    user_id: str
    description: str
    action_type: str
    action_parameters: dict[str, Any]
    status: str
    weekdays: list[str]
    time: str
    timezone: str
    next_execution_time: datetime | None = None
    last_execution_time: datetime | None = None
    execution_count: int
    failure_count: int
    last_error: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_task(cls, task: ScheduledTask) -> "TaskResponse":
        return cls(
            task_id=task.task_id,
            user_id=task.user_id,
            description=task.describe(),
            action_type=task.action_type.value,
            action_parameters=task.action_parameters,
            status=task.status.value,
            weekdays=[d.value for d in task.recurrence.weekdays],
            time=task.recurrence.time_of_day.format_24h(),
            timezone=task.recurrence.timezone,
            next_execution_time=task.next_execution_time,
            last_execution_time=task.last_execution_time,
            execution_count=task.execution_count,
            failure_count=task.failure_count,
            last_error=task.last_error,
            cancellation_reason=task.cancellation_reason,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )
