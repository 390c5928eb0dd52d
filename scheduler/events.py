"""Domain events emitted around the schedule lifecycle."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from schedule.task import ScheduledTask, utcnow

SCHEDULE_CREATED = "ScheduleCreated"
SCHEDULE_UPDATED = "ScheduleUpdated"
SCHEDULE_EXECUTED = "ScheduleExecuted"
SCHEDULE_FAILED = "ScheduleFailed"
SCHEDULE_CANCELLED = "ScheduleCancelled"


class DomainEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str
    aggregate_id: str
    data: dict[str, Any] = {}
    occurred_at: datetime = Field(default_factory=utcnow)


def _base(task: ScheduledTask) -> dict[str, Any]:
    return {
        "user_id": task.user_id,
        "action_type": task.action_type.value,
        "description": task.describe(),
    }


def schedule_created(task: ScheduledTask) -> DomainEvent:
    return DomainEvent(
        event_type=SCHEDULE_CREATED,
        aggregate_id=task.task_id,
        data={**_base(task), "status": task.status.value, "next_execution_time": task.next_execution_time},
    )


def schedule_updated(task: ScheduledTask, changes: dict[str, Any], updated_by: str) -> DomainEvent:
    return DomainEvent(
        event_type=SCHEDULE_UPDATED,
        aggregate_id=task.task_id,
        data={**_base(task), "changes": changes, "updated_by": updated_by},
    )


def schedule_executed(task: ScheduledTask, executed_at: datetime, system_state: dict | None) -> DomainEvent:
    return DomainEvent(
        event_type=SCHEDULE_EXECUTED,
        aggregate_id=task.task_id,
        data={
            **_base(task),
            "executed_at": executed_at,
            "execution_count": task.execution_count,
            "next_execution_time": task.next_execution_time,
            "system_state": system_state,
        },
    )


def failure_severity(failure_count: int, will_retry: bool) -> str:
    if not will_retry:
        return "critical"
    return "high" if failure_count >= 2 else "medium"


def schedule_failed(task: ScheduledTask, error: str, will_retry: bool, failed_at: datetime) -> DomainEvent:
    return DomainEvent(
        event_type=SCHEDULE_FAILED,
        aggregate_id=task.task_id,
        data={
            **_base(task),
            "error": error,
            "failed_at": failed_at,
            "retry_count": task.failure_count,
            "will_retry": will_retry,
            "next_retry_at": task.next_execution_time if will_retry else None,
            "severity": failure_severity(task.failure_count, will_retry),
        },
    )


def schedule_cancelled(
    task: ScheduledTask,
    reason: str,
    cancelled_by: str,
    original_status: str,
    original_next_execution: datetime | None,
) -> DomainEvent:
    return DomainEvent(
        event_type=SCHEDULE_CANCELLED,
        aggregate_id=task.task_id,
        data={
            **_base(task),
            "reason": reason,
            "cancelled_by": cancelled_by,
            "original_status": original_status,
            "original_next_execution": original_next_execution,
        },
    )
