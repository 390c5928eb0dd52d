"""ListScheduledTasks: filtered, sorted, paginated views over schedules."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any

from core.state import ActionType, TaskStatus
from scheduler.base import UseCase
from scheduler.results import Outcome
from schedule.task import ScheduledTask

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 500
SORT_FIELDS = ("created_at", "next_execution_time", "last_execution_time", "status", "action_type")
TIME_WINDOWS = ("today", "week", "month", "upcoming", "overdue")


class ListScheduledTasks(UseCase):
    async def execute(
        self,
        requester_id: str,
        *,
        user_id: str | None = None,
        status: TaskStatus | str | list | None = None,
        action_type: ActionType | str | None = None,
        window: str | None = None,
        hours_ahead: int = 24,
        tolerance_minutes: int = 5,
        start: datetime | None = None,
        end: datetime | None = None,
        search: str | None = None,
        executed_only: bool = False,
        sort_by: str = "created_at",
        order: str = "desc",
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
    ) -> Outcome:
        try:
            requester, failure = await self.resolve_user(requester_id)
            if failure:
                return failure
            if user_id and user_id != requester.user_id and not requester.is_admin:
                return Outcome.forbidden("Only administrators can list other users' schedules")
            if sort_by not in SORT_FIELDS:
                return Outcome.fail(
                    f"Invalid sort field: {sort_by}. Must be one of: {', '.join(SORT_FIELDS)}",
                    details={"field": "sort_by"},
                )
            if order not in ("asc", "desc"):
                return Outcome.fail("order must be 'asc' or 'desc'", details={"field": "order"})
            if window and window not in TIME_WINDOWS:
                return Outcome.fail(
                    f"Invalid time window: {window}. Must be one of: {', '.join(TIME_WINDOWS)}",
                    details={"field": "window"},
                )
            if not 1 <= limit <= MAX_LIMIT or offset < 0:
                return Outcome.fail(
                    f"limit must be between 1 and {MAX_LIMIT} and offset must not be negative",
                    details={"field": "limit"},
                )
            try:
                statuses = _statuses(status)
                wanted_type = ActionType(action_type) if action_type else None
            except ValueError as e:
                return Outcome.fail(str(e), details={"field": "status" if status else "action_type"})

            owner = user_id if requester.is_admin else requester.user_id
            tasks = await (self.repository.find_by_user_id(owner) if owner else self.repository.find_all())

            now = self.now()
            if statuses:
                tasks = [t for t in tasks if t.status in statuses]
            if wanted_type:
                tasks = [t for t in tasks if t.action_type is wanted_type]
            if window:
                tasks = _in_window(tasks, window, now, hours_ahead, tolerance_minutes)
            if start or end:
                tasks = [t for t in tasks if _within(t.next_execution_time, start, end)]
            if search:
                term = search.lower()
                tasks = [t for t in tasks
                         if term in t.describe().lower() or term in t.action_type.value.lower()]
            if executed_only:
                tasks = [t for t in tasks if t.last_execution_time is not None]

            summary = _summarize(tasks, now, tolerance_minutes)
            tasks = _sorted(tasks, sort_by, descending=order == "desc")
            page = tasks[offset:offset + limit]
            logger.debug("Listed scheduled tasks", extra={"requester": requester.user_id, "total": len(tasks)})
            return Outcome.ok({
                "tasks": page,
                "pagination": {
                    "total": len(tasks),
                    "limit": limit,
                    "offset": offset,
                    "has_more": offset + len(page) < len(tasks),
                },
                "summary": summary,
            })
        except Exception as e:
            return Outcome.unexpected(e, "list_scheduled_tasks", self.expose_errors, requester_id=requester_id)

    # ── Shortcuts ────────────────────────────────────────────────────────────
    # Caller keywords win over each shortcut's defaults.

    async def active(self, requester_id: str, **kwargs) -> Outcome:
        return await self._shortcut(requester_id, kwargs, status=TaskStatus.ACTIVE,
                                    sort_by="next_execution_time", order="asc")

    async def upcoming(self, requester_id: str, hours_ahead: int = 24, **kwargs) -> Outcome:
        return await self._shortcut(requester_id, kwargs, window="upcoming", hours_ahead=hours_ahead,
                                    sort_by="next_execution_time", order="asc")

    async def overdue(self, requester_id: str, tolerance_minutes: int = 5, **kwargs) -> Outcome:
        return await self._shortcut(requester_id, kwargs, window="overdue", tolerance_minutes=tolerance_minutes,
                                    sort_by="next_execution_time", order="asc")

    async def history(self, requester_id: str, **kwargs) -> Outcome:
        """Tasks that have run at least once, most recent first."""
        return await self._shortcut(requester_id, kwargs, executed_only=True,
                                    sort_by="last_execution_time", order="desc")

    async def _shortcut(self, requester_id: str, kwargs: dict[str, Any], **defaults: Any) -> Outcome:
        for key, value in defaults.items():
            kwargs.setdefault(key, value)
        try:
            pending = self.execute(requester_id, **kwargs)
        except TypeError as e:
            return Outcome.fail(f"Invalid listing argument: {e}")
        return await pending


def _statuses(value: Any) -> set[TaskStatus]:
    if not value:
        return set()
    items = [value] if isinstance(value, (str, TaskStatus)) else value
    return {TaskStatus(s) for s in items}


def _within(instant: datetime | None, start: datetime | None, end: datetime | None) -> bool:
    if instant is None:
        return False
    if start and instant < start:
        return False
    return not (end and instant > end)


def _in_window(
    tasks: list[ScheduledTask], window: str, now: datetime, hours_ahead: int, tolerance_minutes: int
) -> list[ScheduledTask]:
    if window == "overdue":
        return [t for t in tasks if t.is_overdue(now, tolerance_minutes)]
    if window == "upcoming":
        start, end = now, now + timedelta(hours=hours_ahead)
    elif window == "today":
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
    elif window == "week":
        start, end = now, now + timedelta(days=7)
    else:
        start, end = now, now + timedelta(days=30)
    return [t for t in tasks if t.status is TaskStatus.ACTIVE and _within(t.next_execution_time, start, end)]


def _sorted(tasks: list[ScheduledTask], field: str, descending: bool) -> list[ScheduledTask]:
    """Sort by *field*; tasks without a value for it always come last."""
    def key(task: ScheduledTask):
        value = getattr(task, field)
        return value.value if hasattr(value, "value") else value

    present = [t for t in tasks if getattr(t, field) is not None]
    missing = [t for t in tasks if getattr(t, field) is None]
    return sorted(present, key=key, reverse=descending) + missing


def _summarize(tasks: list[ScheduledTask], now: datetime, tolerance_minutes: int) -> dict[str, Any]:
    by_status = {s.value: 0 for s in TaskStatus}
    by_status.update(Counter(t.status.value for t in tasks))
    upcoming = [t.next_execution_time for t in tasks
                if t.status is TaskStatus.ACTIVE and t.next_execution_time is not None]
    return {
        "total": len(tasks),
        "by_status": by_status,
        "by_action_type": dict(Counter(t.action_type.value for t in tasks)),
        "overdue": sum(1 for t in tasks if t.is_overdue(now, tolerance_minutes)),
        "next_execution_time": min(upcoming) if upcoming else None,
    }
