"""Shared plumbing for the schedule use cases: clock, permissions, audit, events."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from core.state import ActionType, TaskStatus
from scheduler.events import DomainEvent
from scheduler.ports import (
    AuditCategory,
    AuditEntry,
    AuditLog,
    EventPublisher,
    TaskRepository,
    User,
    UserDirectory,
)
from scheduler.results import Outcome
from schedule.recurrence import coerce_weekdays
from schedule.task import ScheduledTask, utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class UseCase:
    """Base for orchestrators.

    Audit and event sinks are optional; when present, their failures are
    logged and never change the outcome of the operation. Without a user
    directory every requester is treated as a regular (non-admin) user, so
    checks degrade to owner-only.
    """

    def __init__(
        self,
        repository: TaskRepository,
        audit_log: AuditLog | None = None,
        events: EventPublisher | None = None,
        users: UserDirectory | None = None,
        clock: Clock = utcnow,
        expose_errors: bool = True,
    ):
        self.repository = repository
        self.audit_log = audit_log
        self.events = events
        self.users = users
        self.clock = clock
        self.expose_errors = expose_errors

    def now(self) -> datetime:
        return self.clock()

    async def resolve_user(self, user_id: str | None) -> tuple[User | None, Outcome | None]:
        """Return the requester, or a failure outcome when it cannot be resolved."""
        if not user_id:
            return None, Outcome.fail("user_id is required", details={"field": "user_id"})
        if self.users is None:
            return User(user_id=user_id), None
        user = await self.users.find_by_id(user_id)
        if user is None:
            return None, Outcome.not_found("User", user_id)
        return user, None

    @staticmethod
    def can_manage(user: User, task: ScheduledTask) -> bool:
        return task.can_be_managed_by(user.user_id, is_admin=user.is_admin)

    async def load_managed(self, task_id: str, user: User) -> tuple[ScheduledTask | None, Outcome | None]:
        task = await self.repository.find_by_id(task_id)
        if task is None:
            return None, Outcome.not_found("Scheduled task", task_id)
        if not self.can_manage(user, task):
            return None, Outcome.forbidden("You can only manage your own scheduled tasks")
        return task, None

    async def find_matching(self, criteria: dict[str, Any], user: User) -> list[ScheduledTask]:
        """Tasks matching ``user_id``/``action_type``/``status``/``weekdays`` criteria.

        Non-admins only ever match their own tasks.
        """
        owner = criteria.get("user_id")
        if not user.is_admin:
            owner = user.user_id
        pool = await (self.repository.find_by_user_id(owner) if owner else self.repository.find_all())

        action_type = criteria.get("action_type")
        if action_type:
            pool = [t for t in pool if t.action_type.value == ActionType(action_type).value]
        status = criteria.get("status")
        if status:
            wanted = {TaskStatus(s) for s in ([status] if isinstance(status, str) else status)}
            pool = [t for t in pool if t.status in wanted]
        weekdays = criteria.get("weekdays")
        if weekdays:
            days = set(coerce_weekdays(weekdays))
            pool = [t for t in pool if days & set(t.recurrence.weekdays)]
        return pool

    async def audit(self, category: AuditCategory, message: str, actor_id: str, **payload: Any) -> None:
        if self.audit_log is None:
            return
        try:
            await self.audit_log.save(
                AuditEntry(category=category, message=message, actor_id=actor_id, payload=payload)
            )
        except Exception:
            logger.warning("Audit log write failed", exc_info=True, extra={"category": category.value})

    async def publish(self, event: DomainEvent) -> None:
        if self.events is None:
            return
        try:
            await self.events.publish(event)
        except Exception:
            logger.warning("Event publication failed", exc_info=True, extra={"event_type": event.event_type})
