"""Collaborator contracts the orchestrators depend on.

Concrete implementations live in ``store/`` (SQLite tasks and audit log,
in-memory users) and ``core/event_bus.py``.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from core.state import ActionType, TaskStatus
from schedule.task import ScheduledTask, utcnow

if TYPE_CHECKING:
    from scheduler.events import DomainEvent


class AuditCategory(str, Enum):
    SCHEDULE_CREATED = "SCHEDULE_CREATED"
    SCHEDULE_UPDATED = "SCHEDULE_UPDATED"
    SCHEDULE_CANCELLED = "SCHEDULE_CANCELLED"
    SCHEDULE_EXECUTED_SUCCESS = "SCHEDULE_EXECUTED_SUCCESS"
    SCHEDULE_EXECUTED_FAILED = "SCHEDULE_EXECUTED_FAILED"
    BATCH_SCHEDULE_EXECUTION = "BATCH_SCHEDULE_EXECUTION"


class AuditEntry(BaseModel):
    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    category: AuditCategory
    message: str
    actor_id: str
    payload: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=utcnow)


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


class User(BaseModel):
    user_id: str
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN


# ── Contracts ─────────────────────────────────────────────────────────────────

class TaskRepository(ABC):
    @abstractmethod
    async def save(self, task: ScheduledTask) -> ScheduledTask: ...

    @abstractmethod
    async def delete(self, task_id: str) -> bool: ...

    @abstractmethod
    async def find_by_id(self, task_id: str) -> ScheduledTask | None: ...

    @abstractmethod
    async def find_all(self, limit: int | None = None, offset: int = 0) -> list[ScheduledTask]: ...

    @abstractmethod
    async def find_by_user_id(self, user_id: str) -> list[ScheduledTask]: ...

    @abstractmethod
    async def find_by_user_id_and_status(self, user_id: str, status: TaskStatus) -> list[ScheduledTask]: ...

    @abstractmethod
    async def find_by_status(self, status: TaskStatus) -> list[ScheduledTask]: ...

    @abstractmethod
    async def find_by_action_type(self, action_type: ActionType) -> list[ScheduledTask]: ...

    @abstractmethod
    async def find_by_next_execution_before(self, instant: datetime) -> list[ScheduledTask]: ...

    @abstractmethod
    async def find_by_next_execution_between(self, start: datetime, end: datetime) -> list[ScheduledTask]: ...

    @abstractmethod
    async def find_overdue(self, tolerance_minutes: int = 5, now: datetime | None = None) -> list[ScheduledTask]: ...


class AuditLog(ABC):
    @abstractmethod
    async def save(self, entry: AuditEntry) -> None: ...


class EventPublisher(ABC):
    @abstractmethod
    async def publish(self, event: DomainEvent) -> None: ...


class UserDirectory(ABC):
    @abstractmethod
    async def find_by_id(self, user_id: str) -> User | None: ...
