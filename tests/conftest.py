"""Shared fixtures: a fixed clock and per-test SQLite stores."""

from datetime import datetime, timezone

import pytest

from scheduler.ports import UserRole
from schedule.recurrence import RecurrenceExpression
from store.audit_store import AuditLogStore
from store.task_store import TaskStore
from store.user_directory import InMemoryUserDirectory

# Monday 5 January 2026, 12:00 UTC
NOW = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def weekly(days="weekdays", time="21:00", tz="UTC") -> RecurrenceExpression:
    return RecurrenceExpression.from_data(weekdays=days, time=time, timezone=tz)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
async def task_store(tmp_path):
    store = TaskStore(f"sqlite+aiosqlite:///{tmp_path}/tasks.db")
    await store.init()
    yield store
    await store.close()


@pytest.fixture
async def audit_store(tmp_path):
    store = AuditLogStore(f"sqlite+aiosqlite:///{tmp_path}/audit.db")
    await store.init()
    yield store
    await store.close()


@pytest.fixture
def users():
    directory = InMemoryUserDirectory()
    directory.add("alice")
    directory.add("bob")
    directory.add("root", UserRole.ADMIN)
    return directory
