"""Tests for TaskStore, AuditLogStore and the in-memory user directory."""

from datetime import timedelta

import pytest

from core.state import ActionType, TaskStatus
from scheduler.ports import AuditCategory, AuditEntry, User, UserRole
from schedule.task import ScheduledTask
from store.user_directory import InMemoryUserDirectory

from conftest import NOW, weekly


def make(user="alice", days="weekdays", time="21:00", action="ARM_SYSTEM", offset=0):
    params = {"mode": "away"} if action == "ARM_SYSTEM" else {}
    task = ScheduledTask.create(user, weekly(days=days, time=time), action, params,
                                now=NOW + timedelta(seconds=offset))
    task.activate(NOW)
    return task


# ── Writes ────────────────────────────────────────────────────────────────────

async def test_save_and_load(task_store):
    task = make()
    await task_store.save(task)
    loaded = await task_store.find_by_id(task.task_id)
    assert loaded is not None
    assert loaded.task_id == task.task_id
    assert loaded.recurrence == task.recurrence
    assert loaded.status is TaskStatus.ACTIVE
    assert loaded.next_execution_time == task.next_execution_time
    assert loaded.action_parameters == {"mode": "away", "zone_ids": []}


async def test_save_is_an_upsert(task_store):
    task = make()
    await task_store.save(task)
    task.cancel("done", NOW)
    await task_store.save(task)
    assert len(await task_store.find_all()) == 1
    loaded = await task_store.find_by_id(task.task_id)
    assert loaded.status is TaskStatus.CANCELLED
    assert loaded.cancellation_reason == "done"


async def test_delete(task_store):
    task = await task_store.save(make())
    assert await task_store.delete(task.task_id) is True
    assert await task_store.delete(task.task_id) is False
    assert await task_store.find_by_id(task.task_id) is None
    assert not await task_store.exists(task.task_id)


# ── Lookups ───────────────────────────────────────────────────────────────────

async def test_find_by_owner_status_and_action(task_store):
    a = await task_store.save(make("alice", offset=1))
    b = await task_store.save(make("alice", action="DISARM_SYSTEM", time="07:00", offset=2))
    c = make("bob", offset=3)
    c.cancel(now=NOW)
    await task_store.save(c)

    assert [t.task_id for t in await task_store.find_by_user_id("alice")] == [a.task_id, b.task_id]
    assert [t.task_id for t in await task_store.find_by_status(TaskStatus.CANCELLED)] == [c.task_id]
    assert [t.task_id for t in await task_store.find_active()] == [a.task_id, b.task_id]
    assert [t.task_id for t in await task_store.find_by_action_type(ActionType.DISARM_SYSTEM)] == [b.task_id]
    assert await task_store.find_by_user_id_and_status("bob", TaskStatus.ACTIVE) == []


async def test_find_all_pages_in_creation_order(task_store):
    ids = [(await task_store.save(make(offset=i, time=f"{10 + i}:00"))).task_id for i in range(4)]
    page = await task_store.find_all(limit=2, offset=1)
    assert [t.task_id for t in page] == ids[1:3]


async def test_find_by_next_execution(task_store):
    late = await task_store.save(make(time="22:00", offset=1))
    early = await task_store.save(make(time="18:00", offset=2))
    cancelled = make(time="13:00", offset=3)
    cancelled.cancel(now=NOW)
    await task_store.save(cancelled)

    due = await task_store.find_by_next_execution_before(NOW.replace(hour=23))
    assert [t.task_id for t in due] == [early.task_id, late.task_id]

    window = await task_store.find_by_next_execution_between(NOW.replace(hour=17), NOW.replace(hour=19))
    assert [t.task_id for t in window] == [early.task_id]


async def test_find_overdue(task_store):
    task = await task_store.save(make(time="18:00"))
    due = task.next_execution_time
    assert await task_store.find_overdue(5, now=due + timedelta(minutes=5)) == []
    overdue = await task_store.find_overdue(5, now=due + timedelta(minutes=6))
    assert [t.task_id for t in overdue] == [task.task_id]


async def test_search(task_store):
    await task_store.save(make("alice", offset=1))
    disarm = await task_store.save(make("alice", action="DISARM_SYSTEM", time="07:00", offset=2))
    await task_store.save(make("bob", action="DISARM_SYSTEM", time="07:00", offset=3))
    hits = await task_store.search("disarm", user_id="alice")
    assert [t.task_id for t in hits] == [disarm.task_id]
    assert len(await task_store.search("7 AM")) == 2


# ── Aggregates ────────────────────────────────────────────────────────────────

async def test_counts_and_statistics(task_store):
    ok = make(offset=1)
    ok.record_successful_execution(ok.next_execution_time)
    await task_store.save(ok)
    failed = make(action="DISARM_SYSTEM", time="07:00", offset=2)
    failed.mark_execution_failed("panel offline", NOW)
    await task_store.save(failed)

    counts = await task_store.count_by_status()
    assert counts["active"] == 1
    assert counts["failed"] == 1
    assert counts["cancelled"] == 0
    assert await task_store.count_by_user_id("alice") == 2
    assert await task_store.count_by_user_id("nobody") == 0

    stats = await task_store.statistics("alice")
    assert stats["total"] == 2
    assert stats["by_action_type"] == {"ARM_SYSTEM": 1, "DISARM_SYSTEM": 1}
    assert stats["total_executions"] == 2
    assert stats["total_failures"] == 1
    assert stats["success_rate"] == 50.0


# ── Audit log ─────────────────────────────────────────────────────────────────

async def test_audit_log_lists_newest_first(audit_store):
    for i, category in enumerate([AuditCategory.SCHEDULE_CREATED, AuditCategory.SCHEDULE_CANCELLED,
                                  AuditCategory.SCHEDULE_CREATED]):
        await audit_store.save(AuditEntry(category=category, message=f"entry {i}",
                                          actor_id="alice" if i < 2 else "bob", payload={"i": i}))

    recent = await audit_store.list_recent()
    assert [e.message for e in recent] == ["entry 2", "entry 1", "entry 0"]
    assert recent[0].payload == {"i": 2}

    created = await audit_store.list_recent(category=AuditCategory.SCHEDULE_CREATED)
    assert [e.message for e in created] == ["entry 2", "entry 0"]
    by_alice = await audit_store.list_recent(limit=1, actor_id="alice")
    assert [e.message for e in by_alice] == ["entry 1"]


# ── User directory ────────────────────────────────────────────────────────────

async def test_user_directory_lookup(users):
    assert (await users.find_by_id("root")).is_admin
    assert not (await users.find_by_id("alice")).is_admin
    assert await users.find_by_id("mallory") is None
    assert {u.user_id for u in users.all()} == {"alice", "bob", "root"}


async def test_user_directory_default_role():
    directory = InMemoryUserDirectory([User(user_id="root", role=UserRole.ADMIN)], default_role="user")
    stranger = await directory.find_by_id("mallory")
    assert stranger == User(user_id="mallory", role=UserRole.USER)
    assert (await directory.find_by_id("root")).is_admin


@pytest.mark.parametrize("role", ["admin", UserRole.ADMIN])
def test_user_directory_add_accepts_role_strings(role):
    directory = InMemoryUserDirectory()
    assert directory.add("root", role).role is UserRole.ADMIN
