"""TaskStore: SQLite-backed persistence for ScheduledTask aggregates."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import sqlalchemy as sa
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import create_async_engine

from core.state import ActionType, TaskStatus
from scheduler.ports import TaskRepository
from schedule.task import ScheduledTask, utcnow

logger = logging.getLogger(__name__)

# ── Schema ───────────────────────────────────────────────────────────────────

_metadata = sa.MetaData()

_tasks = sa.Table(
    "scheduled_tasks",
    _metadata,
    sa.Column("task_id",           sa.String, primary_key=True),
    sa.Column("user_id",           sa.String, nullable=False, index=True),
    sa.Column("status",            sa.String, nullable=False, index=True),
    sa.Column("action_type",       sa.String, nullable=False),
    sa.Column("next_execution_ts", sa.Float,  nullable=True, index=True),   # epoch seconds, UTC
    sa.Column("created_at",        sa.String, nullable=False),
    sa.Column("updated_at",        sa.String, nullable=False),
    sa.Column("state_json",        sa.Text,   nullable=False),              # full Pydantic JSON
)


def _ts(instant: datetime | None) -> float | None:
    if instant is None:
        return None
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.timestamp()


# ── Store ────────────────────────────────────────────────────────────────────

class TaskStore(TaskRepository):
    """Persist and query ScheduledTask objects via SQLite.

    Saves are plain upserts: the last writer wins.
    """

    def __init__(self, db_url: str = "sqlite+aiosqlite:///panel_scheduler.db"):
        self._engine = create_async_engine(db_url, echo=False)

    async def init(self) -> None:
        """Create tables if they don't exist. Call once at startup."""
        async with self._engine.begin() as conn:
            await conn.run_sync(_metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    # ── Writes ───────────────────────────────────────────────────────────────

    async def save(self, task: ScheduledTask) -> ScheduledTask:
        row = {
            "task_id":           task.task_id,
            "user_id":           task.user_id,
            "status":            task.status.value,
            "action_type":       task.action_type.value,
            "next_execution_ts": _ts(task.next_execution_time),
            "created_at":        task.created_at.isoformat(),
            "updated_at":        task.updated_at.isoformat(),
            "state_json":        task.model_dump_json(),
        }
        async with self._engine.begin() as conn:
            await conn.execute(
                sqlite_insert(_tasks)
                .values(**row)
                .on_conflict_do_update(
                    index_elements=["task_id"],
                    set_={k: v for k, v in row.items() if k != "task_id"},
                )
            )
        logger.debug("Task saved", extra={"task_id": task.task_id, "status": task.status.value})
        return task

    async def delete(self, task_id: str) -> bool:
        async with self._engine.begin() as conn:
            res = await conn.execute(sa.delete(_tasks).where(_tasks.c.task_id == task_id))
        return res.rowcount > 0

    # ── Lookups ──────────────────────────────────────────────────────────────

    async def find_by_id(self, task_id: str) -> ScheduledTask | None:
        rows = await self._select(_tasks.c.task_id == task_id)
        return rows[0] if rows else None

    async def exists(self, task_id: str) -> bool:
        return await self.find_by_id(task_id) is not None

    async def find_all(self, limit: int | None = None, offset: int = 0) -> list[ScheduledTask]:
        return await self._select(limit=limit, offset=offset)

    async def find_by_user_id(self, user_id: str) -> list[ScheduledTask]:
        return await self._select(_tasks.c.user_id == user_id)

    async def find_by_user_id_and_status(self, user_id: str, status: TaskStatus) -> list[ScheduledTask]:
        return await self._select(_tasks.c.user_id == user_id, _tasks.c.status == TaskStatus(status).value)

    async def find_by_status(self, status: TaskStatus) -> list[ScheduledTask]:
        return await self._select(_tasks.c.status == TaskStatus(status).value)

    async def find_active(self) -> list[ScheduledTask]:
        return await self.find_by_status(TaskStatus.ACTIVE)

    async def find_by_action_type(self, action_type: ActionType) -> list[ScheduledTask]:
        return await self._select(_tasks.c.action_type == ActionType(action_type).value)

    async def find_by_next_execution_before(self, instant: datetime) -> list[ScheduledTask]:
        """Tasks whose next execution is at or before *instant*, soonest first."""
        return await self._select(
            _tasks.c.next_execution_ts.is_not(None),
            _tasks.c.next_execution_ts <= _ts(instant),
            order_by=_tasks.c.next_execution_ts.asc(),
        )

    async def find_by_next_execution_between(self, start: datetime, end: datetime) -> list[ScheduledTask]:
        return await self._select(
            _tasks.c.next_execution_ts >= _ts(start),
            _tasks.c.next_execution_ts <= _ts(end),
            order_by=_tasks.c.next_execution_ts.asc(),
        )

    async def find_overdue(self, tolerance_minutes: int = 5, now: datetime | None = None) -> list[ScheduledTask]:
        cutoff = (now or utcnow()) - timedelta(minutes=tolerance_minutes)
        return await self._select(
            _tasks.c.status == TaskStatus.ACTIVE.value,
            _tasks.c.next_execution_ts < _ts(cutoff),
            order_by=_tasks.c.next_execution_ts.asc(),
        )

    async def search(self, term: str, user_id: str | None = None) -> list[ScheduledTask]:
        """Case-insensitive match against the task description and action type."""
        needle = term.lower()
        pool = await (self.find_by_user_id(user_id) if user_id else self.find_all())
        return [
            t for t in pool
            if needle in t.describe().lower() or needle in t.action_type.value.lower()
        ]

    # ── Aggregates ───────────────────────────────────────────────────────────

    async def count_by_status(self, user_id: str | None = None) -> dict[str, int]:
        query = sa.select(_tasks.c.status, sa.func.count()).group_by(_tasks.c.status)
        if user_id:
            query = query.where(_tasks.c.user_id == user_id)
        async with self._engine.connect() as conn:
            rows = (await conn.execute(query)).fetchall()
        counts = {s.value: 0 for s in TaskStatus}
        counts.update({status: n for status, n in rows})
        return counts

    async def count_by_user_id(self, user_id: str) -> int:
        query = sa.select(sa.func.count()).select_from(_tasks).where(_tasks.c.user_id == user_id)
        async with self._engine.connect() as conn:
            return (await conn.execute(query)).scalar_one()

    async def statistics(self, user_id: str | None = None) -> dict:
        tasks = await (self.find_by_user_id(user_id) if user_id else self.find_all())
        by_action = {a.value: 0 for a in ActionType}
        for t in tasks:
            by_action[t.action_type.value] += 1
        executions = sum(t.execution_count for t in tasks)
        failures = sum(t.failure_count for t in tasks)
        return {
            "total": len(tasks),
            "by_status": await self.count_by_status(user_id),
            "by_action_type": by_action,
            "total_executions": executions,
            "total_failures": failures,
            "success_rate": round((executions - failures) / executions * 100, 2) if executions else 0.0,
        }

    # ── Internal ─────────────────────────────────────────────────────────────

    async def _select(self, *where, order_by=None, limit: int | None = None, offset: int = 0) -> list[ScheduledTask]:
        query = sa.select(_tasks.c.state_json)
        for clause in where:
            query = query.where(clause)
        query = query.order_by(order_by if order_by is not None else _tasks.c.created_at.asc())
        if limit is not None:
            query = query.limit(limit)
        if offset:
            query = query.offset(offset)
        async with self._engine.connect() as conn:
            rows = (await conn.execute(query)).fetchall()
        return [ScheduledTask.model_validate_json(r.state_json) for r in rows]
