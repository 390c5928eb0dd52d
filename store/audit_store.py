"""Append-only SQLite audit log for schedule operations."""

import json

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from scheduler.ports import AuditCategory, AuditEntry, AuditLog


class AuditLogStore(AuditLog):
    def __init__(self, db_url: str = "sqlite+aiosqlite:///panel_scheduler.db"):
        self._engine = create_async_engine(db_url, echo=False)

    async def init(self) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(text("""
                CREATE TABLE IF NOT EXISTS audit_log (
                    entry_id   TEXT PRIMARY KEY,
                    category   TEXT NOT NULL,
                    actor_id   TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    data       TEXT NOT NULL
                )
            """))

    async def close(self) -> None:
        await self._engine.dispose()

    async def save(self, entry: AuditEntry) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                text("""
                    INSERT INTO audit_log (entry_id, category, actor_id, created_at, data)
                    VALUES (:entry_id, :category, :actor_id, :created_at, :data)
                """),
                {
                    "entry_id": entry.entry_id,
                    "category": entry.category.value,
                    "actor_id": entry.actor_id,
                    "created_at": entry.created_at.isoformat(),
                    "data": entry.model_dump_json(),
                },
            )

    async def list_recent(
        self, limit: int = 50, category: AuditCategory | None = None, actor_id: str | None = None
    ) -> list[AuditEntry]:
        clauses, params = [], {"limit": limit}
        if category is not None:
            clauses.append("category = :category")
            params["category"] = AuditCategory(category).value
        if actor_id is not None:
            clauses.append("actor_id = :actor_id")
            params["actor_id"] = actor_id
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        async with self._engine.connect() as conn:
            rows = (await conn.execute(
                text(f"SELECT data FROM audit_log {where} ORDER BY rowid DESC LIMIT :limit"),
                params,
            )).fetchall()
        return [AuditEntry.model_validate(json.loads(r[0])) for r in rows]
