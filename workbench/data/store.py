from dataclasses import dataclass
from datetime import date
from typing import Any

import aiosqlite

from workbench.agent.errors import MutationError
from workbench.constants import (
    SNAPSHOT_EVENT_LIMIT,
    SNAPSHOT_PERSONAL_LIMIT,
    SNAPSHOT_PROJECT_LIMIT,
    SNAPSHOT_TODO_LIMIT,
)
from workbench.utils import new_id, utc_now

SCHEMA = """
CREATE TABLE IF NOT EXISTS todos (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    completed INTEGER DEFAULT 0,
    priority TEXT DEFAULT 'normal',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    deadline TEXT,
    progress INTEGER DEFAULT 0,
    status TEXT DEFAULT 'active',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    date TEXT NOT NULL,
    color TEXT DEFAULT 'blue',
    note TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS personal_tasks (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    budget REAL,
    date TEXT,
    location TEXT,
    note TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_date ON events(date);
"""


@dataclass(frozen=True)
class Table:
    name: str
    columns: tuple[str, ...]
    bools: tuple[str, ...] = ()


TABLES: dict[str, Table] = {
    "todo": Table("todos", ("title", "completed", "priority"), bools=("completed",)),
    "project": Table("projects", ("title", "deadline", "progress", "status")),
    "event": Table("events", ("title", "date", "color", "note")),
    "personal": Table("personal_tasks", ("title", "budget", "date", "location", "note")),
}


def _table(entity: str) -> Table:
    table = TABLES.get(entity)
    if table is None:
        raise MutationError(f"Unknown entity kind: {entity}")
    return table


def _row(table: Table, row: aiosqlite.Row) -> dict[str, Any]:
    data = dict(row)
    for col in table.bools:
        data[col] = bool(data[col])
    return data


class WorkbenchStore:
    def __init__(self, conn: aiosqlite.Connection):
        self.conn = conn

    async def init_schema(self) -> None:
        await self.conn.executescript(SCHEMA)
        await self.conn.commit()

    async def get(self, entity: str, item_id: str) -> dict[str, Any] | None:
        table = _table(entity)
        rows = await self.conn.execute_fetchall(f"SELECT * FROM {table.name} WHERE id = ?", (item_id,))
        return _row(table, rows[0]) if rows else None

    async def list_all(self, entity: str) -> list[dict[str, Any]]:
        table = _table(entity)
        rows = await self.conn.execute_fetchall(f"SELECT * FROM {table.name} ORDER BY created_at DESC")
        return [_row(table, row) for row in rows]

    async def create(self, entity: str, fields: dict[str, Any]) -> dict[str, Any]:
        table = _table(entity)
        values = {k: v for k, v in fields.items() if k in table.columns and v is not None}
        item_id = new_id()
        cols = ["id", *values, "created_at"]
        placeholders = ", ".join("?" for _ in cols)
        try:
            await self.conn.execute(
                f"INSERT INTO {table.name} ({', '.join(cols)}) VALUES ({placeholders})",
                (item_id, *values.values(), utc_now().isoformat()),
            )
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise MutationError(f"Failed to create {entity}: {e}") from e
        return await self.get(entity, item_id)

    async def update(self, entity: str, item_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        table = _table(entity)
        values = {k: v for k, v in fields.items() if k in table.columns}
        if not values:
            raise MutationError(f"No updatable fields for {entity}")
        assignments = ", ".join(f"{k} = ?" for k in values)
        try:
            cursor = await self.conn.execute(
                f"UPDATE {table.name} SET {assignments} WHERE id = ?",
                (*values.values(), item_id),
            )
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise MutationError(f"Failed to update {entity}: {e}") from e
        if cursor.rowcount == 0:
            raise MutationError(f"{entity} {item_id} not found")
        return await self.get(entity, item_id)

    async def delete(self, entity: str, item_id: str) -> None:
        table = _table(entity)
        cursor = await self.conn.execute(f"DELETE FROM {table.name} WHERE id = ?", (item_id,))
        await self.conn.commit()
        if cursor.rowcount == 0:
            raise MutationError(f"{entity} {item_id} not found")

    async def snapshot(self, today: date | None = None) -> dict[str, Any]:
        today_str = (today or date.today()).isoformat()
        todos = await self.conn.execute_fetchall(
            "SELECT id, title, priority FROM todos WHERE completed = 0 ORDER BY created_at DESC LIMIT ?",
            (SNAPSHOT_TODO_LIMIT,),
        )
        projects = await self.conn.execute_fetchall(
            "SELECT id, title, deadline, progress FROM projects WHERE status = 'active' ORDER BY deadline LIMIT ?",
            (SNAPSHOT_PROJECT_LIMIT,),
        )
        events = await self.conn.execute_fetchall(
            "SELECT id, title, date, color, note FROM events WHERE date = ? ORDER BY created_at LIMIT ?",
            (today_str, SNAPSHOT_EVENT_LIMIT),
        )
        personal = await self.conn.execute_fetchall(
            "SELECT id, title, date, budget FROM personal_tasks ORDER BY date LIMIT ?",
            (SNAPSHOT_PERSONAL_LIMIT,),
        )
        return {
            "today": today_str,
            "pending_todos": [dict(r) for r in todos],
            "active_projects": [dict(r) for r in projects],
            "today_events": [dict(r) for r in events],
            "personal_tasks": [dict(r) for r in personal],
        }
