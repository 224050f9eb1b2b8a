import json
from dataclasses import dataclass, field
from typing import Any

import aiosqlite

from workbench.utils import utc_now

SCHEMA = """
CREATE TABLE IF NOT EXISTS agent_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

SQL_PUT = """
INSERT OR REPLACE INTO agent_state (key, value, updated_at)
VALUES (?, ?, ?)
"""

KEY_SETTINGS = "settings"
KEY_MESSAGES = "messages"
KEY_AUDIT = "audit"


@dataclass
class PersistedAgentState:
    settings: dict[str, Any] | None = None
    messages: list[dict] = field(default_factory=list)
    audit: list[dict] = field(default_factory=list)


class AgentStateStore:
    def __init__(self, conn: aiosqlite.Connection):
        self.conn = conn

    async def init_schema(self) -> None:
        await self.conn.executescript(SCHEMA)
        await self.conn.commit()

    async def load(self) -> PersistedAgentState:
        rows = await self.conn.execute_fetchall("SELECT key, value FROM agent_state")
        values: dict[str, Any] = {}
        for row in rows:
            try:
                values[row["key"]] = json.loads(row["value"])
            except json.JSONDecodeError:
                continue

        settings = values.get(KEY_SETTINGS)
        messages = values.get(KEY_MESSAGES)
        audit = values.get(KEY_AUDIT)
        return PersistedAgentState(
            settings=settings if isinstance(settings, dict) else None,
            messages=messages if isinstance(messages, list) else [],
            audit=audit if isinstance(audit, list) else [],
        )

    async def save(self, settings: dict, messages: list[dict], audit: list[dict]) -> None:
        now = utc_now().isoformat()
        await self.conn.executemany(
            SQL_PUT,
            [
                (KEY_SETTINGS, json.dumps(settings), now),
                (KEY_MESSAGES, json.dumps(messages, default=str), now),
                (KEY_AUDIT, json.dumps(audit, default=str), now),
            ],
        )
        await self.conn.commit()

    async def clear(self) -> None:
        await self.conn.execute("DELETE FROM agent_state")
        await self.conn.commit()
