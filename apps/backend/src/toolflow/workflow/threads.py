"""Thread message history backed by SQLite in WAL mode."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Literal, Protocol

from pydantic import BaseModel, Field

from .schema import utcnow

MessageRole = Literal["system", "user", "assistant", "tool"]

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS thread_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    thread_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_thread_messages_thread ON thread_messages(thread_id, id);
"""


class Message(BaseModel):
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=utcnow)


class MessageStore(Protocol):
    async def load_messages(self, thread_id: str) -> list[Message]: ...

    async def save_message(self, thread_id: str, role: MessageRole, content: str) -> None: ...


def init_db(db_path: Path) -> sqlite3.Connection:
    """Open (creating if needed) the thread database.

    Safe to call multiple times: all schema objects use IF NOT EXISTS.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.row_factory = sqlite3.Row
    conn.executescript(_SCHEMA)
    return conn


class SqliteMessageStore:
    """Stores thread messages in insertion order."""

    def __init__(self, db_path: Path):
        self._conn = init_db(db_path)
        self._lock = threading.Lock()

    async def load_messages(self, thread_id: str) -> list[Message]:
        return await asyncio.to_thread(self._load, thread_id)

    async def save_message(self, thread_id: str, role: MessageRole, content: str) -> None:
        message = Message(role=role, content=content)
        await asyncio.to_thread(self._save, thread_id, message)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _load(self, thread_id: str) -> list[Message]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT role, content, created_at FROM thread_messages WHERE thread_id = ? ORDER BY id",
                (thread_id,),
            ).fetchall()
        return [
            Message(role=row["role"], content=row["content"], created_at=row["created_at"])
            for row in rows
        ]

    def _save(self, thread_id: str, message: Message) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO thread_messages (thread_id, role, content, created_at) VALUES (?, ?, ?, ?)",
                (thread_id, message.role, message.content, message.created_at.isoformat()),
            )
            self._conn.commit()
