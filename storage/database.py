"""SQLite connection shared by the stores — one connection, serialized access, off the event loop."""

import asyncio
import logging
import sqlite3
import threading
from typing import Any, Iterable, List, Optional, Sequence

from errors import PersistenceFailure

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS applications (
    id            TEXT PRIMARY KEY,
    business_name TEXT NOT NULL DEFAULT '',
    contact_name  TEXT NOT NULL DEFAULT '',
    phone         TEXT NOT NULL DEFAULT '',
    user_type     TEXT NOT NULL DEFAULT '',
    status        TEXT NOT NULL DEFAULT 'draft',
    loan_amount   REAL,
    loan_chance   TEXT,
    loan_score    INTEGER,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS form_fields (
    application_id TEXT NOT NULL,
    document       TEXT NOT NULL,
    field_name     TEXT NOT NULL,
    value          TEXT NOT NULL,
    updated_at     TEXT NOT NULL,
    PRIMARY KEY (application_id, document, field_name)
);

CREATE TABLE IF NOT EXISTS chat_sessions (
    session_id     TEXT PRIMARY KEY,
    application_id TEXT,
    owner_ref      TEXT,
    user_data      TEXT NOT NULL DEFAULT '{}',
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chat_messages (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    payload    TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chat_messages_session ON chat_messages (session_id, id);
"""


class Database:
    """Thin wrapper around a single `sqlite3` connection.

    Every statement runs in a worker thread via `asyncio.to_thread`; a lock
    keeps the connection single-writer. Failures surface as `PersistenceFailure`.
    """

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        logger.info("SQLite database ready at %s", path)

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                cur = self._conn.execute(sql, params)
                rows = cur.fetchall()
                self._conn.commit()
                return rows
            except sqlite3.Error as e:
                self._conn.rollback()
                raise PersistenceFailure(f"SQLite error: {e}") from e

    def _execute_many(self, sql: str, rows: Iterable[Sequence[Any]]) -> None:
        with self._lock:
            try:
                self._conn.executemany(sql, rows)
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise PersistenceFailure(f"SQLite error: {e}") from e

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        return await asyncio.to_thread(self._execute, sql, params)

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        rows = await asyncio.to_thread(self._execute, sql, params)
        return rows[0] if rows else None

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        await asyncio.to_thread(self._execute, sql, params)

    async def execute_many(self, sql: str, rows: Iterable[Sequence[Any]]) -> None:
        await asyncio.to_thread(self._execute_many, sql, list(rows))

    def close(self) -> None:
        with self._lock:
            self._conn.close()
