"""sqlite handle shared by the event, memory and summary stores.

The handle is constructed explicitly, opened at startup and closed at
shutdown. Stores receive it in their constructors.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from recallbot.settings import DB_PATH

_LOG = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id INTEGER PRIMARY KEY,
        first_name TEXT,
        last_name TEXT,
        username TEXT,
        is_bot INTEGER DEFAULT 0,
        is_premium INTEGER DEFAULT 0,
        language_code TEXT,
        history TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        conversation_id INTEGER NOT NULL,
        native_id INTEGER NOT NULL,
        author_id INTEGER NOT NULL,
        text TEXT,
        kind TEXT NOT NULL,
        derived_context TEXT,
        file_name TEXT,
        reply_to_id INTEGER,
        forward_origin TEXT,
        forward_from_user_id INTEGER,
        edits TEXT NOT NULL DEFAULT '[]',
        reactions TEXT NOT NULL DEFAULT '[]',
        sent_at TEXT NOT NULL,
        edited_at TEXT,
        created_at TEXT NOT NULL,
        UNIQUE (conversation_id, native_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation_time ON messages(conversation_id, sent_at, native_id)",
    """
    CREATE TABLE IF NOT EXISTS summaries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        conversation_id INTEGER NOT NULL,
        level INTEGER NOT NULL,
        idx INTEGER NOT NULL,
        summary_text TEXT NOT NULL,
        start_sent_at TEXT,
        end_sent_at TEXT,
        created_at TEXT NOT NULL,
        UNIQUE (conversation_id, level, idx)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        conversation_id INTEGER NOT NULL,
        author_id INTEGER NOT NULL,
        text TEXT NOT NULL,
        source_message_id INTEGER,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_memories_conversation_time ON memories(conversation_id, created_at)",
)


def to_db_time(value: datetime | None) -> str | None:
    """Serialize a datetime as fixed-width UTC ISO text so it sorts lexically."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class Database:
    """Owns the single sqlite connection used by every store."""

    def __init__(self, path: str | Path | None = None) -> None:
        path = DB_PATH if path is None else path
        self.path = str(path) if str(path) == ":memory:" else str(Path(path).expanduser())
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def open(self) -> Database:
        """Connect and create the schema. Safe to call twice."""
        if self._conn is not None:
            return self
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        for statement in _SCHEMA:
            conn.execute(statement)
        conn.commit()
        self._conn = conn
        _LOG.info("Opened database at %s", self.path)
        return self

    def close(self) -> None:
        if self._conn is None:
            return
        with self._lock:
            self._conn.close()
            self._conn = None
        _LOG.info("Closed database at %s", self.path)

    def __enter__(self) -> Database:
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    @contextmanager
    def transaction(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Yield the connection inside a transaction.

        Commits on success and rolls back on error. ``immediate=True`` takes
        the write lock up front for read-modify-write sequences.
        """
        if self._conn is None:
            raise RuntimeError("Database not connected. Call open() first.")
        with self._lock:
            conn = self._conn
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
