"""Pinned facts users asked the bot to keep for a conversation."""

from __future__ import annotations

import logging
import sqlite3

from recallbot.history.database import Database, from_db_time, to_db_time
from recallbot.history.models import Memory, utcnow
from recallbot.settings import MEMORY_CONTEXT_LIMIT

_LOG = logging.getLogger(__name__)


def _row_to_memory(row: sqlite3.Row) -> Memory:
    return Memory(
        id=row["id"],
        conversation_id=row["conversation_id"],
        author_id=row["author_id"],
        text=row["text"],
        source_message_id=row["source_message_id"],
        created_at=from_db_time(row["created_at"]),
    )


class MemoryStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    def add(
        self,
        conversation_id: int,
        author_id: int,
        text: str,
        source_message_id: int | None = None,
    ) -> Memory:
        """Persist a trimmed fact and return it with its id."""
        text = (text or "").strip()
        if not text:
            raise ValueError("Memory text must not be empty")
        memory = Memory(
            id=None,
            conversation_id=conversation_id,
            author_id=author_id,
            text=text,
            source_message_id=source_message_id,
            created_at=utcnow(),
        )
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO memories (conversation_id, author_id, text, source_message_id, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (conversation_id, author_id, text, source_message_id, to_db_time(memory.created_at)),
            )
            memory.id = cursor.lastrowid
        _LOG.info("Stored memory %s for conversation %s", memory.id, conversation_id)
        return memory

    def list_for_conversation(self, conversation_id: int, limit: int = MEMORY_CONTEXT_LIMIT) -> list[Memory]:
        """Return up to ``limit`` memories, oldest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM memories WHERE conversation_id = ?
                ORDER BY created_at ASC, id ASC
                LIMIT ?
                """,
                (conversation_id, limit),
            ).fetchall()
        return [_row_to_memory(r) for r in rows]

    def delete(self, conversation_id: int, memory_id: int) -> bool:
        """Delete a memory only if it belongs to ``conversation_id``."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM memories WHERE id = ? AND conversation_id = ?",
                (memory_id, conversation_id),
            )
            deleted = cursor.rowcount > 0
        if deleted:
            _LOG.info("Deleted memory %s from conversation %s", memory_id, conversation_id)
        return deleted
