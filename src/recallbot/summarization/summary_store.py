"""Leveled block summaries keyed by (conversation, level, index).

Rows are write-once. Inserts go through ``INSERT OR IGNORE`` against the
UNIQUE key so two concurrent rollups for the same block resolve to a single
row without locking.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime

from recallbot.history.database import Database, from_db_time, to_db_time
from recallbot.history.models import utcnow

_LOG = logging.getLogger(__name__)


@dataclass
class Summary:
    """Summary of one block at a given level.

    Level 0 covers ``block_size`` raw messages; level L covers
    ``block_size`` level-(L-1) summaries.
    """

    conversation_id: int
    level: int
    index: int
    text: str
    start_sent_at: datetime | None = None
    end_sent_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)


def _row_to_summary(row: sqlite3.Row) -> Summary:
    return Summary(
        conversation_id=row["conversation_id"],
        level=row["level"],
        index=row["idx"],
        text=row["summary_text"],
        start_sent_at=from_db_time(row["start_sent_at"]),
        end_sent_at=from_db_time(row["end_sent_at"]),
        created_at=from_db_time(row["created_at"]),
    )


class SummaryStore:
    """Database interface for leveled summaries."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def upsert_summary(self, summary: Summary) -> bool:
        """Insert ``summary`` unless its key exists. Returns True if inserted."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO summaries
                (conversation_id, level, idx, summary_text, start_sent_at, end_sent_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    summary.conversation_id,
                    summary.level,
                    summary.index,
                    summary.text,
                    to_db_time(summary.start_sent_at),
                    to_db_time(summary.end_sent_at),
                    to_db_time(summary.created_at),
                ),
            )
            inserted = cursor.rowcount > 0
        if not inserted:
            _LOG.debug(
                "Summary (%s, L%d, #%d) already present, keeping existing row",
                summary.conversation_id,
                summary.level,
                summary.index,
            )
        return inserted

    def count(self, conversation_id: int, level: int) -> int:
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM summaries WHERE conversation_id = ? AND level = ?",
                (conversation_id, level),
            ).fetchone()
        return int(row[0])

    def get_range(self, conversation_id: int, level: int, start: int, stop: int) -> list[Summary]:
        """Return summaries with ``start <= index < stop`` ordered by index."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM summaries
                WHERE conversation_id = ? AND level = ? AND idx >= ? AND idx < ?
                ORDER BY idx ASC
                """,
                (conversation_id, level, start, stop),
            ).fetchall()
        return [_row_to_summary(r) for r in rows]

    def get_level(self, conversation_id: int, level: int) -> list[Summary]:
        """Return every summary at ``level``, oldest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM summaries WHERE conversation_id = ? AND level = ? ORDER BY idx ASC",
                (conversation_id, level),
            ).fetchall()
        return [_row_to_summary(r) for r in rows]

    def max_level(self, conversation_id: int) -> int | None:
        """Return the highest level with at least one summary, or None."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT MAX(level) FROM summaries WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
        return None if row[0] is None else int(row[0])
