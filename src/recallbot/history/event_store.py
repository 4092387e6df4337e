"""Append-only conversation store: messages, edit history, reactions and profiles.

Edits and reactions live as JSON lists on the message row. Authors, reply
targets and reaction authors are joined at read time and never stored
denormalized.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from typing import Any

from recallbot.errors import DuplicateKey, NotFound
from recallbot.history.database import Database, from_db_time, to_db_time
from recallbot.history.models import (
    ContentKind,
    Edit,
    Message,
    MessageView,
    ProfileHistoryEntry,
    Reaction,
    ReactionKey,
    ReactionView,
    ReplyTarget,
    UserProfile,
    utcnow,
)

_LOG = logging.getLogger(__name__)

# Stay well below SQLITE_MAX_VARIABLE_NUMBER on older builds.
_IN_CHUNK = 500


def _chunks(values: Sequence[int], size: int = _IN_CHUNK) -> Iterator[Sequence[int]]:
    for i in range(0, len(values), size):
        yield values[i : i + size]


def _norm_str(value: str | None) -> str:
    return (value or "").strip()


# ==================== JSON column codecs ====================


def _edits_to_json(edits: Iterable[Edit]) -> str:
    return json.dumps(
        [{"text": e.text, "edited_at": to_db_time(e.edited_at), "version": e.version} for e in edits],
        ensure_ascii=False,
    )


def _edits_from_json(raw: str | None) -> list[Edit]:
    return [
        Edit(text=item.get("text"), edited_at=from_db_time(item["edited_at"]), version=int(item["version"]))
        for item in json.loads(raw or "[]")
    ]


def _reactions_to_json(reactions: Iterable[Reaction]) -> str:
    return json.dumps(
        [
            {
                "author_id": r.author_id,
                "emoji": r.key.emoji,
                "custom_emoji_id": r.key.custom_emoji_id,
                "added_at": to_db_time(r.added_at),
            }
            for r in reactions
        ],
        ensure_ascii=False,
    )


def _reactions_from_json(raw: str | None) -> list[Reaction]:
    return [
        Reaction(
            author_id=int(item["author_id"]),
            key=ReactionKey(emoji=item.get("emoji"), custom_emoji_id=item.get("custom_emoji_id")),
            added_at=from_db_time(item["added_at"]),
        )
        for item in json.loads(raw or "[]")
    ]


def _history_to_json(history: Iterable[ProfileHistoryEntry]) -> str:
    return json.dumps(
        [
            {
                "username": h.username,
                "first_name": h.first_name,
                "last_name": h.last_name,
                "language_code": h.language_code,
                "is_premium": h.is_premium,
                "timestamp": to_db_time(h.timestamp),
            }
            for h in history
        ],
        ensure_ascii=False,
    )


def _history_from_json(raw: str | None) -> list[ProfileHistoryEntry]:
    return [
        ProfileHistoryEntry(
            username=item.get("username"),
            first_name=item.get("first_name"),
            last_name=item.get("last_name"),
            language_code=item.get("language_code"),
            is_premium=item.get("is_premium"),
            timestamp=from_db_time(item["timestamp"]),
        )
        for item in json.loads(raw or "[]")
    ]


def _row_to_message(row: sqlite3.Row) -> Message:
    forward_origin: Any = row["forward_origin"]
    return Message(
        conversation_id=row["conversation_id"],
        native_id=row["native_id"],
        author_id=row["author_id"],
        text=row["text"],
        kind=ContentKind(row["kind"]),
        sent_at=from_db_time(row["sent_at"]),
        derived_context=row["derived_context"],
        file_name=row["file_name"],
        reply_to_id=row["reply_to_id"],
        forward_origin=json.loads(forward_origin) if forward_origin else None,
        forward_from_user_id=row["forward_from_user_id"],
        edits=_edits_from_json(row["edits"]),
        reactions=_reactions_from_json(row["reactions"]),
        edited_at=from_db_time(row["edited_at"]),
    )


def _row_to_user(row: sqlite3.Row) -> UserProfile:
    return UserProfile(
        user_id=row["user_id"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        username=row["username"],
        is_bot=bool(row["is_bot"]),
        is_premium=bool(row["is_premium"]),
        language_code=row["language_code"],
        history=_history_from_json(row["history"]),
    )


class EventStore:
    """Database interface for raw conversational events."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ==================== Messages ====================

    def save_message(self, message: Message) -> Message:
        """Insert a new message with empty edit and reaction lists.

        Raises:
            DuplicateKey: the (conversation, native id) pair already exists.
        """
        now = utcnow()
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO messages (
                        conversation_id, native_id, author_id, text, kind,
                        derived_context, file_name, reply_to_id, forward_origin,
                        forward_from_user_id, edits, reactions, sent_at, edited_at, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, '[]', '[]', ?, NULL, ?)
                    """,
                    (
                        message.conversation_id,
                        message.native_id,
                        message.author_id,
                        message.text,
                        ContentKind(message.kind).value,
                        message.derived_context,
                        message.file_name,
                        message.reply_to_id,
                        json.dumps(message.forward_origin, ensure_ascii=False) if message.forward_origin else None,
                        message.forward_from_user_id,
                        to_db_time(message.sent_at),
                        to_db_time(now),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateKey(table="messages", key=(message.conversation_id, message.native_id)) from exc

        message.edits = []
        message.reactions = []
        message.edited_at = None
        return message

    def _load_message(self, conn: sqlite3.Connection, conversation_id: int, native_id: int) -> Message:
        row = conn.execute(
            "SELECT * FROM messages WHERE conversation_id = ? AND native_id = ?",
            (conversation_id, native_id),
        ).fetchone()
        if row is None:
            raise NotFound(conversation_id=conversation_id, native_id=native_id)
        return _row_to_message(row)

    def record_edit(self, conversation_id: int, native_id: int, new_text: str | None) -> Edit:
        """Snapshot the current text into the edit history, then replace it.

        One entry is appended per call, even when ``new_text`` equals the
        current text.
        """
        now = utcnow()
        with self.db.transaction(immediate=True) as conn:
            message = self._load_message(conn, conversation_id, native_id)
            edit = Edit(text=message.text, edited_at=now, version=len(message.edits) + 1)
            conn.execute(
                """
                UPDATE messages SET text = ?, edits = ?, edited_at = ?
                WHERE conversation_id = ? AND native_id = ?
                """,
                (
                    new_text,
                    _edits_to_json([*message.edits, edit]),
                    to_db_time(now),
                    conversation_id,
                    native_id,
                ),
            )
        return edit

    def reconcile_reactions(
        self,
        conversation_id: int,
        native_id: int,
        author_id: int,
        added: Iterable[ReactionKey | str] = (),
        removed: Iterable[ReactionKey | str] = (),
    ) -> list[Reaction]:
        """Apply one author's reaction delta and return the message's reactions.

        Removals only touch this author's reactions; additions are appended
        with the current time. Other authors are left alone.
        """
        added_keys = [ReactionKey.coerce(k) for k in added]
        removed_keys = {ReactionKey.coerce(k) for k in removed}
        now = utcnow()
        with self.db.transaction(immediate=True) as conn:
            message = self._load_message(conn, conversation_id, native_id)
            kept = [
                r for r in message.reactions
                if r.author_id != author_id or r.key not in removed_keys
            ]
            reactions = kept + [Reaction(author_id=author_id, key=k, added_at=now) for k in added_keys]
            conn.execute(
                "UPDATE messages SET reactions = ? WHERE conversation_id = ? AND native_id = ?",
                (_reactions_to_json(reactions), conversation_id, native_id),
            )
        return reactions

    def set_derived_context(self, conversation_id: int, native_id: int, context: str) -> None:
        """Attach analysis output (image description, poll details) to a message."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE messages SET derived_context = ? WHERE conversation_id = ? AND native_id = ?",
                (context, conversation_id, native_id),
            )
            if cursor.rowcount == 0:
                raise NotFound(conversation_id=conversation_id, native_id=native_id)

    # ==================== Reads ====================

    def get_message(self, conversation_id: int, native_id: int) -> MessageView | None:
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM messages WHERE conversation_id = ? AND native_id = ?",
                (conversation_id, native_id),
            ).fetchone()
            if row is None:
                return None
            return self._hydrate(conn, [_row_to_message(row)])[0]

    def find_message(self, native_id: int) -> MessageView | None:
        """Look a message up by its native id alone, across conversations."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM messages WHERE native_id = ? ORDER BY sent_at DESC LIMIT 1",
                (native_id,),
            ).fetchone()
            if row is None:
                return None
            return self._hydrate(conn, [_row_to_message(row)])[0]

    def recent_window(self, conversation_id: int, limit: int) -> list[MessageView]:
        """Return up to ``limit`` most recent messages, newest first."""
        if limit <= 0:
            return []
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM messages
                WHERE conversation_id = ?
                ORDER BY sent_at DESC, native_id DESC
                LIMIT ?
                """,
                (conversation_id, limit),
            ).fetchall()
            return self._hydrate(conn, [_row_to_message(r) for r in rows])

    def ascending_range(self, conversation_id: int, skip: int, limit: int) -> list[MessageView]:
        """Return a contiguous oldest-first slice starting at offset ``skip``."""
        if limit <= 0:
            return []
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM messages
                WHERE conversation_id = ?
                ORDER BY sent_at ASC, native_id ASC
                LIMIT ? OFFSET ?
                """,
                (conversation_id, limit, skip),
            ).fetchall()
            return self._hydrate(conn, [_row_to_message(r) for r in rows])

    def count(self, conversation_id: int) -> int:
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM messages WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
            return int(row[0])

    def count_all(self) -> int:
        with self.db.transaction() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0])

    def counts_by_conversation(self, limit: int = 20) -> list[tuple[int, int]]:
        """Return (conversation_id, message_count) pairs, busiest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT conversation_id, COUNT(*) AS n FROM messages
                GROUP BY conversation_id
                ORDER BY n DESC, conversation_id ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
            return [(int(r[0]), int(r[1])) for r in rows]

    def _hydrate(self, conn: sqlite3.Connection, messages: list[Message]) -> list[MessageView]:
        """Resolve authors, reply targets and reaction authors for ``messages``."""
        if not messages:
            return []

        reply_targets: dict[tuple[int, int], Message] = {}
        by_conversation: dict[int, set[int]] = {}
        for m in messages:
            if m.reply_to_id is not None:
                by_conversation.setdefault(m.conversation_id, set()).add(m.reply_to_id)
        for conversation_id, ids in by_conversation.items():
            for chunk in _chunks(sorted(ids)):
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"SELECT * FROM messages WHERE conversation_id = ? AND native_id IN ({placeholders})",
                    (conversation_id, *chunk),
                ).fetchall()
                for row in rows:
                    target = _row_to_message(row)
                    reply_targets[(target.conversation_id, target.native_id)] = target

        user_ids: set[int] = set()
        for m in messages:
            user_ids.add(m.author_id)
            if m.forward_from_user_id is not None:
                user_ids.add(m.forward_from_user_id)
            user_ids.update(r.author_id for r in m.reactions)
        user_ids.update(t.author_id for t in reply_targets.values())
        users = self._load_users(conn, user_ids)

        views: list[MessageView] = []
        for m in messages:
            target = reply_targets.get((m.conversation_id, m.reply_to_id)) if m.reply_to_id is not None else None
            views.append(
                MessageView(
                    message=m,
                    author=users.get(m.author_id),
                    reply_to=ReplyTarget(target, users.get(target.author_id)) if target else None,
                    forward_from=users.get(m.forward_from_user_id) if m.forward_from_user_id is not None else None,
                    reactions=[ReactionView(r, users.get(r.author_id)) for r in m.reactions],
                )
            )
        return views

    # ==================== User profiles ====================

    def _load_users(self, conn: sqlite3.Connection, user_ids: Iterable[int]) -> dict[int, UserProfile]:
        ids = sorted(set(user_ids))
        users: dict[int, UserProfile] = {}
        for chunk in _chunks(ids):
            placeholders = ",".join("?" * len(chunk))
            for row in conn.execute(f"SELECT * FROM users WHERE user_id IN ({placeholders})", tuple(chunk)):
                users[row["user_id"]] = _row_to_user(row)
        return users

    def get_user(self, user_id: int) -> UserProfile | None:
        with self.db.transaction() as conn:
            return self._load_users(conn, [user_id]).get(user_id)

    def upsert_user(self, profile: UserProfile) -> UserProfile:
        """Create a profile or update it, recording prior values on change."""
        now = utcnow()
        with self.db.transaction(immediate=True) as conn:
            existing = self._load_users(conn, [profile.user_id]).get(profile.user_id)
            if existing is None:
                conn.execute(
                    """
                    INSERT INTO users (
                        user_id, first_name, last_name, username, is_bot, is_premium,
                        language_code, history, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, '[]', ?, ?)
                    """,
                    (
                        profile.user_id,
                        profile.first_name,
                        profile.last_name,
                        profile.username,
                        1 if profile.is_bot else 0,
                        1 if profile.is_premium else 0,
                        profile.language_code,
                        to_db_time(now),
                        to_db_time(now),
                    ),
                )
                return UserProfile(
                    user_id=profile.user_id,
                    first_name=profile.first_name,
                    last_name=profile.last_name,
                    username=profile.username,
                    is_bot=profile.is_bot,
                    is_premium=profile.is_premium,
                    language_code=profile.language_code,
                )

            changed = (
                _norm_str(existing.username) != _norm_str(profile.username)
                or _norm_str(existing.first_name) != _norm_str(profile.first_name)
                or _norm_str(existing.last_name) != _norm_str(profile.last_name)
                or _norm_str(existing.language_code) != _norm_str(profile.language_code)
                or bool(existing.is_premium) != bool(profile.is_premium)
            )
            if not changed:
                return existing

            history = [
                *existing.history,
                ProfileHistoryEntry(
                    username=existing.username,
                    first_name=existing.first_name,
                    last_name=existing.last_name,
                    language_code=existing.language_code,
                    is_premium=existing.is_premium,
                    timestamp=now,
                ),
            ]
            conn.execute(
                """
                UPDATE users SET first_name = ?, last_name = ?, username = ?, is_premium = ?,
                    language_code = ?, history = ?, updated_at = ?
                WHERE user_id = ?
                """,
                (
                    profile.first_name,
                    profile.last_name,
                    profile.username,
                    1 if profile.is_premium else 0,
                    profile.language_code,
                    _history_to_json(history),
                    to_db_time(now),
                    profile.user_id,
                ),
            )
            _LOG.info("User %s profile changed; history now has %d entries", profile.user_id, len(history))
            return UserProfile(
                user_id=profile.user_id,
                first_name=profile.first_name,
                last_name=profile.last_name,
                username=profile.username,
                is_bot=existing.is_bot,
                is_premium=bool(profile.is_premium),
                language_code=profile.language_code,
                history=history,
            )
