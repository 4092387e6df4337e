"""Dataclasses for stored conversation events, profiles and pinned memories."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, NamedTuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentKind(str, Enum):
    """Closed set of content kinds a message can carry."""

    TEXT = "text"
    PHOTO = "photo"
    VIDEO = "video"
    VIDEO_NOTE = "video_note"
    DOCUMENT = "document"
    STICKER = "sticker"
    VOICE = "voice"
    AUDIO = "audio"
    POLL = "poll"
    OTHER = "other"


class ReactionKey(NamedTuple):
    """Identity of a reaction: a unicode emoji or a custom emoji id."""

    emoji: str | None = None
    custom_emoji_id: str | None = None

    @classmethod
    def coerce(cls, value: ReactionKey | str) -> ReactionKey:
        if isinstance(value, ReactionKey):
            return value
        return cls(emoji=str(value))

    def label(self) -> str:
        return self.emoji or self.custom_emoji_id or ""


@dataclass(frozen=True)
class Edit:
    """Snapshot of the text that was current immediately before an edit."""

    text: str | None
    edited_at: datetime
    version: int


@dataclass(frozen=True)
class Reaction:
    author_id: int
    key: ReactionKey
    added_at: datetime


@dataclass
class Message:
    """One stored conversational event.

    ``reply_to_id`` and ``forward_from_user_id`` are weak references (native
    ids) resolved at read time, never owned objects.
    """

    conversation_id: int
    native_id: int
    author_id: int
    text: str | None
    kind: ContentKind = ContentKind.TEXT
    sent_at: datetime = field(default_factory=utcnow)
    derived_context: str | None = None
    file_name: str | None = None
    reply_to_id: int | None = None
    forward_origin: dict[str, Any] | None = None
    forward_from_user_id: int | None = None
    edits: list[Edit] = field(default_factory=list)
    reactions: list[Reaction] = field(default_factory=list)
    edited_at: datetime | None = None


@dataclass(frozen=True)
class ProfileHistoryEntry:
    """Field values a profile had before a change."""

    username: str | None
    first_name: str | None
    last_name: str | None
    language_code: str | None
    is_premium: bool | None
    timestamp: datetime


@dataclass
class UserProfile:
    user_id: int
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    is_bot: bool = False
    is_premium: bool = False
    language_code: str | None = None
    history: list[ProfileHistoryEntry] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


@dataclass
class Memory:
    """A fact a user explicitly asked the bot to keep for a conversation."""

    id: int | None
    conversation_id: int
    author_id: int
    text: str
    source_message_id: int | None = None
    created_at: datetime = field(default_factory=utcnow)


# ==================== Read-time views ====================


@dataclass(frozen=True)
class ReactionView:
    reaction: Reaction
    author: UserProfile | None


@dataclass(frozen=True)
class ReplyTarget:
    message: Message
    author: UserProfile | None


@dataclass
class MessageView:
    """A message joined with its author, reply target and reaction authors."""

    message: Message
    author: UserProfile | None = None
    reply_to: ReplyTarget | None = None
    forward_from: UserProfile | None = None
    reactions: list[ReactionView] = field(default_factory=list)

    @property
    def native_id(self) -> int:
        return self.message.native_id
