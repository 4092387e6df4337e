"""Transport-neutral inbound events and content classification."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from recallbot.history.models import ContentKind, ReactionKey, UserProfile, utcnow


@dataclass
class AuthorInfo:
    user_id: int
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    is_bot: bool = False
    is_premium: bool = False
    language_code: str | None = None

    def to_profile(self) -> UserProfile:
        return UserProfile(
            user_id=self.user_id,
            first_name=self.first_name,
            last_name=self.last_name,
            username=self.username,
            is_bot=self.is_bot,
            is_premium=self.is_premium,
            language_code=self.language_code,
        )


@dataclass
class AttachmentInfo:
    file_name: str | None
    content_type: str | None = None
    size: int = 0
    is_voice_message: bool = False
    is_video_note: bool = False
    read: Callable[[], Awaitable[bytes]] | None = None

    @property
    def mime(self) -> str:
        return (self.content_type or "").split(";")[0].strip().lower()

    @property
    def is_image(self) -> bool:
        return self.mime.startswith("image/")


@dataclass
class PollInfo:
    question: str
    options: list[str] = field(default_factory=list)
    allows_multiple_answers: bool = False
    is_anonymous: bool = False
    expires_at: datetime | None = None


@dataclass
class IncomingMessage:
    conversation_id: int
    native_id: int
    author: AuthorInfo
    text: str | None = None
    sent_at: datetime = field(default_factory=utcnow)
    attachments: list[AttachmentInfo] = field(default_factory=list)
    sticker_names: list[str] = field(default_factory=list)
    poll: PollInfo | None = None
    reply_to_id: int | None = None
    reply_to_author_id: int | None = None
    forward_origin: dict[str, Any] | None = None
    forward_from_user_id: int | None = None
    mentions_bot: bool = False


@dataclass
class MessageEdited:
    conversation_id: int
    native_id: int
    new_text: str | None


@dataclass
class ReactionDelta:
    conversation_id: int
    native_id: int
    author_id: int
    added: list[ReactionKey] = field(default_factory=list)
    removed: list[ReactionKey] = field(default_factory=list)


def classify_content(event: IncomingMessage) -> ContentKind:
    """Return the content kind in one ordered pass; the first match wins."""
    attachments = event.attachments
    if event.poll is not None:
        return ContentKind.POLL
    if any(a.is_image for a in attachments):
        return ContentKind.PHOTO
    if any(a.mime.startswith("video/") and not a.is_video_note for a in attachments):
        return ContentKind.VIDEO
    if any(a.is_video_note for a in attachments):
        return ContentKind.VIDEO_NOTE
    if any(
        not a.mime.startswith("audio/") and not a.is_voice_message and not a.is_video_note
        for a in attachments
    ):
        return ContentKind.DOCUMENT
    if event.sticker_names:
        return ContentKind.STICKER
    if any(a.is_voice_message for a in attachments):
        return ContentKind.VOICE
    if any(a.mime.startswith("audio/") for a in attachments):
        return ContentKind.AUDIO
    if event.text and event.text.strip():
        return ContentKind.TEXT
    return ContentKind.OTHER


def primary_file_name(event: IncomingMessage) -> str | None:
    """Return the file name of the first attachment that is not an image."""
    for attachment in event.attachments:
        if not attachment.is_image and attachment.file_name:
            return attachment.file_name
    return None


def first_image(event: IncomingMessage) -> AttachmentInfo | None:
    for attachment in event.attachments:
        if attachment.is_image and attachment.read is not None:
            return attachment
    return None


def build_poll_context(poll: PollInfo) -> str:
    lines = [
        "Poll details:",
        f"• Question: {poll.question}",
        f"• Options: {' | '.join(poll.options)}",
        f"• Multiple answers: {'yes' if poll.allows_multiple_answers else 'no'}",
        f"• Anonymous: {'yes' if poll.is_anonymous else 'no'}",
    ]
    if poll.expires_at is not None:
        lines.append(f"• Closes at: {poll.expires_at.strftime('%Y-%m-%d %H:%M UTC')}")
    return "\n".join(lines)
