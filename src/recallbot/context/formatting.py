"""Plain-text rendering of stored messages for prompts and rollup input."""

from __future__ import annotations

import json
import re
from datetime import datetime

from recallbot.history.models import MessageView, UserProfile

_STRIP_CHARS = re.compile(r"[\[\]{}<>`$]")


def sanitize(text: str | None) -> str:
    """Collapse ``text`` to one line and drop characters that confuse prompts."""
    return _STRIP_CHARS.sub("", (text or "").replace("\r", " ").replace("\n", " "))


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return "unknown time"
    return value.strftime("%Y-%m-%d %H:%M")


def format_user_display_name(user: UserProfile | None) -> str:
    """Return e.g. ``Ada Lovelace (premium) [bot], en (@ada)``."""
    if user is None:
        return "Unknown User"

    full_name = user.full_name
    name = full_name or user.username or "Unknown"
    if user.is_premium:
        name += " (premium)"
    if user.is_bot:
        name += " [bot]"
    if user.language_code:
        name += f", {user.language_code}"
    if user.username and full_name and user.username != full_name:
        name += f" (@{user.username})"
    return name


def format_message(view: MessageView, number: int | None = None) -> str:
    """Render one message with every attribute the reply model may need."""
    msg = view.message
    prefix = f"#{number} " if number is not None else ""
    lines = [
        f"{prefix}[{format_timestamp(msg.sent_at)}] {format_user_display_name(view.author)}",
        f"Type: {msg.kind.value}",
        f'Text: "{sanitize(msg.text)}"',
    ]

    if msg.derived_context:
        lines.append(f"Context: {sanitize(msg.derived_context)}")
    if msg.file_name:
        lines.append(f"File: {sanitize(msg.file_name)}")
    if msg.edits:
        lines.append(
            f"Edits: {len(msg.edits)} times (last at {format_timestamp(msg.edits[-1].edited_at)})"
        )
    if view.forward_from is not None:
        lines.append(f"Forwarded from: {format_user_display_name(view.forward_from)}")
    if msg.forward_origin:
        lines.append(f"Forward origin: {sanitize(json.dumps(msg.forward_origin, ensure_ascii=False))}")
    if view.reply_to is not None:
        target = view.reply_to
        lines.append(
            f'Replying to: {format_user_display_name(target.author)}: "{sanitize(target.message.text)}"'
        )
    if view.reactions:
        pairs = ", ".join(
            f"{r.reaction.key.label()} by {format_user_display_name(r.author)}" for r in view.reactions
        )
        lines.append(f"Reactions: {pairs}")

    return "\n".join(lines)


def format_rollup_line(view: MessageView) -> str:
    """Render a message as a single line for block summarization input."""
    msg = view.message
    author = view.author
    user = (author.username or author.first_name or "Unknown") if author else "Unknown"
    text = msg.text or f"[{msg.kind.value}]"
    line = f"{format_timestamp(msg.sent_at)} | {user}: {sanitize(text)}"
    if msg.derived_context:
        line += f" ({sanitize(msg.derived_context)})"
    return line
