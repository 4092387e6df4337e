"""Pinned-memory tool backed by the conversation's memory store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from recallbot.history.memory_store import MemoryStore
from recallbot.history.models import Memory

_LOG = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """Who and where a tool call is executed for."""

    memories: MemoryStore
    conversation_id: int
    author_id: int
    source_message_id: int | None = None
    created: list[Memory] = field(default_factory=list)


def remember(context: ToolContext, text: str = "") -> str:
    """Pin ``text`` for the current conversation.

    Raises:
        ValueError: ``text`` is empty.
    """
    memory = context.memories.add(
        context.conversation_id,
        context.author_id,
        text,
        source_message_id=context.source_message_id,
    )
    context.created.append(memory)
    _LOG.info("remember: conversation %s pinned memory %s", context.conversation_id, memory.id)
    return f"Saved pinned memory #{memory.id}: {memory.text}"
