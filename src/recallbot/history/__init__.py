"""Persistent conversation history: events, user profiles and pinned memories."""

from .database import Database
from .event_store import EventStore
from .memory_store import MemoryStore
from .models import (
    ContentKind,
    Edit,
    Memory,
    Message,
    MessageView,
    Reaction,
    ReactionKey,
    UserProfile,
)

__all__ = [
    "Database",
    "EventStore",
    "MemoryStore",
    "ContentKind",
    "Edit",
    "Memory",
    "Message",
    "MessageView",
    "Reaction",
    "ReactionKey",
    "UserProfile",
]
