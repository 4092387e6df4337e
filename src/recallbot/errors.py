"""Error taxonomy shared by the stores, the rollup engine and the orchestrator."""

from __future__ import annotations


class RecallbotError(RuntimeError):
    """Base class for all recallbot errors."""


class DuplicateKey(RecallbotError):
    """Raised when an insert collides with an existing unique key.

    Expected under platform redelivery and concurrent rollups; callers treat
    it as success.
    """

    def __init__(self, *, table: str, key: tuple) -> None:
        self.table = table
        self.key = key
        super().__init__(f"Duplicate key in {table}: {key}")


class NotFound(RecallbotError):
    """Raised when a referenced message or memory does not exist."""

    def __init__(self, *, conversation_id: int, native_id: int) -> None:
        self.conversation_id = conversation_id
        self.native_id = native_id
        super().__init__(f"Message {native_id} not found in conversation {conversation_id}")


class CapabilityUnavailable(RecallbotError):
    """Raised when a summarization or generation backend fails or times out."""


class GenerationFailed(RecallbotError):
    """Raised when a reply could not be produced for a trigger message."""
