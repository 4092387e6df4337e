"""Builds the bounded history a single generation request gets to see.

Order, most distant first: pinned memories, higher-level summaries from the
top level down to level 1, level-0 summaries that end before the raw window,
and finally the raw window itself. A level-0 block is only included when it
ends at or before the window's first message, so nothing appears twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from recallbot.history.event_store import EventStore
from recallbot.history.memory_store import MemoryStore
from recallbot.history.models import Memory, MessageView
from recallbot.settings import MEMORY_CONTEXT_LIMIT, RAW_WINDOW_SIZE, ROLLUP_BLOCK_SIZE
from recallbot.summarization.summary_store import Summary, SummaryStore

from .formatting import format_message

_LOG = logging.getLogger(__name__)


@dataclass
class LabeledSummary:
    summary: Summary
    label: str


@dataclass
class AssembledContext:
    conversation_id: int
    total_messages: int
    memories: list[Memory] = field(default_factory=list)
    higher_summaries: list[LabeledSummary] = field(default_factory=list)
    block_summaries: list[LabeledSummary] = field(default_factory=list)
    window: list[MessageView] = field(default_factory=list)

    def to_prompt_sections(self) -> list[str]:
        """Return memory and summary sections in reading order."""
        sections: list[str] = []
        if self.memories:
            lines = "\n".join(f"• {m.text}" for m in self.memories)
            sections.append(f"Pinned chat memory (facts to honor in replies):\n{lines}")
        for item in self.higher_summaries:
            sections.append(f"{item.label}\n{item.summary.text}")
        for item in self.block_summaries:
            sections.append(f"{item.label}\n{item.summary.text}")
        return sections

    def render_window(self, exclude_native_id: int | None = None) -> str:
        """Render the raw window oldest first, numbered by distance (1 = newest)."""
        count = len(self.window)
        rendered = [
            format_message(view, number=count - i)
            for i, view in enumerate(self.window)
            if view.native_id != exclude_native_id
        ]
        return "\n---\n".join(rendered)


class ContextAssembler:
    def __init__(
        self,
        events: EventStore,
        summaries: SummaryStore,
        memories: MemoryStore,
        *,
        window_size: int = RAW_WINDOW_SIZE,
        block_size: int = ROLLUP_BLOCK_SIZE,
        memory_limit: int = MEMORY_CONTEXT_LIMIT,
    ) -> None:
        self.events = events
        self.summaries = summaries
        self.memories = memories
        self.window_size = window_size
        self.block_size = block_size
        self.memory_limit = memory_limit

    def assemble(self, conversation_id: int, include_full_history: bool) -> AssembledContext:
        total = self.events.count(conversation_id)
        context = AssembledContext(
            conversation_id=conversation_id,
            total_messages=total,
            memories=self.memories.list_for_conversation(conversation_id, self.memory_limit),
        )

        if include_full_history:
            context.higher_summaries = self._higher_levels(conversation_id)
            context.block_summaries = self._level_zero_before_window(conversation_id, total)

        window = self.events.recent_window(conversation_id, self.window_size)
        window.reverse()
        context.window = window

        _LOG.debug(
            "Assembled context for %s: %d memories, %d higher, %d level-0, %d raw of %d total",
            conversation_id,
            len(context.memories),
            len(context.higher_summaries),
            len(context.block_summaries),
            len(context.window),
            total,
        )
        return context

    def _higher_levels(self, conversation_id: int) -> list[LabeledSummary]:
        top = self.summaries.max_level(conversation_id)
        if top is None or top < 1:
            return []
        result: list[LabeledSummary] = []
        for level in range(top, 0, -1):
            if level == top:
                label = f"Very long time ago (level {level}): SUMMARY of previous SUMMARIES"
            else:
                label = f"Older messages (level {level}): SUMMARY of previous SUMMARIES"
            result.extend(LabeledSummary(s, label) for s in self.summaries.get_level(conversation_id, level))
        return result

    def _level_zero_before_window(self, conversation_id: int, total: int) -> list[LabeledSummary]:
        k = self.block_size
        blocks_before_window = max(0, total - self.window_size) // k
        if blocks_before_window == 0:
            return []
        result: list[LabeledSummary] = []
        for summary in self.summaries.get_range(conversation_id, 0, 0, blocks_before_window):
            upper = total - summary.index * k
            lower = total - (summary.index + 1) * k + 1
            result.append(LabeledSummary(summary, f"Messages {upper}-{lower} ago:"))
        return result
