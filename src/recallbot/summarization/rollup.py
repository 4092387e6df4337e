"""Leveled rollups: raw messages to level-0 summaries to summaries of summaries.

Every level uses the same block size K. Level 0 gets one summary per K raw
messages, level L one summary per K level-(L-1) summaries. Only full blocks
are summarized and nothing is ever re-summarized, so a conversation can grow
forever while each run does work proportional to what became due.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any

from recallbot.context.formatting import format_rollup_line
from recallbot.errors import CapabilityUnavailable
from recallbot.history.event_store import EventStore
from recallbot.settings import (
    HIGHER_LEVEL_INSTRUCTION,
    LEVEL_0_INSTRUCTION,
    ROLLUP_BLOCK_SIZE,
    ROLLUP_MAX_CONCURRENCY,
)

from .summarizer import Summarizer
from .summary_store import Summary, SummaryStore

_LOG = logging.getLogger(__name__)


class RollupEngine:
    """Creates every summary that has become due for a conversation."""

    def __init__(
        self,
        events: EventStore,
        summaries: SummaryStore,
        summarizer: Summarizer,
        block_size: int = ROLLUP_BLOCK_SIZE,
    ) -> None:
        if block_size < 2:
            raise ValueError("block_size must be at least 2")
        self.events = events
        self.summaries = summaries
        self.summarizer = summarizer
        self.block_size = block_size

    async def ensure_rollups(self, conversation_id: int) -> int:
        """Write all missing full-block summaries and return how many were written.

        Blocks are processed in ascending index order. The run stops at the
        first block whose summarization fails, leaving it for the next run.
        """
        k = self.block_size
        written = 0

        total = self.events.count(conversation_id)
        existing = self.summaries.count(conversation_id, 0)
        for index in range(existing, total // k):
            batch = self.events.ascending_range(conversation_id, index * k, k)
            if len(batch) < k:
                break
            lines = [format_rollup_line(view) for view in batch]
            try:
                text = await self.summarizer.summarize(lines, LEVEL_0_INSTRUCTION.format(count=k))
            except CapabilityUnavailable as exc:
                _LOG.warning(
                    "Level-0 block %d for conversation %s not summarized, will retry: %s",
                    index,
                    conversation_id,
                    exc,
                )
                return written
            summary = Summary(
                conversation_id=conversation_id,
                level=0,
                index=index,
                text=text,
                start_sent_at=batch[0].message.sent_at,
                end_sent_at=batch[-1].message.sent_at,
            )
            if self.summaries.upsert_summary(summary):
                written += 1
                _LOG.info("Created level-0 summary #%d for conversation %s", index, conversation_id)

        level = 1
        while True:
            lower_count = self.summaries.count(conversation_id, level - 1)
            if lower_count < k:
                break
            existing = self.summaries.count(conversation_id, level)
            for index in range(existing, lower_count // k):
                block = self.summaries.get_range(conversation_id, level - 1, index * k, index * k + k)
                if len(block) < k:
                    break
                lines = [f"Block {n}: {s.text}" for n, s in enumerate(block, start=1)]
                try:
                    text = await self.summarizer.summarize(lines, HIGHER_LEVEL_INSTRUCTION.format(count=k))
                except CapabilityUnavailable as exc:
                    _LOG.warning(
                        "Level-%d block %d for conversation %s not summarized, will retry: %s",
                        level,
                        index,
                        conversation_id,
                        exc,
                    )
                    return written
                summary = Summary(
                    conversation_id=conversation_id,
                    level=level,
                    index=index,
                    text=text,
                    start_sent_at=block[0].start_sent_at,
                    end_sent_at=block[-1].end_sent_at,
                )
                if self.summaries.upsert_summary(summary):
                    written += 1
                    _LOG.info(
                        "Created level-%d summary #%d for conversation %s", level, index, conversation_id
                    )
            level += 1

        return written


class RollupWorker:
    """Runs rollups in the background with bounded concurrency.

    At most one run per conversation is in flight. Triggers that arrive
    while a run is queued or running are folded into a single follow-up run.
    """

    def __init__(self, engine: RollupEngine, max_concurrency: int = ROLLUP_MAX_CONCURRENCY) -> None:
        self.engine = engine
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._tasks: dict[int, asyncio.Task] = {}
        self._rerun: set[int] = set()
        self._closed = False

    def trigger(self, conversation_id: int) -> asyncio.Task | None:
        """Schedule a rollup for ``conversation_id`` without waiting for it."""
        if self._closed:
            _LOG.debug("Rollup worker closed; ignoring trigger for %s", conversation_id)
            return None
        task = self._tasks.get(conversation_id)
        if task is not None and not task.done():
            self._rerun.add(conversation_id)
            return task
        task = asyncio.get_running_loop().create_task(
            self._run(conversation_id), name=f"rollup-{conversation_id}"
        )
        self._tasks[conversation_id] = task
        task.add_done_callback(partial(self._on_done, conversation_id))
        return task

    async def _run(self, conversation_id: int) -> None:
        while True:
            self._rerun.discard(conversation_id)
            async with self._semaphore:
                try:
                    written = await self.engine.ensure_rollups(conversation_id)
                except Exception:
                    _LOG.exception("Rollup maintenance failed for conversation %s", conversation_id)
                else:
                    if written:
                        _LOG.info("Rollup wrote %d summaries for conversation %s", written, conversation_id)
            if conversation_id not in self._rerun:
                return

    def _on_done(self, conversation_id: int, task: asyncio.Task) -> None:
        if self._tasks.get(conversation_id) is task:
            del self._tasks[conversation_id]
        if task.cancelled():
            self._rerun.discard(conversation_id)

    def pending(self) -> set[int]:
        """Return the conversations with a queued or running rollup."""
        return {cid for cid, task in self._tasks.items() if not task.done()}

    async def drain(self) -> None:
        """Wait until no rollup is queued or running."""
        while True:
            tasks = [t for t in self._tasks.values() if not t.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    def cancel(self, conversation_id: int) -> bool:
        self._rerun.discard(conversation_id)
        task = self._tasks.get(conversation_id)
        if task is None or task.done():
            return False
        return task.cancel()

    async def close(self) -> None:
        """Stop accepting triggers and cancel outstanding work."""
        self._closed = True
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        self._rerun.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


class CeleryRollupScheduler:
    """Submits rollups to the ``rollups`` Celery queue instead of running them here."""

    def __init__(self, task: Any = None) -> None:
        if task is None:
            from recallbot.tasks import ensure_rollups as task
        self._task = task
        self._results: dict[int, Any] = {}

    def trigger(self, conversation_id: int) -> Any:
        try:
            result = self._task.apply_async((conversation_id,), queue="rollups")
        except Exception:
            _LOG.exception("Failed to enqueue rollup for conversation %s", conversation_id)
            return None
        self._results[conversation_id] = result
        return result

    def pending(self) -> set[int]:
        return {cid for cid, result in self._results.items() if not result.ready()}

    async def drain(self) -> None:
        while self.pending():
            await asyncio.sleep(0.5)

    def cancel(self, conversation_id: int) -> bool:
        result = self._results.pop(conversation_id, None)
        if result is None or result.ready():
            return False
        result.revoke()
        return True

    async def close(self) -> None:
        for cid in list(self._results):
            self.cancel(cid)
