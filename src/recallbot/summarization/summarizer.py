"""Summary generation logic shared by every rollup level."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

from recallbot.errors import CapabilityUnavailable
from recallbot.settings import SUMMARY_TIMEOUT_SECONDS

_LOG = logging.getLogger(__name__)


class LLMProtocol(Protocol):
    """Protocol for LLM interface."""

    async def generate(self, prompt: str) -> str:
        """Generate text from a prompt."""
        ...


def build_summary_prompt(text_blocks: Sequence[str], instruction: str) -> str:
    """Join the instruction and the chronological blocks into one prompt."""
    body = "\n".join(text_blocks)
    return f"{instruction}\n\n{body}"


class Summarizer:
    """Handles summary generation using an LLM."""

    def __init__(self, llm: LLMProtocol, timeout: float = SUMMARY_TIMEOUT_SECONDS):
        self.llm = llm
        self.timeout = timeout

    async def summarize(self, text_blocks: Sequence[str], instruction: str) -> str:
        """Summarize ``text_blocks`` as a single unit.

        Raises:
            CapabilityUnavailable: the backend failed, timed out or returned
                nothing.
        """
        prompt = build_summary_prompt(text_blocks, instruction)
        try:
            text = await asyncio.wait_for(self.llm.generate(prompt), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise CapabilityUnavailable(f"Summarization timed out after {self.timeout:.0f}s") from exc
        except Exception as exc:
            _LOG.warning("Summarization backend failed: %s", exc)
            raise CapabilityUnavailable(f"Summarization failed: {exc}") from exc

        text = (text or "").strip()
        if not text:
            raise CapabilityUnavailable("Summarization returned empty output")
        return text
