"""Summarization system for conversation history."""

from .rollup import CeleryRollupScheduler, RollupEngine, RollupWorker
from .summarizer import LLMProtocol, Summarizer
from .summary_store import Summary, SummaryStore

__all__ = [
    "CeleryRollupScheduler",
    "RollupEngine",
    "RollupWorker",
    "LLMProtocol",
    "Summarizer",
    "Summary",
    "SummaryStore",
]
