"""Centralized settings read from the environment.

Non-secret knobs live here with sensible defaults. Secrets (API keys, the
Discord token) must stay in .env and are read by the clients that need them.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def ids_from_env(name: str) -> set[int]:
    raw = os.getenv(name, "") or ""
    return {int(x.strip()) for x in raw.split(",") if x.strip().isdigit()}


# --------------------- Storage ---------------------

DEFAULT_DB = Path(__file__).resolve().with_name("recallbot.db")
DB_PATH = Path(os.getenv("RECALLBOT_DB_PATH", str(DEFAULT_DB))).expanduser()


# --------------------- Rollups and context ---------------------

# Entries per block at every level (raw messages for level 0, summaries above).
ROLLUP_BLOCK_SIZE: int = _int_env("ROLLUP_BLOCK_SIZE", 200)
# Most recent raw messages shown literally to the generation call.
RAW_WINDOW_SIZE: int = _int_env("RAW_WINDOW_SIZE", 200)
# Recent messages shown to the routing decision.
ROUTER_SLICE_SIZE: int = _int_env("ROUTER_SLICE_SIZE", 51)
# Pinned memories loaded into context.
MEMORY_CONTEXT_LIMIT: int = _int_env("MEMORY_CONTEXT_LIMIT", 100)

ROLLUP_BACKEND: str = os.getenv("ROLLUP_BACKEND", "inprocess").strip().lower()
ROLLUP_MAX_CONCURRENCY: int = _int_env("ROLLUP_MAX_CONCURRENCY", 4)


# --------------------- Models ---------------------

SUMMARY_API: str = os.getenv("LLM_SUMMARY_API", "anthropic")
SUMMARY_MODEL: str = os.getenv("LLM_SUMMARY_MODEL", "claude-haiku-4-5")
ROUTER_API: str = os.getenv("LLM_ROUTER_API", "anthropic")
ROUTER_MODEL: str = os.getenv("LLM_ROUTER_MODEL", "claude-haiku-4-5")
REPLY_API: str = os.getenv("LLM_REPLY_API", "openrouter")
REPLY_MODEL: str = os.getenv("LLM_REPLY_MODEL", "google/gemini-2.5-flash")
VISION_MODEL: str = os.getenv("LLM_VISION_MODEL", "claude-haiku-4-5")

SUMMARY_TIMEOUT_SECONDS: float = _float_env("SUMMARY_TIMEOUT_SECONDS", 120.0)
GENERATION_TIMEOUT_SECONDS: float = _float_env("GENERATION_TIMEOUT_SECONDS", 90.0)
VISION_TIMEOUT_SECONDS: float = _float_env("VISION_TIMEOUT_SECONDS", 60.0)


# --------------------- Bot behavior ---------------------

ADMIN_USER_IDS: set[int] = ids_from_env("ADMIN_USER_IDS")
CONVERSATION_CHANNEL_IDS: set[int] = ids_from_env("CONVERSATION_CHANNEL_IDS")

FALLBACK_REPLY: str = (
    "Sorry, I encountered an error while generating a response. Please try again later."
)


# --------------------- Instructions ---------------------

LEVEL_0_INSTRUCTION: str = (
    "Summarize the following {count} chronological chat messages into a compact,"
    " information-dense paragraph or two. Include main topics, key decisions,"
    " answers, and unresolved questions. Keep the most relevant names. Avoid"
    " quoting unless essential."
)

HIGHER_LEVEL_INSTRUCTION: str = (
    "Summarize these {count} summaries into a compact overview that preserves"
    " chronology and the most critical developments, decisions, conclusions,"
    " and ongoing threads. Keep it brief yet comprehensive."
)

ROUTER_INSTRUCTION: str = (
    "You route requests for a group chat bot. Read the current message and the"
    " recent conversation, then choose exactly ONE action.\n"
    "• Use remember when the user explicitly asks the bot to remember, note or"
    " keep a fact for later. Put the fact itself in text, without metadata.\n"
    "• Otherwise use respond. Set use_full_history=true only when the answer"
    " depends on older conversation history (recaps, 'what did we decide',"
    " long-running threads). Set use_external_retrieval=true only when the"
    " answer needs fresh facts from the web.\n"
    "Reply with the single TOOL_CALL line and nothing else."
)

VISION_INSTRUCTION: str = (
    "Describe this image in two or three sentences for someone who cannot see"
    " it. Transcribe any visible text. Mention people, objects, memes or"
    " screenshots precisely. No preamble."
)


# --------------------- System prompt ---------------------

_FALLBACK_SYSTEM_PROMPT: str = (
    "You are {bot_name}, a direct, witty and helpful participant in a Discord group chat.\n\n"
    "What you are given\n"
    "• Pinned chat memory: facts users asked you to keep. Honor them.\n"
    "• Older history as summaries, most distant first. Labels tell you how many"
    " messages ago each block happened.\n"
    "• The most recent messages verbatim, numbered by distance from the present (1 = newest).\n"
    "• The CURRENT MESSAGE you are replying to.\n\n"
    "Behavior\n"
    "• Reply only to the current message; the history is context.\n"
    "• Match the language and tone of the conversation. Be concise.\n"
    "• Do not repeat yourself and do not restate metadata such as timestamps,"
    " message numbers or reaction counts unless asked.\n"
    "• Never end with engagement questions.\n"
)


_SYSTEM_PROMPT_CACHE: Optional[str] = None
_SYSTEM_PROMPT_MTIME: Optional[float] = None
_SYSTEM_PROMPT_PATH: Optional[Path] = None


def _project_root() -> Path:
    """Return the repository root (settings.py lives at src/recallbot/settings.py)."""
    return Path(__file__).resolve().parents[2]


def _candidate_prompt_paths() -> list[Path]:
    """Return possible paths for the system prompt file.

    Priority order:
    1) SYSTEM_PROMPT_FILE (as-is); if relative, also try as repo-root-relative.
    2) config/system_prompt.txt (repo-root-relative).
    """
    env_val = os.getenv("SYSTEM_PROMPT_FILE", "").strip()
    candidates: list[Path] = []
    if env_val:
        p = Path(env_val).expanduser()
        candidates.append(p)
        if not p.is_absolute():
            candidates.append(_project_root() / p)
    candidates.append(_project_root() / "config" / "system_prompt.txt")
    return candidates


def get_system_prompt(bot_name: str) -> str:
    """Load the reply system prompt from a file if available.

    Uses a simple mtime cache to avoid re-reading unchanged files. A
    ``{bot_name}`` placeholder in the text is filled in.
    """
    global _SYSTEM_PROMPT_CACHE, _SYSTEM_PROMPT_MTIME, _SYSTEM_PROMPT_PATH  # noqa: PLW0603

    template: str | None = None
    for path in _candidate_prompt_paths():
        try:
            if not (path.exists() and path.is_file()):
                continue
            mtime = path.stat().st_mtime
            if _SYSTEM_PROMPT_PATH == path and _SYSTEM_PROMPT_CACHE is not None and _SYSTEM_PROMPT_MTIME == mtime:
                template = _SYSTEM_PROMPT_CACHE
            else:
                template = path.read_text(encoding="utf-8")
                _SYSTEM_PROMPT_CACHE = template
                _SYSTEM_PROMPT_MTIME = mtime
                _SYSTEM_PROMPT_PATH = path
            break
        except OSError:
            continue
    if template is None:
        template = _FALLBACK_SYSTEM_PROMPT
    return template.replace("{bot_name}", bot_name)
