"""Text-generation backend that calls Anthropic's Claude models."""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, List

from anthropic import AsyncAnthropic, APIError, APIConnectionError, RateLimitError

from .base import Prompt, TextGeneratorAPI, normalize_messages

_log = logging.getLogger(__name__)

# --------------------------------------------------------------------------- #
# A single shared client is plenty; reuse it across all requests              #
# --------------------------------------------------------------------------- #
_CLIENT_CACHE: Dict[str, AsyncAnthropic] = {}

WEB_SEARCH_TOOL: Dict[str, Any] = {
    "type": "web_search_20250305",
    "name": "web_search",
    "max_uses": 3,
}


def _content_to_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text":
                parts.append(item.get("text", ""))
            else:
                parts.append(str(item))
        return "\n".join(p for p in parts if p)
    return str(content)


def _response_text(response: Any) -> str:
    # SDK returns a list of content blocks; aggregate text blocks only.
    parts: List[str] = []
    for block in getattr(response, "content", []) or []:
        text = getattr(block, "text", None)
        if isinstance(text, str) and text:
            parts.append(text)
    return "".join(parts).strip()


class AnthropicTextGenerator(TextGeneratorAPI):
    """Generate text using Anthropic's Claude models.

    The class relies on the ``anthropic`` package and an ``ANTHROPIC_API_KEY``
    environment variable being present.

    ``prompt`` may be either:

    • **str** – treated as a single ``{"role": "user", "content": <prompt>}``
      message.

    • **Sequence[dict]** – exactly the list you would pass to the Anthropic
      SDK's ``messages`` parameter. Content may be a list of blocks (images).

    Messages with role ``system`` are moved to the top-level ``system``
    parameter as required by the Messages API. With ``web_search=True`` the
    server-side web search tool is attached to the request.
    """

    def __init__(self, model: str = "claude-haiku-4-5") -> None:
        self.model = model

    # ---------------------------------------------------------------- helpers

    def _get_client(self) -> AsyncAnthropic:
        """Return (and cache) a shared ``AsyncAnthropic`` client instance."""
        if "default" not in _CLIENT_CACHE:
            _CLIENT_CACHE["default"] = AsyncAnthropic()  # picks up API key
        return _CLIENT_CACHE["default"]

    async def _create(self, prompt: Prompt, temperature: float, web_search: bool) -> Any:
        messages = normalize_messages(prompt)

        system_parts: List[str] = []
        cleaned: List[Dict[str, Any]] = []
        for m in messages:
            role = (m.get("role") or "").lower()
            if role == "system":
                system_parts.append(_content_to_text(m.get("content")))
            else:
                cleaned.append({"role": role, "content": m.get("content")})
        system_text = "\n\n".join(p for p in system_parts if p).strip() or None

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": int(os.getenv("ANTHROPIC_MAX_TOKENS", "4096")),
            "messages": cleaned,
            "temperature": temperature,
        }
        if system_text:
            # Prompt caching for the system prompt
            kwargs["system"] = [
                {
                    "type": "text",
                    "text": system_text,
                    "cache_control": {"type": "ephemeral"},
                }
            ]
        if web_search:
            kwargs["tools"] = [WEB_SEARCH_TOOL]

        client = self._get_client()
        try:
            response = await client.messages.create(**kwargs)
        except RateLimitError as e:
            _log.warning("Anthropic rate limit hit for model %s: %s", self.model, e)
            raise
        except APIConnectionError as e:
            _log.error("Anthropic connection error for model %s: %s", self.model, e)
            raise
        except APIError as e:
            _log.error("Anthropic API error for model %s: %s", self.model, e)
            raise

        return response

    # ---------------------------------------------------------------- public

    async def generate(
        self,
        prompt: Prompt,
        *,
        temperature: float = 1.0,
        web_search: bool = False,
    ) -> str:
        """Return Claude's reply for *prompt* as a plain string."""
        response = await self._create(prompt, temperature, web_search)
        return _response_text(response)

    async def generate_with_tools(
        self,
        prompt: Prompt,
        *,
        temperature: float = 1.0,
        web_search: bool = False,
    ) -> tuple[str, list[str]]:
        """Like :meth:`generate`, also reporting whether Claude actually searched."""
        response = await self._create(prompt, temperature, web_search)
        used: List[str] = []
        for block in getattr(response, "content", []) or []:
            if getattr(block, "type", None) == "server_tool_use" and getattr(block, "name", None) == "web_search":
                used.append("web_search")
                break
        return _response_text(response), used
