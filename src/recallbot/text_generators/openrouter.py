from __future__ import annotations

import logging
import os
from typing import Any

from openai import APIConnectionError, APIError, AsyncOpenAI, RateLimitError

from .base import Prompt, TextGeneratorAPI, normalize_messages

_CLIENT_CACHE: dict[str, AsyncOpenAI] = {}
_LOG = logging.getLogger(__name__)


def _get_openrouter_client() -> AsyncOpenAI:
    """Get or create the shared OpenRouter client."""
    if "openrouter" not in _CLIENT_CACHE:
        api_key = os.getenv("OPENROUTER_API_KEY")
        if not api_key:
            raise ValueError("OPENROUTER_API_KEY environment variable is required for OpenRouter")
        _CLIENT_CACHE["openrouter"] = AsyncOpenAI(
            api_key=api_key,
            base_url="https://openrouter.ai/api/v1"
        )
    return _CLIENT_CACHE["openrouter"]


class OpenRouterTextGenerator(TextGeneratorAPI):
    """Text-generation backend for OpenRouter models (chat completions).

    Uses OpenRouter's OpenAI-compatible API. ``web_search=True`` enables the
    OpenRouter web plugin for the request; the plugin runs a search on every
    request it is attached to, so the inherited ``generate_with_tools`` reports
    ``web_search`` whenever it was requested.
    Requires OPENROUTER_API_KEY in the environment.
    """

    def __init__(self, model: str = "google/gemini-2.5-flash") -> None:
        self.model = model

    def _get_client(self) -> AsyncOpenAI:
        return _get_openrouter_client()

    async def generate(
        self,
        prompt: Prompt,
        *,
        temperature: float = 1.0,
        web_search: bool = False,
    ) -> str:
        """Generate text using OpenRouter's OpenAI-compatible API."""
        messages = normalize_messages(prompt)
        client = self._get_client()

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": int(os.getenv("OPENROUTER_MAX_TOKENS", "2048")),
        }
        if web_search:
            kwargs["extra_body"] = {"plugins": [{"id": "web"}]}

        _LOG.debug(
            "OpenRouter: generating with model=%s, messages=%d, web_search=%s",
            self.model, len(messages), web_search,
        )

        try:
            resp = await client.chat.completions.create(**kwargs)
        except RateLimitError as e:
            _LOG.warning("OpenRouter rate limit hit for model %s: %s", self.model, e)
            raise
        except APIConnectionError as e:
            _LOG.error("OpenRouter connection error for model %s: %s", self.model, e)
            raise
        except APIError as e:
            _LOG.error("OpenRouter API error for model %s (status %s): %s", self.model, getattr(e, 'status_code', 'unknown'), e)
            raise

        if not resp.choices:
            return ""
        choice = resp.choices[0]
        content = choice.message.content

        _LOG.info(
            "OpenRouter result: finish_reason=%s, content_len=%d",
            getattr(choice, 'finish_reason', None),
            len(content) if content else 0,
        )

        return (content or "").strip()
