from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Union

Prompt = Union[str, Sequence[dict[str, Any]]]


class TextGeneratorAPI(ABC):
    """Abstract base class for text generator providers."""

    @abstractmethod
    async def generate(
        self,
        prompt: Prompt,
        *,
        temperature: float = 1.0,
        web_search: bool = False,
    ) -> str:
        """Return generated text for the given prompt.

        ``web_search`` asks the provider to ground the answer in live web
        results when it supports that.
        """
        raise NotImplementedError

    async def generate_with_tools(
        self,
        prompt: Prompt,
        *,
        temperature: float = 1.0,
        web_search: bool = False,
    ) -> tuple[str, list[str]]:
        """Return the generated text and the server-side tools that actually ran.

        Providers that always run the search when asked (the OpenRouter web
        plugin) report ``web_search`` whenever it was requested.
        """
        text = await self.generate(prompt, temperature=temperature, web_search=web_search)
        return text, (["web_search"] if web_search else [])


def normalize_messages(prompt: Prompt) -> list[dict[str, Any]]:
    """Turn a string or a role/content sequence into a list of message dicts."""
    if isinstance(prompt, str):
        return [{"role": "user", "content": prompt}]
    if isinstance(prompt, Sequence):
        if not all(isinstance(m, dict) and "role" in m and "content" in m for m in prompt):
            raise TypeError("Each message must be a dict with 'role' and 'content' keys")
        return list(prompt)
    raise TypeError("prompt must be either a string or a sequence of message dicts")
