"""Fakes and builders shared by the test modules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from recallbot.history.models import ContentKind, Message, UserProfile
from recallbot.text_generators.base import TextGeneratorAPI

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_message(
    conversation_id: int,
    native_id: int,
    *,
    author_id: int = 1,
    text: str | None = None,
    kind: ContentKind = ContentKind.TEXT,
    reply_to_id: int | None = None,
) -> Message:
    return Message(
        conversation_id=conversation_id,
        native_id=native_id,
        author_id=author_id,
        text=f"message {native_id}" if text is None else text,
        kind=kind,
        sent_at=BASE_TIME + timedelta(seconds=native_id),
        reply_to_id=reply_to_id,
    )


def reaction_keys(message: Message, author_id: int) -> set:
    return {r.key for r in message.reactions if r.author_id == author_id}


def seed_messages(events, conversation_id: int, count: int, *, start: int = 1, author_id: int = 1) -> None:
    for native_id in range(start, start + count):
        events.save_message(make_message(conversation_id, native_id, author_id=author_id))


def make_user(user_id: int, first_name: str = "Ada", username: str = "ada", **kwargs) -> UserProfile:
    return UserProfile(user_id=user_id, first_name=first_name, username=username, **kwargs)


class FakeLLM(TextGeneratorAPI):
    """Records prompts and replies from a script of responses.

    ``responses`` items may be strings or exceptions (raised instead). When
    the script runs out, ``default`` is returned; ``None`` means a numbered
    summary text.
    """

    def __init__(self, responses=None, default: str | None = None):
        self.responses = list(responses or [])
        self.default = default
        self.calls: list[dict] = []

    @property
    def prompts(self) -> list:
        return [c["prompt"] for c in self.calls]

    async def generate(self, prompt, *, temperature: float = 1.0, web_search: bool = False) -> str:
        self.calls.append({"prompt": prompt, "temperature": temperature, "web_search": web_search})
        if self.responses:
            item = self.responses.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        if self.default is not None:
            return self.default
        return f"summary {len(self.calls)}"


class FailingLLM(FakeLLM):
    """Fails on the given 1-based call numbers and summarizes otherwise."""

    def __init__(self, fail_on: set[int]):
        super().__init__()
        self.fail_on = set(fail_on)

    async def generate(self, prompt, *, temperature: float = 1.0, web_search: bool = False) -> str:
        self.calls.append({"prompt": prompt, "temperature": temperature, "web_search": web_search})
        if len(self.calls) in self.fail_on:
            raise RuntimeError("backend down")
        return f"summary {len(self.calls)}"
