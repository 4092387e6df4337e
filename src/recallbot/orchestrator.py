"""Routing and reply generation for a single trigger message.

A fast router picks exactly one action: ``remember`` a fact, or ``respond``
with an optional full-history context and optional web retrieval. The reply
model may itself call ``remember``; that gets one follow-up call, after which
any further tool calls are stripped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from recallbot.context.assembler import ContextAssembler
from recallbot.context.formatting import format_message, format_user_display_name
from recallbot.errors import CapabilityUnavailable, GenerationFailed
from recallbot.history.event_store import EventStore
from recallbot.history.memory_store import MemoryStore
from recallbot.history.models import MessageView
from recallbot.settings import (
    GENERATION_TIMEOUT_SECONDS,
    ROUTER_INSTRUCTION,
    ROUTER_SLICE_SIZE,
    get_system_prompt,
)
from recallbot.text_generators.base import TextGeneratorAPI
from recallbot.tools import REPLY_TOOLS, ROUTER_TOOLS, ToolContext, get_tool_definitions_text
from recallbot.tools.parser import (
    ToolCall,
    execute_tool_call,
    parse_arguments,
    parse_bool,
    parse_tool_calls,
    strip_tool_calls,
)

_LOG = logging.getLogger(__name__)

REMEMBER = "remember"
RESPOND = "respond"
WEB_SEARCH = "web_search"


@dataclass
class RouteDecision:
    action: str = RESPOND
    memory_text: str | None = None
    use_full_history: bool = False
    use_external_retrieval: bool = False


@dataclass
class OrchestratorResult:
    text: str
    tools_used: list[str] = field(default_factory=list)


def decide_route(output: str) -> RouteDecision:
    """Pick the first valid action in the router output; default to a plain reply."""
    for call in parse_tool_calls(output):
        args = parse_arguments(call.raw_args)
        if call.tool_name == REMEMBER:
            text = (args.get("text") or "").strip()
            if text:
                return RouteDecision(action=REMEMBER, memory_text=text)
        elif call.tool_name == RESPOND:
            return RouteDecision(
                action=RESPOND,
                use_full_history=parse_bool(args.get("use_full_history")),
                use_external_retrieval=parse_bool(args.get("use_external_retrieval")),
            )
    return RouteDecision()


def _quote(value: str) -> str:
    return '"' + value.replace('"', '\\"') + '"'


class Orchestrator:
    def __init__(
        self,
        *,
        router: TextGeneratorAPI,
        generator: TextGeneratorAPI,
        assembler: ContextAssembler,
        events: EventStore,
        memories: MemoryStore,
        bot_user_id: int | None = None,
        bot_name: str = "recallbot",
        router_slice_size: int = ROUTER_SLICE_SIZE,
        timeout: float = GENERATION_TIMEOUT_SECONDS,
    ) -> None:
        self.router = router
        self.generator = generator
        self.assembler = assembler
        self.events = events
        self.memories = memories
        self.bot_user_id = bot_user_id
        self.bot_name = bot_name
        self.router_slice_size = router_slice_size
        self.timeout = timeout

    async def handle(self, trigger: MessageView) -> OrchestratorResult:
        """Route ``trigger`` and produce the reply.

        Raises:
            GenerationFailed: the router or the reply model failed, timed out
                or produced nothing usable.
        """
        try:
            decision = await self.route(trigger)
            _LOG.info(
                "Route for %s/%s: %s full_history=%s web=%s",
                trigger.message.conversation_id,
                trigger.native_id,
                decision.action,
                decision.use_full_history,
                decision.use_external_retrieval,
            )
            if decision.action == REMEMBER:
                return await self._remember_then_respond(trigger, decision.memory_text or "")
            return await self.respond(
                trigger,
                use_full_history=decision.use_full_history,
                use_external_retrieval=decision.use_external_retrieval,
            )
        except CapabilityUnavailable as exc:
            raise GenerationFailed(str(exc)) from exc

    # ---------------------------------------------------------------- routing

    async def route(self, trigger: MessageView) -> RouteDecision:
        conversation_id = trigger.message.conversation_id
        recent = self.events.recent_window(conversation_id, self.router_slice_size)
        recent.reverse()
        count = len(recent)
        history = "\n---\n".join(
            format_message(view, number=count - i)
            for i, view in enumerate(recent)
            if view.native_id != trigger.native_id
        )
        prompt = [
            {"role": "system", "content": f"{ROUTER_INSTRUCTION}\n\n{get_tool_definitions_text(ROUTER_TOOLS)}"},
            {
                "role": "user",
                "content": (
                    f"### RECENT MESSAGES (oldest first, #1 = newest):\n{history or '(none)'}\n\n"
                    f"### CURRENT MESSAGE:\n{format_message(trigger)}"
                ),
            },
        ]
        output, _ = await self._call(self.router, prompt, temperature=0.0)
        return decide_route(output)

    # ---------------------------------------------------------------- actions

    async def _remember_then_respond(self, trigger: MessageView, text: str) -> OrchestratorResult:
        context = self._tool_context(trigger)
        call = ToolCall(REMEMBER, f"text={_quote(text)}", f"TOOL_CALL: {REMEMBER}(text={_quote(text)})")
        result, error = execute_tool_call(call, context, REPLY_TOOLS)
        tool_turns = [
            {"role": "assistant", "content": call.full_match},
            {"role": "user", "content": self._tool_result_text(REMEMBER, result, error)},
        ]
        tools_used = [REMEMBER] if not error else []
        return await self.respond(
            trigger,
            use_full_history=False,
            use_external_retrieval=False,
            tool_turns=tool_turns,
            tools_used=tools_used,
        )

    async def respond(
        self,
        trigger: MessageView,
        *,
        use_full_history: bool,
        use_external_retrieval: bool,
        tool_turns: list[dict[str, Any]] | None = None,
        tools_used: list[str] | None = None,
    ) -> OrchestratorResult:
        tools_used = list(tools_used or [])
        messages = self._build_reply_prompt(trigger, use_full_history)
        messages.extend(tool_turns or [])

        output, server_tools = await self._call(self.generator, messages, web_search=use_external_retrieval)

        calls = [c for c in parse_tool_calls(output) if c.tool_name == REMEMBER]
        if calls:
            context = self._tool_context(trigger)
            results = []
            for call in calls:
                result, error = execute_tool_call(call, context, REPLY_TOOLS)
                results.append(self._tool_result_text(call.tool_name, result, error))
            if context.created and REMEMBER not in tools_used:
                tools_used.append(REMEMBER)
            messages.append({"role": "assistant", "content": output})
            messages.append({
                "role": "user",
                "content": "\n".join(results) + "\n\nNow write your reply to the current message.",
            })
            output, more_tools = await self._call(self.generator, messages, web_search=use_external_retrieval)
            server_tools = server_tools + more_tools

        if WEB_SEARCH in server_tools and WEB_SEARCH not in tools_used:
            tools_used.append(WEB_SEARCH)
        text = strip_tool_calls(output)
        if not text:
            raise CapabilityUnavailable("Reply was empty after removing tool calls")
        return OrchestratorResult(text=text, tools_used=tools_used)

    # ---------------------------------------------------------------- helpers

    def _tool_context(self, trigger: MessageView) -> ToolContext:
        return ToolContext(
            memories=self.memories,
            conversation_id=trigger.message.conversation_id,
            author_id=trigger.message.author_id,
            source_message_id=trigger.native_id,
        )

    @staticmethod
    def _tool_result_text(name: str, result: str, error: str) -> str:
        if error:
            return f"[Tool error: {name}] {error}"
        return f"[Tool: {name}] {result}"

    def _describe_trigger(self, trigger: MessageView) -> str:
        who = format_user_display_name(trigger.author)
        reply_to = trigger.reply_to
        if reply_to is not None and self.bot_user_id is not None and reply_to.message.author_id == self.bot_user_id:
            return f"{who} replied to your message"
        return f"{who} mentioned you directly"

    def _build_reply_prompt(self, trigger: MessageView, use_full_history: bool) -> list[dict[str, Any]]:
        assembled = self.assembler.assemble(trigger.message.conversation_id, use_full_history)
        system = get_system_prompt(self.bot_name)
        tools_text = get_tool_definitions_text(REPLY_TOOLS)

        parts = list(assembled.to_prompt_sections())
        window = assembled.render_window(exclude_native_id=trigger.native_id)
        if window:
            parts.append(f"### RECENT MESSAGES (oldest first, #1 = newest):\n{window}")
        parts.append(f"### CURRENT MESSAGE ({self._describe_trigger(trigger)}):\n{format_message(trigger)}")

        return [
            {"role": "system", "content": f"{system}\n\n{tools_text}"},
            {"role": "user", "content": "\n\n".join(parts)},
        ]

    async def _call(
        self,
        generator: TextGeneratorAPI,
        prompt: list[dict[str, Any]],
        *,
        temperature: float = 1.0,
        web_search: bool = False,
    ) -> tuple[str, list[str]]:
        """Return the stripped output and the server-side tools that ran."""
        try:
            output, used = await asyncio.wait_for(
                generator.generate_with_tools(prompt, temperature=temperature, web_search=web_search),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise CapabilityUnavailable(f"Generation timed out after {self.timeout:.0f}s") from exc
        except Exception as exc:
            _LOG.exception("Generation backend failed")
            raise CapabilityUnavailable(f"Generation failed: {exc}") from exc

        output = (output or "").strip()
        if not output:
            raise CapabilityUnavailable("Generation returned empty output")
        return output, used
