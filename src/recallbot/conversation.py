"""Trigger boundary between the chat transport and the core.

Every inbound message is stored; only messages that mention the bot or
reply to one of its messages produce a reply. Replies and tool notices are
stored like any other message so they show up in later context.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from recallbot.errors import CapabilityUnavailable, DuplicateKey, GenerationFailed, NotFound
from recallbot.history.event_store import EventStore
from recallbot.history.models import ContentKind, Message, UserProfile
from recallbot.ingest import (
    IncomingMessage,
    MessageEdited,
    ReactionDelta,
    build_poll_context,
    classify_content,
    first_image,
    primary_file_name,
)
from recallbot.orchestrator import Orchestrator, OrchestratorResult
from recallbot.settings import FALLBACK_REPLY
from recallbot.vision import ImageDescriber

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class SentMessage:
    native_id: int
    sent_at: datetime
    # The chunk actually posted when a long text was split.
    text: str | None = None


class ReplySender(Protocol):
    async def send(self, text: str, reply_to: int | None) -> list[SentMessage]:
        """Post ``text`` in the conversation, replying to ``reply_to``.

        Returns one entry per message posted; long texts may be split.
        """
        ...


class RollupScheduler(Protocol):
    def trigger(self, conversation_id: int) -> object:
        ...


def tool_notice(tools_used: list[str]) -> str:
    names = ", ".join(f"'{name}'" for name in tools_used)
    return f"🛠️ AI used {names} tool"


class ConversationService:
    def __init__(
        self,
        *,
        events: EventStore,
        orchestrator: Orchestrator,
        rollups: RollupScheduler,
        describer: ImageDescriber | None = None,
        bot_user_id: int | None = None,
        announce_tools: bool = True,
    ) -> None:
        self.events = events
        self.orchestrator = orchestrator
        self.rollups = rollups
        self.describer = describer
        self.bot_user_id = bot_user_id
        self.announce_tools = announce_tools
        self._analysis_tasks: set[asyncio.Task] = set()

    def register_bot(self, profile: UserProfile) -> None:
        """Record the bot's own identity so its replies resolve to a profile."""
        profile.is_bot = True
        self.bot_user_id = profile.user_id
        self.orchestrator.bot_user_id = profile.user_id
        self.events.upsert_user(profile)

    # ---------------------------------------------------------------- inbound

    async def handle_message(self, event: IncomingMessage, reply_sender: ReplySender) -> OrchestratorResult | None:
        """Store ``event`` and reply to it when it is a trigger.

        Returns the orchestrator result when a reply was generated.
        """
        self.events.upsert_user(event.author.to_profile())

        kind = classify_content(event)
        text = event.text
        derived_context = None
        if event.poll is not None:
            text = event.poll.question or text
            derived_context = build_poll_context(event.poll)

        message = Message(
            conversation_id=event.conversation_id,
            native_id=event.native_id,
            author_id=event.author.user_id,
            text=text,
            kind=kind,
            sent_at=event.sent_at,
            derived_context=derived_context,
            file_name=primary_file_name(event),
            reply_to_id=event.reply_to_id,
            forward_origin=event.forward_origin,
            forward_from_user_id=event.forward_from_user_id,
        )
        try:
            self.events.save_message(message)
        except DuplicateKey:
            _LOG.debug("Message %s/%s already stored; ignoring redelivery", event.conversation_id, event.native_id)
            return None

        self.rollups.trigger(event.conversation_id)
        analysis = self._schedule_image_analysis(event)

        if not self.is_trigger(event):
            return None

        if analysis is not None:
            # The reply should see the image description when it is ready in time.
            await asyncio.gather(analysis, return_exceptions=True)

        return await self._reply(event, reply_sender)

    def is_trigger(self, event: IncomingMessage) -> bool:
        if self.bot_user_id is not None and event.author.user_id == self.bot_user_id:
            return False
        if event.mentions_bot:
            return True
        return self.bot_user_id is not None and event.reply_to_author_id == self.bot_user_id

    async def handle_edit(self, event: MessageEdited) -> bool:
        try:
            self.events.record_edit(event.conversation_id, event.native_id, event.new_text)
        except NotFound:
            _LOG.info("Edit for unknown message %s/%s ignored", event.conversation_id, event.native_id)
            return False
        _LOG.info("Message edit tracked for %s/%s", event.conversation_id, event.native_id)
        return True

    async def handle_reaction(self, event: ReactionDelta) -> bool:
        try:
            self.events.reconcile_reactions(
                event.conversation_id,
                event.native_id,
                event.author_id,
                added=event.added,
                removed=event.removed,
            )
        except NotFound:
            _LOG.info("Reaction for unknown message %s/%s ignored", event.conversation_id, event.native_id)
            return False
        _LOG.info(
            "Reaction tracked for %s/%s by %s (+%d/-%d)",
            event.conversation_id,
            event.native_id,
            event.author_id,
            len(event.added),
            len(event.removed),
        )
        return True

    # ---------------------------------------------------------------- replies

    async def _reply(self, event: IncomingMessage, reply_sender: ReplySender) -> OrchestratorResult | None:
        trigger = self.events.get_message(event.conversation_id, event.native_id)
        if trigger is None:
            _LOG.error("Trigger message %s/%s not found after saving", event.conversation_id, event.native_id)
            return None

        cid, mid = event.conversation_id, event.native_id
        try:
            result = await self.orchestrator.handle(trigger)
        except GenerationFailed as exc:
            _LOG.warning("Reply generation failed for %s/%s: %s", cid, mid, exc)
            await self._send_and_store(reply_sender, cid, FALLBACK_REPLY, mid)
            return None
        except Exception:
            _LOG.exception("Reply orchestration failed for %s/%s", cid, mid)
            await self._send_and_store(reply_sender, cid, FALLBACK_REPLY, mid)
            return None

        if self.announce_tools and result.tools_used:
            try:
                await self._send_and_store(reply_sender, cid, tool_notice(result.tools_used), mid)
            except Exception:
                _LOG.exception("Failed to send tool usage notice")

        await self._send_and_store(reply_sender, cid, result.text, mid)
        self.rollups.trigger(cid)
        _LOG.info("Reply sent for %s/%s", cid, mid)
        return result

    async def post(
        self,
        conversation_id: int,
        text: str,
        reply_sender: ReplySender,
        *,
        reply_to: int | None = None,
    ) -> list[SentMessage]:
        """Send ``text`` as the bot outside of a trigger and store it."""
        sent = await self._send_and_store(reply_sender, conversation_id, text, reply_to)
        self.rollups.trigger(conversation_id)
        _LOG.info("Posted %d message(s) as bot in %s", len(sent), conversation_id)
        return sent

    async def _send_and_store(
        self,
        reply_sender: ReplySender,
        conversation_id: int,
        text: str,
        reply_to: int | None,
    ) -> list[SentMessage]:
        sent = await reply_sender.send(text, reply_to)
        if self.bot_user_id is None:
            _LOG.warning("Bot identity unknown; %d sent message(s) not stored", len(sent))
            return sent
        for position, part in enumerate(sent):
            try:
                self.events.save_message(
                    Message(
                        conversation_id=conversation_id,
                        native_id=part.native_id,
                        author_id=self.bot_user_id,
                        text=text if part.text is None else part.text,
                        kind=ContentKind.TEXT,
                        sent_at=part.sent_at,
                        # Only the first chunk is posted as a reply.
                        reply_to_id=reply_to if position == 0 else None,
                    )
                )
            except DuplicateKey:
                # The transport may deliver our own message back before we get here.
                _LOG.debug("Bot message %s already stored", part.native_id)
        return sent

    # ---------------------------------------------------------------- vision

    def _schedule_image_analysis(self, event: IncomingMessage) -> asyncio.Task | None:
        if self.describer is None:
            return None
        image = first_image(event)
        if image is None:
            return None
        task = asyncio.get_running_loop().create_task(
            self._analyze_image(event.conversation_id, event.native_id, image.read, image.mime)
        )
        self._analysis_tasks.add(task)
        task.add_done_callback(self._analysis_tasks.discard)
        return task

    async def _analyze_image(self, conversation_id: int, native_id: int, read, mime: str) -> None:
        try:
            data = await read()
            description = await self.describer.describe(data, mime)
            self.events.set_derived_context(conversation_id, native_id, description)
        except (CapabilityUnavailable, NotFound) as exc:
            _LOG.warning("Image analysis for %s/%s skipped: %s", conversation_id, native_id, exc)
        except Exception:
            _LOG.exception("Image analysis failed for %s/%s", conversation_id, native_id)
        else:
            _LOG.info("Stored image description for %s/%s", conversation_id, native_id)

    async def drain(self) -> None:
        """Wait for outstanding image analysis."""
        if self._analysis_tasks:
            await asyncio.gather(*list(self._analysis_tasks), return_exceptions=True)
