"""Discord adapter: turns gateway events into conversation service calls."""

from __future__ import annotations

import logging

import discord
from discord.ext import commands

from recallbot.conversation import ConversationService, SentMessage
from recallbot.history.event_store import EventStore
from recallbot.history.memory_store import MemoryStore
from recallbot.history.models import ReactionKey, UserProfile
from recallbot.ingest import (
    AttachmentInfo,
    AuthorInfo,
    IncomingMessage,
    MessageEdited,
    PollInfo,
    ReactionDelta,
)
from recallbot.settings import ADMIN_USER_IDS, CONVERSATION_CHANNEL_IDS

_LOG = logging.getLogger(__name__)

DISCORD_MESSAGE_LIMIT = 2000


def split_message(text: str, limit: int = DISCORD_MESSAGE_LIMIT) -> list[str]:
    """Split ``text`` into chunks under ``limit``, preferring line breaks."""
    chunks: list[str] = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = remaining.rfind(" ", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(remaining[:cut].rstrip())
        remaining = remaining[cut:].lstrip()
    if remaining:
        chunks.append(remaining)
    return chunks or [""]


def reaction_key(emoji: discord.PartialEmoji) -> ReactionKey:
    if emoji.id is not None:
        return ReactionKey(custom_emoji_id=str(emoji.id))
    return ReactionKey(emoji=emoji.name)


def _author_info(user: discord.abc.User) -> AuthorInfo:
    display = getattr(user, "global_name", None) or getattr(user, "display_name", None)
    return AuthorInfo(
        user_id=user.id,
        first_name=display if display and display != user.name else None,
        username=user.name,
        is_bot=bool(user.bot),
        is_premium=getattr(user, "premium_since", None) is not None,
    )


def _poll_info(message: discord.Message) -> PollInfo | None:
    poll = getattr(message, "poll", None)
    if poll is None:
        return None
    return PollInfo(
        question=str(poll.question),
        options=[str(answer.text) for answer in poll.answers],
        allows_multiple_answers=bool(poll.multiple),
        expires_at=poll.expires_at,
    )


def to_incoming(message: discord.Message, bot_user: discord.ClientUser | None) -> IncomingMessage:
    """Normalize a gateway message into an :class:`IncomingMessage`."""
    reply_to_id = None
    reply_to_author_id = None
    forward_origin = None
    reference = message.reference
    if reference is not None and reference.message_id is not None:
        ref_type = getattr(reference, "type", None)
        if getattr(ref_type, "name", "") == "forward":
            forward_origin = {
                "type": "message",
                "guild_id": reference.guild_id,
                "channel_id": reference.channel_id,
                "message_id": reference.message_id,
            }
        else:
            reply_to_id = reference.message_id
            resolved = reference.resolved
            if isinstance(resolved, discord.Message):
                reply_to_author_id = resolved.author.id

    attachments = [
        AttachmentInfo(
            file_name=a.filename,
            content_type=a.content_type,
            size=a.size,
            is_voice_message=a.is_voice_message(),
            read=a.read,
        )
        for a in message.attachments
    ]

    return IncomingMessage(
        conversation_id=message.channel.id,
        native_id=message.id,
        author=_author_info(message.author),
        text=message.clean_content or None,
        sent_at=message.created_at,
        attachments=attachments,
        sticker_names=[s.name for s in message.stickers],
        poll=_poll_info(message),
        reply_to_id=reply_to_id,
        reply_to_author_id=reply_to_author_id,
        forward_origin=forward_origin,
        mentions_bot=bot_user is not None and bot_user in message.mentions,
    )


class DiscordReplySender:
    """Sends into a channel, replying to ``message`` when one is given."""

    def __init__(
        self,
        channel: discord.abc.Messageable,
        message: discord.Message | discord.PartialMessage | None = None,
    ) -> None:
        self.channel = channel
        self.message = message

    async def send(self, text: str, reply_to: int | None) -> list[SentMessage]:
        sent: list[SentMessage] = []
        for chunk in split_message(text):
            if not sent and self.message is not None and reply_to == self.message.id:
                posted = await self.message.reply(chunk, mention_author=False)
            else:
                posted = await self.channel.send(chunk)
            sent.append(SentMessage(native_id=posted.id, sent_at=posted.created_at, text=chunk))
        return sent


class ConversationCog(commands.Cog):
    """Stores every message in watched channels and answers when addressed."""

    def __init__(
        self,
        bot: commands.Bot,
        service: ConversationService,
        events: EventStore,
        memories: MemoryStore,
        *,
        channel_ids: set[int] | None = None,
        admin_ids: set[int] | None = None,
    ) -> None:
        self.bot = bot
        self.service = service
        self.events = events
        self.memories = memories
        self.channel_ids = CONVERSATION_CHANNEL_IDS if channel_ids is None else channel_ids
        self.admin_ids = ADMIN_USER_IDS if admin_ids is None else admin_ids
        _LOG.info(
            "ConversationCog initialized for %s channel(s) with %d admin(s)",
            len(self.channel_ids) or "all",
            len(self.admin_ids),
        )

    def _is_admin(self, user_id: int) -> bool:
        return user_id in self.admin_ids

    def _watches(self, channel_id: int) -> bool:
        return not self.channel_ids or channel_id in self.channel_ids

    def _is_command(self, message: discord.Message) -> bool:
        content = (message.content or "").strip()
        if not content.startswith("!"):
            return False
        name = content[1:].split(maxsplit=1)[0].lower() if len(content) > 1 else ""
        return self.bot.get_command(name) is not None

    # ---------------------------------------------------------------- events

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        user = self.bot.user
        if user is None:
            return
        self.service.register_bot(
            UserProfile(user_id=user.id, first_name=user.display_name, username=user.name, is_bot=True)
        )
        _LOG.info("Registered bot profile %s (%s)", user.name, user.id)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.guild is None or not self._watches(message.channel.id):
            return
        if self.bot.user is not None and message.author.id == self.bot.user.id:
            return
        if self._is_command(message):
            return

        event = to_incoming(message, self.bot.user)
        try:
            if self.service.is_trigger(event):
                async with message.channel.typing():
                    await self.service.handle_message(event, DiscordReplySender(message.channel, message))
            else:
                await self.service.handle_message(event, DiscordReplySender(message.channel, message))
        except Exception:
            _LOG.exception("Failed to handle message %s in channel %s", message.id, message.channel.id)

    @commands.Cog.listener()
    async def on_raw_message_edit(self, payload: discord.RawMessageUpdateEvent) -> None:
        if not self._watches(payload.channel_id):
            return
        data = payload.data
        # Embed resolution also fires this event without a real edit.
        if not data.get("edited_timestamp") or "content" not in data:
            return
        # Mentions rendered as in to_incoming.
        new_text = payload.message.clean_content or None
        try:
            await self.service.handle_edit(
                MessageEdited(
                    conversation_id=payload.channel_id,
                    native_id=payload.message_id,
                    new_text=new_text,
                )
            )
        except Exception:
            _LOG.exception("Failed to track edit of message %s", payload.message_id)

    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        await self._reaction(payload, added=True)

    @commands.Cog.listener()
    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent) -> None:
        await self._reaction(payload, added=False)

    async def _reaction(self, payload: discord.RawReactionActionEvent, *, added: bool) -> None:
        if not self._watches(payload.channel_id):
            return
        key = reaction_key(payload.emoji)
        delta = ReactionDelta(
            conversation_id=payload.channel_id,
            native_id=payload.message_id,
            author_id=payload.user_id,
            added=[key] if added else [],
            removed=[] if added else [key],
        )
        try:
            await self.service.handle_reaction(delta)
        except Exception:
            _LOG.exception("Failed to track reaction on message %s", payload.message_id)

    # ---------------------------------------------------------------- commands

    @commands.command(name="stats")
    async def stats(self, ctx: commands.Context) -> None:
        """Show stored message counts (admin only)."""
        if not self._is_admin(ctx.author.id):
            await ctx.send("❌ This command is restricted to admins.")
            return
        total = self.events.count_all()
        lines = [f"📊 Total messages: {total}"]
        top = self.events.counts_by_conversation(limit=10)
        if top:
            lines.append("Top conversations:")
            lines.extend(f"• <#{cid}>: {count}" for cid, count in top)
        await ctx.send("\n".join(lines))

    @commands.command(name="memories")
    async def list_memories(self, ctx: commands.Context) -> None:
        """List the pinned memories of this channel."""
        memories = self.memories.list_for_conversation(ctx.channel.id)
        if not memories:
            await ctx.send("No pinned memories in this channel.")
            return
        body = "\n".join(f"#{m.id}: {m.text}" for m in memories)
        for chunk in split_message(f"📌 Pinned memories:\n{body}"):
            await ctx.send(chunk)

    @commands.command(name="forget")
    async def forget(self, ctx: commands.Context, memory_id: int) -> None:
        """Delete a pinned memory of this channel (admin only).

        Usage: !forget 12
        """
        if not self._is_admin(ctx.author.id):
            await ctx.send("❌ This command is restricted to admins.")
            return
        if self.memories.delete(ctx.channel.id, memory_id):
            await ctx.send(f"✅ Forgot memory #{memory_id}.")
            _LOG.info("Admin %s deleted memory %s in channel %s", ctx.author.id, memory_id, ctx.channel.id)
        else:
            await ctx.send(f"❌ No memory #{memory_id} in this channel.")

    @commands.command(name="say")
    async def say(self, ctx: commands.Context, channel_id: int | None = None, *, text: str = "") -> None:
        """Post a message as the bot (admin only).

        Usage: !say <channel_id> <text>
        """
        if not self._is_admin(ctx.author.id):
            await ctx.send("❌ This command is restricted to admins.")
            return
        if channel_id is None:
            await ctx.send("Usage: !say <channel_id> <text>")
            return
        text = text.strip()
        if not text:
            await ctx.send("❌ Text cannot be empty.")
            return
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            await ctx.send(f"❌ Channel {channel_id} not found.")
            return
        try:
            sent = await self.service.post(channel_id, text, DiscordReplySender(channel))
        except Exception:
            _LOG.exception("Admin %s failed to post in channel %s", ctx.author.id, channel_id)
            await ctx.send("❌ Failed to send message.")
            return
        await ctx.send(f"✅ Sent to channel {channel_id} (message {sent[0].native_id}).")

    @commands.command(name="reply")
    async def reply(self, ctx: commands.Context, message_id: int | None = None, *, text: str = "") -> None:
        """Reply to a stored message as the bot (admin only).

        Usage: !reply <message_id> <text>
        """
        if not self._is_admin(ctx.author.id):
            await ctx.send("❌ This command is restricted to admins.")
            return
        if message_id is None:
            await ctx.send("Usage: !reply <message_id> <text>")
            return
        text = text.strip()
        if not text:
            await ctx.send("❌ Text cannot be empty.")
            return
        target = self.events.find_message(message_id)
        if target is None:
            await ctx.send(f"❌ Message {message_id} not found.")
            return
        channel_id = target.message.conversation_id
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            await ctx.send(f"❌ Channel {channel_id} not found.")
            return
        sender = DiscordReplySender(channel, channel.get_partial_message(message_id))
        try:
            await self.service.post(channel_id, text, sender, reply_to=message_id)
        except Exception:
            _LOG.exception("Admin %s failed to reply to message %s", ctx.author.id, message_id)
            await ctx.send("❌ Failed to reply.")
            return
        await ctx.send(f"✅ Replied in channel {channel_id} to message {message_id}.")
