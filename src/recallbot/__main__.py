import asyncio
import logging
import os
import time

import discord
from discord.ext import commands
from dotenv import load_dotenv

load_dotenv()

from recallbot import settings  # noqa: E402
from recallbot.cogs.conversation_cog import ConversationCog  # noqa: E402
from recallbot.context.assembler import ContextAssembler  # noqa: E402
from recallbot.conversation import ConversationService  # noqa: E402
from recallbot.history.database import Database  # noqa: E402
from recallbot.history.event_store import EventStore  # noqa: E402
from recallbot.history.memory_store import MemoryStore  # noqa: E402
from recallbot.orchestrator import Orchestrator  # noqa: E402
from recallbot.summarization.rollup import CeleryRollupScheduler, RollupEngine, RollupWorker  # noqa: E402
from recallbot.summarization.summarizer import Summarizer  # noqa: E402
from recallbot.summarization.summary_store import SummaryStore  # noqa: E402
from recallbot.text_generators import get_text_generator  # noqa: E402
from recallbot.text_generators.anthropic import AnthropicTextGenerator  # noqa: E402
from recallbot.vision import ImageDescriber  # noqa: E402

logger = logging.getLogger("recallbot")
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

intents = discord.Intents.default()
intents.message_content = True


def build_bot(db: Database):
    """Wire stores, backends and the Discord cog around an open database."""
    events = EventStore(db)
    summaries = SummaryStore(db)
    memories = MemoryStore(db)

    if settings.ROLLUP_BACKEND == "celery":
        rollups = CeleryRollupScheduler()
    else:
        engine = RollupEngine(
            events,
            summaries,
            Summarizer(get_text_generator(settings.SUMMARY_API, settings.SUMMARY_MODEL)),
        )
        rollups = RollupWorker(engine)

    orchestrator = Orchestrator(
        router=get_text_generator(settings.ROUTER_API, settings.ROUTER_MODEL),
        generator=get_text_generator(settings.REPLY_API, settings.REPLY_MODEL),
        assembler=ContextAssembler(events, summaries, memories),
        events=events,
        memories=memories,
        bot_name=os.getenv("BOT_NAME", "recallbot"),
    )
    service = ConversationService(
        events=events,
        orchestrator=orchestrator,
        rollups=rollups,
        describer=ImageDescriber(AnthropicTextGenerator(settings.VISION_MODEL)),
    )

    bot = commands.Bot(command_prefix="!", intents=intents, case_insensitive=True, help_command=None)
    cog = ConversationCog(bot, service, events, memories)
    return bot, cog, rollups


async def main() -> None:
    token = os.getenv("DISCORD_TOKEN")
    if not token:
        raise SystemExit("DISCORD_TOKEN is not set")

    db = Database().open()
    bot, cog, rollups = build_bot(db)
    try:
        async with bot:
            await bot.add_cog(cog)
            logger.info("starting bot")
            await bot.start(token)
    finally:
        await rollups.close()
        db.close()


def run() -> None:
    # Robust launcher: retry on transient connect errors (e.g., gateway timeouts)
    while True:
        try:
            asyncio.run(main())
            break  # Normal exit
        except Exception as e:  # noqa: BLE001
            logger.exception("Bot crashed during startup/connect; retrying in 5s: %s", e)
            time.sleep(5)


if __name__ == "__main__":
    run()
