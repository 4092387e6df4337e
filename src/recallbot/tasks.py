import asyncio
import os
import time

from celery import Celery
from celery.utils.log import get_task_logger

from recallbot.history.database import Database
from recallbot.history.event_store import EventStore
from recallbot.settings import SUMMARY_API, SUMMARY_MODEL
from recallbot.summarization.rollup import RollupEngine
from recallbot.summarization.summarizer import Summarizer
from recallbot.summarization.summary_store import SummaryStore
from recallbot.text_generators import get_text_generator

logger = get_task_logger(__name__)

celery_app = Celery(
    "tasks",
    broker=os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0"),
    backend=os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/0"),
)

celery_app.conf.task_routes = {
    "tasks.ensure_rollups": {"queue": "rollups"},
}


def build_engine(db: Database) -> RollupEngine:
    generator = get_text_generator(SUMMARY_API, SUMMARY_MODEL)
    return RollupEngine(EventStore(db), SummaryStore(db), Summarizer(generator))


@celery_app.task(name="tasks.ensure_rollups", queue="rollups")
def ensure_rollups(conversation_id: int, db_path: str | None = None) -> int:
    """Bring a conversation's summaries up to date and return how many were written."""
    start = time.monotonic()
    logger.info("ensure_rollups START | conversation=%s", conversation_id)

    db = Database(db_path).open()
    try:
        written = asyncio.run(build_engine(db).ensure_rollups(conversation_id))
    except Exception as exc:  # noqa: BLE001
        duration = time.monotonic() - start
        logger.exception("ensure_rollups FAILED after %.2fs | %s", duration, exc)
        raise
    finally:
        db.close()

    duration = time.monotonic() - start
    logger.info(
        "ensure_rollups FINISH in %.2fs | conversation=%s written=%d",
        duration,
        conversation_id,
        written,
    )
    return written
