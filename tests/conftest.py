"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from recallbot.history.database import Database
from recallbot.history.event_store import EventStore
from recallbot.history.memory_store import MemoryStore
from recallbot.summarization.summary_store import SummaryStore


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db():
    """An open in-memory database with the full schema."""
    database = Database(":memory:").open()
    yield database
    database.close()


@pytest.fixture
def events(db):
    return EventStore(db)


@pytest.fixture
def summaries(db):
    return SummaryStore(db)


@pytest.fixture
def memories(db):
    return MemoryStore(db)
