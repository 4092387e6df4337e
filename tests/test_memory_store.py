from __future__ import annotations

import pytest


def test_add_trims_and_assigns_id(memories):
    memory = memories.add(10, 1, "  likes green tea  ", source_message_id=5)
    assert memory.id is not None
    assert memory.text == "likes green tea"
    assert memory.source_message_id == 5


def test_empty_text_rejected(memories):
    with pytest.raises(ValueError):
        memories.add(10, 1, "   ")


def test_list_is_oldest_first_and_scoped(memories):
    memories.add(10, 1, "first")
    memories.add(10, 1, "second")
    memories.add(11, 1, "elsewhere")

    texts = [m.text for m in memories.list_for_conversation(10)]
    assert texts == ["first", "second"]


def test_list_respects_limit(memories):
    for n in range(5):
        memories.add(10, 1, f"fact {n}")
    assert len(memories.list_for_conversation(10, limit=3)) == 3


def test_delete_is_scoped_to_conversation(memories):
    memory = memories.add(10, 1, "secret")
    assert memories.delete(11, memory.id) is False
    assert memories.delete(10, memory.id) is True
    assert memories.list_for_conversation(10) == []
