"""Tests for the append-only event store."""

from __future__ import annotations

import pytest

from helpers import make_message, make_user, reaction_keys, seed_messages
from recallbot.errors import DuplicateKey, NotFound
from recallbot.history.models import ReactionKey

THUMBS = ReactionKey(emoji="👍")
HEART = ReactionKey(emoji="❤️")


class TestSaveMessage:
    def test_saved_message_starts_without_edits_or_reactions(self, events):
        saved = events.save_message(make_message(10, 1, text="hi"))
        assert saved.edits == []
        assert saved.reactions == []

        view = events.get_message(10, 1)
        assert view is not None
        assert view.message.text == "hi"
        assert view.message.edits == []

    def test_duplicate_native_id_raises(self, events):
        events.save_message(make_message(10, 1))
        with pytest.raises(DuplicateKey):
            events.save_message(make_message(10, 1, text="again"))
        assert events.count(10) == 1

    def test_same_native_id_in_other_conversation_is_fine(self, events):
        events.save_message(make_message(10, 1))
        events.save_message(make_message(11, 1))
        assert events.count(10) == 1
        assert events.count(11) == 1

    def test_get_message_unknown_returns_none(self, events):
        assert events.get_message(10, 404) is None

    def test_find_message_by_native_id(self, events):
        events.save_message(make_message(10, 1, text="in ten"))
        events.save_message(make_message(11, 2, text="in eleven"))

        found = events.find_message(2)
        assert (found.message.conversation_id, found.message.text) == (11, "in eleven")
        assert events.find_message(404) is None


class TestRecordEdit:
    def test_edits_are_versioned_densely(self, events):
        events.save_message(make_message(10, 1, text="v0"))
        for n in range(1, 4):
            events.record_edit(10, 1, f"v{n}")

        message = events.get_message(10, 1).message
        assert message.text == "v3"
        assert [e.version for e in message.edits] == [1, 2, 3]
        assert [e.text for e in message.edits] == ["v0", "v1", "v2"]
        assert message.edited_at == message.edits[-1].edited_at

    def test_identical_text_still_appends_history(self, events):
        events.save_message(make_message(10, 1, text="same"))
        events.record_edit(10, 1, "same")
        message = events.get_message(10, 1).message
        assert len(message.edits) == 1
        assert message.edits[0].text == "same"

    def test_unknown_message_raises_not_found(self, events):
        with pytest.raises(NotFound):
            events.record_edit(10, 99, "text")


class TestReconcileReactions:
    def test_add_then_remove(self, events):
        events.save_message(make_message(10, 1))
        events.reconcile_reactions(10, 1, 7, added=[THUMBS])
        events.reconcile_reactions(10, 1, 7, added=[HEART])
        assert reaction_keys(events.get_message(10, 1).message, 7) == {THUMBS, HEART}

        events.reconcile_reactions(10, 1, 7, removed=[THUMBS])
        assert reaction_keys(events.get_message(10, 1).message, 7) == {HEART}

    def test_other_authors_are_untouched(self, events):
        events.save_message(make_message(10, 1))
        events.reconcile_reactions(10, 1, 7, added=[THUMBS])
        events.reconcile_reactions(10, 1, 8, added=[THUMBS])

        events.reconcile_reactions(10, 1, 7, removed=[THUMBS])

        message = events.get_message(10, 1).message
        assert reaction_keys(message, 7) == set()
        assert reaction_keys(message, 8) == {THUMBS}

    def test_plain_strings_are_emoji_keys(self, events):
        events.save_message(make_message(10, 1))
        reactions = events.reconcile_reactions(10, 1, 7, added=["🔥"])
        assert reactions[0].key == ReactionKey(emoji="🔥")

    def test_custom_emoji_key(self, events):
        events.save_message(make_message(10, 1))
        custom = ReactionKey(custom_emoji_id="555")
        events.reconcile_reactions(10, 1, 7, added=[custom])
        assert reaction_keys(events.get_message(10, 1).message, 7) == {custom}

    def test_unknown_message_raises_not_found(self, events):
        with pytest.raises(NotFound):
            events.reconcile_reactions(10, 1, 7, added=[THUMBS])


class TestReads:
    def test_recent_window_is_newest_first(self, events):
        seed_messages(events, 10, 5)
        window = events.recent_window(10, 3)
        assert [v.native_id for v in window] == [5, 4, 3]

    def test_recent_window_shorter_than_limit(self, events):
        seed_messages(events, 10, 2)
        assert len(events.recent_window(10, 50)) == 2

    def test_ascending_range_is_contiguous(self, events):
        seed_messages(events, 10, 10)
        view = events.ascending_range(10, 4, 3)
        assert [v.native_id for v in view] == [5, 6, 7]

    def test_views_resolve_related_profiles(self, events):
        events.upsert_user(make_user(1, "Ada", "ada"))
        events.upsert_user(make_user(2, "Bob", "bob"))
        events.upsert_user(make_user(3, "Cy", "cy"))
        events.save_message(make_message(10, 1, author_id=1, text="question"))
        events.save_message(make_message(10, 2, author_id=2, text="answer", reply_to_id=1))
        events.reconcile_reactions(10, 2, 3, added=[THUMBS])

        view = events.recent_window(10, 1)[0]
        assert view.author.first_name == "Bob"
        assert view.reply_to.message.text == "question"
        assert view.reply_to.author.first_name == "Ada"
        assert view.reactions[0].author.first_name == "Cy"

    def test_reply_target_outside_store_is_unresolved(self, events):
        events.save_message(make_message(10, 2, reply_to_id=1))
        assert events.get_message(10, 2).reply_to is None

    def test_counts(self, events):
        seed_messages(events, 10, 3)
        seed_messages(events, 11, 5)
        assert events.count(10) == 3
        assert events.count_all() == 8
        assert events.counts_by_conversation() == [(11, 5), (10, 3)]

    def test_set_derived_context(self, events):
        events.save_message(make_message(10, 1))
        events.set_derived_context(10, 1, "a cat on a sofa")
        assert events.get_message(10, 1).message.derived_context == "a cat on a sofa"

    def test_set_derived_context_unknown_message(self, events):
        with pytest.raises(NotFound):
            events.set_derived_context(10, 1, "nothing")


class TestUserProfiles:
    def test_first_upsert_has_no_history(self, events):
        events.upsert_user(make_user(1))
        user = events.get_user(1)
        assert user.first_name == "Ada"
        assert user.history == []

    def test_unchanged_profile_keeps_history_empty(self, events):
        events.upsert_user(make_user(1, language_code=None))
        events.upsert_user(make_user(1, language_code="  "))
        assert events.get_user(1).history == []

    def test_change_records_prior_values(self, events):
        events.upsert_user(make_user(1, "Ada", "ada"))
        events.upsert_user(make_user(1, "Ada", "countess"))

        user = events.get_user(1)
        assert user.username == "countess"
        assert len(user.history) == 1
        assert user.history[0].username == "ada"

    def test_premium_flag_change_is_tracked(self, events):
        events.upsert_user(make_user(1))
        events.upsert_user(make_user(1, is_premium=True))
        user = events.get_user(1)
        assert user.is_premium is True
        assert user.history[0].is_premium is False

    def test_unknown_user(self, events):
        assert events.get_user(42) is None
