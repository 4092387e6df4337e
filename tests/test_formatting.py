from __future__ import annotations

from helpers import make_message, make_user
from recallbot.context.formatting import (
    format_message,
    format_rollup_line,
    format_user_display_name,
    sanitize,
)
from recallbot.history.models import Edit, MessageView, Reaction, ReactionKey, ReactionView, ReplyTarget


def test_sanitize_single_line_without_markup():
    assert sanitize("a\nb [c] {d} <e> `f` $g") == "a b c d e f g"
    assert sanitize(None) == ""


def test_display_name_variants():
    assert format_user_display_name(None) == "Unknown User"
    assert format_user_display_name(make_user(1, "Ada", "ada")) == "Ada (@ada)"
    assert format_user_display_name(make_user(1, None, "ada")) == "ada"

    user = make_user(1, "Ada", "ada", is_premium=True, is_bot=True, language_code="en")
    assert format_user_display_name(user) == "Ada (premium) [bot], en (@ada)"


def test_format_message_includes_everything():
    ada = make_user(1, "Ada", "ada")
    bob = make_user(2, "Bob", "bob")
    message = make_message(10, 2, author_id=2, text="sure\nthing", reply_to_id=1)
    message.derived_context = "photo of a whiteboard"
    message.file_name = "notes.pdf"
    message.edits = [Edit(text="sur", edited_at=message.sent_at, version=1)]
    reaction = Reaction(author_id=1, key=ReactionKey(emoji="👍"), added_at=message.sent_at)
    view = MessageView(
        message=message,
        author=bob,
        reply_to=ReplyTarget(make_message(10, 1, text="ok?"), ada),
        reactions=[ReactionView(reaction, ada)],
    )

    rendered = format_message(view, number=3)

    assert rendered.startswith("#3 [2025-01-01 00:00] Bob (@bob)")
    assert 'Text: "sure thing"' in rendered
    assert "Context: photo of a whiteboard" in rendered
    assert "File: notes.pdf" in rendered
    assert "Edits: 1 times" in rendered
    assert 'Replying to: Ada (@ada): "ok?"' in rendered
    assert "Reactions: 👍 by Ada (@ada)" in rendered


def test_rollup_line_is_single_line():
    view = MessageView(message=make_message(10, 1, text="hello\nworld"), author=make_user(1))
    assert format_rollup_line(view) == "2025-01-01 00:00 | ada: hello world"
