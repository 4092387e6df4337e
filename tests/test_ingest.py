from __future__ import annotations

from datetime import datetime, timezone

import pytest

from recallbot.history.models import ContentKind
from recallbot.ingest import (
    AttachmentInfo,
    AuthorInfo,
    IncomingMessage,
    PollInfo,
    build_poll_context,
    classify_content,
    first_image,
    primary_file_name,
)


async def _read() -> bytes:
    return b"img"


def _event(**kwargs) -> IncomingMessage:
    return IncomingMessage(conversation_id=10, native_id=1, author=AuthorInfo(user_id=1), **kwargs)


@pytest.mark.parametrize(
    "kwargs, expected",
    [
        ({"text": "hello"}, ContentKind.TEXT),
        ({"text": "   "}, ContentKind.OTHER),
        ({"poll": PollInfo("Lunch?"), "attachments": [AttachmentInfo("a.png", "image/png")]}, ContentKind.POLL),
        ({"attachments": [AttachmentInfo("a.mp4", "video/mp4"), AttachmentInfo("b.png", "image/png")]}, ContentKind.PHOTO),
        ({"attachments": [AttachmentInfo("a.mp4", "video/mp4")]}, ContentKind.VIDEO),
        ({"attachments": [AttachmentInfo("a.mp4", "video/mp4", is_video_note=True)]}, ContentKind.VIDEO_NOTE),
        ({"attachments": [AttachmentInfo("a.pdf", "application/pdf")], "sticker_names": ["wave"]}, ContentKind.DOCUMENT),
        ({"sticker_names": ["wave"], "text": "hi"}, ContentKind.STICKER),
        ({"attachments": [AttachmentInfo("voice.ogg", "audio/ogg", is_voice_message=True)]}, ContentKind.VOICE),
        ({"attachments": [AttachmentInfo("song.mp3", "audio/mpeg")]}, ContentKind.AUDIO),
    ],
)
def test_classify_content_first_match_wins(kwargs, expected):
    assert classify_content(_event(**kwargs)) == expected


def test_mime_ignores_parameters():
    assert AttachmentInfo("a.png", "Image/PNG; charset=binary").mime == "image/png"


def test_primary_file_name_skips_images():
    event = _event(attachments=[AttachmentInfo("a.png", "image/png"), AttachmentInfo("notes.pdf", "application/pdf")])
    assert primary_file_name(event) == "notes.pdf"
    assert primary_file_name(_event(attachments=[AttachmentInfo("a.png", "image/png")])) is None


def test_first_image_requires_a_reader():
    unreadable = AttachmentInfo("a.png", "image/png")
    readable = AttachmentInfo("b.png", "image/png", read=_read)
    assert first_image(_event(attachments=[unreadable, readable])) is readable
    assert first_image(_event(attachments=[unreadable])) is None


def test_poll_context():
    poll = PollInfo(
        "Where to eat?",
        ["Pizza", "Sushi"],
        allows_multiple_answers=True,
        expires_at=datetime(2025, 1, 2, 12, 0, tzinfo=timezone.utc),
    )
    assert build_poll_context(poll) == (
        "Poll details:\n"
        "• Question: Where to eat?\n"
        "• Options: Pizza | Sushi\n"
        "• Multiple answers: yes\n"
        "• Anonymous: no\n"
        "• Closes at: 2025-01-02 12:00 UTC"
    )


def test_author_to_profile():
    profile = AuthorInfo(user_id=5, first_name="Ada", username="ada", is_bot=True).to_profile()
    assert (profile.user_id, profile.first_name, profile.username, profile.is_bot) == (5, "Ada", "ada", True)
