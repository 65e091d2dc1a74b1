"""Tests for edit-session consumption and edits of live messages."""

from types import SimpleNamespace

import pytest
from telegram import InputMediaPhoto
from telegram.error import BadRequest, NetworkError

from edit_logic import (
    EMPTY_REPLACEMENT_TEXT, POST_UPDATED_TEXT, consume_edit_session, consume_post_edit_session,
    extract_incoming_content, try_delete_bot_message, try_edit_bot_message
)
from shared.models import ContentType, JobContent, MessageSource

from conftest import CHAT_ID, USER_ID


def _photo_message(caption=None, file_ids=("small", "large")):
    return SimpleNamespace(
        text=None,
        caption=caption,
        photo=[SimpleNamespace(file_id=file_id) for file_id in file_ids],
        video=None,
        animation=None,
    )


def _text_message(text):
    return SimpleNamespace(text=text, caption=None, photo=None, video=None, animation=None)


# ── Edit sessions ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_message_session_edits_exactly_once(services, bot):
    services.message_store.add(42, CHAT_ID, "old", MessageSource.TEST_POST)
    services.edit_sessions.start_message_session(CHAT_ID, USER_ID, 42)

    first = await consume_edit_session(services, bot, CHAT_ID, USER_ID, "new text")
    second = await consume_edit_session(services, bot, CHAT_ID, USER_ID, "another")

    assert first is not None
    assert second is None
    bot.edit_message_text.assert_awaited_once_with(chat_id=CHAT_ID, message_id=42, text="new text")
    assert services.message_store.get(CHAT_ID, 42).text == "new text"


@pytest.mark.asyncio
async def test_empty_replacement_cancels_session(services, bot):
    services.message_store.add(42, CHAT_ID, "old", MessageSource.TEST_POST)
    services.edit_sessions.start_message_session(CHAT_ID, USER_ID, 42)

    reply = await consume_edit_session(services, bot, CHAT_ID, USER_ID, "   ")

    assert reply == EMPTY_REPLACEMENT_TEXT
    assert services.edit_sessions.get(CHAT_ID, USER_ID) is None
    bot.edit_message_text.assert_not_awaited()
    assert services.message_store.get(CHAT_ID, 42).text == "old"


@pytest.mark.asyncio
async def test_job_session_updates_job_text(services, bot):
    job = services.job_store.add_job(CHAT_ID, CHAT_ID, "0 0 9 * * *", JobContent(ContentType.TEXT, "old"))
    services.edit_sessions.start_job_session(CHAT_ID, USER_ID, job.id)

    reply = await consume_edit_session(services, bot, CHAT_ID, USER_ID, "new")

    assert str(job.id) in reply
    assert job.text == "new"
    bot.edit_message_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_job_session_for_removed_job_reports_not_found(services, bot):
    services.edit_sessions.start_job_session(CHAT_ID, USER_ID, 99)

    reply = await consume_edit_session(services, bot, CHAT_ID, USER_ID, "new")

    assert "#99" in reply
    assert services.edit_sessions.get(CHAT_ID, USER_ID) is None


@pytest.mark.asyncio
async def test_no_session_returns_none(services, bot):
    assert await consume_edit_session(services, bot, CHAT_ID, USER_ID, "hello") is None


# ── Live messages ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_failed_delete_keeps_message(services, bot):
    services.message_store.add(42, CHAT_ID, "post", MessageSource.TEST_POST)
    bot.delete_message.side_effect = NetworkError("timeout")

    result = await try_delete_bot_message(bot, services.message_store, CHAT_ID, 42)

    assert result.success is False
    assert "ещё раз" in result.message
    assert services.message_store.get(CHAT_ID, 42).deleted is False


@pytest.mark.asyncio
async def test_delete_marks_message_deleted(services, bot):
    services.message_store.add(42, CHAT_ID, "post", MessageSource.TEST_POST)

    result = await try_delete_bot_message(bot, services.message_store, CHAT_ID, 42)
    again = await try_delete_bot_message(bot, services.message_store, CHAT_ID, 42)

    assert result.success is True
    assert again.success is False
    assert services.message_store.get(CHAT_ID, 42).deleted is True
    bot.delete_message.assert_awaited_once()


@pytest.mark.asyncio
async def test_edit_unknown_message_does_not_call_telegram(services, bot):
    result = await try_edit_bot_message(bot, services.message_store, CHAT_ID, 5, "x")
    assert result.success is False
    bot.edit_message_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_rejected_edit_keeps_old_text(services, bot):
    services.message_store.add(42, CHAT_ID, "old", MessageSource.TEST_POST)
    bot.edit_message_text.side_effect = BadRequest("Message is not modified")

    result = await try_edit_bot_message(bot, services.message_store, CHAT_ID, 42, "old")

    assert result.success is False
    assert services.message_store.get(CHAT_ID, 42).text == "old"


@pytest.mark.asyncio
async def test_media_message_edit_changes_caption(services, bot):
    services.message_store.add(42, CHAT_ID, "old", MessageSource.SCHEDULED,
                               content_type=ContentType.PHOTO, file_id="p-1")

    result = await try_edit_bot_message(bot, services.message_store, CHAT_ID, 42, "new caption")

    assert result.success is True
    bot.edit_message_caption.assert_awaited_once_with(chat_id=CHAT_ID, message_id=42, caption="new caption")


# ── Post replacement ────────────────────────────────────────


@pytest.mark.asyncio
async def test_photo_post_rejects_text_replacement(services, bot):
    services.message_store.add(42, CHAT_ID, "caption", MessageSource.SCHEDULED,
                               content_type=ContentType.PHOTO, file_id="photo-1")
    services.post_sessions.start(CHAT_ID, USER_ID, 42)

    reply = await consume_post_edit_session(services, bot, CHAT_ID, USER_ID, _text_message("just text"))

    assert "отклонена" in reply
    record = services.message_store.get(CHAT_ID, 42)
    assert record.content_type == ContentType.PHOTO
    assert record.file_id == "photo-1"
    assert services.post_sessions.get(CHAT_ID, USER_ID) is None
    bot.edit_message_media.assert_not_awaited()
    bot.edit_message_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_photo_post_accepts_new_photo(services, bot):
    services.message_store.add(42, CHAT_ID, "caption", MessageSource.SCHEDULED,
                               content_type=ContentType.PHOTO, file_id="photo-1")
    services.post_sessions.start(CHAT_ID, USER_ID, 42)

    reply = await consume_post_edit_session(
        services, bot, CHAT_ID, USER_ID, _photo_message("новая подпись", ("s", "photo-2"))
    )

    assert reply == POST_UPDATED_TEXT
    media = bot.edit_message_media.await_args.kwargs["media"]
    assert isinstance(media, InputMediaPhoto)
    assert media.media == "photo-2"
    assert media.caption == "новая подпись"
    record = services.message_store.get(CHAT_ID, 42)
    assert record.file_id == "photo-2"
    assert record.text == "новая подпись"


@pytest.mark.asyncio
async def test_text_post_accepts_text(services, bot):
    services.message_store.add(42, CHAT_ID, "old", MessageSource.TEST_POST)
    services.post_sessions.start(CHAT_ID, USER_ID, 42)

    reply = await consume_post_edit_session(services, bot, CHAT_ID, USER_ID, _text_message("new"))

    assert reply == POST_UPDATED_TEXT
    assert services.message_store.get(CHAT_ID, 42).text == "new"


@pytest.mark.asyncio
async def test_media_replacement_failure_keeps_post(services, bot):
    services.message_store.add(42, CHAT_ID, "caption", MessageSource.SCHEDULED,
                               content_type=ContentType.PHOTO, file_id="photo-1")
    services.post_sessions.start(CHAT_ID, USER_ID, 42)
    bot.edit_message_media.side_effect = NetworkError("timeout")

    reply = await consume_post_edit_session(services, bot, CHAT_ID, USER_ID, _photo_message())

    assert "ещё раз" in reply
    assert services.message_store.get(CHAT_ID, 42).file_id == "photo-1"


@pytest.mark.asyncio
async def test_post_session_for_deleted_post(services, bot):
    services.message_store.add(42, CHAT_ID, "old", MessageSource.TEST_POST, deleted=True)
    services.post_sessions.start(CHAT_ID, USER_ID, 42)

    reply = await consume_post_edit_session(services, bot, CHAT_ID, USER_ID, _text_message("new"))

    assert reply == "Пост для редактирования не найден."


def test_extract_incoming_content():
    assert extract_incoming_content(_text_message("  hi ")).text == "hi"
    assert extract_incoming_content(_text_message("   ")) is None
    photo = extract_incoming_content(_photo_message("cap"))
    assert (photo.content_type, photo.file_id, photo.text) == (ContentType.PHOTO, "large", "cap")
    video = SimpleNamespace(text=None, caption=None, photo=None,
                            video=SimpleNamespace(file_id="v-1"), animation=None)
    assert extract_incoming_content(video).content_type == ContentType.VIDEO
