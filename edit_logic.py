# edit_logic.py
import logging
from dataclasses import dataclass
from typing import Any, Optional

from telegram import Bot, InputMediaAnimation, InputMediaPhoto, InputMediaVideo
from telegram.error import BadRequest, Forbidden, TelegramError

from shared.message_store import MessageStore
from shared.models import MEDIA_CONTENT_TYPES, ContentType, JobTarget, MessageTarget
from shared.services import BotServices
from shared.utils import describe_content_type

logger = logging.getLogger(__name__)

EMPTY_REPLACEMENT_TEXT = "Новый текст не может быть пустым. Сессия редактирования отменена."
POST_UPDATED_TEXT = "✔ Пост обновлён."


@dataclass
class EditResult:
    success: bool
    message: str


@dataclass
class IncomingContent:
    content_type: ContentType
    text: str = ''
    file_id: Optional[str] = None


def extract_incoming_content(message: Any) -> Optional[IncomingContent]:
    """
    Контент входящего сообщения для замены поста.

    Непустой текст важнее медиа; для медиа берётся подпись.
    """
    if message is None:
        return None
    text = (getattr(message, 'text', None) or '').strip()
    if text:
        return IncomingContent(ContentType.TEXT, text)

    caption = (getattr(message, 'caption', None) or '').strip()
    photos = getattr(message, 'photo', None)
    if photos:
        return IncomingContent(ContentType.PHOTO, caption, photos[-1].file_id)
    video = getattr(message, 'video', None)
    if video is not None:
        return IncomingContent(ContentType.VIDEO, caption, video.file_id)
    animation = getattr(message, 'animation', None)
    if animation is not None:
        return IncomingContent(ContentType.ANIMATION, caption, animation.file_id)
    return None


def build_input_media(content: IncomingContent):
    caption = content.text or None
    if content.content_type == ContentType.PHOTO:
        return InputMediaPhoto(media=content.file_id, caption=caption)
    if content.content_type == ContentType.VIDEO:
        return InputMediaVideo(media=content.file_id, caption=caption)
    return InputMediaAnimation(media=content.file_id, caption=caption)


async def try_delete_bot_message(bot: Bot, message_store: MessageStore, chat_id: int, message_id: int) -> EditResult:
    stored = message_store.get(chat_id, message_id)
    if stored is None or stored.deleted:
        return EditResult(False, f"Сообщение с ID {message_id} в этом чате не найдено.")
    try:
        await bot.delete_message(chat_id=chat_id, message_id=message_id)
    except TelegramError as e:
        logger.error(f"❌ Не удалось удалить сообщение {message_id} в чате {chat_id}: {e}")
        return EditResult(False, "Не удалось удалить сообщение. Попробуйте ещё раз.")
    message_store.mark_deleted(chat_id, message_id)
    logger.info(f"🗑️ Сообщение {message_id} удалено из чата {chat_id}")
    return EditResult(True, f"Сообщение {message_id} удалено.")


async def try_edit_bot_message(bot: Bot, message_store: MessageStore, chat_id: int, message_id: int,
                               new_text: str) -> EditResult:
    """Меняет текст (или подпись медиа) сообщения бота."""
    stored = message_store.get(chat_id, message_id)
    if stored is None or stored.deleted:
        return EditResult(False, f"Сообщение с ID {message_id} в этом чате не найдено.")
    try:
        if stored.content_type == ContentType.TEXT:
            await bot.edit_message_text(chat_id=chat_id, message_id=message_id, text=new_text)
        else:
            await bot.edit_message_caption(chat_id=chat_id, message_id=message_id, caption=new_text)
    except (BadRequest, Forbidden) as e:
        logger.warning(f"⚠️ Telegram отклонил правку сообщения {message_id}: {e}")
        return EditResult(False, "Не удалось изменить сообщение. Попробуйте ещё раз.")
    except TelegramError as e:
        logger.error(f"❌ Ошибка Telegram API при правке сообщения {message_id}: {e}")
        return EditResult(False, "Не удалось изменить сообщение. Попробуйте ещё раз.")
    message_store.update_text(chat_id, message_id, new_text)
    return EditResult(True, f"Сообщение {message_id} изменено.")


async def consume_edit_session(services: BotServices, bot: Bot, chat_id: int, user_id: int,
                               text: Optional[str]) -> Optional[str]:
    """
    Поглощает сессию правки сообщения/задачи.

    Returns:
        Текст ответа пользователю или None, если сессии нет
        (тогда сообщение обрабатывается как обычное)
    """
    session = services.edit_sessions.consume(chat_id, user_id)
    if session is None:
        return None

    new_text = (text or '').strip()
    if not new_text:
        return EMPTY_REPLACEMENT_TEXT

    target = session.target
    if isinstance(target, MessageTarget):
        result = await try_edit_bot_message(bot, services.message_store, chat_id, target.message_id, new_text)
        return result.message

    if isinstance(target, JobTarget):
        updated = services.job_store.update_job_text(chat_id, target.job_id, new_text)
        if updated is None:
            return f"Задача #{target.job_id} в этом чате не найдена."
        return f"Текст задачи #{target.job_id} обновлён."

    raise TypeError(f"Неизвестная цель сессии редактирования: {target!r}")


async def consume_post_edit_session(services: BotServices, bot: Bot, chat_id: int, user_id: int,
                                    message: Any) -> Optional[str]:
    """
    Поглощает сессию замены поста.

    Тип нового контента должен совпадать с типом поста, иначе замена
    отклоняется. Сессия удаляется в любом случае.
    """
    session = services.post_sessions.consume(chat_id, user_id)
    if session is None:
        return None

    stored = services.message_store.get(chat_id, session.post_id)
    if stored is None or stored.deleted:
        return "Пост для редактирования не найден."

    if stored.content_type != ContentType.TEXT and stored.content_type not in MEDIA_CONTENT_TYPES:
        return "Этот тип поста нельзя редактировать."

    incoming = extract_incoming_content(message)
    if incoming is None:
        return "Нужен новый текст поста или медиа с подписью. Сессия редактирования отменена."

    if incoming.content_type != stored.content_type:
        return (
            f"Пост содержит {describe_content_type(stored.content_type)}, "
            f"а прислано {describe_content_type(incoming.content_type)}. "
            "Замена отклонена, сессия редактирования отменена."
        )

    if stored.content_type == ContentType.TEXT:
        result = await try_edit_bot_message(bot, services.message_store, chat_id, stored.message_id, incoming.text)
        return POST_UPDATED_TEXT if result.success else f"Не удалось обновить пост. {result.message}"

    try:
        await bot.edit_message_media(
            chat_id=chat_id,
            message_id=stored.message_id,
            media=build_input_media(incoming),
        )
    except TelegramError as e:
        logger.error(f"❌ Не удалось заменить медиа поста {stored.message_id}: {e}")
        return "Не удалось обновить пост. Попробуйте ещё раз."

    services.message_store.update_content(
        chat_id,
        stored.message_id,
        text=incoming.text,
        content_type=stored.content_type,
        file_id=incoming.file_id,
    )
    return POST_UPDATED_TEXT
