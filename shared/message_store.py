# shared/message_store.py

import datetime
import logging
from typing import Any, Dict, List, Optional, Tuple

from shared.models import UNSET, ContentType, MessageSource, StoredMessage

logger = logging.getLogger(__name__)


def classify_message(message) -> Tuple[ContentType, Optional[str]]:
    """
    Определяет тип контента сообщения и file_id.

    Приоритет: текст, фото (самое большое), видео, анимация, документ.
    """
    if getattr(message, 'text', None):
        return ContentType.TEXT, None
    photos = getattr(message, 'photo', None)
    if photos:
        return ContentType.PHOTO, photos[-1].file_id
    video = getattr(message, 'video', None)
    if video is not None:
        return ContentType.VIDEO, video.file_id
    # У гифок Telegram заполняет и document, поэтому animation проверяем раньше
    animation = getattr(message, 'animation', None)
    if animation is not None:
        return ContentType.ANIMATION, animation.file_id
    document = getattr(message, 'document', None)
    if document is not None:
        return ContentType.DOCUMENT, document.file_id
    return ContentType.OTHER, None


class MessageStore:
    """Журнал сообщений, отправленных ботом. Ключ: (chat_id, message_id)."""

    def __init__(self):
        self._store: Dict[int, Dict[int, StoredMessage]] = {}

    def add(
        self,
        message_id: int,
        chat_id: int,
        text: str,
        source: MessageSource,
        sent_at: Optional[datetime.datetime] = None,
        content_type: ContentType = ContentType.TEXT,
        file_id: Optional[str] = None,
        source_tag: str = '',
        deleted: bool = False
    ) -> StoredMessage:
        record = StoredMessage(
            message_id=message_id,
            chat_id=chat_id,
            text=text or '',
            source=source,
            sent_at=sent_at or datetime.datetime.now(datetime.timezone.utc),
            content_type=content_type,
            file_id=file_id,
            source_tag=source_tag or source.value,
            listable=source.listable,
            deleted=deleted,
        )
        self._store.setdefault(chat_id, {})[message_id] = record
        logger.debug(f"Сохранено сообщение {message_id} в чате {chat_id} (источник: {record.source_tag})")
        return record

    def get(self, chat_id: int, message_id: int) -> Optional[StoredMessage]:
        return self._store.get(chat_id, {}).get(message_id)

    def _get_live(self, chat_id: int, message_id: int) -> Optional[StoredMessage]:
        record = self.get(chat_id, message_id)
        if record is None or record.deleted:
            return None
        return record

    def update_text(self, chat_id: int, message_id: int, text: str) -> bool:
        record = self._get_live(chat_id, message_id)
        if record is None:
            return False
        record.text = text
        return True

    def update_content(
        self,
        chat_id: int,
        message_id: int,
        *,
        text: Optional[str] = UNSET,
        content_type: Optional[ContentType] = UNSET,
        file_id: Optional[str] = UNSET
    ) -> bool:
        """Частичное обновление: непереданные поля не меняются."""
        record = self._get_live(chat_id, message_id)
        if record is None:
            return False
        if text is not UNSET:
            record.text = text or ''
        if content_type is not UNSET and content_type:
            record.content_type = ContentType(content_type)
        if file_id is not UNSET:
            record.file_id = file_id
        return True

    def mark_deleted(self, chat_id: int, message_id: int) -> bool:
        record = self._get_live(chat_id, message_id)
        if record is None:
            return False
        record.deleted = True
        return True

    def get_all_messages_for_chat(self, chat_id: int) -> List[StoredMessage]:
        messages = self._store.get(chat_id)
        if not messages:
            return []
        return sorted(messages.values(), key=lambda m: m.sent_at, reverse=True)

    def get_messages_for_chat(self, chat_id: int, limit: int = 10) -> List[StoredMessage]:
        limit = max(1, int(limit))
        return self.get_all_messages_for_chat(chat_id)[:limit]

    def get_listable_messages_for_chat(self, chat_id: int) -> List[StoredMessage]:
        """Посты для /list_posts: запланированные и тестовые, не удалённые."""
        return [
            m for m in self.get_all_messages_for_chat(chat_id)
            if m.listable and not m.deleted
        ]

    def record_telegram_message(self, message: Any, source: MessageSource, tag: str = '') -> StoredMessage:
        """Сохраняет отправленное сообщение telegram.Message."""
        content_type, file_id = classify_message(message)
        text = getattr(message, 'text', None) or getattr(message, 'caption', None) or ''
        sent_at = getattr(message, 'date', None)
        return self.add(
            message_id=message.message_id,
            chat_id=message.chat_id,
            text=text,
            source=source,
            sent_at=sent_at,
            content_type=content_type,
            file_id=file_id,
            source_tag=tag,
        )
