# shared/edit_sessions.py

import datetime
from typing import Dict, Optional, Tuple

from shared.models import EditSession, JobTarget, MessageTarget, PostEditSession

SessionKey = Tuple[int, int]


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class EditSessionStore:
    """
    Незавершённые правки «замени содержимое X» по ключу (chat_id, user_id).

    Новая сессия молча заменяет предыдущую. Таймаута нет: сессия живёт,
    пока её не поглотит следующее текстовое сообщение или не отменят.
    """

    def __init__(self):
        self._sessions: Dict[SessionKey, EditSession] = {}

    def _start(self, chat_id: int, user_id: int, target) -> EditSession:
        session = EditSession(chat_id=chat_id, user_id=user_id, target=target, started_at=_now())
        self._sessions[(chat_id, user_id)] = session
        return session

    def start_message_session(self, chat_id: int, user_id: int, message_id: int) -> EditSession:
        return self._start(chat_id, user_id, MessageTarget(message_id))

    def start_job_session(self, chat_id: int, user_id: int, job_id: int) -> EditSession:
        return self._start(chat_id, user_id, JobTarget(job_id))

    def get(self, chat_id: int, user_id: int) -> Optional[EditSession]:
        return self._sessions.get((chat_id, user_id))

    def consume(self, chat_id: int, user_id: int) -> Optional[EditSession]:
        """Возвращает сессию и сразу удаляет её."""
        return self._sessions.pop((chat_id, user_id), None)

    def clear(self, chat_id: int, user_id: int):
        self._sessions.pop((chat_id, user_id), None)


class PostEditSessionStore:
    """Сессии замены контента поста (текст/фото/видео/гиф), хранятся отдельно."""

    def __init__(self):
        self._sessions: Dict[SessionKey, PostEditSession] = {}

    def start(self, chat_id: int, user_id: int, post_id: int) -> PostEditSession:
        session = PostEditSession(chat_id=chat_id, user_id=user_id, post_id=post_id, started_at=_now())
        self._sessions[(chat_id, user_id)] = session
        return session

    def get(self, chat_id: int, user_id: int) -> Optional[PostEditSession]:
        return self._sessions.get((chat_id, user_id))

    def consume(self, chat_id: int, user_id: int) -> Optional[PostEditSession]:
        return self._sessions.pop((chat_id, user_id), None)

    def clear(self, chat_id: int, user_id: int):
        self._sessions.pop((chat_id, user_id), None)
