# shared/models.py

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class _Unset:
    def __repr__(self):
        return 'UNSET'


# Маркер «поле не передано»: отличается от явного None («очистить поле»)
UNSET: Any = _Unset()


class ContentType(str, Enum):
    TEXT = 'text'
    PHOTO = 'photo'
    VIDEO = 'video'
    ANIMATION = 'animation'
    # Только для сохранённых сообщений: задачи с такими типами не создаются
    DOCUMENT = 'document'
    OTHER = 'other'


JOB_CONTENT_TYPES = (ContentType.TEXT, ContentType.PHOTO, ContentType.VIDEO, ContentType.ANIMATION)
MEDIA_CONTENT_TYPES = (ContentType.PHOTO, ContentType.VIDEO, ContentType.ANIMATION)


class RepeatMode(str, Enum):
    NONE = 'none'
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'


class JobKind(str, Enum):
    POST = 'post'  # создана мастером /wizard
    CRON = 'cron'  # создана командой /schedule с произвольным cron


class JobStatus(str, Enum):
    ACTIVE = 'active'
    FAILED = 'failed'


class MessageSource(str, Enum):
    """Происхождение сообщения бота."""
    SCHEDULED = 'scheduled'
    TEST_POST = 'test_post'
    CHANNEL_TEST = 'channel_test'
    SYSTEM = 'system'

    @property
    def listable(self) -> bool:
        return self in (MessageSource.SCHEDULED, MessageSource.TEST_POST)


@dataclass
class JobContent:
    content_type: ContentType = ContentType.TEXT
    text: Optional[str] = None
    file_id: Optional[str] = None
    entities: Optional[List[Dict[str, Any]]] = None


@dataclass
class ScheduledJob:
    id: int
    owner_chat_id: int
    target_chat_id: int
    cron_expr: str
    content_type: ContentType
    text: Optional[str] = None
    file_id: Optional[str] = None
    entities: Optional[List[Dict[str, Any]]] = None
    scheduled_at: Optional[str] = None  # ISO, только для одноразовых задач
    repeat: Optional[RepeatMode] = None  # None: произвольный cron
    kind: JobKind = JobKind.CRON
    status: JobStatus = JobStatus.ACTIVE
    trigger: Optional[Any] = field(default=None, repr=False, compare=False)

    @property
    def is_one_shot(self) -> bool:
        return self.repeat == RepeatMode.NONE

    def to_dict(self) -> Dict[str, Any]:
        """Сериализация в формат data/jobs.json (без живого триггера)."""
        data: Dict[str, Any] = {
            'id': self.id,
            'ownerChatId': self.owner_chat_id,
            'targetChatId': self.target_chat_id,
            'cronExpr': self.cron_expr,
            'contentType': self.content_type.value,
        }
        if self.text is not None:
            data['text'] = self.text
        if self.file_id is not None:
            data['fileId'] = self.file_id
        if self.entities is not None:
            data['entities'] = [dict(entity) for entity in self.entities]
        if self.scheduled_at is not None:
            data['scheduledAt'] = self.scheduled_at
        if self.repeat is not None:
            data['repeat'] = self.repeat.value
        data['type'] = self.kind.value
        if self.status != JobStatus.ACTIVE:
            data['status'] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduledJob':
        content_type = ContentType(data.get('contentType', 'text'))
        if content_type not in JOB_CONTENT_TYPES:
            raise ValueError(f"тип контента {content_type.value} не поддерживается задачами")
        repeat = data.get('repeat')
        entities = data.get('entities')
        return cls(
            id=int(data['id']),
            owner_chat_id=int(data['ownerChatId']),
            target_chat_id=int(data['targetChatId']),
            cron_expr=str(data['cronExpr']),
            content_type=content_type,
            text=data.get('text'),
            file_id=data.get('fileId'),
            entities=[dict(entity) for entity in entities] if entities is not None else None,
            scheduled_at=data.get('scheduledAt'),
            repeat=RepeatMode(repeat) if repeat else None,
            kind=JobKind(data.get('type') or 'cron'),
            status=JobStatus(data.get('status') or 'active'),
        )


@dataclass
class StoredMessage:
    message_id: int
    chat_id: int
    text: str
    source: MessageSource
    sent_at: datetime.datetime
    content_type: ContentType = ContentType.TEXT
    file_id: Optional[str] = None
    source_tag: str = ''
    listable: bool = False
    deleted: bool = False


@dataclass(frozen=True)
class MessageTarget:
    message_id: int


@dataclass(frozen=True)
class JobTarget:
    job_id: int


EditSessionTarget = Union[MessageTarget, JobTarget]


@dataclass
class EditSession:
    chat_id: int
    user_id: int
    target: EditSessionTarget
    started_at: datetime.datetime


@dataclass
class PostEditSession:
    chat_id: int
    user_id: int
    post_id: int
    started_at: datetime.datetime
