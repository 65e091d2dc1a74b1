# scheduler_logic.py
import logging
import datetime
from collections import Counter
from typing import Any, Dict, List, Optional

from telegram import Bot, Message, MessageEntity
from telegram.error import TelegramError

from shared.metrics import DELIVERIES, JOBS_CREATED, JOBS_REMOVED
from shared.message_store import MessageStore
from shared.models import (
    ContentType, JobContent, JobKind, JobStatus, MessageSource, RepeatMode, ScheduledJob
)
from shared.services import BotServices
from shared.triggers import InvalidCronExpression
from shared.utils import parse_cron_hour, parse_cron_weekday

logger = logging.getLogger(__name__)


class TelegramSender:
    """
    Отправка контента в Telegram с записью в журнал сообщений.

    Каждое отправленное сообщение сохраняется в MessageStore, чтобы
    его потом можно было отредактировать или удалить.
    """

    def __init__(self, bot: Bot, message_store: MessageStore):
        self.bot = bot
        self.message_store = message_store

    def _entities(self, entities: Optional[List[Dict[str, Any]]]):
        if not entities:
            return None
        return MessageEntity.de_list(entities, self.bot)

    def _track(self, message: Message, source: MessageSource, tag: str) -> Message:
        self.message_store.record_telegram_message(message, source, tag)
        return message

    async def send_text(
        self,
        chat_id: int,
        text: str,
        entities: Optional[List[Dict[str, Any]]] = None,
        source: MessageSource = MessageSource.SYSTEM,
        tag: str = '',
        **kwargs
    ) -> Message:
        message = await self.bot.send_message(
            chat_id=chat_id,
            text=text,
            entities=self._entities(entities),
            **kwargs
        )
        return self._track(message, source, tag)

    async def send_photo(self, chat_id: int, file_id: str, caption: Optional[str] = None,
                         entities: Optional[List[Dict[str, Any]]] = None,
                         source: MessageSource = MessageSource.SYSTEM, tag: str = '') -> Message:
        message = await self.bot.send_photo(
            chat_id=chat_id, photo=file_id, caption=caption,
            caption_entities=self._entities(entities)
        )
        return self._track(message, source, tag)

    async def send_video(self, chat_id: int, file_id: str, caption: Optional[str] = None,
                         entities: Optional[List[Dict[str, Any]]] = None,
                         source: MessageSource = MessageSource.SYSTEM, tag: str = '') -> Message:
        message = await self.bot.send_video(
            chat_id=chat_id, video=file_id, caption=caption,
            caption_entities=self._entities(entities)
        )
        return self._track(message, source, tag)

    async def send_animation(self, chat_id: int, file_id: str, caption: Optional[str] = None,
                             entities: Optional[List[Dict[str, Any]]] = None,
                             source: MessageSource = MessageSource.SYSTEM, tag: str = '') -> Message:
        message = await self.bot.send_animation(
            chat_id=chat_id, animation=file_id, caption=caption,
            caption_entities=self._entities(entities)
        )
        return self._track(message, source, tag)

    async def send_media(self, chat_id: int, content_type: ContentType, file_id: str,
                         caption: Optional[str] = None,
                         entities: Optional[List[Dict[str, Any]]] = None,
                         source: MessageSource = MessageSource.SYSTEM, tag: str = '') -> Message:
        senders = {
            ContentType.PHOTO: self.send_photo,
            ContentType.VIDEO: self.send_video,
            ContentType.ANIMATION: self.send_animation,
        }
        if content_type not in senders:
            raise ValueError(f"Неподдерживаемый тип медиа: {content_type}")
        return await senders[content_type](chat_id, file_id, caption, entities, source, tag)


async def send_job_content(sender: TelegramSender, job: ScheduledJob) -> Optional[Message]:
    """
    Публикует контент задачи в целевой чат.

    Args:
        sender: Отправитель с записью в журнал сообщений
        job: Актуальная запись задачи из реестра

    Returns:
        Отправленное сообщение или None, если у задачи нет контента
    """
    tag = f"schedule:message:{job.id}"
    source = MessageSource.SCHEDULED

    if job.content_type == ContentType.TEXT:
        if not job.text:
            logger.warning(f"⚠️ Задача #{job.id} не содержит текста")
            return None
        logger.info(f"📤 Отправка текста задачи #{job.id} в чат {job.target_chat_id}")
        return await sender.send_text(job.target_chat_id, job.text, job.entities, source=source, tag=tag)

    if not job.file_id:
        logger.error(f"❌ У задачи #{job.id} нет связанного файла")
        return None

    caption = job.text or None
    logger.info(f"📤 Отправка {job.content_type.value} задачи #{job.id} в чат {job.target_chat_id}")
    if job.content_type == ContentType.PHOTO:
        return await sender.send_photo(job.target_chat_id, job.file_id, caption, job.entities, source, tag)
    if job.content_type == ContentType.VIDEO:
        return await sender.send_video(job.target_chat_id, job.file_id, caption, job.entities, source, tag)
    if job.content_type == ContentType.ANIMATION:
        return await sender.send_animation(job.target_chat_id, job.file_id, caption, job.entities, source, tag)

    logger.error(f"❌ Неподдерживаемый тип контента задачи #{job.id}: {job.content_type}")
    return None


async def fire_job(services: BotServices, owner_chat_id: int, job_id: int):
    """
    Срабатывание триггера задачи.

    Задача каждый раз заново читается из реестра: её могли изменить или
    удалить между планированием и срабатыванием. Удалённая задача: тихий
    no-op. Ошибка отправки не отключает повторяющуюся задачу; одноразовая
    в этом случае помечается как неудавшаяся и остаётся в реестре.
    """
    job = services.job_store.get_job(owner_chat_id, job_id)
    if job is None:
        logger.debug(f"Задача #{job_id} уже удалена, срабатывание пропущено")
        return

    try:
        await send_job_content(services.sender, job)
    except TelegramError as e:
        DELIVERIES.labels(status='error').inc()
        logger.error(f"❌ Не удалось отправить задачу #{job_id} в чат {job.target_chat_id}: {e}")
        if job.is_one_shot:
            services.job_store.mark_failed(job_id, reason=str(e))
        return
    except Exception as e:
        DELIVERIES.labels(status='error').inc()
        logger.exception(f"❌ Неожиданная ошибка при отправке задачи #{job_id}: {e}")
        if job.is_one_shot:
            services.job_store.mark_failed(job_id, reason=str(e))
        return

    DELIVERIES.labels(status='ok').inc()
    if job.is_one_shot:
        logger.info(f"⏹️ Одноразовая задача #{job_id} выполнена. Удаляем.")
        cancel_job(services, owner_chat_id, job_id)


def _make_tick(services: BotServices, owner_chat_id: int, job_id: int):
    async def _tick():
        await fire_job(services, owner_chat_id, job_id)
    return _tick


def schedule_job(
    services: BotServices,
    owner_chat_id: int,
    target_chat_id: int,
    cron_expr: str,
    content: JobContent,
    *,
    scheduled_at: Optional[str] = None,
    repeat: Optional[RepeatMode] = None,
    kind: JobKind = JobKind.CRON
) -> ScheduledJob:
    """
    Создаёт триггер и регистрирует задачу.

    Raises:
        InvalidCronExpression: выражение некорректно, задача не создана
    """
    created: Dict[str, int] = {}

    async def _tick():
        job_id = created.get('id')
        if job_id is None:
            return
        await fire_job(services, owner_chat_id, job_id)

    trigger = services.trigger_engine.create(cron_expr, _tick)
    job = services.job_store.add_job(
        owner_chat_id,
        target_chat_id,
        cron_expr,
        content,
        scheduled_at=scheduled_at,
        repeat=repeat,
        kind=kind,
        trigger=trigger,
    )
    created['id'] = job.id
    JOBS_CREATED.inc()
    return job


def cancel_job(services: BotServices, owner_chat_id: int, job_id: int) -> Optional[ScheduledJob]:
    """Останавливает и удаляет задачу. None: задачи нет в этом чате."""
    job = services.job_store.remove_job(owner_chat_id, job_id)
    if job is not None:
        JOBS_REMOVED.inc()
    return job


def reschedule_job(
    services: BotServices,
    job_id: int,
    cron_expr: str,
    *,
    scheduled_at: Optional[str] = None,
    repeat: Optional[RepeatMode] = None
) -> Optional[ScheduledJob]:
    """
    Меняет расписание задачи. Задача без живого триггера (неудавшаяся
    или не восстановленная) получает новый триггер.

    Raises:
        InvalidCronExpression: новое выражение некорректно, задача не изменена
    """
    services.trigger_engine.validate(cron_expr)
    job = services.job_store.get_job_by_id(job_id)
    if job is None:
        return None
    if job.trigger is None:
        trigger = services.trigger_engine.create(cron_expr, _make_tick(services, job.owner_chat_id, job_id))
        services.job_store.attach_trigger(job_id, trigger)
    return services.job_store.update_cron(job_id, cron_expr, scheduled_at=scheduled_at, repeat=repeat)


def _parse_scheduled_at(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    try:
        parsed = datetime.datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def rearm_restored_jobs(services: BotServices, now: Optional[datetime.datetime] = None) -> int:
    """
    Подключает свежие триггеры к задачам, восстановленным из снапшота.

    Одноразовые задачи с прошедшим временем публикации не запускаются,
    а помечаются как неудавшиеся. Задачи с некорректным выражением
    остаются в реестре без триггера.

    Returns:
        Количество запущенных задач
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    armed = 0
    for job in services.job_store.get_all_jobs():
        if job.trigger is not None or job.status != JobStatus.ACTIVE:
            continue

        scheduled_at = _parse_scheduled_at(job.scheduled_at)
        if job.is_one_shot and scheduled_at is not None and scheduled_at <= now:
            services.job_store.mark_failed(job.id, reason="Время публикации прошло до перезапуска.")
            continue

        try:
            trigger = services.trigger_engine.create(job.cron_expr, _make_tick(services, job.owner_chat_id, job.id))
        except InvalidCronExpression as e:
            logger.error(f"❌ Задача #{job.id} не восстановлена: {e}")
            continue
        services.job_store.attach_trigger(job.id, trigger)
        armed += 1

    logger.info(f"⏰ Восстановлено триггеров: {armed}")
    return armed


def collect_stats(services: BotServices, current_chat_id: Optional[int], channel_id: Optional[int]) -> dict:
    """
    Статистика по всем задачам.

    Returns:
        Словарь: количество по направлениям, по часам и дням недели,
        число неудавшихся задач и ближайшие 5 запусков
    """
    jobs = services.job_store.get_all_jobs()
    destinations = {'current_chat': 0, 'default_channel': 0, 'other': 0}
    hours: Counter = Counter()
    weekdays: Counter = Counter()
    upcoming = []

    for job in jobs:
        if current_chat_id is not None and job.target_chat_id == current_chat_id:
            destinations['current_chat'] += 1
        elif channel_id is not None and job.target_chat_id == channel_id:
            destinations['default_channel'] += 1
        else:
            destinations['other'] += 1

        hour = parse_cron_hour(job.cron_expr)
        if hour is not None:
            hours[hour] += 1
        weekday = parse_cron_weekday(job.cron_expr)
        if weekday is not None:
            weekdays[weekday] += 1

        next_run = job.trigger.next_fire_time if job.trigger is not None else None
        if next_run is not None:
            upcoming.append((next_run, job))

    upcoming.sort(key=lambda item: item[0])
    return {
        'total': len(jobs),
        'failed': sum(1 for job in jobs if job.status == JobStatus.FAILED),
        'destinations': destinations,
        'hours': dict(sorted(hours.items())),
        'weekdays': dict(weekdays),
        'upcoming': [
            {'id': job.id, 'next_run': next_run, 'cron': job.cron_expr}
            for next_run, job in upcoming[:5]
        ],
    }
