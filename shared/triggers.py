# shared/triggers.py

import datetime
import logging
import re
import uuid
from typing import Awaitable, Callable, Optional

import pytz
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[None]]

# Порядок как в классическом cron: 0 (и 7): воскресенье
_WEEKDAY_NAMES = ('sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat')
_NUMERIC_DOW_RE = re.compile(r'^[\d,\-/*]+$')


class InvalidCronExpression(ValueError):
    """Синтаксически некорректное выражение расписания."""


def convert_day_of_week(field: str) -> str:
    """
    Переводит поле дня недели из cron (0-7, 0 и 7: воскресенье)
    в формат APScheduler, где числа означают пн=0..вс=6.

    Числовые значения разворачиваются в список названий дней;
    названия (mon, fri-sun) передаются как есть.
    """
    field = field.strip().lower()
    if field in ('*', '?'):
        return '*'
    if not _NUMERIC_DOW_RE.match(field):
        return field

    days = set()
    try:
        for part in field.split(','):
            base, _, step_raw = part.partition('/')
            step = int(step_raw) if step_raw else 1
            if base == '*':
                start, end = 0, 6
            elif '-' in base:
                first, _, last = base.partition('-')
                start, end = int(first), int(last)
            else:
                start = int(base)
                end = 6 if step_raw else start
            if step < 1 or not (0 <= start <= end <= 7):
                raise InvalidCronExpression(f"Некорректный день недели: {part!r}")
            for value in range(start, end + 1, step):
                days.add(value % 7)
    except InvalidCronExpression:
        raise
    except ValueError as e:
        raise InvalidCronExpression(f"Некорректный день недели: {field!r}") from e

    if len(days) == 7:
        return '*'
    return ','.join(_WEEKDAY_NAMES[day] for day in sorted(days))


def build_cron_trigger(cron_expr: str, timezone) -> CronTrigger:
    """
    Строит CronTrigger из выражения из 6 полей:
    секунда минута час день_месяца месяц день_недели.
    """
    fields = cron_expr.split()
    if len(fields) != 6:
        raise InvalidCronExpression(
            f"Ожидается 6 полей (сек мин час день месяц день_недели), получено {len(fields)}: {cron_expr!r}"
        )
    second, minute, hour, day, month, day_of_week = fields
    try:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=convert_day_of_week(day_of_week),
            timezone=timezone,
        )
    except InvalidCronExpression:
        raise
    except ValueError as e:
        raise InvalidCronExpression(f"{cron_expr!r}: {e}") from e


class TriggerHandle:
    """
    Живой триггер одной задачи поверх job'а APScheduler.

    stop() идемпотентен; reschedule() меняет расписание, не теряя состояния.
    """

    def __init__(self, scheduler: AsyncIOScheduler, trigger: CronTrigger,
                 callback: TickCallback, cron_expr: str, timezone):
        self._scheduler = scheduler
        self._trigger = trigger
        self._callback = callback
        self._timezone = timezone
        self._job = None
        self.cron_expr = cron_expr
        self.id = uuid.uuid4().hex

    @property
    def running(self) -> bool:
        return self._job is not None

    @property
    def next_fire_time(self):
        if self._job is None:
            return None
        # У job'ов, добавленных до старта планировщика, время ещё не вычислено
        next_run = getattr(self._job, 'next_run_time', None)
        if next_run is None:
            next_run = self._trigger.get_next_fire_time(None, self._now())
        return next_run

    def _now(self):
        return datetime.datetime.now(self._timezone)

    def start(self):
        if self._job is not None:
            return
        self._job = self._scheduler.add_job(
            self._callback,
            trigger=self._trigger,
            id=self.id,
            replace_existing=True,
        )

    def stop(self):
        if self._job is None:
            return
        job, self._job = self._job, None
        try:
            job.remove()
        except JobLookupError:
            logger.debug(f"Триггер {self.id} уже удалён из планировщика")

    def reschedule(self, cron_expr: str):
        trigger = build_cron_trigger(cron_expr, self._timezone)
        self._trigger = trigger
        self.cron_expr = cron_expr
        if self._job is not None:
            self._job.reschedule(trigger)


class TriggerEngine:
    """Создаёт триггеры в фиксированном часовом поясе на общем AsyncIOScheduler."""

    def __init__(self, timezone: str, scheduler: Optional[AsyncIOScheduler] = None):
        self.timezone = pytz.timezone(timezone)
        self.scheduler = scheduler or AsyncIOScheduler(
            timezone=self.timezone,
            job_defaults={'coalesce': True, 'max_instances': 1, 'misfire_grace_time': 30},
        )

    def validate(self, cron_expr: str) -> CronTrigger:
        return build_cron_trigger(cron_expr, self.timezone)

    def create(self, cron_expr: str, callback: TickCallback) -> TriggerHandle:
        """Создаёт и сразу запускает триггер. Некорректное выражение: InvalidCronExpression."""
        trigger = self.validate(cron_expr)
        handle = TriggerHandle(self.scheduler, trigger, callback, cron_expr, self.timezone)
        handle.start()
        return handle

    def start(self):
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info(f"⏰ Планировщик запущен (часовой пояс {self.timezone})")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("⏹️ Планировщик остановлен")
