# shared/utils.py

import datetime
import re
from typing import Optional, Tuple

import pytz

from shared.models import ContentType, RepeatMode

WEEKDAY_LABELS = {0: 'вс', 1: 'пн', 2: 'вт', 3: 'ср', 4: 'чт', 5: 'пт', 6: 'сб', 7: 'вс'}

# Номер дня недели в нотации cron (0: воскресенье)
WEEKDAY_ALIASES = {
    'пн': 1, 'пон': 1, 'mon': 1,
    'вт': 2, 'вто': 2, 'tue': 2,
    'ср': 3, 'сре': 3, 'wed': 3,
    'чт': 4, 'чет': 4, 'thu': 4,
    'пт': 5, 'пят': 5, 'fri': 5,
    'сб': 6, 'суб': 6, 'sat': 6,
    'вс': 0, 'вос': 0, 'sun': 0,
}

_DATETIME_RE = re.compile(r'^(\d{2})\.(\d{2})\.(\d{4})\s+(\d{1,2}):(\d{2})$')
_TIME_RE = re.compile(r'^(\d{1,2}):(\d{2})$')
_WEEKDAY_TIME_RE = re.compile(r'^(\S+)\s+(\d{1,2}:\d{2})$')
_MONTHDAY_TIME_RE = re.compile(r'^(\d{1,2})\s+(\d{1,2}:\d{2})$')


def truncate_text(text: str, max_length: int = 80) -> str:
    if len(text) <= max_length:
        return text
    return text[:max(0, max_length - 3)] + '...'


def describe_content_type(content_type: ContentType) -> str:
    return {
        ContentType.PHOTO: 'медиа: фото',
        ContentType.VIDEO: 'медиа: видео',
        ContentType.ANIMATION: 'медиа: gif',
    }.get(content_type, 'текст')


def parse_hhmm(text: str) -> Optional[Tuple[int, int]]:
    match = _TIME_RE.match(text.strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def parse_user_datetime(text: str, tz_name: str) -> Optional[datetime.datetime]:
    """Разбирает «ДД.ММ.ГГГГ ЧЧ:ММ» в локальном часовом поясе. Возвращает aware datetime."""
    match = _DATETIME_RE.match(text.strip())
    if not match:
        return None
    day, month, year, hour, minute = map(int, match.groups())
    try:
        naive_dt = datetime.datetime(year, month, day, hour, minute)
    except ValueError:
        return None
    return pytz.timezone(tz_name).localize(naive_dt)


def parse_weekday_time(text: str) -> Optional[Tuple[int, int, int]]:
    """«пт 18:00» -> (день недели cron, час, минута)."""
    match = _WEEKDAY_TIME_RE.match(text.strip().lower())
    if not match:
        return None
    day_of_week = WEEKDAY_ALIASES.get(match.group(1).rstrip('.'))
    if day_of_week is None:
        return None
    time = parse_hhmm(match.group(2))
    if time is None:
        return None
    return day_of_week, time[0], time[1]


def parse_monthday_time(text: str) -> Optional[Tuple[int, int, int]]:
    """«15 09:30» -> (день месяца, час, минута)."""
    match = _MONTHDAY_TIME_RE.match(text.strip())
    if not match:
        return None
    day = int(match.group(1))
    if not 1 <= day <= 31:
        return None
    time = parse_hhmm(match.group(2))
    if time is None:
        return None
    return day, time[0], time[1]


def build_once_cron(when: datetime.datetime) -> Tuple[str, RepeatMode, str]:
    """Выражение для одноразовой публикации; scheduled_at: в UTC ISO."""
    cron = f"0 {when.minute} {when.hour} {when.day} {when.month} *"
    return cron, RepeatMode.NONE, when.astimezone(pytz.UTC).isoformat()


def build_daily_cron(hour: int, minute: int) -> Tuple[str, RepeatMode]:
    return f"0 {minute} {hour} * * *", RepeatMode.DAILY


def build_weekly_cron(day_of_week: int, hour: int, minute: int) -> Tuple[str, RepeatMode]:
    return f"0 {minute} {hour} * * {day_of_week}", RepeatMode.WEEKLY


def build_monthly_cron(day: int, hour: int, minute: int) -> Tuple[str, RepeatMode]:
    return f"0 {minute} {hour} {day} * *", RepeatMode.MONTHLY


def parse_cron_hour(cron_expr: str) -> Optional[str]:
    """Час из выражения, если он задан одним числом ('09'), иначе None."""
    parts = cron_expr.split()
    if len(parts) < 6:
        return None
    hour = parts[2]
    if not hour.isdigit() or int(hour) > 23:
        return None
    return f"{int(hour):02d}"


def parse_cron_weekday(cron_expr: str) -> Optional[str]:
    parts = cron_expr.split()
    if len(parts) < 6 or not parts[5].isdigit():
        return None
    return WEEKDAY_LABELS.get(int(parts[5]))
