"""Tests for time parsing and formatting helpers."""

import datetime

import pytest

from shared.models import RepeatMode
from shared.utils import (
    build_daily_cron, build_monthly_cron, build_once_cron, build_weekly_cron, parse_cron_hour,
    parse_cron_weekday, parse_hhmm, parse_monthday_time, parse_user_datetime, parse_weekday_time,
    truncate_text
)


def test_truncate_text():
    assert truncate_text("short") == "short"
    long_text = "x" * 100
    assert truncate_text(long_text) == "x" * 77 + "..."
    assert len(truncate_text(long_text, 60)) == 60


@pytest.mark.parametrize("text, expected", [
    ("09:30", (9, 30)),
    ("9:05", (9, 5)),
    ("24:00", None),
    ("12:60", None),
    ("noon", None),
])
def test_parse_hhmm(text, expected):
    assert parse_hhmm(text) == expected


def test_parse_user_datetime_is_local():
    when = parse_user_datetime("01.07.2026 10:00", "Europe/Warsaw")
    assert when.utcoffset() == datetime.timedelta(hours=2)
    assert parse_user_datetime("31.02.2026 10:00", "Europe/Warsaw") is None
    assert parse_user_datetime("2026-07-01 10:00", "Europe/Warsaw") is None


def test_parse_weekday_time():
    assert parse_weekday_time("пт 18:00") == (5, 18, 0)
    assert parse_weekday_time("Вс 07:15") == (0, 7, 15)
    assert parse_weekday_time("mon 9:00") == (1, 9, 0)
    assert parse_weekday_time("funday 9:00") is None


def test_parse_monthday_time():
    assert parse_monthday_time("15 09:30") == (15, 9, 30)
    assert parse_monthday_time("32 09:30") is None


def test_build_once_cron():
    when = parse_user_datetime("01.07.2026 10:05", "Europe/Warsaw")
    cron, repeat, scheduled_at = build_once_cron(when)
    assert cron == "0 5 10 1 7 *"
    assert repeat == RepeatMode.NONE
    assert scheduled_at == "2026-07-01T08:05:00+00:00"


def test_build_repeating_crons():
    assert build_daily_cron(9, 30) == ("0 30 9 * * *", RepeatMode.DAILY)
    assert build_weekly_cron(5, 18, 0) == ("0 0 18 * * 5", RepeatMode.WEEKLY)
    assert build_monthly_cron(15, 9, 30) == ("0 30 9 15 * *", RepeatMode.MONTHLY)


def test_parse_cron_fields():
    assert parse_cron_hour("0 30 9 * * *") == "09"
    assert parse_cron_hour("0 0 */2 * * *") is None
    assert parse_cron_weekday("0 0 18 * * 5") == "пт"
    assert parse_cron_weekday("0 0 18 * * 7") == "вс"
    assert parse_cron_weekday("0 0 18 * * *") is None
