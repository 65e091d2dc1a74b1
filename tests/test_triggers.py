"""Tests for cron parsing and APScheduler-backed triggers."""

import datetime

import pytest
import pytz

from shared.triggers import InvalidCronExpression, TriggerEngine, build_cron_trigger, convert_day_of_week


@pytest.mark.parametrize("field, expected", [
    ("*", "*"),
    ("?", "*"),
    ("0", "sun"),
    ("7", "sun"),
    ("1-5", "mon,tue,wed,thu,fri"),
    ("0,6", "sun,sat"),
    ("*/2", "sun,tue,thu,sat"),
    ("0-6", "*"),
    ("mon-fri", "mon-fri"),
])
def test_convert_day_of_week(field, expected):
    assert convert_day_of_week(field) == expected


@pytest.mark.parametrize("field", ["8", "5-2", "*/0"])
def test_convert_day_of_week_rejects_out_of_range(field):
    with pytest.raises(InvalidCronExpression):
        convert_day_of_week(field)


def test_build_cron_trigger_requires_six_fields():
    with pytest.raises(InvalidCronExpression):
        build_cron_trigger("30 9 * * *", pytz.timezone("Europe/Warsaw"))


def test_build_cron_trigger_rejects_bad_values():
    with pytest.raises(InvalidCronExpression):
        build_cron_trigger("0 61 9 * * *", pytz.timezone("Europe/Warsaw"))


def test_weekly_trigger_fires_on_cron_weekday():
    tz = pytz.timezone("Europe/Warsaw")
    trigger = build_cron_trigger("0 0 18 * * 5", tz)
    # 2026-01-01 — четверг
    now = tz.localize(datetime.datetime(2026, 1, 1, 12, 0))
    next_fire = trigger.get_next_fire_time(None, now)
    assert next_fire.weekday() == 4
    assert (next_fire.day, next_fire.hour) == (2, 18)


@pytest.mark.asyncio
async def test_engine_create_and_stop():
    engine = TriggerEngine("Europe/Warsaw")

    async def tick():
        pass

    handle = engine.create("0 30 9 * * *", tick)
    assert handle.running
    assert handle.next_fire_time is not None
    assert len(engine.scheduler.get_jobs()) == 1

    handle.stop()
    handle.stop()
    assert not handle.running
    assert handle.next_fire_time is None
    assert engine.scheduler.get_jobs() == []


@pytest.mark.asyncio
async def test_engine_rejects_invalid_expression():
    engine = TriggerEngine("Europe/Warsaw")

    async def tick():
        pass

    with pytest.raises(InvalidCronExpression):
        engine.create("not a cron", tick)
    assert engine.scheduler.get_jobs() == []


@pytest.mark.asyncio
async def test_handle_reschedule_changes_next_fire():
    engine = TriggerEngine("Europe/Warsaw")

    async def tick():
        pass

    handle = engine.create("0 0 9 * * *", tick)
    handle.reschedule("0 15 21 * * *")

    assert handle.cron_expr == "0 15 21 * * *"
    next_fire = handle.next_fire_time
    assert (next_fire.hour, next_fire.minute) == (21, 15)
    handle.stop()
