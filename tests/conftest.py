"""Общие фикстуры: сервисы бота без Telegram и без живого планировщика."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import pytz

from shared.config_store import ConfigStore
from shared.edit_sessions import EditSessionStore, PostEditSessionStore
from shared.job_store import JobStore
from shared.message_store import MessageStore
from shared.services import BotServices
from shared.triggers import build_cron_trigger

from scheduler_logic import TelegramSender

CHAT_ID = 100
USER_ID = 7
CHANNEL_ID = -100500


class FakeTrigger:
    def __init__(self, cron_expr, callback=None):
        self.cron_expr = cron_expr
        self.callback = callback
        self.running = False
        self.stop_calls = 0
        self.next_fire_time = None

    def start(self):
        self.running = True

    def stop(self):
        self.stop_calls += 1
        self.running = False

    def reschedule(self, cron_expr):
        self.cron_expr = cron_expr

    async def fire(self):
        await self.callback()


class FakeTriggerEngine:
    """Проверяет выражения настоящим CronTrigger, но ничего не планирует."""

    def __init__(self):
        self.timezone = pytz.timezone("Europe/Warsaw")
        self.created = []

    def validate(self, cron_expr):
        return build_cron_trigger(cron_expr, self.timezone)

    def create(self, cron_expr, callback):
        self.validate(cron_expr)
        trigger = FakeTrigger(cron_expr, callback)
        trigger.start()
        self.created.append(trigger)
        return trigger

    def start(self):
        pass

    def shutdown(self):
        pass


class MemorySnapshotStore:
    def __init__(self, initial=None):
        self.initial = list(initial or [])
        self.saved = []

    def load(self):
        return list(self.initial)

    def save(self, snapshot):
        self.saved.append(snapshot)


def make_sent_message(message_id, chat_id, text=None, **fields):
    return SimpleNamespace(message_id=message_id, chat_id=chat_id, text=text, date=None, **fields)


def make_bot():
    bot = AsyncMock()
    counter = iter(range(1000, 100000))

    async def _send_message(chat_id, text, **kwargs):
        return make_sent_message(next(counter), chat_id, text)

    async def _send_photo(chat_id, photo, caption=None, **kwargs):
        return make_sent_message(
            next(counter), chat_id, caption=caption, photo=[SimpleNamespace(file_id=photo)]
        )

    bot.send_message.side_effect = _send_message
    bot.send_photo.side_effect = _send_photo
    return bot


def build_test_services(job_store=None, admin_ids=(USER_ID,), channel_id=CHANNEL_ID):
    message_store = MessageStore()
    services = BotServices(
        job_store=job_store or JobStore(),
        message_store=message_store,
        edit_sessions=EditSessionStore(),
        post_sessions=PostEditSessionStore(),
        config_store=ConfigStore(list(admin_ids), channel_id),
        trigger_engine=FakeTriggerEngine(),
    )
    services.sender = TelegramSender(make_bot(), message_store)
    return services


@pytest.fixture
def services():
    return build_test_services()


@pytest.fixture
def bot(services):
    return services.sender.bot
