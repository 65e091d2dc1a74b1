# shared/services.py

import logging
from dataclasses import dataclass
from typing import Any, Optional

import config
from shared.config_store import ConfigStore
from shared.edit_sessions import EditSessionStore, PostEditSessionStore
from shared.job_store import JobStore
from shared.message_store import MessageStore
from shared.persistence import JsonJobFile
from shared.triggers import TriggerEngine

logger = logging.getLogger(__name__)


@dataclass
class BotServices:
    """Экземпляры хранилищ процесса. Создаются один раз при старте и передаются явно."""
    job_store: JobStore
    message_store: MessageStore
    edit_sessions: EditSessionStore
    post_sessions: PostEditSessionStore
    config_store: ConfigStore
    trigger_engine: TriggerEngine
    snapshot_store: Optional[JsonJobFile] = None
    sender: Optional[Any] = None  # TelegramSender, появляется после сборки Application


def build_services(
    jobs_file_path: str = config.JOBS_FILE_PATH,
    config_file_path: str = config.CONFIG_FILE_PATH,
    timezone: str = config.TIMEZONE
) -> BotServices:
    """Корень композиции: читает снапшот задач и конфигурацию, собирает хранилища."""
    snapshot_store = JsonJobFile(jobs_file_path)
    job_store = JobStore(snapshot_store, snapshot_store.load())
    config_store = ConfigStore.load(
        config_file_path,
        default_admin_ids=config.AUTHORIZED_USER_IDS,
        default_channel_id=config.CHANNEL_ID,
        is_prod=config.IS_PROD,
    )
    logger.info(f"Восстановлено задач: {len(job_store.get_all_jobs())}")
    return BotServices(
        job_store=job_store,
        message_store=MessageStore(),
        edit_sessions=EditSessionStore(),
        post_sessions=PostEditSessionStore(),
        config_store=config_store,
        trigger_engine=TriggerEngine(timezone),
        snapshot_store=snapshot_store,
    )
