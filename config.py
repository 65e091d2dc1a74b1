# config.py

import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _parse_id_list(raw: str) -> List[int]:
    """Разбирает список ID через запятую, пропуская мусор и дубли."""
    result = []
    for item in raw.split(','):
        item = item.strip()
        if not item:
            continue
        try:
            value = int(item)
        except ValueError:
            continue
        if value not in result:
            result.append(value)
    return result


def _parse_optional_int(raw: Optional[str]) -> Optional[int]:
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


BOT_TOKEN = os.getenv("BOT_TOKEN", "")

# Администраторы из окружения (на проде: единственный источник)
AUTHORIZED_USER_IDS = _parse_id_list(os.getenv("ADMIN_IDS", ""))
CHANNEL_ID = _parse_optional_int(os.getenv("CHANNEL_ID"))

TIMEZONE = os.getenv("TIMEZONE", "Europe/Warsaw")

DATA_DIR = os.path.abspath(os.getenv("DATA_DIR", "data"))
JOBS_FILE_PATH = os.path.join(DATA_DIR, "jobs.json")
CONFIG_FILE_PATH = os.path.join(DATA_DIR, "config.json")

IS_PROD = (os.getenv("APP_ENV") or os.getenv("NODE_ENV") or "").lower() == "production"

START_PANEL = os.getenv("START_PANEL", "false").lower() == "true"
PANEL_HOST = os.getenv("PANEL_HOST", "0.0.0.0")
PANEL_PORT = int(os.getenv("PANEL_PORT", "3000"))
ADMIN_SECRET = os.getenv("ADMIN_SECRET", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
