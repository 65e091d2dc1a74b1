# shared/persistence.py

import asyncio
import json
import logging
import os
import tempfile
import threading
from typing import Any, Dict, List, Optional, Protocol, Set

logger = logging.getLogger(__name__)


class SnapshotFormatError(ValueError):
    """Файл снапшота существует, но содержит не массив задач."""


class JobSnapshotStore(Protocol):
    """
    Хранилище снапшота задач.

    Контракт: состояние в памяти всегда авторитетно, файл: лишь
    зеркало для восстановления после рестарта. save() не блокирует
    вызывающего и никогда не бросает исключений: ошибки записи
    только логируются.
    """

    def load(self) -> List[Dict[str, Any]]:
        ...

    def save(self, snapshot: List[Dict[str, Any]]) -> None:
        ...


class JsonJobFile:
    """Снапшот задач в JSON-файле (по умолчанию data/jobs.json)."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.RLock()
        self._pending: Set[asyncio.Task] = set()

    def load(self) -> List[Dict[str, Any]]:
        """
        Читает снапшот.

        Отсутствующий файл: пустой список. Не-массив: SnapshotFormatError.
        Любая другая ошибка чтения/парсинга логируется, возвращается пустой список.
        """
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                parsed = json.load(f)
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            logger.warning(f"⚠️ Не удалось прочитать {self.path}: {e}. Начинаем с пустого списка.")
            return []

        if not isinstance(parsed, list):
            raise SnapshotFormatError(f"{self.path} не содержит массив задач")

        logger.info(f"Загружено {len(parsed)} задач из {self.path}")
        return parsed

    def save(self, snapshot: List[Dict[str, Any]]) -> None:
        """Запускает запись снапшота в фоне (fire-and-forget)."""
        payload = json.dumps(snapshot, ensure_ascii=False, indent=2)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            self._write(payload)
            return

        task = loop.create_task(asyncio.to_thread(self._write, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Дожидается всех фоновых записей (при остановке и в тестах)."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def _write(self, payload: str) -> None:
        with self._lock:
            tmp_path: Optional[str] = None
            try:
                directory = os.path.dirname(self.path) or '.'
                os.makedirs(directory, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.jobs-', suffix='.tmp')
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    f.write(payload)
                os.replace(tmp_path, self.path)
                tmp_path = None
            except OSError as e:
                logger.error(f"❌ Не удалось сохранить {self.path}: {e}")
            finally:
                if tmp_path is not None and os.path.exists(tmp_path):
                    try:
                        os.remove(tmp_path)
                    except OSError as e:
                        logger.debug(f"Не удалось удалить временный файл {tmp_path}: {e}")
