# shared/config_store.py

import json
import logging
import os
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ConfigStore:
    """
    Администраторы и основной канал бота.

    Значения из окружения служат значениями по умолчанию. Вне продакшена
    изменения сохраняются в JSON-файл, на продакшене: только в памяти.
    """

    def __init__(
        self,
        admin_ids: List[int],
        main_channel_id: Optional[int],
        path: Optional[str] = None,
        is_prod: bool = False
    ):
        self._admin_ids = list(dict.fromkeys(admin_ids))
        self._main_channel_id = main_channel_id
        self._path = path
        self._is_prod = is_prod

    @classmethod
    def load(
        cls,
        path: str,
        default_admin_ids: List[int],
        default_channel_id: Optional[int],
        is_prod: bool = False
    ) -> 'ConfigStore':
        if is_prod:
            return cls(default_admin_ids, default_channel_id, path=None, is_prod=True)

        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except FileNotFoundError:
            store = cls(default_admin_ids, default_channel_id, path=path)
            store._persist()
            return store
        except (OSError, ValueError) as e:
            logger.warning(f"⚠️ Не удалось прочитать {path}, используются значения по умолчанию: {e}")
            return cls(default_admin_ids, default_channel_id, path=path)

        admin_ids, channel_id = cls._normalize(raw, default_admin_ids, default_channel_id)
        return cls(admin_ids, channel_id, path=path)

    @staticmethod
    def _normalize(raw: Any, default_admin_ids: List[int], default_channel_id: Optional[int]):
        if not isinstance(raw, dict):
            return list(default_admin_ids), default_channel_id

        admin_ids = list(default_admin_ids)
        raw_admins = raw.get('adminIds')
        if isinstance(raw_admins, list) and raw_admins:
            parsed = []
            for item in raw_admins:
                try:
                    parsed.append(int(item))
                except (TypeError, ValueError):
                    continue
            admin_ids = list(dict.fromkeys(parsed))

        channel_id = default_channel_id
        if 'mainChannelId' in raw:
            value = raw['mainChannelId']
            if value is None:
                channel_id = None
            elif isinstance(value, int) and not isinstance(value, bool):
                channel_id = value
        return admin_ids, channel_id

    def to_dict(self) -> Dict[str, Any]:
        return {'adminIds': list(self._admin_ids), 'mainChannelId': self._main_channel_id}

    def get_admin_ids(self) -> List[int]:
        return list(self._admin_ids)

    def is_admin(self, user_id: int) -> bool:
        return user_id in self._admin_ids

    def add_admin(self, user_id: int) -> bool:
        if self.is_admin(user_id):
            return False
        self._admin_ids.append(user_id)
        self._persist()
        logger.info(f"✅ Добавлен администратор {user_id}")
        return True

    def ensure_bootstrap_admin(self, user_id: int) -> bool:
        """Делает первого пользователя админом, если админов нет (не на проде)."""
        if self._admin_ids or self._is_prod:
            return False
        self._admin_ids.append(user_id)
        self._persist()
        logger.info(f"✅ Пользователь {user_id} назначен первым администратором")
        return True

    def remove_admin(self, user_id: int) -> bool:
        if not self.is_admin(user_id):
            return False
        self._admin_ids = [admin_id for admin_id in self._admin_ids if admin_id != user_id]
        self._persist()
        logger.info(f"Администратор {user_id} удалён")
        return True

    def get_main_channel_id(self) -> Optional[int]:
        return self._main_channel_id

    def set_main_channel_id(self, channel_id: Optional[int]):
        if self._main_channel_id == channel_id:
            return
        self._main_channel_id = channel_id
        self._persist()
        logger.info(f"Основной канал: {channel_id}")

    def _persist(self):
        if self._is_prod or not self._path:
            logger.debug("Сохранение конфигурации пропущено")
            return
        try:
            os.makedirs(os.path.dirname(self._path) or '.', exist_ok=True)
            with open(self._path, 'w', encoding='utf-8') as f:
                json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)
        except OSError as e:
            logger.error(f"❌ Не удалось сохранить конфигурацию бота: {e}")
