# shared/job_store.py

import logging
from typing import Any, Dict, Iterable, List, Optional

from shared.models import (
    UNSET, ContentType, JobContent, JobKind, JobStatus, RepeatMode, ScheduledJob
)
from shared.persistence import JobSnapshotStore

logger = logging.getLogger(__name__)


class JobStore:
    """
    Реестр запланированных задач.

    Единственный владелец записей ScheduledJob и их триггеров.
    Индекс по чату-владельцу: owner_chat_id -> {job_id -> job}.
    После каждой мутации полный снапшот уходит в snapshot_store;
    ошибки записи не влияют на состояние в памяти.
    """

    def __init__(
        self,
        snapshot_store: Optional[JobSnapshotStore] = None,
        initial_jobs: Iterable[Dict[str, Any]] = ()
    ):
        self._snapshot_store = snapshot_store
        self._jobs_by_owner: Dict[int, Dict[int, ScheduledJob]] = {}
        self._next_id = 1
        for data in initial_jobs:
            self._restore_job(data)

    def _restore_job(self, data: Dict[str, Any]):
        try:
            job = ScheduledJob.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"❌ Пропущена повреждённая запись задачи {data!r}: {e}")
            return
        self._jobs_by_owner.setdefault(job.owner_chat_id, {})[job.id] = job
        self._next_id = max(self._next_id, job.id + 1)

    def get_serialized_jobs(self) -> List[Dict[str, Any]]:
        return [job.to_dict() for job in self.get_all_jobs()]

    def _persist_state(self):
        if self._snapshot_store is None:
            return
        try:
            self._snapshot_store.save(self.get_serialized_jobs())
        except Exception as e:
            logger.exception(f"❌ Не удалось запустить сохранение задач: {e}")

    def add_job(
        self,
        owner_chat_id: int,
        target_chat_id: int,
        cron_expr: str,
        content: JobContent,
        *,
        scheduled_at: Optional[str] = None,
        repeat: Optional[RepeatMode] = None,
        kind: JobKind = JobKind.CRON,
        trigger: Optional[Any] = None
    ) -> ScheduledJob:
        job = ScheduledJob(
            id=self._next_id,
            owner_chat_id=owner_chat_id,
            target_chat_id=target_chat_id,
            cron_expr=cron_expr,
            content_type=content.content_type,
            text=content.text,
            file_id=content.file_id,
            entities=content.entities,
            scheduled_at=scheduled_at,
            repeat=repeat,
            kind=kind,
            trigger=trigger,
        )
        self._next_id += 1
        self._jobs_by_owner.setdefault(owner_chat_id, {})[job.id] = job
        self._persist_state()
        logger.info(f"Создана задача #{job.id} для чата {owner_chat_id} (cron: {cron_expr})")
        return job

    def get_jobs_for_chat(self, owner_chat_id: int) -> List[ScheduledJob]:
        owner_jobs = self._jobs_by_owner.get(owner_chat_id)
        if not owner_jobs:
            return []
        return sorted(owner_jobs.values(), key=lambda job: job.id)

    def get_job(self, owner_chat_id: int, job_id: int) -> Optional[ScheduledJob]:
        return self._jobs_by_owner.get(owner_chat_id, {}).get(job_id)

    def get_job_by_id(self, job_id: int) -> Optional[ScheduledJob]:
        for owner_jobs in self._jobs_by_owner.values():
            job = owner_jobs.get(job_id)
            if job is not None:
                return job
        return None

    def get_all_jobs(self) -> List[ScheduledJob]:
        jobs = [job for owner_jobs in self._jobs_by_owner.values() for job in owner_jobs.values()]
        return sorted(jobs, key=lambda job: job.id)

    def update_job_text(self, owner_chat_id: int, job_id: int, text: str) -> Optional[ScheduledJob]:
        """Заменяет текст; форматирование (entities) при этом сбрасывается."""
        job = self.get_job(owner_chat_id, job_id)
        if job is None:
            return None
        job.text = text
        job.entities = None
        self._persist_state()
        return job

    def update_job_content(
        self,
        job_id: int,
        *,
        content_type: Optional[ContentType] = UNSET,
        text: Optional[str] = UNSET,
        entities: Optional[List[Dict[str, Any]]] = UNSET,
        file_id: Optional[str] = UNSET
    ) -> Optional[ScheduledJob]:
        """
        Частичное обновление контента.

        Непереданное поле не меняется, явный None очищает поле
        (например, подпись к фото). content_type применяется только
        если задан.
        """
        job = self.get_job_by_id(job_id)
        if job is None:
            return None
        if content_type is not UNSET and content_type:
            job.content_type = ContentType(content_type)
        if text is not UNSET:
            job.text = text
        if entities is not UNSET:
            job.entities = entities
        if file_id is not UNSET:
            job.file_id = file_id
        self._persist_state()
        return job

    def remove_job(self, owner_chat_id: int, job_id: int) -> Optional[ScheduledJob]:
        owner_jobs = self._jobs_by_owner.get(owner_chat_id)
        if not owner_jobs:
            return None
        job = owner_jobs.get(job_id)
        if job is None:
            return None

        if job.trigger is not None:
            try:
                job.trigger.stop()
            except Exception as e:
                logger.error(f"❌ Не удалось остановить задачу #{job_id}: {e}")
            job.trigger = None

        del owner_jobs[job_id]
        if not owner_jobs:
            del self._jobs_by_owner[owner_chat_id]
        self._persist_state()
        logger.info(f"🗑️ Задача #{job_id} удалена из чата {owner_chat_id}")
        return job

    def update_cron(
        self,
        job_id: int,
        cron_expr: str,
        *,
        scheduled_at: Optional[str] = None,
        repeat: Optional[RepeatMode] = None
    ) -> Optional[ScheduledJob]:
        """
        Меняет расписание задачи.

        Ошибки остановки/перепрограммирования триггера только логируются:
        выражение в записи обновляется в любом случае, и до рестарта
        живой триггер может расходиться с сохранённым выражением.
        """
        job = self.get_job_by_id(job_id)
        if job is None:
            return None

        if job.trigger is not None:
            try:
                job.trigger.stop()
            except Exception as e:
                logger.error(f"❌ Не удалось остановить задачу #{job_id} перед сменой расписания: {e}")
            try:
                job.trigger.reschedule(cron_expr)
                job.trigger.start()
            except Exception as e:
                logger.error(f"❌ Не удалось установить новое расписание для задачи #{job_id}: {e}")

        job.cron_expr = cron_expr
        if scheduled_at is not None:
            job.scheduled_at = scheduled_at
        if repeat is not None:
            job.repeat = repeat
        self._persist_state()
        logger.info(f"⏰ Задача #{job_id} перепланирована: {cron_expr}")
        return job

    def attach_trigger(self, job_id: int, trigger: Any) -> Optional[ScheduledJob]:
        """Подключает новый триггер к восстановленной задаче (без записи снапшота)."""
        job = self.get_job_by_id(job_id)
        if job is None:
            return None
        if job.trigger is not None and job.trigger is not trigger:
            try:
                job.trigger.stop()
            except Exception as e:
                logger.error(f"❌ Не удалось остановить старый триггер задачи #{job_id}: {e}")
        job.trigger = trigger
        job.status = JobStatus.ACTIVE
        return job

    def mark_failed(self, job_id: int, reason: str = '') -> Optional[ScheduledJob]:
        """Останавливает триггер и помечает задачу как неудавшуюся (запись остаётся)."""
        job = self.get_job_by_id(job_id)
        if job is None:
            return None
        if job.trigger is not None:
            try:
                job.trigger.stop()
            except Exception as e:
                logger.error(f"❌ Не удалось остановить задачу #{job_id}: {e}")
            job.trigger = None
        job.status = JobStatus.FAILED
        self._persist_state()
        logger.warning(f"⏹️ Задача #{job_id} помечена как неудавшаяся. {reason}".rstrip())
        return job
