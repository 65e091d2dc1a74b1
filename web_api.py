# web_api.py
# HTTP-панель: состояние задач, метрики Prometheus, удаление задач.
# Работает в том же процессе и цикле событий, что и бот (START_PANEL=true).

import datetime
import logging
import os
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

import config
from scheduler_logic import cancel_job
from shared.metrics import ACTIVE_JOBS
from shared.models import ScheduledJob
from shared.services import BotServices
from shared.utils import describe_content_type, truncate_text

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
templates = Jinja2Templates(directory=os.path.join(BASE_DIR, "templates"))


class JobView(BaseModel):
    id: int
    owner_chat_id: int
    target_chat_id: int
    cron_expr: str
    content_type: str
    kind: str
    status: str
    repeat: Optional[str] = None
    scheduled_at: Optional[str] = None
    text_preview: str = ''
    next_run: Optional[datetime.datetime] = None

    @classmethod
    def from_job(cls, job: ScheduledJob) -> 'JobView':
        return cls(
            id=job.id,
            owner_chat_id=job.owner_chat_id,
            target_chat_id=job.target_chat_id,
            cron_expr=job.cron_expr,
            content_type=job.content_type.value,
            kind=job.kind.value,
            status=job.status.value,
            repeat=job.repeat.value if job.repeat else None,
            scheduled_at=job.scheduled_at,
            text_preview=truncate_text((job.text or '').strip(), 80),
            next_run=job.trigger.next_fire_time if job.trigger is not None else None,
        )


def _check_admin_secret(header_secret: Optional[str], query_secret: Optional[str]):
    if not config.ADMIN_SECRET:
        return
    if (header_secret or query_secret) != config.ADMIN_SECRET:
        raise HTTPException(status_code=403, detail="Admin access required")


def create_app(services: BotServices) -> FastAPI:
    app = FastAPI(title="Telegram Post Scheduler Panel")
    app.state.services = services

    @app.get("/health", summary="Health check")
    async def health_check():
        """Проверяет работоспособность сервиса."""
        return JSONResponse({
            "status": "ok",
            "jobs": len(services.job_store.get_all_jobs()),
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat()
        })

    @app.get("/metrics", summary="Prometheus metrics")
    async def metrics():
        """Экспортирует метрики для Prometheus."""
        ACTIVE_JOBS.set(len(services.job_store.get_all_jobs()))
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/api/jobs", response_model=List[JobView], summary="All scheduled jobs")
    async def list_jobs_api():
        return [JobView.from_job(job) for job in services.job_store.get_all_jobs()]

    @app.get("/panel", summary="Jobs panel")
    async def panel(request: Request, chat_filter: Optional[str] = None):
        """HTML-таблица всех задач, с фильтром по целевому чату."""
        jobs = services.job_store.get_all_jobs()
        if chat_filter and chat_filter.lstrip('-').isdigit():
            jobs = [job for job in jobs if job.target_chat_id == int(chat_filter)]

        rows = []
        for job in jobs:
            view = JobView.from_job(job)
            rows.append({
                "job": view,
                "content_label": describe_content_type(job.content_type),
            })

        return templates.TemplateResponse(request, "panel.html", {
            "rows": rows,
            "total": len(rows),
            "chats": sorted({job.target_chat_id for job in services.job_store.get_all_jobs()}),
            "chat_filter": chat_filter or '',
            "timezone": config.TIMEZONE,
            "secret_required": bool(config.ADMIN_SECRET),
        })

    @app.post("/panel/delete/{job_id}", summary="Delete job")
    async def panel_delete_job(
        job_id: int,
        secret: Optional[str] = Query(None),
        x_admin_secret: Optional[str] = Header(None, alias="X-Admin-Secret")
    ):
        """Останавливает и удаляет задачу."""
        try:
            _check_admin_secret(x_admin_secret, secret)
        except HTTPException:
            logger.warning(f"⚠️ Попытка удаления без прав: job_id={job_id}")
            raise

        job = services.job_store.get_job_by_id(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        cancel_job(services, job.owner_chat_id, job_id)
        logger.info(f"🗑️ Задача #{job_id} удалена через панель")
        return RedirectResponse(url="/panel", status_code=303)

    return app


def build_panel_server(services: BotServices) -> uvicorn.Server:
    """Сервер панели, который запускается задачей в цикле событий бота."""
    server_config = uvicorn.Config(
        create_app(services),
        host=config.PANEL_HOST,
        port=config.PANEL_PORT,
        log_level=config.LOG_LEVEL.lower(),
    )
    return uvicorn.Server(server_config)
