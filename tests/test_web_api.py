"""Tests for the HTTP panel."""

import pytest
from httpx import ASGITransport, AsyncClient

import config
from scheduler_logic import schedule_job
from shared.models import ContentType, JobContent
from web_api import create_app

from conftest import CHAT_ID


@pytest.fixture
def app(services):
    schedule_job(services, CHAT_ID, CHAT_ID, "0 30 9 * * *", JobContent(ContentType.TEXT, "Доброе утро " * 20))
    schedule_job(services, CHAT_ID, -100500, "0 0 18 * * 5", JobContent(ContentType.PHOTO, None, file_id="p-1"))
    return create_app(services)


def _client(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_health(app):
    async with _client(app) as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["jobs"] == 2


@pytest.mark.asyncio
async def test_api_jobs(app):
    async with _client(app) as client:
        response = await client.get("/api/jobs")
    jobs = response.json()
    assert [job["id"] for job in jobs] == [1, 2]
    assert jobs[0]["cron_expr"] == "0 30 9 * * *"
    assert len(jobs[0]["text_preview"]) == 80
    assert jobs[1]["content_type"] == "photo"
    assert jobs[1]["target_chat_id"] == -100500


@pytest.mark.asyncio
async def test_panel_renders_jobs(app):
    async with _client(app) as client:
        response = await client.get("/panel")
    assert response.status_code == 200
    assert "0 0 18 * * 5" in response.text
    assert "медиа: фото" in response.text


@pytest.mark.asyncio
async def test_panel_filter_by_chat(app):
    async with _client(app) as client:
        response = await client.get("/panel", params={"chat_filter": "-100500"})
    assert "0 0 18 * * 5" in response.text
    assert "0 30 9 * * *" not in response.text


@pytest.mark.asyncio
async def test_metrics(app):
    async with _client(app) as client:
        response = await client.get("/metrics")
    assert response.status_code == 200
    assert "telegram_scheduler_active_jobs 2.0" in response.text


@pytest.mark.asyncio
async def test_delete_requires_secret(app, services, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_SECRET", "s3cret")
    async with _client(app) as client:
        denied = await client.post("/panel/delete/1")
        wrong = await client.post("/panel/delete/1", headers={"X-Admin-Secret": "nope"})
    assert denied.status_code == 403
    assert wrong.status_code == 403
    assert services.job_store.get_job_by_id(1) is not None


@pytest.mark.asyncio
async def test_delete_with_header_secret(app, services, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_SECRET", "s3cret")
    async with _client(app) as client:
        response = await client.post("/panel/delete/1", headers={"X-Admin-Secret": "s3cret"})
    assert response.status_code == 303
    assert services.job_store.get_job_by_id(1) is None


@pytest.mark.asyncio
async def test_delete_with_query_secret(app, services, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_SECRET", "s3cret")
    async with _client(app) as client:
        response = await client.post("/panel/delete/2", params={"secret": "s3cret"})
    assert response.status_code == 303
    assert services.job_store.get_job_by_id(2) is None


@pytest.mark.asyncio
async def test_delete_unknown_job(app, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_SECRET", "")
    async with _client(app) as client:
        response = await client.post("/panel/delete/99")
    assert response.status_code == 404
