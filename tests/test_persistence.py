"""Tests for the JSON snapshot of jobs."""

import json

import pytest

from shared.job_store import JobStore
from shared.models import ContentType, JobContent
from shared.persistence import JsonJobFile, SnapshotFormatError


def test_round_trip_through_file(tmp_path):
    snapshot = JsonJobFile(str(tmp_path / "data" / "jobs.json"))
    store = JobStore(snapshot, snapshot.load())
    created = store.add_job(100, 100, "0 30 9 * * *", JobContent(ContentType.TEXT, "hi"))

    fresh = JobStore(snapshot, snapshot.load())
    [restored] = fresh.get_jobs_for_chat(100)

    assert restored.id == created.id
    assert restored.cron_expr == "0 30 9 * * *"
    assert restored.text == "hi"
    assert restored.trigger is None
    assert fresh.add_job(100, 100, "0 0 9 * * *", JobContent(ContentType.TEXT, "next")).id > restored.id


def test_file_uses_camel_case_keys(tmp_path):
    path = tmp_path / "jobs.json"
    store = JobStore(JsonJobFile(str(path)))
    store.add_job(100, -100500, "0 0 9 * * *", JobContent(ContentType.PHOTO, "кот", file_id="f-1"))

    [data] = json.loads(path.read_text(encoding="utf-8"))
    assert data["ownerChatId"] == 100
    assert data["targetChatId"] == -100500
    assert data["contentType"] == "photo"
    assert data["fileId"] == "f-1"
    assert data["text"] == "кот"


def test_missing_file_loads_empty(tmp_path):
    assert JsonJobFile(str(tmp_path / "nope.json")).load() == []


def test_non_array_snapshot_is_rejected(tmp_path):
    path = tmp_path / "jobs.json"
    path.write_text('{"id": 1}', encoding="utf-8")
    with pytest.raises(SnapshotFormatError):
        JsonJobFile(str(path)).load()


def test_corrupt_json_loads_empty(tmp_path):
    path = tmp_path / "jobs.json"
    path.write_text("[{not json", encoding="utf-8")
    assert JsonJobFile(str(path)).load() == []


@pytest.mark.asyncio
async def test_save_inside_loop_is_background_write(tmp_path):
    path = tmp_path / "jobs.json"
    snapshot = JsonJobFile(str(path))

    snapshot.save([{"id": 1}])
    snapshot.save([{"id": 1}, {"id": 2}])
    await snapshot.flush()

    assert json.loads(path.read_text(encoding="utf-8")) == [{"id": 1}, {"id": 2}]
    assert not list(tmp_path.glob(".jobs-*.tmp"))


def test_write_error_is_not_raised(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    snapshot = JsonJobFile(str(blocker / "jobs.json"))

    snapshot.save([{"id": 1}])

    assert blocker.read_text(encoding="utf-8") == "file, not a directory"
