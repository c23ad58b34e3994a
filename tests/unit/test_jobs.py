"""
Unit tests for memory_engine/ops/jobs.py and the import worker.

Tests async JobManager, JSONL persistence and progress bridging.
"""
import asyncio
import json
from datetime import datetime, timedelta, timezone
from functools import partial

import pytest

from memory_engine.backup.exporter import MemoryExporter
from memory_engine.backup.importer import MemoryImporter
from memory_engine.config.settings import ImportOptions
from memory_engine.ops.import_worker import run_import
from memory_engine.ops.jobs import JobManager, JobStatus

from factories import NOW, make_entry

# Mark all tests as async
pytestmark = pytest.mark.asyncio


async def test_submit_job_creates_queued_state(tmp_path):
    """Submitting a job should create it in queued state."""
    manager = JobManager(state_file=tmp_path / "jobs.jsonl")

    async def dummy_task(job, mgr):
        return None

    job_id = manager.submit_job("test", dummy_task, payload={"path": "x"})

    job = manager.get(job_id)
    assert job.state == "queued"
    assert job.progress == 0.0
    assert job.payload == {"type": "test", "path": "x"}
    await manager.shutdown()


async def test_job_transitions_to_succeeded(tmp_path):
    """Job should transition: queued -> running -> succeeded."""
    manager = JobManager(state_file=tmp_path / "jobs.jsonl")
    seen_states = []

    async def task(job, mgr):
        seen_states.append(job.state)
        mgr.update_progress(job.id, 0.5, "halfway")
        await asyncio.sleep(0)

    job_id = manager.submit_job("test", task)
    job = await manager.wait(job_id)

    assert seen_states == ["running"]
    assert job.state == "succeeded"
    assert job.progress == 1.0
    assert job.started_at is not None
    assert job.finished_at is not None


async def test_failed_job_records_error(tmp_path):
    """A worker that raises marks its job failed with the error message."""
    manager = JobManager(state_file=tmp_path / "jobs.jsonl")

    async def failing_task(job, mgr):
        raise ValueError("disk on fire")

    job = await manager.wait(manager.submit_job("test", failing_task))

    assert job.state == "failed"
    assert job.message == "Failed: disk on fire"
    assert job.payload["error"] == "disk on fire"


async def test_state_persists_as_jsonl(tmp_path):
    """Every transition is appended; a new manager replays the last line per job."""
    state_file = tmp_path / "jobs.jsonl"
    manager = JobManager(state_file=state_file)

    async def task(job, mgr):
        mgr.update_progress(job.id, 0.3, "working")

    job_id = manager.submit_job("test", task)
    await manager.wait(job_id)

    lines = [json.loads(line) for line in state_file.read_text().splitlines()]
    assert [line["state"] for line in lines] == ["queued", "running", "running", "succeeded"]

    reloaded = JobManager(state_file=state_file)
    job = reloaded.get(job_id)
    assert isinstance(job, JobStatus)
    assert job.state == "succeeded"


async def test_update_progress_ignores_unknown_job(tmp_path):
    manager = JobManager(state_file=tmp_path / "jobs.jsonl")
    manager.update_progress("missing", 0.5, "nothing")
    assert manager.get("missing") is None


async def test_list_filters_by_state(tmp_path):
    manager = JobManager(state_file=tmp_path / "jobs.jsonl")

    async def ok(job, mgr):
        return None

    async def bad(job, mgr):
        raise RuntimeError("nope")

    ok_id = manager.submit_job("test", ok)
    bad_id = manager.submit_job("test", bad)
    await manager.shutdown()

    assert [j.id for j in manager.list("succeeded")] == [ok_id]
    assert [j.id for j in manager.list("failed")] == [bad_id]
    assert len(manager.list()) == 2


async def test_cleanup_old_jobs(tmp_path):
    manager = JobManager(state_file=tmp_path / "jobs.jsonl")

    async def ok(job, mgr):
        return None

    old_id = manager.submit_job("test", ok)
    new_id = manager.submit_job("test", ok)
    await manager.shutdown()

    two_days_ago = datetime.now(timezone.utc) - timedelta(hours=48)
    manager.get(old_id).finished_at = two_days_ago.isoformat()

    assert manager.cleanup_old_jobs(max_age_hours=24) == 1
    assert manager.get(old_id) is None
    assert manager.get(new_id) is not None


# ============================================================================
# Import worker
# ============================================================================

async def _backup_file(tmp_path, memory_manager):
    memory_manager.upsert_entries([make_entry(f"e{i}") for i in range(3)])
    path = tmp_path / "backup.json"
    await MemoryExporter(memory_manager).export_to_file(path, now=NOW)
    await memory_manager.clear()
    return path


async def test_import_job_reports_progress_and_stats(tmp_path, memory_manager):
    path = await _backup_file(tmp_path, memory_manager)
    importer = MemoryImporter(memory_manager)
    manager = JobManager(state_file=tmp_path / "jobs.jsonl")
    progress = []

    original = manager.update_progress

    def record(job_id, value, message):
        progress.append(value)
        original(job_id, value, message)

    manager.update_progress = record

    worker = partial(run_import, importer=importer, path=path, options=ImportOptions(transform_ids=False))
    job = await manager.wait(manager.submit_job("import", worker))

    assert job.state == "succeeded"
    assert job.payload["path"] == str(path)
    assert job.payload["stats"]["entries_imported"] == 3
    assert job.payload["dry_run"] is False
    assert job.payload["duration_ms"] >= 0
    assert progress == sorted(progress)
    assert progress[-1] == 1.0
    assert {e.id for e in memory_manager.all_entries()} == {"e0", "e1", "e2"}
    # Listener is detached once the job ends
    assert importer._listeners == []


async def test_import_job_fails_on_missing_file(tmp_path, memory_manager):
    importer = MemoryImporter(memory_manager)
    manager = JobManager(state_file=tmp_path / "jobs.jsonl")

    worker = partial(run_import, importer=importer, path=tmp_path / "missing.json")
    job = await manager.wait(manager.submit_job("import", worker))

    assert job.state == "failed"
    assert "File not found" in job.payload["error"]
