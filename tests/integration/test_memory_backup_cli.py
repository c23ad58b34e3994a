"""
Integration tests for the memory backup CLI.

Tests:
- import runs as a recorded job and persists memory and vectors
- failed imports exit non-zero and record a failed job
- jobs lists the recorded history
"""
import json
from pathlib import Path

import pytest

from memory_engine.backup import MemoryExporter
from memory_engine.config.settings import ImportOptions, MemoryConfig
from memory_engine.index.vector_store import InMemoryVectorStore
from memory_engine.memory.store import MemoryManager
from scripts.memory_backup import JOBS_FILE, VECTORS_FILE, import_backup, show_jobs

from factories import NOW, make_document, make_entry

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


async def _backup_file(tmp_path) -> Path:
    manager = MemoryManager(MemoryConfig(storage_dir=str(tmp_path / "source")))
    manager.upsert_entries([make_entry("e1"), make_entry("e2")])
    store = InMemoryVectorStore()
    await store.upsert_many([make_document("v1", "Flight to Lisbon", source_type="fact")])

    path = tmp_path / "backup.json"
    await MemoryExporter(manager, store).export_to_file(path, now=NOW)
    return path


def _job_lines(config: MemoryConfig):
    state_file = Path(config.storage_dir) / JOBS_FILE
    return [json.loads(line) for line in state_file.read_text().splitlines()]


async def test_import_runs_as_job(tmp_path, capsys):
    path = await _backup_file(tmp_path)
    config = MemoryConfig(storage_dir=str(tmp_path / "target"))

    exit_code = await import_backup(path, config, ImportOptions(transform_ids=False))

    assert exit_code == 0
    assert _job_lines(config)[-1]["state"] == "succeeded"
    assert _job_lines(config)[-1]["payload"]["stats"]["entries_imported"] == 2

    reloaded = MemoryManager(config)
    await reloaded.load()
    assert {e.id for e in reloaded.all_entries()} == {"e1", "e2"}

    vectors = InMemoryVectorStore(path=Path(config.storage_dir) / VECTORS_FILE)
    vectors.load()
    assert [d.id for d in await vectors.all_documents()] == ["v1"]
    assert "Import complete" in capsys.readouterr().out


async def test_failed_import_records_failed_job(tmp_path, capsys):
    config = MemoryConfig(storage_dir=str(tmp_path / "target"))

    exit_code = await import_backup(tmp_path / "missing.json", config, ImportOptions())

    assert exit_code == 1
    assert _job_lines(config)[-1]["state"] == "failed"
    assert "Import failed" in capsys.readouterr().out


async def test_jobs_lists_history(tmp_path, capsys):
    path = await _backup_file(tmp_path)
    config = MemoryConfig(storage_dir=str(tmp_path / "target"))
    await import_backup(path, config, ImportOptions(dry_run=True))
    capsys.readouterr()

    assert show_jobs(config, limit=5) == 0
    out = capsys.readouterr().out
    assert "succeeded" in out
    assert str(path) in out
