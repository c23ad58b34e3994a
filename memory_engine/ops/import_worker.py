"""
Async backup import worker with progress tracking.

Bridges ``MemoryImporter`` progress events onto a ``JobStatus``.
"""

from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

from memory_engine.config.settings import ImportOptions

if TYPE_CHECKING:
    from memory_engine.backup.importer import MemoryImporter

    from .jobs import JobManager, JobStatus


async def run_import(
    job: "JobStatus",
    manager: "JobManager",
    importer: "MemoryImporter",
    path: Path,
    options: Optional[ImportOptions] = None,
) -> None:
    """
    Run a backup import as a job.

    Args:
        job: JobStatus object to update
        manager: JobManager for progress updates
        importer: Importer bound to the target memory manager and store
        path: Backup file to import
        options: Import options

    Updates job.payload with:
        - path: str
        - stats: import stats (on success)
        - duration_ms: import wall time (on success)
        - warnings: validation warnings

    Raises:
        RuntimeError: If the import fails, so the job is marked failed
    """
    job.payload["path"] = str(path)

    def on_event(event: str, payload: Dict[str, Any]) -> None:
        if event != "progress":
            return
        manager.update_progress(
            job.id,
            payload["overallProgress"] / 100,
            f"{payload['phase']}: {payload['processed']}/{payload['total']}",
        )

    importer.add_listener(on_event)
    try:
        result = await importer.import_from_file(path, options)
    finally:
        importer.remove_listener(on_event)

    if result.validation is not None:
        job.payload["warnings"] = list(result.validation.warnings)
    if not result.success:
        raise RuntimeError(result.error or "Import failed")

    job.payload["stats"] = result.stats.model_dump()
    job.payload["dry_run"] = result.dry_run
    job.payload["duration_ms"] = result.duration_ms
