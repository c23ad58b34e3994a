"""
Background jobs for long-running backup operations.

Jobs run as asyncio tasks; every state change is appended to a JSONL file
so the history survives restarts.
"""

import asyncio
import json
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

from memory_engine.telemetry import get_logger

logger = get_logger(__name__)

JobState = Literal["queued", "running", "succeeded", "failed"]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class JobStatus:
    """Status of a background job."""

    id: str
    state: JobState
    progress: float                 # 0.0 to 1.0
    message: str
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "JobStatus":
        return cls(**data)


Worker = Callable[[JobStatus, "JobManager"], Awaitable[None]]


class JobManager:
    """
    In-process async job runner with persistent state.

    Workers receive the job and the manager and report progress through
    ``update_progress``. A worker that raises marks its job failed.
    """

    def __init__(self, state_file: Path):
        """
        Args:
            state_file: Path to JSONL file for job state
        """
        self.state_file = Path(state_file)
        self.state_file.parent.mkdir(parents=True, exist_ok=True)

        self.jobs: Dict[str, JobStatus] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._load_state()

    def _load_state(self) -> None:
        """Replay the state file; the last line for a job wins."""
        if not self.state_file.exists():
            return

        with open(self.state_file, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                job = JobStatus.from_dict(json.loads(line))
                self.jobs[job.id] = job

    def _append_state(self, job: JobStatus) -> None:
        with open(self.state_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(job.to_dict()) + "\n")

    def submit_job(
        self,
        job_type: str,
        worker_fn: Worker,
        payload: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Submit a background job. Must be called from a running event loop.

        Args:
            job_type: Type identifier for job
            worker_fn: Async function called with (job, manager)
            payload: Initial payload data

        Returns:
            Job ID
        """
        job_id = str(uuid.uuid4())
        job = JobStatus(
            id=job_id,
            state="queued",
            progress=0.0,
            message=f"Queued {job_type}",
            payload={"type": job_type, **(payload or {})},
        )
        self.jobs[job_id] = job
        self._append_state(job)

        self._tasks[job_id] = asyncio.create_task(self._run_job(job_id, worker_fn))
        logger.info("job_submitted", job_id=job_id, job_type=job_type)
        return job_id

    async def _run_job(self, job_id: str, worker_fn: Worker) -> None:
        job = self.jobs[job_id]

        job.state = "running"
        job.started_at = _utc_now()
        job.message = "Starting..."
        self._append_state(job)

        try:
            await worker_fn(job, self)

            job.state = "succeeded"
            job.progress = 1.0
            job.finished_at = _utc_now()
            job.message = "Completed successfully"
            self._append_state(job)
            logger.info("job_succeeded", job_id=job_id)

        except Exception as e:
            job.state = "failed"
            job.finished_at = _utc_now()
            job.message = f"Failed: {e}"
            job.payload["error"] = str(e)
            self._append_state(job)
            logger.error("job_failed", job_id=job_id, error=str(e))

    async def wait(self, job_id: str) -> Optional[JobStatus]:
        """Wait for a submitted job to finish and return its final status."""
        task = self._tasks.get(job_id)
        if task is not None:
            await task
        return self.jobs.get(job_id)

    def update_progress(self, job_id: str, progress: float, message: str) -> None:
        """
        Update job progress (called from worker).

        Args:
            job_id: Job ID
            progress: Progress value (0.0 to 1.0)
            message: Status message
        """
        if job_id not in self.jobs:
            return

        job = self.jobs[job_id]
        job.progress = progress
        job.message = message
        self._append_state(job)

    def get(self, job_id: str) -> Optional[JobStatus]:
        return self.jobs.get(job_id)

    def list(self, state: Optional[str] = None) -> List[JobStatus]:
        """List jobs, most recently started first, optionally filtered by state."""
        jobs = list(self.jobs.values())
        if state:
            jobs = [j for j in jobs if j.state == state]
        jobs.sort(key=lambda j: j.started_at or "", reverse=True)
        return jobs

    def cleanup_old_jobs(self, max_age_hours: int = 24) -> int:
        """
        Forget finished jobs older than ``max_age_hours``.

        Returns:
            Number of jobs removed
        """
        cutoff = time.time() - (max_age_hours * 3600)
        removed = 0

        for job_id, job in list(self.jobs.items()):
            if job.state in ("succeeded", "failed") and job.finished_at:
                if datetime.fromisoformat(job.finished_at).timestamp() < cutoff:
                    del self.jobs[job_id]
                    self._tasks.pop(job_id, None)
                    removed += 1

        return removed

    async def shutdown(self) -> None:
        """Wait for running jobs to finish."""
        pending = [t for t in self._tasks.values() if not t.done()]
        if pending:
            await asyncio.gather(*pending)
        self._tasks.clear()
