"""
Async job management for long-running backup operations.

Provides background job execution with progress tracking and persistence.
"""

from .import_worker import run_import
from .jobs import JobManager, JobStatus

__all__ = ["JobStatus", "JobManager", "run_import"]
