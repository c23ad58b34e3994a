"""
Logging infrastructure for the memory engine.

All modules log through ``get_logger(__name__)`` with event-style messages
and key/value fields.
"""

import logging
import sys
import time
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import structlog


_CONFIGURED = False


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure structlog on top of stdlib logging.

    Args:
        level: Root log level name
        json_output: Render JSON lines instead of the console format
    """
    global _CONFIGURED

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        stream=sys.stderr,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


def get_logger(name: Optional[str] = None) -> Any:
    """Get a bound structlog logger, configuring defaults on first use."""
    if not _CONFIGURED:
        configure_logging()
    return structlog.get_logger(name)


logger = get_logger(__name__)


def new_run_id() -> str:
    """Generate a new unique run ID."""
    return str(uuid.uuid4())


def log_step(
    run_id: str,
    step_name: str,
    ms: float,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log a pipeline step execution with timing.

    Args:
        run_id: Unique run identifier
        step_name: Name of the step (e.g., "entries", "consolidate")
        ms: Duration in milliseconds
        extra: Optional extra fields to log
    """
    logger.info(
        "step_executed",
        run_id=run_id,
        step=step_name,
        duration_ms=round(ms, 2),
        **(extra or {}),
    )


@contextmanager
def timed_step(run_id: str, step_name: str, **extra: Any) -> Iterator[Dict[str, Any]]:
    """
    Time a block and log it via ``log_step``.

    The yielded dict can be filled with extra fields inside the block.
    """
    fields: Dict[str, Any] = dict(extra)
    start = time.perf_counter()
    try:
        yield fields
    finally:
        log_step(run_id, step_name, (time.perf_counter() - start) * 1000, fields)
