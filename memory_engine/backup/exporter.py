"""Writing backup files from the live memory map and the vector store."""

import asyncio
import gzip
import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field

from memory_engine.config.settings import ExportOptions
from memory_engine.errors import StorageError
from memory_engine.events import EventEmitter
from memory_engine.index.vector_store import StorageBackend
from memory_engine.memory.schemas import now_ms
from memory_engine.memory.store import MemoryManager
from memory_engine.telemetry import get_logger

from .checksum import envelope_checksum
from .envelope import FORMAT_VERSION

logger = get_logger(__name__)


class ExportResult(BaseModel):
    path: Optional[str] = None
    bytes_written: int = 0
    counts: Dict[str, int] = Field(default_factory=dict)
    compressed: bool = False
    checksum: str = ""


class MemoryExporter(EventEmitter):
    """
    Produces versioned, checksummed backup files.

    Documents are split by kind: ``vectors`` carries regular documents and
    ``summaries`` carries summary documents.
    """

    def __init__(self, memory_manager: MemoryManager, vector_store: Optional[StorageBackend] = None):
        super().__init__()
        self.memory_manager = memory_manager
        self.vector_store = vector_store

    async def build_envelope(
        self,
        options: Optional[ExportOptions] = None,
        now: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Snapshot current state as a wire-format envelope with its checksum set.

        Args:
            options: Which record kinds to include and whether to compress
            now: Export time (epoch ms)

        Returns:
            Envelope dict ready for JSON encoding
        """
        opts = options or ExportOptions()
        documents = await self.vector_store.all_documents() if self.vector_store is not None else []

        envelope: Dict[str, Any] = {
            "header": {
                "version": FORMAT_VERSION,
                "exportedAt": now if now is not None else now_ms(),
                "checksum": "",
                "compressed": opts.compress,
            },
            "entries": (
                [e.to_wire() for e in self.memory_manager.all_entries()]
                if opts.include_entries else []
            ),
            "conversations": (
                [c.to_wire() for c in self.memory_manager.get_all_sessions()]
                if opts.include_conversations else []
            ),
            "vectors": (
                [d.to_wire() for d in documents if not d.metadata.is_summary]
                if opts.include_vectors else []
            ),
            "summaries": (
                [d.to_wire() for d in documents if d.metadata.is_summary]
                if opts.include_summaries else []
            ),
        }
        envelope["header"]["checksum"] = envelope_checksum(envelope)
        return envelope

    async def export_to_bytes(
        self,
        options: Optional[ExportOptions] = None,
        now: Optional[int] = None,
    ):
        """
        Returns:
            Tuple of (file bytes, ExportResult without a path)
        """
        opts = options or ExportOptions()
        envelope = await self.build_envelope(opts, now=now)
        raw = json.dumps(envelope, ensure_ascii=False).encode("utf-8")
        if opts.compress:
            raw = gzip.compress(raw)

        result = ExportResult(
            bytes_written=len(raw),
            counts={
                key: len(envelope[key])
                for key in ("entries", "conversations", "vectors", "summaries")
            },
            compressed=opts.compress,
            checksum=envelope["header"]["checksum"],
        )
        return raw, result

    async def export_to_file(
        self,
        path: Union[str, Path],
        options: Optional[ExportOptions] = None,
        now: Optional[int] = None,
    ) -> ExportResult:
        """
        Write a backup file.

        Raises:
            StorageError: If the file cannot be written
        """
        path = Path(path)
        raw, result = await self.export_to_bytes(options, now=now)

        try:
            await asyncio.to_thread(self._write, path, raw)
        except OSError as e:
            logger.error("export_failed", path=str(path), error=str(e))
            raise StorageError(f"Failed to write export file: {e}") from e

        result.path = str(path)
        self.emit("exported", result.model_dump())
        logger.info(
            "export_completed",
            path=str(path),
            bytes=result.bytes_written,
            compressed=result.compressed,
            **result.counts,
        )
        return result

    @staticmethod
    def _write(path: Path, raw: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(raw)
