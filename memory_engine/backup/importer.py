"""
Backup import.

Validates a backup file and merges it into (or replaces) the live memory
map and the vector store. Each entity phase is planned in full and then
committed through one bulk call, so an abort between phases leaves every
phase either fully applied or untouched.

Progress phases, in order: reading, decompressing (gzip only), validating,
entries, conversations, vectors, summaries, complete.
"""

import asyncio
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Literal, Optional, Tuple, TypeVar, Union

from pydantic import Field, ValidationError

from memory_engine.config.settings import ConflictResolution, ImportOptions
from memory_engine.errors import BackupFormatError
from memory_engine.events import EventEmitter
from memory_engine.index.vector_store import StorageBackend
from memory_engine.memory.schemas import (
    ChatMessage,
    ConversationSession,
    MemoryDocument,
    MemoryEntry,
    WireModel,
    now_ms,
)
from memory_engine.memory.store import MemoryManager
from memory_engine.telemetry import get_logger, log_step, new_run_id

from .checksum import envelope_checksum
from .envelope import FORMAT_VERSION, decode_backup, has_valid_header, is_gzip

logger = get_logger(__name__)

ImportPhase = Literal[
    "reading", "decompressing", "validating", "entries",
    "conversations", "vectors", "summaries", "complete",
]
Resolution = Literal["existing", "imported", "merged"]

ALREADY_IN_PROGRESS = "Import already in progress"

# (start, span) of overall progress per record phase
_PHASE_PROGRESS = {
    "entries": (20, 20),
    "conversations": (40, 20),
    "vectors": (60, 20),
    "summaries": (80, 10),
}
_PROGRESS_EVERY = {"entries": 100, "conversations": 10, "vectors": 500, "summaries": 100}


# ============================================================================
# Result types
# ============================================================================

class ValidationIssue(WireModel):
    code: str
    message: str
    recoverable: bool = False


class ValidationStats(WireModel):
    format_version: int = 0
    exported_at: int = 0
    total_entries: int = 0
    total_conversations: int = 0
    total_vectors: int = 0
    total_summaries: int = 0
    compressed: bool = False
    file_size_bytes: int = 0


class ValidationResult(WireModel):
    valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    stats: ValidationStats = Field(default_factory=ValidationStats)

    @classmethod
    def failed(cls, code: str, message: str) -> "ValidationResult":
        return cls(valid=False, errors=[ValidationIssue(code=code, message=message)])


class ImportStats(WireModel):
    entries_imported: int = 0
    entries_skipped: int = 0
    conversations_imported: int = 0
    conversations_skipped: int = 0
    vectors_imported: int = 0
    vectors_skipped: int = 0
    summaries_imported: int = 0
    summaries_skipped: int = 0
    conflicts_resolved: int = 0


class ImportProgress(WireModel):
    phase: ImportPhase
    processed: int
    total: int
    overall_progress: int
    conflicts: int
    skipped: int


class ImportResult(WireModel):
    success: bool
    duration_ms: int = 0
    stats: ImportStats = Field(default_factory=ImportStats)
    validation: Optional[ValidationResult] = None
    error: Optional[str] = None
    dry_run: bool = False
    aborted: bool = False


class _ImportAborted(Exception):
    pass


R = TypeVar("R")


class _PhasePlan(Generic[R]):
    """Records to write for one phase plus its counters."""

    def __init__(self) -> None:
        self.staged: Dict[str, R] = {}
        self.imported = 0
        self.skipped = 0
        self.conflicts = 0


# ============================================================================
# Conflict rules
# ============================================================================

def resolve_entry_conflict(existing: MemoryEntry, imported: MemoryEntry, strategy: ConflictResolution) -> Resolution:
    if strategy == "use_imported":
        return "imported"
    if strategy == "keep_newer":
        return "imported" if imported.created_at > existing.created_at else "existing"
    if strategy == "keep_higher_importance":
        return "imported" if imported.importance > existing.importance else "existing"
    return "existing"


def resolve_document_conflict(existing: MemoryDocument, imported: MemoryDocument, strategy: ConflictResolution) -> Resolution:
    if strategy == "use_imported":
        return "imported"
    if strategy == "keep_newer":
        return "imported" if imported.created_at > existing.created_at else "existing"
    if strategy == "keep_higher_importance":
        return "imported" if imported.metadata.importance > existing.metadata.importance else "existing"
    return "existing"


def resolve_conversation_conflict(
    existing: ConversationSession,
    imported: ConversationSession,
    strategy: ConflictResolution,
) -> Resolution:
    """Conversations have no importance; that strategy merges them instead."""
    if strategy == "use_imported":
        return "imported"
    if strategy == "keep_newer":
        return "imported" if imported.last_activity_at > existing.last_activity_at else "existing"
    if strategy == "keep_higher_importance":
        return "merged"
    return "existing"


def merge_conversations(existing: ConversationSession, imported: ConversationSession) -> ConversationSession:
    """Union both message lists (exact duplicates dropped), sorted by timestamp."""
    seen = set()
    messages: List[ChatMessage] = []
    for message in existing.messages + imported.messages:
        key = (message.role, message.content, message.timestamp)
        if key in seen:
            continue
        seen.add(key)
        messages.append(message)
    messages.sort(key=lambda m: m.timestamp or 0)

    return existing.model_copy(
        update={
            "messages": messages,
            "last_activity_at": max(existing.last_activity_at, imported.last_activity_at),
        },
        deep=True,
    )


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def transform_id(original_id: str, now: Optional[int] = None) -> str:
    """Suffix an ID with import time and randomness so re-imports never collide."""
    ts = now if now is not None else now_ms()
    return f"{original_id}-import-{_base36(ts)}-{uuid.uuid4().hex[:4]}"


def _is_record(item: Any, *required: str) -> bool:
    return isinstance(item, dict) and all(item.get(name) for name in required)


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


# ============================================================================
# Importer
# ============================================================================

class MemoryImporter(EventEmitter):
    """
    Imports memory from backup files.

    Events: ``started``, ``progress``, ``validated``, ``conflict``,
    ``completed``, ``error``. Only one import runs at a time; a second
    call while one is in flight returns a failed result immediately.
    """

    def __init__(self, memory_manager: MemoryManager, vector_store: Optional[StorageBackend] = None):
        """
        Args:
            memory_manager: Live entry/conversation map
            vector_store: Storage collaborator for vectors and summaries
        """
        super().__init__()
        self.memory_manager = memory_manager
        self.vector_store = vector_store

        self._importing = False
        self._abort_requested = False
        self._conflicts = 0
        self._skipped = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_import_in_progress(self) -> bool:
        return self._importing

    def abort(self) -> None:
        """Stop the running import before its next phase starts."""
        if self._importing:
            self._abort_requested = True
            logger.info("import_abort_requested")

    async def validate_file(self, path: Union[str, Path]) -> ValidationResult:
        """
        Validate a backup file without importing.

        Args:
            path: Backup file path

        Returns:
            ValidationResult; never raises for bad files
        """
        path = Path(path)
        if not path.exists():
            return ValidationResult.failed("FILE_NOT_FOUND", f"File not found: {path}")
        try:
            raw = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            return ValidationResult.failed("PARSE_ERROR", f"Failed to read import file: {e}")
        return self.validate_bytes(raw)

    def validate_bytes(self, raw: bytes) -> ValidationResult:
        try:
            data, compressed = decode_backup(raw)
        except BackupFormatError as e:
            return ValidationResult.failed(e.code, e.message)
        return self.validate_data(data, file_size=len(raw), compressed=compressed)

    def validate_data(self, data: Any, file_size: int = 0, compressed: bool = False) -> ValidationResult:
        """
        Validate parsed backup content.

        Hard errors: INVALID_HEADER, VERSION_TOO_NEW, INVALID_ENTRIES,
        INVALID_CONVERSATIONS, INVALID_VECTORS, INVALID_SUMMARIES.
        Warnings: older format version, checksum mismatch, records missing
        required fields, inconsistent vector dimensions.
        """
        if not has_valid_header(data):
            return ValidationResult.failed(
                "INVALID_HEADER",
                "Export file is missing a header with numeric version and exportedAt",
            )

        errors: List[ValidationIssue] = []
        warnings: List[str] = []
        header = data["header"]
        version = header["version"]

        if version > FORMAT_VERSION:
            errors.append(ValidationIssue(
                code="VERSION_TOO_NEW",
                message=f"Export format version {version} is newer than supported version {FORMAT_VERSION}",
            ))
        elif version < FORMAT_VERSION:
            warnings.append(
                f"Export format version {version} is older than current version {FORMAT_VERSION}. "
                "Some features may not be available."
            )

        checksum = header.get("checksum")
        if checksum and envelope_checksum(data) != checksum:
            warnings.append("Checksum mismatch detected. File may have been modified.")

        for key, code in (
            ("entries", "INVALID_ENTRIES"),
            ("conversations", "INVALID_CONVERSATIONS"),
            ("vectors", "INVALID_VECTORS"),
        ):
            if not isinstance(data.get(key), list):
                errors.append(ValidationIssue(code=code, message=f"Invalid {key} array in export file"))
        if "summaries" in data and not isinstance(data["summaries"], list):
            errors.append(ValidationIssue(
                code="INVALID_SUMMARIES",
                message="Invalid summaries array in export file",
            ))

        entries = _as_list(data.get("entries"))
        conversations = _as_list(data.get("conversations"))
        vectors = _as_list(data.get("vectors"))
        summaries = _as_list(data.get("summaries"))

        bad_entries = sum(1 for e in entries if not _is_record(e, "id", "type", "content"))
        if bad_entries:
            warnings.append(f"{bad_entries} entries have missing required fields and will be skipped.")

        bad_conversations = sum(
            1 for c in conversations
            if not _is_record(c, "id") or not isinstance(c.get("messages"), list)
        )
        if bad_conversations:
            warnings.append(f"{bad_conversations} conversations have missing required fields and will be skipped.")

        bad_vectors = sum(
            1 for v in vectors
            if not _is_record(v, "id", "content") or not isinstance(v.get("vector"), list)
        )
        if bad_vectors:
            warnings.append(f"{bad_vectors} vectors have missing required fields and will be skipped.")

        dimensions = {
            len(v.get("vector") or []) if isinstance(v, dict) else 0
            for v in vectors
        }
        if len(dimensions) > 1:
            warnings.append("Vectors have inconsistent dimensions. Some vectors may not import correctly.")

        return ValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            stats=ValidationStats(
                format_version=int(version),
                exported_at=int(header["exportedAt"]),
                total_entries=len(entries),
                total_conversations=len(conversations),
                total_vectors=len(vectors),
                total_summaries=len(summaries),
                compressed=bool(header.get("compressed", compressed)),
                file_size_bytes=file_size,
            ),
        )

    async def import_from_file(
        self,
        path: Union[str, Path],
        options: Optional[ImportOptions] = None,
    ) -> ImportResult:
        """
        Import a backup file.

        Args:
            path: Backup file path
            options: Import options (merge/replace, conflicts, filters, dry run)

        Returns:
            ImportResult; errors are reported in the result, never raised
        """
        path = Path(path)

        async def read() -> bytes:
            try:
                return await asyncio.to_thread(path.read_bytes)
            except FileNotFoundError as e:
                raise BackupFormatError("FILE_NOT_FOUND", f"File not found: {path}") from e
            except OSError as e:
                raise BackupFormatError("PARSE_ERROR", f"Failed to read import file: {e}") from e

        return await self._guarded(read, options)

    async def import_from_bytes(self, raw: bytes, options: Optional[ImportOptions] = None) -> ImportResult:
        """Import backup content already held in memory."""

        async def read() -> bytes:
            return raw

        return await self._guarded(read, options)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _guarded(self, read: Callable, options: Optional[ImportOptions]) -> ImportResult:
        # The flag is set before the first await so a concurrent call sees it
        if self._importing:
            logger.warning("import_rejected", reason=ALREADY_IN_PROGRESS)
            return ImportResult(success=False, error=ALREADY_IN_PROGRESS)

        self._importing = True
        self._abort_requested = False
        self._conflicts = 0
        self._skipped = 0
        try:
            return await self._run(read, options or ImportOptions())
        finally:
            self._importing = False
            self._abort_requested = False

    async def _run(self, read: Callable, opts: ImportOptions) -> ImportResult:
        run_id = new_run_id()
        start = time.perf_counter()
        stats = ImportStats()
        validation: Optional[ValidationResult] = None

        def elapsed() -> int:
            return int((time.perf_counter() - start) * 1000)

        try:
            self.emit("started", {"run_id": run_id, "mode": opts.mode, "dry_run": opts.dry_run})
            self._progress("reading", 0, 1, 0)

            raw = await read()
            compressed = is_gzip(raw)
            if compressed:
                self._progress("decompressing", 0, 1, 5)

            try:
                data, compressed = decode_backup(raw)
            except BackupFormatError as e:
                if not opts.skip_validation:
                    validation = ValidationResult.failed(e.code, e.message)
                raise

            if not opts.skip_validation:
                self._progress("validating", 0, 1, 10)
                validation = self.validate_data(data, file_size=len(raw), compressed=compressed)
                self.emit("validated", validation.to_wire())
                if not validation.valid:
                    messages = ", ".join(issue.message for issue in validation.errors)
                    raise BackupFormatError(
                        validation.errors[0].code,
                        f"Validation failed: {messages}",
                    )
            elif not isinstance(data, dict):
                raise BackupFormatError("INVALID_HEADER", "Export file is not a JSON object")

            now = now_ms()

            if opts.import_entries:
                self._check_abort()
                plan = self._plan_entries(_as_list(data.get("entries")), opts, now)
                if not opts.dry_run:
                    if opts.mode == "replace":
                        self.memory_manager.replace_all_entries(plan.staged.values())
                    else:
                        self.memory_manager.upsert_entries(plan.staged.values())
                stats.entries_imported, stats.entries_skipped = plan.imported, plan.skipped
                stats.conflicts_resolved += plan.conflicts
                log_step(run_id, "entries", elapsed(), {"imported": plan.imported})

            if opts.import_conversations:
                self._check_abort()
                plan = self._plan_conversations(_as_list(data.get("conversations")), opts, now)
                if not opts.dry_run:
                    if opts.mode == "replace":
                        self.memory_manager.replace_all_conversations(plan.staged.values())
                    else:
                        self.memory_manager.upsert_conversations(plan.staged.values())
                stats.conversations_imported, stats.conversations_skipped = plan.imported, plan.skipped
                stats.conflicts_resolved += plan.conflicts
                log_step(run_id, "conversations", elapsed(), {"imported": plan.imported})

            if self.vector_store is not None:
                for phase, enabled in (("vectors", opts.import_vectors), ("summaries", opts.import_summaries)):
                    if not enabled:
                        continue
                    self._check_abort()
                    imported, skipped, conflicts = await self._import_documents(
                        phase, _as_list(data.get(phase)), opts, now,
                    )
                    setattr(stats, f"{phase}_imported", imported)
                    setattr(stats, f"{phase}_skipped", skipped)
                    stats.conflicts_resolved += conflicts
                    log_step(run_id, phase, elapsed(), {"imported": imported})
            else:
                stats.vectors_skipped = len(_as_list(data.get("vectors"))) if opts.import_vectors else 0
                stats.summaries_skipped = len(_as_list(data.get("summaries"))) if opts.import_summaries else 0

            if not opts.dry_run:
                await self.memory_manager.save()

        except _ImportAborted:
            logger.info("import_aborted", run_id=run_id)
            result = ImportResult(
                success=False,
                duration_ms=elapsed(),
                stats=stats,
                validation=validation,
                error="Import aborted",
                dry_run=opts.dry_run,
                aborted=True,
            )
            self.emit("error", {"error": result.error})
            return result
        except Exception as e:
            message = e.message if isinstance(e, BackupFormatError) else str(e)
            logger.error("import_failed", run_id=run_id, error=message)
            self.emit("error", {"error": message})
            return ImportResult(
                success=False,
                duration_ms=elapsed(),
                stats=stats,
                validation=validation,
                error=message,
                dry_run=opts.dry_run,
            )

        result = ImportResult(
            success=True,
            duration_ms=elapsed(),
            stats=stats,
            validation=validation,
            dry_run=opts.dry_run,
        )
        self._progress("complete", 1, 1, 100)
        self.emit("completed", result.to_wire())
        logger.info(
            "import_completed",
            run_id=run_id,
            dry_run=opts.dry_run,
            entries=stats.entries_imported,
            conversations=stats.conversations_imported,
            vectors=stats.vectors_imported,
            summaries=stats.summaries_imported,
            conflicts=stats.conflicts_resolved,
        )
        return result

    # ------------------------------------------------------------------
    # Phase planning
    # ------------------------------------------------------------------

    def _in_range(self, timestamp: int, opts: ImportOptions) -> bool:
        if opts.start_date is not None and timestamp < opts.start_date:
            return False
        if opts.end_date is not None and timestamp > opts.end_date:
            return False
        return True

    def _new_id(self, original: str, opts: ImportOptions, now: int) -> str:
        return transform_id(original, now) if opts.transform_ids else original

    def _plan_entries(self, records: List[Any], opts: ImportOptions, now: int) -> _PhasePlan[MemoryEntry]:
        plan: _PhasePlan[MemoryEntry] = _PhasePlan()
        existing = {} if opts.mode == "replace" else {e.id: e for e in self.memory_manager.all_entries()}
        total = len(records)

        for i, item in enumerate(records):
            entry = self._parse(MemoryEntry, item, ("id", "type", "content"))
            if (
                entry is None
                or not self._in_range(entry.created_at, opts)
                or (opts.min_importance is not None and entry.importance < opts.min_importance)
            ):
                plan.skipped += 1
                self._skipped += 1
            else:
                new_id = self._new_id(entry.id, opts, now)
                incoming = entry.model_copy(update={"id": new_id})
                current = plan.staged.get(new_id) or existing.get(new_id)
                if current is None or opts.mode == "replace":
                    plan.staged[new_id] = incoming
                    plan.imported += 1
                else:
                    resolution = resolve_entry_conflict(current, incoming, opts.conflict_resolution)
                    self._record_conflict(plan, "entry", entry.id, resolution)
                    if resolution == "imported":
                        plan.staged[new_id] = incoming
            self._phase_progress("entries", i, total)
        return plan

    def _plan_conversations(
        self,
        records: List[Any],
        opts: ImportOptions,
        now: int,
    ) -> _PhasePlan[ConversationSession]:
        plan: _PhasePlan[ConversationSession] = _PhasePlan()
        existing = (
            {} if opts.mode == "replace"
            else {c.id: c for c in self.memory_manager.get_all_sessions()}
        )
        total = len(records)

        for i, item in enumerate(records):
            conversation = None
            if isinstance(item, dict) and isinstance(item.get("messages"), list):
                conversation = self._parse(ConversationSession, item, ("id",))
            if conversation is None or not self._in_range(conversation.started_at, opts):
                plan.skipped += 1
                self._skipped += 1
            else:
                new_id = self._new_id(conversation.id, opts, now)
                incoming = conversation.model_copy(update={"id": new_id})
                current = plan.staged.get(new_id) or existing.get(new_id)
                if current is None or opts.mode == "replace":
                    plan.staged[new_id] = incoming
                    plan.imported += 1
                else:
                    resolution = resolve_conversation_conflict(current, incoming, opts.conflict_resolution)
                    self._record_conflict(plan, "conversation", conversation.id, resolution)
                    if resolution == "imported":
                        plan.staged[new_id] = incoming
                    elif resolution == "merged":
                        plan.staged[new_id] = merge_conversations(current, incoming)
            self._phase_progress("conversations", i, total)
        return plan

    async def _import_documents(
        self,
        phase: str,
        records: List[Any],
        opts: ImportOptions,
        now: int,
    ) -> Tuple[int, int, int]:
        is_summary_phase = phase == "summaries"
        current_docs = await self.vector_store.all_documents()
        # Each phase owns only its own kind of document
        other_kind = [d for d in current_docs if d.metadata.is_summary != is_summary_phase]
        existing = (
            {} if opts.mode == "replace"
            else {d.id: d for d in current_docs if d.metadata.is_summary == is_summary_phase}
        )

        plan: _PhasePlan[MemoryDocument] = _PhasePlan()
        required = ("id", "content")
        total = len(records)

        for i, item in enumerate(records):
            document = None
            if is_summary_phase or (isinstance(item, dict) and isinstance(item.get("vector"), list)):
                document = self._parse(MemoryDocument, item, required)
            if (
                document is None
                or not self._in_range(document.created_at, opts)
                or (opts.min_importance is not None and document.metadata.importance < opts.min_importance)
            ):
                plan.skipped += 1
                self._skipped += 1
            else:
                new_id = self._new_id(document.id, opts, now)
                update: Dict[str, Any] = {"id": new_id}
                if is_summary_phase and not document.metadata.is_summary:
                    update["metadata"] = document.metadata.model_copy(update={"is_summary": True})
                incoming = document.model_copy(update=update)
                current = plan.staged.get(new_id) or existing.get(new_id)
                if current is None or opts.mode == "replace":
                    plan.staged[new_id] = incoming
                    plan.imported += 1
                else:
                    resolution = resolve_document_conflict(current, incoming, opts.conflict_resolution)
                    self._record_conflict(plan, "summary" if is_summary_phase else "vector", document.id, resolution)
                    if resolution == "imported":
                        plan.staged[new_id] = incoming
            self._phase_progress(phase, i, total)

        if not opts.dry_run:
            if opts.mode == "replace":
                await self.vector_store.replace_all(other_kind + list(plan.staged.values()))
            elif plan.staged:
                await self.vector_store.upsert_many(list(plan.staged.values()))
        return plan.imported, plan.skipped, plan.conflicts

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse(model, item: Any, required: Tuple[str, ...]):
        if not _is_record(item, *required):
            return None
        try:
            return model.from_wire(item)
        except ValidationError:
            return None

    def _record_conflict(self, plan: _PhasePlan, kind: str, record_id: str, resolution: Resolution) -> None:
        plan.conflicts += 1
        self._conflicts += 1
        if resolution in ("imported", "merged"):
            plan.imported += 1
        else:
            plan.skipped += 1
            self._skipped += 1
        self.emit("conflict", {"type": kind, "id": record_id, "resolution": resolution})

    def _check_abort(self) -> None:
        if self._abort_requested:
            raise _ImportAborted()

    def _phase_progress(self, phase: str, index: int, total: int) -> None:
        if index % _PROGRESS_EVERY[phase] == 0 or index == total - 1:
            start, span = _PHASE_PROGRESS[phase]
            self._progress(phase, index + 1, total, start + (index / total) * span)

    def _progress(self, phase: str, processed: int, total: int, overall: float) -> None:
        progress = ImportProgress(
            phase=phase,
            processed=processed,
            total=total,
            overall_progress=min(100, round(overall)),
            conflicts=self._conflicts,
            skipped=self._skipped,
        )
        self.emit("progress", progress.to_wire())
