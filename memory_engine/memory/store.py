"""
Live memory map.

Holds memory entries and conversation sessions in memory, persists them to
``memory.json`` and exposes a narrow bulk-mutation interface for the backup
importer.
"""

import asyncio
import json
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from memory_engine.config.settings import MemoryConfig
from memory_engine.errors import StorageError
from memory_engine.events import EventEmitter
from memory_engine.telemetry import get_logger

from .schemas import ChatMessage, ConversationSession, MemoryEntry, now_ms

logger = get_logger(__name__)

MEMORY_FILE = "memory.json"


class MemoryManager(EventEmitter):
    """
    Owner of the live entry and conversation maps.

    Features:
    - Entry CRUD with importance/recency ordered search
    - Conversation sessions with per-session message caps and LRU eviction
    - JSON persistence with a periodic auto-save task
    - Bulk replace/upsert used by the backup importer
    """

    def __init__(self, config: Optional[MemoryConfig] = None):
        """
        Initialize memory manager.

        Args:
            config: Memory configuration (storage dir, limits)
        """
        super().__init__()
        self.config = config or MemoryConfig()
        self.storage_dir = Path(self.config.storage_dir)

        self._entries: Dict[str, MemoryEntry] = {}
        self._conversations: Dict[str, ConversationSession] = {}
        self.current_session_id: Optional[str] = None

        self.is_dirty = False
        self.is_initialized = False
        self._auto_save_task: Optional[asyncio.Task] = None

    @property
    def file_path(self) -> Path:
        return self.storage_dir / MEMORY_FILE

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load persisted state and start auto-save. Repeated calls are no-ops."""
        if self.is_initialized:
            return

        if self.config.enable_persistence:
            try:
                self.storage_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to create storage directory: {e}") from e
            await self.load()
            self._auto_save_task = asyncio.create_task(self._auto_save_loop())

        self.is_initialized = True
        logger.info(
            "memory_manager_initialized",
            entries=len(self._entries),
            conversations=len(self._conversations),
        )

    async def shutdown(self) -> None:
        """Stop auto-save and flush pending changes."""
        if self._auto_save_task is not None:
            self._auto_save_task.cancel()
            try:
                await self._auto_save_task
            except asyncio.CancelledError:
                pass
            self._auto_save_task = None

        if self.is_dirty:
            await self.save()
        self.remove_all_listeners()
        self.is_initialized = False
        logger.info("memory_manager_shutdown")

    async def _auto_save_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.auto_save_interval)
            if not self.is_dirty:
                continue
            try:
                await self.save()
            except StorageError as e:
                logger.error("auto_save_failed", error=str(e))
                self.emit("error", {"error": str(e)})

    # ------------------------------------------------------------------
    # Sessions and messages
    # ------------------------------------------------------------------

    def start_session(self, metadata: Optional[Dict[str, Any]] = None, now: Optional[int] = None) -> str:
        """
        Start a new conversation session and make it current.

        Returns:
            The new session ID
        """
        ts = now if now is not None else now_ms()
        session = ConversationSession(
            id=str(uuid.uuid4()),
            started_at=ts,
            last_activity_at=ts,
            metadata=metadata,
        )
        self._conversations[session.id] = session
        self.current_session_id = session.id
        self.is_dirty = True
        self._evict_old_conversations()
        logger.info("session_started", session_id=session.id)
        return session.id

    def get_session(self, session_id: str) -> Optional[ConversationSession]:
        return self._conversations.get(session_id)

    def get_current_session(self) -> Optional[ConversationSession]:
        if self.current_session_id is None:
            return None
        return self._conversations.get(self.current_session_id)

    def add_message(self, message: ChatMessage, now: Optional[int] = None) -> None:
        """Append a message to the current session, starting one if needed."""
        session = self.get_current_session()
        if session is None:
            self.start_session(now=now)
            session = self.get_current_session()

        ts = now if now is not None else now_ms()
        if message.timestamp is None:
            message = message.model_copy(update={"timestamp": ts})

        session.messages.append(message)
        session.last_activity_at = ts

        cap = self.config.max_messages_per_conversation
        if len(session.messages) > cap:
            session.messages = session.messages[-cap:]

        self.is_dirty = True

    def get_recent_messages(self, limit: Optional[int] = None) -> List[ChatMessage]:
        session = self.get_current_session()
        if session is None:
            return []
        count = limit or self.config.max_messages_per_conversation
        return session.messages[-count:]

    def get_all_sessions(self) -> List[ConversationSession]:
        """All sessions, most recently active first."""
        return sorted(
            self._conversations.values(),
            key=lambda s: s.last_activity_at,
            reverse=True,
        )

    def _evict_old_conversations(self) -> None:
        excess = len(self._conversations) - self.config.max_conversations
        if excess <= 0:
            return
        oldest = sorted(self._conversations.values(), key=lambda s: s.last_activity_at)
        for session in oldest[:excess]:
            del self._conversations[session.id]
        logger.info("conversations_evicted", count=excess)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def add_entry(
        self,
        entry_type: str,
        content: str,
        importance: float = 0.5,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[int] = None,
    ) -> MemoryEntry:
        ts = now if now is not None else now_ms()
        entry = MemoryEntry(
            id=str(uuid.uuid4()),
            type=entry_type,
            content=content,
            created_at=ts,
            accessed_at=ts,
            importance=importance,
            tags=tags,
            metadata=metadata,
        )
        self._entries[entry.id] = entry
        self.is_dirty = True
        self.emit("entry-added", {"id": entry.id, "type": entry_type})
        return entry

    def get_entry(self, entry_id: str, touch: bool = True) -> Optional[MemoryEntry]:
        """Look up an entry, updating its access time unless ``touch`` is False."""
        entry = self._entries.get(entry_id)
        if entry is not None and touch:
            entry.accessed_at = now_ms()
        return entry

    def remove_entry(self, entry_id: str) -> bool:
        if self._entries.pop(entry_id, None) is None:
            return False
        self.is_dirty = True
        self.emit("entry-removed", {"id": entry_id})
        return True

    def search_entries(
        self,
        entry_type: Optional[str] = None,
        tags: Optional[List[str]] = None,
        min_importance: Optional[float] = None,
        text: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[MemoryEntry]:
        """
        Filter entries and sort by importance, then most recent access.

        Args:
            entry_type: Exact type match
            tags: Any-of tag match
            min_importance: Inclusive importance floor
            text: Case-insensitive substring of the content
            limit: Maximum results

        Returns:
            Matching entries
        """
        results = list(self._entries.values())

        if entry_type:
            results = [e for e in results if e.type == entry_type]
        if tags:
            results = [e for e in results if e.tags and any(t in e.tags for t in tags)]
        if min_importance is not None:
            results = [e for e in results if e.importance >= min_importance]
        if text:
            needle = text.lower()
            results = [e for e in results if needle in e.content.lower()]

        results.sort(key=lambda e: (-e.importance, -e.accessed_at))
        return results[:limit] if limit else results

    def all_entries(self) -> List[MemoryEntry]:
        return list(self._entries.values())

    # ------------------------------------------------------------------
    # Bulk mutation (backup import)
    # ------------------------------------------------------------------

    def replace_all_entries(self, entries: Iterable[MemoryEntry]) -> int:
        self._entries = {entry.id: entry for entry in entries}
        self.is_dirty = True
        return len(self._entries)

    def upsert_entries(self, entries: Iterable[MemoryEntry]) -> int:
        count = 0
        for entry in entries:
            self._entries[entry.id] = entry
            count += 1
        if count:
            self.is_dirty = True
        return count

    def replace_all_conversations(self, conversations: Iterable[ConversationSession]) -> int:
        self._conversations = {c.id: c for c in conversations}
        if self.current_session_id not in self._conversations:
            self.current_session_id = None
        self.is_dirty = True
        return len(self._conversations)

    def upsert_conversations(self, conversations: Iterable[ConversationSession]) -> int:
        count = 0
        for conversation in conversations:
            self._conversations[conversation.id] = conversation
            count += 1
        if count:
            self.is_dirty = True
        return count

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save(self) -> None:
        """Write entries and conversations to ``memory.json``."""
        if not self.config.enable_persistence:
            return

        payload = {
            "entries": [e.to_wire() for e in self._entries.values()],
            "conversations": [c.to_wire() for c in self._conversations.values()],
            "currentSessionId": self.current_session_id,
            "savedAt": now_ms(),
        }
        try:
            await asyncio.to_thread(self._write_json, self.file_path, payload)
        except OSError as e:
            logger.error("memory_save_failed", path=str(self.file_path), error=str(e))
            raise StorageError(f"Failed to save memory: {e}") from e

        self.is_dirty = False
        self.emit("saved", {"entries": len(self._entries), "conversations": len(self._conversations)})
        logger.info(
            "memory_saved",
            entries=len(self._entries),
            conversations=len(self._conversations),
        )

    async def load(self) -> None:
        """Load ``memory.json`` if present, pruning conversations over the limit."""
        if not self.config.enable_persistence or not self.file_path.exists():
            return

        try:
            data = await asyncio.to_thread(self._read_json, self.file_path)
            entries = [MemoryEntry.from_wire(e) for e in data.get("entries", [])]
            conversations = [ConversationSession.from_wire(c) for c in data.get("conversations", [])]
        except (OSError, ValueError) as e:
            logger.error("memory_load_failed", path=str(self.file_path), error=str(e))
            raise StorageError(f"Failed to load memory: {e}") from e

        self._entries = {e.id: e for e in entries}
        self._conversations = {c.id: c for c in conversations}
        self.current_session_id = data.get("currentSessionId")
        self._evict_old_conversations()
        self.emit("loaded", {"entries": len(self._entries), "conversations": len(self._conversations)})

    async def clear(self) -> None:
        self._entries.clear()
        self._conversations.clear()
        self.current_session_id = None
        self.is_dirty = True
        await self.save()
        logger.info("memory_cleared")

    def get_stats(self) -> Dict[str, int]:
        current = self.get_current_session()
        return {
            "total_entries": len(self._entries),
            "total_conversations": len(self._conversations),
            "current_session_messages": len(current.messages) if current else 0,
        }

    @staticmethod
    def _write_json(path: Path, payload: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        tmp.replace(path)

    @staticmethod
    def _read_json(path: Path) -> Dict[str, Any]:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
