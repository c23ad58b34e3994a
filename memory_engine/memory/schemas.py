"""
Memory system data models.

Defines memory documents, conversation chunks, session contexts and the
records carried by backup files. Field names are snake_case in Python and
camelCase on the wire.
"""

import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def now_ms() -> int:
    """Current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


class SourceType(str, Enum):
    """Where a memory document came from."""
    FACT = "fact"
    PREFERENCE = "preference"
    TASK = "task"
    CONTEXT = "context"
    CONVERSATION = "conversation"
    OTHER = "other"


class WireModel(BaseModel):
    """Base model that serializes with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dict with camelCase keys."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    @classmethod
    def from_wire(cls, data: Dict[str, Any]):
        """Load from a camelCase (or snake_case) dict."""
        return cls.model_validate(data)


# ============================================================================
# Memory documents (storage collaborator records)
# ============================================================================

class DocumentMetadata(WireModel):
    """Metadata attached to every stored memory document."""

    source_type: SourceType = Field(SourceType.OTHER, validate_default=True, description="Origin category")
    importance: float = Field(0.5, ge=0.0, le=1.0, description="Importance score in [0, 1]")
    access_count: int = Field(0, ge=0)
    topics: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    session_id: Optional[str] = None
    is_summary: bool = False
    summarized_ids: Optional[List[str]] = None

    @field_validator("topics", "tags")
    @classmethod
    def _dedupe(cls, values: List[str]) -> List[str]:
        return list(dict.fromkeys(values))


class MemoryDocument(WireModel):
    """
    A unit of stored memory.

    Summary documents reference the documents they replace conceptually
    through ``metadata.summarized_ids``; the originals may still exist.
    """

    id: str = Field(..., description="Unique identifier")
    content: str = Field(..., description="Document text")
    vector: Optional[List[float]] = Field(None, description="Embedding, if computed")
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    created_at: int = Field(default_factory=now_ms, description="Epoch ms")

    def snippet(self, max_chars: int = 100) -> str:
        """Get truncated text for display."""
        if len(self.content) <= max_chars:
            return self.content
        return self.content[:max_chars - 3] + "..."


class SearchHit(BaseModel):
    """A raw similarity-search result from the storage collaborator."""
    document: MemoryDocument
    score: float


class StorageStats(WireModel):
    """Summary statistics reported by the storage collaborator."""
    total_vectors: int = 0
    average_importance: float = 0.0


# ============================================================================
# Conversation material
# ============================================================================

class ChatMessage(WireModel):
    """Single chat message."""
    role: str
    content: str
    timestamp: Optional[int] = None


class SemanticChunk(BaseModel):
    """
    A contiguous, topic-coherent slice of a message sequence.

    Produced transiently by the chunker; persisted only after being wrapped
    into a ``MemoryDocument``.
    """

    id: str
    content: str
    topics: List[str] = Field(default_factory=list)
    importance: float = Field(0.0, ge=0.0, le=1.0)
    timestamp: int
    turn_count: int = Field(..., ge=1)
    start_index: int = Field(..., ge=0)
    end_index: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "SemanticChunk":
        if self.start_index > self.end_index:
            raise ValueError("start_index must be <= end_index")
        return self


# ============================================================================
# Session continuity
# ============================================================================

class Preference(WireModel):
    """A learned user preference, deduplicated by (category, key)."""
    category: str
    key: str
    value: str
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    last_confirmed: int = Field(default_factory=now_ms)
    confirmation_count: int = Field(1, ge=0)

    @property
    def identity(self) -> str:
        return f"{self.category}:{self.key}"


class PendingItem(WireModel):
    """Something left open in a session. Resolution is one-way."""
    id: str
    description: str
    created_at: int = Field(default_factory=now_ms)
    resolved: bool = False
    resolved_at: Optional[int] = None
    resolution: Optional[str] = None

    def resolve(self, resolution: Optional[str] = None, now: Optional[int] = None) -> bool:
        """
        Mark the item resolved.

        Returns:
            False if it was already resolved (nothing changes), else True
        """
        if self.resolved:
            return False
        self.resolved = True
        self.resolved_at = now if now is not None else now_ms()
        self.resolution = resolution
        return True


class SessionContext(WireModel):
    """Cross-session continuity state for one conversation session."""
    id: str
    session_id: str
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    ended_at: Optional[int] = None
    topics: List[str] = Field(default_factory=list)
    key_facts: List[str] = Field(default_factory=list)
    preferences: List[Preference] = Field(default_factory=list)
    pending_items: List[PendingItem] = Field(default_factory=list)
    summary: str = ""
    relevance: float = Field(1.0, ge=0.0, le=1.0)
    exchange_count: int = 0
    related_session_ids: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    decayed_at: Optional[int] = Field(None, description="Last time decay was applied")

    @property
    def last_activity(self) -> int:
        return self.ended_at or self.updated_at


# ============================================================================
# Live memory map records (memory manager)
# ============================================================================

class MemoryEntry(WireModel):
    """A fact, preference or context note held by the memory manager."""
    id: str
    type: str
    content: str
    metadata: Optional[Dict[str, Any]] = None
    created_at: int = Field(default_factory=now_ms)
    accessed_at: int = Field(default_factory=now_ms)
    importance: float = Field(0.5, ge=0.0, le=1.0)
    tags: Optional[List[str]] = None


class ConversationSession(WireModel):
    """A conversation session containing message history."""
    id: str
    started_at: int = Field(default_factory=now_ms)
    last_activity_at: int = Field(default_factory=now_ms)
    messages: List[ChatMessage] = Field(default_factory=list)
    summary: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


# ============================================================================
# Backup envelope
# ============================================================================

class BackupHeader(WireModel):
    """Header of a backup file."""
    version: int
    exported_at: int
    checksum: str = ""
    compressed: bool = False


class BackupEnvelope(WireModel):
    """A versioned, checksummed snapshot used only for import/export."""
    header: BackupHeader
    entries: List[MemoryEntry] = Field(default_factory=list)
    conversations: List[ConversationSession] = Field(default_factory=list)
    vectors: List[MemoryDocument] = Field(default_factory=list)
    summaries: List[MemoryDocument] = Field(default_factory=list)
