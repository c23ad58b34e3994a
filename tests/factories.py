"""Record builders shared by unit and integration tests."""

from memory_engine.memory.schemas import (
    ConversationSession,
    DocumentMetadata,
    MemoryDocument,
    MemoryEntry,
)

# Fixed reference time: 2024-01-15 12:00:00 UTC
NOW = 1_705_320_000_000
HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


def make_document(
    doc_id: str,
    content: str,
    importance: float = 0.5,
    created_at: int = NOW,
    source_type: str = "fact",
    topics=None,
    is_summary: bool = False,
    session_id=None,
    vector=None,
) -> MemoryDocument:
    return MemoryDocument(
        id=doc_id,
        content=content,
        vector=vector,
        metadata=DocumentMetadata(
            source_type=source_type,
            importance=importance,
            topics=list(topics or []),
            is_summary=is_summary,
            session_id=session_id,
        ),
        created_at=created_at,
    )


def make_entry(entry_id: str, created_at: int = NOW, importance: float = 0.5, content: str = "note") -> MemoryEntry:
    return MemoryEntry(
        id=entry_id,
        type="fact",
        content=content,
        created_at=created_at,
        accessed_at=created_at,
        importance=importance,
    )


def make_conversation(conv_id: str, messages, last_activity_at: int = NOW) -> ConversationSession:
    return ConversationSession(
        id=conv_id,
        started_at=NOW - HOUR_MS,
        last_activity_at=last_activity_at,
        messages=list(messages),
    )
