"""
Memory subsystem for long-term conversation recall.

Provides:
- Topic and importance extraction
- Conversation chunking and tiered summarization
- The live entry/conversation map
- Cross-session context tracking
"""

from .chunker import SemanticChunker
from .consolidation import ConsolidationPipeline, ConsolidationReport
from .extractor import extract_tags, extract_topics, score_importance, topic_similarity
from .schemas import (
    ChatMessage,
    ConversationSession,
    DocumentMetadata,
    MemoryDocument,
    MemoryEntry,
    PendingItem,
    Preference,
    SemanticChunk,
    SessionContext,
    SourceType,
)
from .session_context import SessionContextManager
from .store import MemoryManager
from .summarizer import ConsolidationSummarizer, SummarizationResult

__all__ = [
    "ChatMessage",
    "ConversationSession",
    "DocumentMetadata",
    "MemoryDocument",
    "MemoryEntry",
    "PendingItem",
    "Preference",
    "SemanticChunk",
    "SessionContext",
    "SourceType",
    "SemanticChunker",
    "ConsolidationPipeline",
    "ConsolidationReport",
    "ConsolidationSummarizer",
    "SummarizationResult",
    "MemoryManager",
    "SessionContextManager",
    "extract_tags",
    "extract_topics",
    "score_importance",
    "topic_similarity",
]
