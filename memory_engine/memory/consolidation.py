"""
Conversation consolidation pipeline.

raw messages -> chunker -> merge -> tiered documents (+ optional group
summary) -> storage collaborator.
"""

import uuid
from typing import TYPE_CHECKING, List, Optional, Sequence

from pydantic import BaseModel, Field

from memory_engine.telemetry import new_run_id, timed_step

from .chunker import SemanticChunker
from .extractor import extract_tags
from .schemas import ChatMessage, DocumentMetadata, MemoryDocument, SemanticChunk, SourceType
from .summarizer import ConsolidationSummarizer

if TYPE_CHECKING:
    from memory_engine.index.vector_store import StorageBackend


class ConsolidationReport(BaseModel):
    """What one consolidation run stored."""
    run_id: str
    chunks: int = 0
    documents_stored: int = 0
    summary_document_id: Optional[str] = None
    document_ids: List[str] = Field(default_factory=list)


class ConsolidationPipeline:
    """
    Turns conversation history into stored memory documents.

    Each merged chunk becomes one conversation document whose content is
    reduced to its importance tier. When ``summarize_low_importance`` is set,
    all chunks below the light-summary threshold are also fused into one
    summary document.
    """

    def __init__(
        self,
        storage: "StorageBackend",
        chunker: Optional[SemanticChunker] = None,
        summarizer: Optional[ConsolidationSummarizer] = None,
        summarize_low_importance: bool = True,
    ):
        self.storage = storage
        self.chunker = chunker or SemanticChunker()
        self.summarizer = summarizer or ConsolidationSummarizer()
        self.summarize_low_importance = summarize_low_importance

    def chunk_to_document(self, chunk: SemanticChunk, session_id: Optional[str] = None) -> MemoryDocument:
        """Wrap a chunk into a tiered conversation document."""
        document = MemoryDocument(
            id=f"conv_{uuid.uuid4().hex[:12]}",
            content=chunk.content,
            metadata=DocumentMetadata(
                source_type=SourceType.CONVERSATION,
                importance=chunk.importance,
                topics=list(chunk.topics),
                tags=extract_tags(chunk.content),
                session_id=session_id,
            ),
            created_at=chunk.timestamp,
        )
        return self.summarizer.consolidate_document(document)

    async def consolidate(
        self,
        messages: Sequence[ChatMessage],
        session_id: Optional[str] = None,
        now: Optional[int] = None,
    ) -> ConsolidationReport:
        """
        Chunk, reduce and store a conversation.

        Args:
            messages: Conversation in chronological order
            session_id: Session the messages belong to
            now: Timestamp for messages without one

        Returns:
            ConsolidationReport with stored document IDs
        """
        report = ConsolidationReport(run_id=new_run_id())
        if not messages:
            return report

        with timed_step(report.run_id, "chunk", messages=len(messages)) as fields:
            chunks = self.chunker.merge_chunks(self.chunker.chunk_conversation(messages, now=now))
            fields["chunks"] = len(chunks)
        report.chunks = len(chunks)

        documents = [self.chunk_to_document(chunk, session_id) for chunk in chunks]

        if self.summarize_low_importance:
            threshold = self.summarizer.config.light_summary_threshold
            low = [
                doc for doc, chunk in zip(documents, chunks)
                if chunk.importance < threshold
            ]
            if len(low) > 1:
                result = await self.summarizer.summarize_group(low)
                summary = self.summarizer.to_summary_document(result, session_id=session_id, now=now)
                documents.append(summary)
                report.summary_document_id = summary.id

        with timed_step(report.run_id, "store", documents=len(documents)):
            report.documents_stored = await self.storage.upsert_many(documents)
        report.document_ids = [doc.id for doc in documents]
        return report
