"""
Consolidation summaries.

Reduces a document to a detail tier chosen by its importance, or fuses a
group of documents into one summary using extractive, abstractive (LLM) or
hybrid strategy. The LLM path always has a deterministic extractive fallback.
"""

import uuid
from typing import List, Literal, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field

from memory_engine.config.settings import SummarizerConfig, SummaryStrategy
from memory_engine.errors import describe
from memory_engine.generation.completion import CompletionClient
from memory_engine.telemetry import get_logger

from .extractor import extract_topics
from .schemas import DocumentMetadata, MemoryDocument, SourceType, now_ms
from .sentences import keep_top_sentences, score_sentence, split_sentences

logger = get_logger(__name__)

DetailTier = Literal["full", "light", "aggressive"]

LIGHT_KEEP_FRACTION = 0.7
AGGRESSIVE_KEEP_FRACTION = 0.3
MAX_PREFIX_TOPICS = 5


class SummarizationResult(BaseModel):
    """Outcome of fusing a group of documents."""
    summary: str
    topics: List[str] = Field(default_factory=list)
    importance: float = Field(0.0, ge=0.0, le=1.0)
    source_ids: List[str] = Field(default_factory=list)
    source_type: str = SourceType.OTHER.value
    original_length: int = 0
    summary_length: int = 0
    compression_ratio: float = 1.0
    strategy_used: SummaryStrategy = "extractive"


def compression_ratio(summary_length: int, original_length: int) -> float:
    if original_length == 0:
        return 1.0
    return summary_length / original_length


class ConsolidationSummarizer:
    """
    Summarizes memory documents for long-term storage.

    Uses the completion client (or mock) for abstractive summaries and falls
    back to sentence extraction whenever it is absent, disabled, failing or
    returns nothing.
    """

    def __init__(
        self,
        config: Optional[SummarizerConfig] = None,
        completion: Optional[CompletionClient] = None,
    ):
        """
        Initialize summarizer.

        Args:
            config: Summarizer configuration
            completion: Optional completion collaborator for abstractive summaries
        """
        self.config = config or SummarizerConfig()
        self.completion = completion

    # ------------------------------------------------------------------
    # Single documents
    # ------------------------------------------------------------------

    def classify_tier(self, importance: float) -> DetailTier:
        if importance >= self.config.full_detail_threshold:
            return "full"
        if importance >= self.config.light_summary_threshold:
            return "light"
        return "aggressive"

    def summarize_document(self, document: MemoryDocument) -> str:
        """
        Reduce a document's content to its detail tier.

        Args:
            document: Document to reduce

        Returns:
            Unchanged content (full), top 70% of sentences (light) or top 30%
            with at least one sentence (aggressive), in original order
        """
        tier = self.classify_tier(document.metadata.importance)
        if tier == "full":
            return document.content
        if tier == "light":
            return keep_top_sentences(document.content, LIGHT_KEEP_FRACTION, round_up=True)
        return keep_top_sentences(document.content, AGGRESSIVE_KEEP_FRACTION)

    def consolidate_document(self, document: MemoryDocument) -> MemoryDocument:
        """Copy of the document with tiered content (vector dropped if content changed)."""
        content = self.summarize_document(document)
        if content == document.content:
            return document.model_copy(deep=True)
        return document.model_copy(update={"content": content, "vector": None}, deep=True)

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def summarize_group(
        self,
        documents: Sequence[MemoryDocument],
        strategy: Optional[SummaryStrategy] = None,
    ) -> SummarizationResult:
        """
        Fuse several documents into one summary.

        Args:
            documents: Documents to fuse
            strategy: Override for the configured strategy

        Returns:
            SummarizationResult with merged topics, length-weighted importance
            and the strategy that actually produced the text
        """
        strategy = strategy or self.config.strategy
        merged = "\n\n".join(doc.content for doc in documents)
        topics = self._merge_topics(documents)
        importance = self._weighted_importance(documents)

        used: SummaryStrategy = "extractive"
        if strategy == "abstractive":
            text = await self._abstractive(documents, topics)
            if text is not None:
                summary, used = text, "abstractive"
            else:
                summary = self.extractive_summary(documents)
        elif strategy == "hybrid":
            summary = self.extractive_summary(documents)
            if topics:
                prefix = ", ".join(topics[:MAX_PREFIX_TOPICS])
                summary = f"[Topics: {prefix}] {summary}".rstrip()
            used = "hybrid"
        else:
            summary = self.extractive_summary(documents)

        source_types = {doc.metadata.source_type for doc in documents}
        result = SummarizationResult(
            summary=summary,
            topics=topics,
            importance=importance,
            source_ids=[doc.id for doc in documents],
            source_type=source_types.pop() if len(source_types) == 1 else SourceType.OTHER.value,
            original_length=len(merged),
            summary_length=len(summary),
            compression_ratio=compression_ratio(len(summary), len(merged)),
            strategy_used=used,
        )
        logger.debug(
            "group_summarized",
            documents=len(documents),
            strategy=used,
            compression_ratio=round(result.compression_ratio, 3),
        )
        return result

    def extractive_summary(self, documents: Sequence[MemoryDocument]) -> str:
        """
        Rank every sentence by score x document importance and pack greedily.

        A sentence is admitted only while the packed text is still shorter
        than the target, so the result overshoots the target by at most one
        sentence.
        """
        ranked: List[Tuple[float, int, int, str]] = []
        for doc_index, doc in enumerate(documents):
            for sent_index, sentence in enumerate(split_sentences(doc.content)):
                weight = score_sentence(sentence) * doc.metadata.importance
                ranked.append((weight, doc_index, sent_index, sentence))

        ranked.sort(key=lambda item: (-item[0], item[1], item[2]))

        target = self.config.target_length
        admitted: List[Tuple[int, int, str]] = []
        length = 0
        for _, doc_index, sent_index, sentence in ranked:
            separator = 1 if admitted else 0
            if length + separator >= target:
                break
            admitted.append((doc_index, sent_index, sentence))
            length += separator + len(sentence)

        admitted.sort()
        return " ".join(sentence for _, _, sentence in admitted)

    def to_summary_document(
        self,
        result: SummarizationResult,
        session_id: Optional[str] = None,
        now: Optional[int] = None,
    ) -> MemoryDocument:
        """Wrap a group summary as a summary document."""
        return MemoryDocument(
            id=f"summary_{uuid.uuid4().hex[:12]}",
            content=result.summary,
            metadata=DocumentMetadata(
                source_type=result.source_type,
                importance=result.importance,
                topics=result.topics,
                tags=["summary"],
                session_id=session_id,
                is_summary=True,
                summarized_ids=list(result.source_ids),
            ),
            created_at=now if now is not None else now_ms(),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _abstractive(
        self,
        documents: Sequence[MemoryDocument],
        topics: List[str],
    ) -> Optional[str]:
        if self.completion is None or not self.config.enable_llm_summarization:
            return None

        material = "\n".join(f"- {doc.content}" for doc in documents)
        topic_line = ", ".join(topics) if topics else "general"
        prompt = f"""You are a note-taker. Condense the following memory notes into one factual summary.

Requirements:
- Keep to <= {self.config.target_length} characters
- Keep names, dates, numbers, preferences and open tasks
- Do NOT add information that is not in the notes

Topics: {topic_line}

Notes:
{material}

Summary:"""

        try:
            response = await self.completion.chat(prompt)
        except Exception as e:
            logger.warning("abstractive_summary_failed", error=describe(e))
            return None

        text = (response.content or "").strip()
        if not text:
            logger.warning("abstractive_summary_empty")
            return None
        return text

    @staticmethod
    def _merge_topics(documents: Sequence[MemoryDocument]) -> List[str]:
        topics: Set[str] = set()
        for doc in documents:
            topics.update(doc.metadata.topics)
            topics |= extract_topics(doc.content)
        return sorted(topics)

    @staticmethod
    def _weighted_importance(documents: Sequence[MemoryDocument]) -> float:
        if not documents:
            return 0.0
        total_length = sum(len(doc.content) for doc in documents)
        if total_length == 0:
            return sum(doc.metadata.importance for doc in documents) / len(documents)
        weighted = sum(doc.metadata.importance * len(doc.content) for doc in documents)
        return min(1.0, max(0.0, weighted / total_length))
