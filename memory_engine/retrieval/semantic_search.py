"""
Relevance scoring on top of the storage collaborator's similarity search.

Scoring:
- Semantic similarity as returned by the collaborator (weight 0.6)
- Document importance (weight 0.25)
- Recency, decaying linearly to zero over 7 days (weight 0.15)
- Topic bonus: 0.1 per query topic found on the document
- Boosts: x1.10 for importance > 0.7, x1.05 for recency > 0.8
"""

from typing import List, Optional, Sequence, Set

from pydantic import BaseModel, Field

from memory_engine.config.settings import RetrievalOptions
from memory_engine.errors import RetrievalError
from memory_engine.index.vector_store import SearchFilters, StorageBackend
from memory_engine.memory.extractor import extract_topics
from memory_engine.memory.schemas import MemoryDocument, SearchHit, StorageStats, now_ms
from memory_engine.telemetry import get_logger

logger = get_logger(__name__)

HOUR_MS = 60 * 60 * 1000
RECENCY_WINDOW_HOURS = 168
TOPIC_BONUS_PER_MATCH = 0.1
IMPORTANCE_BOOST_THRESHOLD = 0.7
IMPORTANCE_BOOST = 1.10
RECENCY_BOOST_THRESHOLD = 0.8
RECENCY_BOOST = 1.05
SAME_SESSION_BOOST = 1.2
OVERFETCH_FACTOR = 2


class EnhancedResult(BaseModel):
    """A search hit with its score breakdown."""
    document: MemoryDocument
    semantic_score: float
    importance_score: float
    recency_score: float
    topic_bonus: float = 0.0
    matched_topics: List[str] = Field(default_factory=list)
    final_score: float


def recency_score(created_at: int, now: int) -> float:
    age_hours = (now - created_at) / HOUR_MS
    return min(1.0, max(0.0, 1.0 - age_hours / RECENCY_WINDOW_HOURS))


def _rank_key(item):
    position, result = item
    return (-result.final_score, -result.importance_score, position)


def rank_results(results: Sequence[EnhancedResult]) -> List[EnhancedResult]:
    """Sort by final score, then importance, then incoming order."""
    return [r for _, r in sorted(enumerate(results), key=_rank_key)]


class SemanticSearch:
    """
    Re-ranks storage hits using importance, recency and topic overlap.

    Storage failures are raised as ``RetrievalError``; an empty list always
    means nothing matched.
    """

    def __init__(self, storage: StorageBackend, default_options: Optional[RetrievalOptions] = None):
        """
        Args:
            storage: Similarity-search collaborator
            default_options: Options used when a call passes none
        """
        self.storage = storage
        self.default_options = default_options or RetrievalOptions()

    def score_hit(
        self,
        hit: SearchHit,
        query_topics: Set[str],
        options: RetrievalOptions,
        now: int,
    ) -> EnhancedResult:
        """Compute the combined score for one hit."""
        doc = hit.document
        importance = doc.metadata.importance
        recency = recency_score(doc.created_at, now)
        matched = sorted(query_topics & set(doc.metadata.topics))
        bonus = TOPIC_BONUS_PER_MATCH * len(matched)

        final = (
            hit.score * options.semantic_weight
            + importance * options.importance_weight
            + recency * options.recency_weight
            + bonus
        )
        if options.boost_by_importance and importance > IMPORTANCE_BOOST_THRESHOLD:
            final *= IMPORTANCE_BOOST
        if options.boost_by_recency and recency > RECENCY_BOOST_THRESHOLD:
            final *= RECENCY_BOOST

        return EnhancedResult(
            document=doc,
            semantic_score=hit.score,
            importance_score=importance,
            recency_score=recency,
            topic_bonus=bonus,
            matched_topics=matched,
            final_score=min(1.0, max(0.0, final)),
        )

    async def search(
        self,
        query: str,
        options: Optional[RetrievalOptions] = None,
        now: Optional[int] = None,
    ) -> List[EnhancedResult]:
        """
        Ranked search.

        Over-fetches twice the limit at half the score floor, re-scores,
        filters by source type and final score, then truncates.

        Args:
            query: Query text
            options: Retrieval options
            now: Reference time for recency (epoch ms)

        Returns:
            Results sorted by final score descending

        Raises:
            RetrievalError: If the storage collaborator fails
        """
        options = options or self.default_options
        ts = now if now is not None else now_ms()

        filters = SearchFilters(
            limit=options.limit * OVERFETCH_FACTOR,
            min_score=options.min_score * 0.5,
            source_types=list(options.source_types),
            min_importance=options.min_importance,
            topics=list(options.topics),
            tags=list(options.tags),
            include_summaries=options.include_summaries,
        )

        try:
            hits = await self.storage.search(query, filters)
        except Exception as e:
            logger.error("storage_search_failed", error=str(e))
            raise RetrievalError(f"Search failed: {e}") from e

        query_topics = extract_topics(query)
        scored = [self.score_hit(hit, query_topics, options, ts) for hit in hits]

        if options.source_types:
            scored = [r for r in scored if r.document.metadata.source_type in options.source_types]
        scored = [r for r in scored if r.final_score >= options.min_score]

        results = rank_results(scored)[:options.limit]
        logger.debug(
            "search_completed",
            candidates=len(hits),
            returned=len(results),
        )
        return results

    async def search_with_context(
        self,
        query: str,
        conversation_topics: Optional[Sequence[str]] = None,
        session_id: Optional[str] = None,
        options: Optional[RetrievalOptions] = None,
        now: Optional[int] = None,
    ) -> List[EnhancedResult]:
        """
        Search enriched by the ongoing conversation.

        Conversation topics are appended to the query text; results from the
        same session get a x1.2 boost (capped at 1.0) and are re-ranked.
        """
        enriched = query
        if conversation_topics:
            enriched = f"{query} {' '.join(conversation_topics)}"

        results = await self.search(enriched, options, now=now)
        if not session_id:
            return results

        boosted = [
            r.model_copy(update={"final_score": min(1.0, r.final_score * SAME_SESSION_BOOST)})
            if r.document.metadata.session_id == session_id
            else r
            for r in results
        ]
        return rank_results(boosted)

    async def find_related(
        self,
        document_id: str,
        limit: int = 5,
        now: Optional[int] = None,
    ) -> List[EnhancedResult]:
        """Documents similar to a stored document, excluding itself."""
        try:
            document = await self.storage.get(document_id)
            if document is None or document.vector is None:
                return []
            hits = await self.storage.search_by_vector(
                document.vector,
                SearchFilters(limit=limit + 1),
            )
        except Exception as e:
            raise RetrievalError(f"Related search failed: {e}") from e

        ts = now if now is not None else now_ms()
        topics = set(document.metadata.topics)
        scored = [
            self.score_hit(hit, topics, self.default_options, ts)
            for hit in hits
            if hit.document.id != document_id
        ]
        return rank_results(scored)[:limit]

    async def get_stats(self) -> StorageStats:
        try:
            return await self.storage.get_stats()
        except Exception as e:
            raise RetrievalError(f"Stats unavailable: {e}") from e
