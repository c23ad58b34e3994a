"""
Semantic chunking of conversation history.

Splits a linear message sequence into topic-coherent chunks and can fold
adjacent chunks back together when their topics agree.
"""

import uuid
from typing import List, Optional, Sequence, Set

from memory_engine.config.settings import ChunkerConfig
from memory_engine.telemetry import get_logger

from .extractor import extract_topics, score_importance, topic_similarity
from .schemas import ChatMessage, SemanticChunk, now_ms

logger = get_logger(__name__)


def _chunk_id() -> str:
    return f"chunk_{uuid.uuid4().hex[:12]}"


def format_message(message: ChatMessage) -> str:
    """Render a message as a ``Role: content`` line."""
    return f"{message.role.capitalize()}: {message.content}"


class SemanticChunker:
    """
    Splits conversations into topic-coherent chunks.

    A new chunk starts when the current one is full, or when it has at
    least the minimum number of turns and the conversation moves to a
    different (detected) topic.
    """

    def __init__(self, config: Optional[ChunkerConfig] = None):
        """
        Initialize chunker.

        Args:
            config: Chunker configuration (defaults if omitted)
        """
        self.config = config or ChunkerConfig()

    def chunk_conversation(
        self,
        messages: Sequence[ChatMessage],
        now: Optional[int] = None,
    ) -> List[SemanticChunk]:
        """
        Split messages into chunks in a single pass.

        Args:
            messages: Conversation in chronological order
            now: Fallback timestamp for messages without one

        Returns:
            Chunks covering every message index exactly once
        """
        if not messages:
            return []

        cfg = self.config
        chunks: List[SemanticChunk] = []
        start = 0
        prev_topics: Set[str] = set()

        for index, message in enumerate(messages):
            topics = extract_topics(message.content)
            size = index - start

            if size > 0:
                full = size >= cfg.max_turns_per_chunk
                topic_shift = (
                    size >= cfg.min_turns_per_chunk
                    and bool(topics)
                    and topic_similarity(prev_topics, topics) < cfg.topic_change_threshold
                )
                if full or topic_shift:
                    chunks.append(self._build_chunk(messages, start, index - 1, now))
                    start = index

            prev_topics = topics

        chunks.append(self._build_chunk(messages, start, len(messages) - 1, now))

        logger.debug(
            "conversation_chunked",
            messages=len(messages),
            chunks=len(chunks),
        )
        return chunks

    def merge_chunks(self, chunks: Sequence[SemanticChunk]) -> List[SemanticChunk]:
        """
        Greedily fold adjacent chunks with similar topics.

        A chunk is folded into its predecessor when their topic similarity
        exceeds the merge threshold and the combined turn count stays within
        the maximum. Running the fold on its own output changes nothing.
        """
        merged: List[SemanticChunk] = []

        for chunk in chunks:
            if merged:
                previous = merged[-1]
                similar = (
                    topic_similarity(previous.topics, chunk.topics) > self.config.merge_threshold
                )
                fits = previous.turn_count + chunk.turn_count <= self.config.max_turns_per_chunk
                if similar and fits:
                    merged[-1] = self._fold(previous, chunk)
                    continue
            merged.append(chunk)

        return merged

    def _build_chunk(
        self,
        messages: Sequence[ChatMessage],
        start: int,
        end: int,
        now: Optional[int],
    ) -> SemanticChunk:
        window = messages[start:end + 1]
        content = "\n".join(format_message(m) for m in window)

        topics: Set[str] = set()
        for message in window:
            topics |= extract_topics(message.content)

        timestamp = window[0].timestamp
        if timestamp is None:
            timestamp = now if now is not None else now_ms()

        return SemanticChunk(
            id=_chunk_id(),
            content=content,
            topics=sorted(topics),
            importance=score_importance(content, base=self.config.base_importance),
            timestamp=timestamp,
            turn_count=len(window),
            start_index=start,
            end_index=end,
        )

    @staticmethod
    def _fold(first: SemanticChunk, second: SemanticChunk) -> SemanticChunk:
        return SemanticChunk(
            id=first.id,
            content=f"{first.content}\n{second.content}",
            topics=sorted(set(first.topics) | set(second.topics)),
            importance=max(first.importance, second.importance),
            timestamp=first.timestamp,
            turn_count=first.turn_count + second.turn_count,
            start_index=first.start_index,
            end_index=second.end_index,
        )
