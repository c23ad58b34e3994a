"""
Unit tests for SemanticChunker.

Tests:
- chunk_conversation(): coverage, topic shifts, size cap, timestamps
- merge_chunks(): similarity and size rules, idempotence
"""

import pytest

from memory_engine.config.settings import ChunkerConfig
from memory_engine.memory.chunker import SemanticChunker, format_message
from memory_engine.memory.schemas import ChatMessage, SemanticChunk

from factories import NOW


@pytest.fixture
def chunker():
    return SemanticChunker()


def _chunk(start, end, topics, turns=None):
    return SemanticChunk(
        id=f"chunk_{start}",
        content=f"content {start}-{end}",
        topics=topics,
        importance=0.3,
        timestamp=NOW + start,
        turn_count=turns if turns is not None else end - start + 1,
        start_index=start,
        end_index=end,
    )


# ============================================================================
# Chunking
# ============================================================================

def test_chunk_empty_conversation(chunker):
    assert chunker.chunk_conversation([]) == []


def test_chunks_cover_every_message_once(chunker, sample_messages):
    chunks = chunker.chunk_conversation(sample_messages)

    covered = []
    for chunk in chunks:
        covered.extend(range(chunk.start_index, chunk.end_index + 1))
    assert covered == list(range(len(sample_messages)))


def test_topic_shift_starts_new_chunk(chunker, sample_messages):
    chunks = chunker.chunk_conversation(sample_messages)

    assert [(c.start_index, c.end_index) for c in chunks] == [(0, 3), (4, 6)]
    assert chunks[0].topics == ["programming"]
    assert "travel" in chunks[1].topics
    assert chunks[0].turn_count == 4
    assert chunks[1].turn_count == 3


def test_chunk_content_and_timestamp(chunker, sample_messages):
    chunks = chunker.chunk_conversation(sample_messages)

    assert chunks[0].content.splitlines()[0] == "User: Can you help me debug this python function?"
    assert chunks[0].timestamp == NOW
    assert chunks[1].timestamp == NOW + 4000
    assert chunks[0].id.startswith("chunk_")
    assert 0.0 <= chunks[0].importance <= 1.0


def test_full_chunk_is_split_without_topics():
    chunker = SemanticChunker(ChunkerConfig(max_turns_per_chunk=10))
    messages = [ChatMessage(role="user", content="hello", timestamp=NOW) for _ in range(12)]

    chunks = chunker.chunk_conversation(messages)

    assert [c.turn_count for c in chunks] == [10, 2]
    assert all(c.turn_count <= 10 for c in chunks)


def test_short_chunk_is_not_split_on_topic_change():
    chunker = SemanticChunker(ChunkerConfig(min_turns_per_chunk=3))
    messages = [
        ChatMessage(role="user", content="python code", timestamp=NOW),
        ChatMessage(role="user", content="flight hotel", timestamp=NOW),
    ]
    assert len(chunker.chunk_conversation(messages)) == 1


def test_missing_timestamp_uses_now(chunker):
    messages = [ChatMessage(role="user", content="hi")]
    chunks = chunker.chunk_conversation(messages, now=NOW)
    assert chunks[0].timestamp == NOW


def test_format_message():
    assert format_message(ChatMessage(role="assistant", content="Hi")) == "Assistant: Hi"


# ============================================================================
# Merging
# ============================================================================

def test_merge_similar_adjacent_chunks(chunker):
    merged = chunker.merge_chunks([_chunk(0, 1, ["travel"]), _chunk(2, 4, ["travel"])])

    assert len(merged) == 1
    assert merged[0].turn_count == 5
    assert merged[0].start_index == 0
    assert merged[0].end_index == 4
    assert merged[0].content == "content 0-1\ncontent 2-4"


def test_merge_keeps_dissimilar_chunks(chunker):
    chunks = [_chunk(0, 1, ["travel"]), _chunk(2, 3, ["work"])]
    assert len(chunker.merge_chunks(chunks)) == 2


def test_merge_respects_turn_cap(chunker):
    chunks = [_chunk(0, 5, ["travel"]), _chunk(6, 11, ["travel"])]
    assert len(chunker.merge_chunks(chunks)) == 2


def test_merge_unions_topics():
    chunker = SemanticChunker(ChunkerConfig(merge_threshold=0.4))
    merged = chunker.merge_chunks([_chunk(0, 1, ["a", "b"]), _chunk(2, 3, ["a"])])
    assert merged[0].topics == ["a", "b"]


def test_merge_is_idempotent(chunker, sample_messages):
    once = chunker.merge_chunks(chunker.chunk_conversation(sample_messages))
    twice = chunker.merge_chunks(once)
    assert [(c.start_index, c.end_index) for c in twice] == [(c.start_index, c.end_index) for c in once]
