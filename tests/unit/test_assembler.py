"""
Unit tests for context assembly.

Tests:
- format_entry(): plain, structured and markdown output
- prioritize(): source-type priority with unlisted types last
- assemble_from_results(): document cap, length cap and truncation
- ContextAssembler: search-then-pack
"""

from unittest.mock import AsyncMock

import pytest

from memory_engine.config.settings import AssemblyOptions
from memory_engine.memory.schemas import MemoryDocument
from memory_engine.retrieval.assembler import (
    ContextAssembler,
    assemble_from_results,
    estimate_tokens,
    format_entry,
    prioritize,
)
from memory_engine.retrieval.semantic_search import EnhancedResult

from factories import make_document


def _result(doc_id, content="content", source_type="fact", final=0.5, topics=None):
    return EnhancedResult(
        document=make_document(doc_id, content, source_type=source_type, topics=topics),
        semantic_score=final,
        importance_score=0.5,
        recency_score=0.5,
        final_score=final,
    )


PLAIN = AssemblyOptions(format="plain", include_metadata=False)


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcde") == 2


# ============================================================================
# Formatting
# ============================================================================

def test_format_plain():
    result = _result("a", "Likes tea")
    assert format_entry(result, 1, AssemblyOptions()) == "[fact] Likes tea"
    assert format_entry(result, 1, PLAIN) == "Likes tea"


def test_format_structured():
    result = _result("a", "Likes tea", topics=["food"], final=0.75)
    text = format_entry(result, 2, AssemblyOptions(format="structured"))

    assert text.splitlines()[0] == "--- Memory 2 ---"
    assert "Type: fact" in text
    assert "Relevance: 0.75" in text
    assert "Topics: food" in text
    assert text.endswith("Likes tea")


def test_format_markdown():
    result = _result("a", "Likes tea", source_type="preference", final=0.9)
    text = format_entry(result, 1, AssemblyOptions(format="markdown"))

    assert text.startswith("### Preference (relevance 0.90)")
    assert format_entry(result, 1, AssemblyOptions(format="markdown", include_metadata=False)) == "- Likes tea"


def test_format_document_with_default_metadata():
    result = EnhancedResult(
        document=MemoryDocument(id="d", content="hello"),
        semantic_score=0.5,
        importance_score=0.5,
        recency_score=0.5,
        final_score=0.5,
    )

    assert result.document.metadata.source_type == "other"
    assert format_entry(result, 1, AssemblyOptions()) == "[other] hello"
    assert "Type: other" in format_entry(result, 1, AssemblyOptions(format="structured"))
    assert format_entry(result, 1, AssemblyOptions(format="markdown")).startswith("### Other ")


# ============================================================================
# Prioritization
# ============================================================================

def test_prioritize_unlisted_types_last():
    results = [
        _result("other", source_type="other", final=0.9),
        _result("fact", source_type="fact", final=0.5),
        _result("pref", source_type="preference", final=0.4),
    ]
    ordered = prioritize(results, ["preference", "fact"])
    assert [r.document.id for r in ordered] == ["pref", "fact", "other"]


def test_prioritize_by_score_within_type():
    results = [_result("low", final=0.2), _result("high", final=0.8)]
    assert [r.document.id for r in prioritize(results, ["fact"])] == ["high", "low"]


# ============================================================================
# Packing
# ============================================================================

def test_assemble_empty():
    context = assemble_from_results([])
    assert context.content == ""
    assert context.results == []
    assert context.estimated_tokens == 0
    assert context.truncated is False


def test_assemble_joins_entries():
    context = assemble_from_results([_result("a", "One"), _result("b", "Two", final=0.4)], PLAIN)

    assert context.content == "One\n\nTwo"
    assert context.total_considered == 2
    assert context.truncated is False
    assert context.estimated_tokens == estimate_tokens("One\n\nTwo")


def test_assemble_respects_document_cap():
    results = [_result(str(i)) for i in range(5)]
    context = assemble_from_results(results, AssemblyOptions(max_documents=2, include_metadata=False))

    assert len(context.results) == 2
    assert context.truncated is True
    assert context.total_considered == 5


def test_assemble_truncates_overflowing_entry():
    first = _result("a", "a" * 100, final=0.9)
    second = _result("b", "b" * 400, final=0.5)
    options = AssemblyOptions(max_length=400, format="plain", include_metadata=False)

    context = assemble_from_results([first, second], options)

    assert len(context.results) == 2
    assert context.truncated is True
    assert context.content.endswith("...")
    assert len(context.content) == 400


def test_assemble_drops_entry_when_little_room_left():
    first = _result("a", "a" * 100, final=0.9)
    second = _result("b", "b" * 400, final=0.5)
    options = AssemblyOptions(max_length=250, format="plain", include_metadata=False)

    context = assemble_from_results([first, second], options)

    assert [r.document.id for r in context.results] == ["a"]
    assert context.content == "a" * 100
    assert context.truncated is True


def test_assemble_never_exceeds_max_length():
    results = [_result(str(i), "x" * 150) for i in range(10)]
    options = AssemblyOptions(max_length=500, include_metadata=False)
    assert len(assemble_from_results(results, options).content) <= 500


# ============================================================================
# Assembler
# ============================================================================

@pytest.mark.asyncio
async def test_context_assembler_searches_then_packs():
    search = AsyncMock()
    search.search.return_value = [_result("a", "Likes tea")]
    assembler = ContextAssembler(search, PLAIN)

    context = await assembler.assemble("tea")

    assert context.content == "Likes tea"
    search.search.assert_awaited_once()


@pytest.mark.asyncio
async def test_context_assembler_for_conversation():
    search = AsyncMock()
    search.search_with_context.return_value = [_result("a", "Flight at 9")]
    assembler = ContextAssembler(search, PLAIN)

    context = await assembler.assemble_for_conversation("flight", ["travel"], session_id="s1")

    assert context.content == "Flight at 9"
    kwargs = search.search_with_context.call_args.kwargs
    assert kwargs["conversation_topics"] == ["travel"]
    assert kwargs["session_id"] == "s1"
