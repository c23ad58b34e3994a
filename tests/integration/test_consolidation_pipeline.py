"""
Integration test for the path from raw conversation to assembled context:
chunk -> tier -> summarize -> store -> search -> assemble.
"""
import pytest

from memory_engine.config.settings import AssemblyOptions, RetrievalOptions, SummarizerConfig
from memory_engine.generation.completion import MockCompletion
from memory_engine.memory.consolidation import ConsolidationPipeline
from memory_engine.memory.summarizer import ConsolidationSummarizer
from memory_engine.retrieval.assembler import ContextAssembler
from memory_engine.retrieval.semantic_search import SemanticSearch

from factories import NOW

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]

ANY_SCORE = RetrievalOptions(min_score=0.0)


def _summarize_everything(completion=None, strategy="hybrid"):
    # Every chunk falls below the light-summary threshold
    return ConsolidationSummarizer(
        SummarizerConfig(strategy=strategy, full_detail_threshold=1.0, light_summary_threshold=1.0),
        completion=completion,
    )


def _keep_full_detail():
    return ConsolidationSummarizer(SummarizerConfig(full_detail_threshold=0.0, light_summary_threshold=0.0))


async def test_empty_conversation_stores_nothing(vector_store):
    report = await ConsolidationPipeline(vector_store).consolidate([])

    assert report.chunks == 0
    assert report.documents_stored == 0
    assert (await vector_store.get_stats()).total_vectors == 0


async def test_conversation_becomes_tagged_documents(vector_store, sample_messages):
    pipeline = ConsolidationPipeline(vector_store, summarize_low_importance=False)

    report = await pipeline.consolidate(sample_messages, session_id="s1", now=NOW)

    assert report.chunks == 2
    assert report.summary_document_id is None
    assert report.documents_stored == len(report.document_ids) == 2

    for doc_id in report.document_ids:
        doc = await vector_store.get(doc_id)
        assert doc.metadata.source_type == "conversation"
        assert doc.metadata.session_id == "s1"
        assert doc.metadata.is_summary is False
        assert doc.vector is not None

    first = await vector_store.get(report.document_ids[0])
    assert first.created_at == NOW
    assert "programming" in first.metadata.topics


async def test_low_importance_chunks_get_group_summary(vector_store, sample_messages):
    pipeline = ConsolidationPipeline(vector_store, summarizer=_summarize_everything())

    report = await pipeline.consolidate(sample_messages, session_id="s1", now=NOW)

    assert report.summary_document_id is not None
    assert report.documents_stored == 3

    summary = await vector_store.get(report.summary_document_id)
    assert summary.metadata.is_summary is True
    assert summary.metadata.session_id == "s1"
    assert summary.created_at == NOW
    assert set(summary.metadata.summarized_ids) == set(report.document_ids[:2])
    assert summary.content.startswith("[Topics: ")


async def test_group_summary_uses_completion_when_available(vector_store, sample_messages):
    completion = MockCompletion(default="Debugged a python function, then planned a Lisbon trip.")
    pipeline = ConsolidationPipeline(
        vector_store, summarizer=_summarize_everything(completion, strategy="abstractive"),
    )

    report = await pipeline.consolidate(sample_messages, now=NOW)

    summary = await vector_store.get(report.summary_document_id)
    assert summary.content == "Debugged a python function, then planned a Lisbon trip."
    assert len(completion.prompts) == 1


async def test_consolidated_memory_is_retrievable(vector_store, sample_messages):
    pipeline = ConsolidationPipeline(
        vector_store, summarizer=_keep_full_detail(), summarize_low_importance=False,
    )
    await pipeline.consolidate(sample_messages, session_id="s1", now=NOW)
    search = SemanticSearch(vector_store, ANY_SCORE)

    results = await search.search("book a flight and hotel for the trip", now=NOW)

    assert results
    assert "travel" in results[0].document.metadata.topics
    assert results == sorted(results, key=lambda r: r.final_score, reverse=True)


async def test_assembled_context_fits_budget(vector_store, sample_messages):
    await ConsolidationPipeline(vector_store).consolidate(sample_messages, session_id="s1", now=NOW)
    assembler = ContextAssembler(
        SemanticSearch(vector_store, ANY_SCORE),
        AssemblyOptions(max_length=300, format="structured"),
    )

    context = await assembler.assemble_for_conversation(
        "what did we say about the python code?",
        conversation_topics=["programming"],
        session_id="s1",
        now=NOW,
    )

    assert context.results
    assert len(context.content) <= 300
    assert context.content.startswith("--- Memory 1 ---")
