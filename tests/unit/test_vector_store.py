"""
Unit tests for InMemoryVectorStore.
"""

import numpy as np
import pytest

from memory_engine.errors import StorageError
from memory_engine.index.vector_store import (
    HashingEncoder,
    InMemoryVectorStore,
    SearchFilters,
    StorageBackend,
)

from factories import make_document

pytestmark = pytest.mark.asyncio


async def test_hashing_encoder_shape_and_norm():
    vectors = HashingEncoder(dimensions=64).encode(["hello world", "another text"])
    assert vectors.shape == (2, 64)
    assert np.allclose(np.linalg.norm(vectors, axis=1), 1.0)


async def test_store_satisfies_protocol(vector_store):
    assert isinstance(vector_store, StorageBackend)


async def test_upsert_embeds_missing_vectors(vector_store):
    await vector_store.upsert_many([make_document("a", "python code review")])

    doc = await vector_store.get("a")
    assert doc is not None
    assert doc.vector is not None
    assert len(doc.vector) == 256


async def test_search_ranks_by_similarity(vector_store):
    await vector_store.upsert_many([
        make_document("code", "python code review and debugging"),
        make_document("food", "dinner recipe with pasta and tomatoes"),
    ])

    hits = await vector_store.search("debugging python code")

    assert hits[0].document.id == "code"
    assert all(0 < h.score <= 1.0 for h in hits)


async def test_search_empty_query(vector_store):
    await vector_store.upsert_many([make_document("a", "text")])
    assert await vector_store.search("   ") == []


async def test_search_filters(vector_store):
    await vector_store.upsert_many([
        make_document("f", "shared words here", source_type="fact", importance=0.9),
        make_document("p", "shared words here", source_type="preference", importance=0.2),
        make_document("s", "shared words here", is_summary=True),
    ])

    facts = await vector_store.search("shared words", SearchFilters(source_types=["fact"]))
    assert [h.document.id for h in facts] == ["f"]

    important = await vector_store.search("shared words", SearchFilters(min_importance=0.5))
    assert "p" not in [h.document.id for h in important]

    no_summaries = await vector_store.search("shared words", SearchFilters(include_summaries=False))
    assert "s" not in [h.document.id for h in no_summaries]


async def test_search_equal_scores_keep_insertion_order(vector_store):
    await vector_store.upsert_many([make_document(str(i), "same text") for i in range(4)])
    hits = await vector_store.search("same text", SearchFilters(limit=3))
    assert [h.document.id for h in hits] == ["0", "1", "2"]


async def test_search_by_vector_skips_other_dimensions(vector_store):
    await vector_store.upsert_many([
        make_document("two", "x", vector=[1.0, 0.0]),
        make_document("three", "y", vector=[1.0, 0.0, 0.0]),
    ])
    hits = await vector_store.search_by_vector([1.0, 0.0])
    assert [h.document.id for h in hits] == ["two"]


async def test_replace_all_and_delete(vector_store):
    await vector_store.upsert_many([make_document("a", "one"), make_document("b", "two")])
    await vector_store.replace_all([make_document("c", "three")])

    assert [d.id for d in await vector_store.all_documents()] == ["c"]
    assert await vector_store.delete("c") is True
    assert await vector_store.delete("c") is False


async def test_stats(vector_store):
    assert (await vector_store.get_stats()).total_vectors == 0

    await vector_store.upsert_many([
        make_document("a", "one", importance=0.2),
        make_document("b", "two", importance=0.6),
    ])
    stats = await vector_store.get_stats()
    assert stats.total_vectors == 2
    assert stats.average_importance == pytest.approx(0.4)


async def test_save_and_load(tmp_path):
    path = tmp_path / "vectors.json"
    store = InMemoryVectorStore(path=path)
    await store.upsert_many([make_document("a", "persist me", is_summary=True)])
    store.save()

    reloaded = InMemoryVectorStore(path=path)
    assert reloaded.load() == 1
    doc = await reloaded.get("a")
    assert doc.content == "persist me"
    assert doc.metadata.is_summary is True


async def test_load_corrupt_file_raises(tmp_path):
    path = tmp_path / "vectors.json"
    path.write_text("{not json")
    with pytest.raises(StorageError):
        InMemoryVectorStore(path=path).load()
