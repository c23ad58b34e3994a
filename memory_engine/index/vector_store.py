"""
Vector storage collaborator.

``StorageBackend`` is the interface the retrieval scorer, consolidation
pipeline and backup pipeline talk to. ``InMemoryVectorStore`` is a small
reference implementation using numpy and scikit-learn cosine similarity.
"""

import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np
from pydantic import BaseModel, Field
from sklearn.feature_extraction.text import HashingVectorizer
from sklearn.metrics.pairwise import cosine_similarity

from memory_engine.errors import StorageError
from memory_engine.memory.schemas import MemoryDocument, SearchHit, StorageStats
from memory_engine.telemetry import get_logger

logger = get_logger(__name__)


class SearchFilters(BaseModel):
    """Filters accepted by ``search`` and ``search_by_vector``."""
    limit: int = Field(10, ge=1)
    min_score: float = 0.0
    source_types: List[str] = Field(default_factory=list)
    min_importance: Optional[float] = None
    topics: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    include_summaries: bool = True


@runtime_checkable
class TextEncoder(Protocol):
    """Turns texts into a 2-D array of embeddings."""

    def encode(self, texts: List[str]) -> np.ndarray:
        ...


@runtime_checkable
class StorageBackend(Protocol):
    """Similarity-search collaborator. Failures must raise, never return empty."""

    async def search(self, query: str, filters: SearchFilters) -> List[SearchHit]:
        ...

    async def search_by_vector(self, vector: Sequence[float], filters: SearchFilters) -> List[SearchHit]:
        ...

    async def get(self, document_id: str) -> Optional[MemoryDocument]:
        ...

    async def clear(self) -> None:
        ...

    async def get_stats(self) -> StorageStats:
        ...

    async def upsert_many(self, documents: Sequence[MemoryDocument]) -> int:
        ...

    async def replace_all(self, documents: Sequence[MemoryDocument]) -> int:
        ...

    async def all_documents(self) -> List[MemoryDocument]:
        ...


class HashingEncoder:
    """
    Deterministic bag-of-words encoder.

    Wraps scikit-learn's ``HashingVectorizer`` so tests and offline use get
    stable vectors without downloading a model.
    """

    def __init__(self, dimensions: int = 256):
        self.dimensions = dimensions
        self._vectorizer = HashingVectorizer(
            n_features=dimensions,
            alternate_sign=False,
            norm="l2",
        )

    def encode(self, texts: List[str]) -> np.ndarray:
        return self._vectorizer.transform(texts).toarray()


class SentenceEncoder:
    """Adapter exposing a SentenceTransformer as a ``TextEncoder``."""

    def __init__(self, model):
        self.model = model

    def encode(self, texts: List[str]) -> np.ndarray:
        return self.model.encode(texts, convert_to_numpy=True)


def load_sentence_encoder(model_name: str = "all-MiniLM-L6-v2") -> SentenceEncoder:
    """
    Load a sentence-transformers model as an encoder.

    Requires the ``embeddings`` extra.
    """
    from sentence_transformers import SentenceTransformer

    return SentenceEncoder(SentenceTransformer(model_name))


class InMemoryVectorStore:
    """
    Simple in-memory vector store for memory documents.

    Documents without a vector are embedded with the configured encoder on
    write. Insertion order is preserved and used as the tie-break for equal
    similarity scores.
    """

    def __init__(self, encoder: Optional[TextEncoder] = None, path: Optional[Path] = None):
        """
        Args:
            encoder: Text encoder (defaults to ``HashingEncoder``)
            path: Optional JSON file used by ``load``/``save``
        """
        self.encoder = encoder or HashingEncoder()
        self.path = Path(path) if path else None
        self._documents: Dict[str, MemoryDocument] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(self, query: str, filters: Optional[SearchFilters] = None) -> List[SearchHit]:
        """
        Search for documents similar to a text query.

        Args:
            query: Query text
            filters: Result limit, score floor and metadata filters

        Returns:
            Hits sorted by descending similarity
        """
        if not query.strip():
            return []
        vector = self._encode([query])[0]
        return await self.search_by_vector(vector, filters)

    async def search_by_vector(
        self,
        vector: Sequence[float],
        filters: Optional[SearchFilters] = None,
    ) -> List[SearchHit]:
        """Search for documents similar to an embedding."""
        filters = filters or SearchFilters()
        query_vec = np.asarray(vector, dtype=float)

        candidates = [
            doc for doc in self._documents.values()
            if doc.vector is not None
            and len(doc.vector) == len(query_vec)
            and self._passes(doc, filters)
        ]
        if not candidates:
            return []

        matrix = np.asarray([doc.vector for doc in candidates], dtype=float)
        similarities = cosine_similarity(query_vec.reshape(1, -1), matrix)[0]

        # Stable sort keeps insertion order for equal scores
        order = np.argsort(-similarities, kind="stable")

        hits: List[SearchHit] = []
        for idx in order:
            score = float(similarities[idx])
            if score <= 0 or score < filters.min_score:
                continue
            hits.append(SearchHit(document=candidates[idx], score=min(1.0, score)))
            if len(hits) >= filters.limit:
                break
        return hits

    async def get(self, document_id: str) -> Optional[MemoryDocument]:
        return self._documents.get(document_id)

    async def all_documents(self) -> List[MemoryDocument]:
        return list(self._documents.values())

    async def get_stats(self) -> StorageStats:
        docs = list(self._documents.values())
        if not docs:
            return StorageStats()
        return StorageStats(
            total_vectors=len(docs),
            average_importance=sum(d.metadata.importance for d in docs) / len(docs),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(self, document: MemoryDocument) -> None:
        await self.upsert_many([document])

    async def upsert_many(self, documents: Sequence[MemoryDocument]) -> int:
        """Insert or replace documents by id, embedding any without a vector."""
        prepared = self._prepare(documents)
        async with self._lock:
            for doc in prepared:
                self._documents[doc.id] = doc
        return len(prepared)

    async def replace_all(self, documents: Sequence[MemoryDocument]) -> int:
        """Replace the whole collection in one step."""
        prepared = self._prepare(documents)
        async with self._lock:
            self._documents = {doc.id: doc for doc in prepared}
        logger.info("vector_store_replaced", documents=len(prepared))
        return len(prepared)

    async def delete(self, document_id: str) -> bool:
        async with self._lock:
            return self._documents.pop(document_id, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._documents.clear()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Load documents from ``path``; a missing file leaves the store empty."""
        if self.path is None or not self.path.exists():
            return 0
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to load vector store from {self.path}: {e}") from e

        self._documents = {}
        for item in data.get("documents", []):
            doc = MemoryDocument.from_wire(item)
            self._documents[doc.id] = doc
        return len(self._documents)

    def save(self) -> None:
        """Write all documents to ``path``."""
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"documents": [doc.to_wire() for doc in self._documents.values()]}
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(payload, f)
        except OSError as e:
            raise StorageError(f"Failed to save vector store to {self.path}: {e}") from e

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _encode(self, texts: List[str]) -> np.ndarray:
        try:
            return np.asarray(self.encoder.encode(texts), dtype=float)
        except Exception as e:
            raise StorageError(f"Encoding failed: {e}") from e

    def _prepare(self, documents: Sequence[MemoryDocument]) -> List[MemoryDocument]:
        missing = [doc for doc in documents if doc.vector is None]
        if not missing:
            return list(documents)

        vectors = self._encode([doc.content for doc in missing])
        embedded = {
            doc.id: doc.model_copy(update={"vector": vec.tolist()})
            for doc, vec in zip(missing, vectors)
        }
        return [embedded.get(doc.id, doc) if doc.vector is None else doc for doc in documents]

    @staticmethod
    def _passes(doc: MemoryDocument, filters: SearchFilters) -> bool:
        meta = doc.metadata
        if filters.source_types and meta.source_type not in filters.source_types:
            return False
        if filters.min_importance is not None and meta.importance < filters.min_importance:
            return False
        if filters.topics and not set(filters.topics) & set(meta.topics):
            return False
        if filters.tags and not set(filters.tags) & set(meta.tags):
            return False
        if not filters.include_summaries and meta.is_summary:
            return False
        return True
