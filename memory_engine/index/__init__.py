"""Vector storage collaborator and text encoders."""
from .vector_store import (
    HashingEncoder, InMemoryVectorStore, SearchFilters,
    StorageBackend, TextEncoder, load_sentence_encoder
)

__all__ = [
    'HashingEncoder', 'InMemoryVectorStore', 'SearchFilters',
    'StorageBackend', 'TextEncoder', 'load_sentence_encoder'
]
