"""Test configuration and fixtures."""

from pathlib import Path
from typing import List

import pytest

from memory_engine.config.settings import MemoryConfig, SessionContextConfig
from memory_engine.index.vector_store import InMemoryVectorStore
from memory_engine.memory.schemas import ChatMessage
from memory_engine.memory.session_context import SessionContextManager
from memory_engine.memory.store import MemoryManager

from factories import NOW


@pytest.fixture
def now() -> int:
    return NOW


@pytest.fixture
def memory_manager(tmp_path: Path) -> MemoryManager:
    """MemoryManager persisting under a temp directory (not initialized)."""
    return MemoryManager(MemoryConfig(storage_dir=str(tmp_path / "memory")))


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def context_manager(tmp_path: Path) -> SessionContextManager:
    """SessionContextManager persisting under a temp directory (not initialized)."""
    return SessionContextManager(SessionContextConfig(storage_dir=str(tmp_path / "contexts")))


@pytest.fixture
def sample_messages() -> List[ChatMessage]:
    """A conversation that moves from code to travel plans."""
    texts = [
        ("user", "Can you help me debug this python function?"),
        ("assistant", "Sure, paste the code and the error you get."),
        ("user", "The function crashes when the api returns nothing."),
        ("assistant", "Check for an empty response before you parse it in the code."),
        ("user", "I need to book a flight and a hotel for my trip to Lisbon."),
        ("assistant", "When is the trip? I can compare flight times."),
        ("user", "The vacation starts next month, the airport is Heathrow."),
    ]
    return [
        ChatMessage(role=role, content=content, timestamp=NOW + i * 1000)
        for i, (role, content) in enumerate(texts)
    ]
