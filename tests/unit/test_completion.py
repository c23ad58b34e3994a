"""
Unit tests for completion collaborators.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import openai
import pytest

from memory_engine.errors import CompletionError
from memory_engine.generation.completion import (
    CompletionClient,
    LLMConfig,
    MockCompletion,
    OpenAICompletion,
    load_completion_from_env,
)

pytestmark = pytest.mark.asyncio


async def test_mock_completion_keyword_response():
    mock = MockCompletion(responses={"lisbon": "Trip summary"}, default="Generic")

    assert (await mock.chat("Notes about LISBON")).content == "Trip summary"
    assert (await mock.chat("Notes about work")).content == "Generic"
    assert mock.prompts == ["Notes about LISBON", "Notes about work"]


async def test_mock_completion_failure():
    with pytest.raises(CompletionError):
        await MockCompletion(fail=True).chat("anything")


async def test_mock_satisfies_protocol():
    assert isinstance(MockCompletion(), CompletionClient)


async def test_openai_completion_returns_content():
    client = OpenAICompletion(LLMConfig(api_key="test-key"))
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="Hello"), finish_reason="stop")]
    )
    client.client = SimpleNamespace(
        chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock(return_value=response)))
    )

    result = await client.chat("Say hello")

    assert result.content == "Hello"
    assert result.model_used == "openai_gpt-4o-mini"
    assert result.metadata == {"finish_reason": "stop"}


async def test_openai_completion_wraps_errors():
    client = OpenAICompletion(LLMConfig(api_key="test-key"))
    client.client = SimpleNamespace(
        chat=SimpleNamespace(
            completions=SimpleNamespace(create=AsyncMock(side_effect=openai.OpenAIError("boom")))
        )
    )

    with pytest.raises(CompletionError):
        await client.chat("Say hello")


async def test_openai_completion_rejects_empty_choices():
    client = OpenAICompletion(LLMConfig(api_key="test-key"))
    client.client = SimpleNamespace(
        chat=SimpleNamespace(
            completions=SimpleNamespace(create=AsyncMock(return_value=SimpleNamespace(choices=[])))
        )
    )

    with pytest.raises(CompletionError):
        await client.chat("Say hello")


async def test_load_completion_from_env(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert load_completion_from_env() is None

    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-test")
    client = load_completion_from_env()
    assert isinstance(client, OpenAICompletion)
    assert client.config.model_name == "gpt-test"
