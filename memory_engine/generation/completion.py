"""
Text completion collaborators.

The memory engine only needs one operation from a language model:
``chat(prompt) -> ChatResponse``. Callers treat failures as recoverable and
fall back to deterministic text.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import openai

from memory_engine.errors import CompletionError
from memory_engine.telemetry import get_logger

logger = get_logger(__name__)


@dataclass
class ChatResponse:
    """Container for a completion with metadata."""
    content: str
    model_used: str = "unknown"
    metadata: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class CompletionClient(Protocol):
    """Anything that can turn a prompt into text."""

    async def chat(self, prompt: str) -> ChatResponse:
        ...


class MockCompletion:
    """Mock completion client for testing and offline use."""

    def __init__(
        self,
        responses: Optional[Dict[str, str]] = None,
        default: str = "Summary of the discussed material.",
        fail: bool = False,
    ):
        """
        Args:
            responses: Keyword -> canned response; first keyword found in the prompt wins
            default: Response when no keyword matches
            fail: Raise ``CompletionError`` on every call
        """
        self.responses = responses or {}
        self.default = default
        self.fail = fail
        self.prompts: List[str] = []

    async def chat(self, prompt: str) -> ChatResponse:
        """Return a canned response based on keywords in the prompt."""
        self.prompts.append(prompt)
        if self.fail:
            raise CompletionError("mock completion failure")

        prompt_lower = prompt.lower()
        text = self.default
        for keyword, response in self.responses.items():
            if keyword.lower() in prompt_lower:
                text = response
                break

        return ChatResponse(content=text, model_used="mock_completion")


@dataclass
class LLMConfig:
    """Configuration for an OpenAI-compatible chat endpoint."""
    api_key: str
    model_name: str = "gpt-4o-mini"
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 30
    temperature: float = 0.3
    max_tokens: int = 500


class OpenAICompletion:
    """Completion client backed by ``openai.AsyncOpenAI``."""

    def __init__(self, config: LLMConfig):
        self.config = config
        self.client = openai.AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    async def chat(self, prompt: str) -> ChatResponse:
        """
        Send a single-turn chat request.

        Raises:
            CompletionError: If the request fails or returns no choices
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.config.model_name,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except openai.OpenAIError as e:
            logger.warning("completion_failed", model=self.config.model_name, error=str(e))
            raise CompletionError(f"Completion request failed: {e}") from e

        if not response.choices:
            raise CompletionError("Completion returned no choices")

        choice = response.choices[0]
        return ChatResponse(
            content=choice.message.content or "",
            model_used=f"openai_{self.config.model_name}",
            metadata={"finish_reason": choice.finish_reason},
        )


def load_completion_from_env() -> Optional[OpenAICompletion]:
    """Build an OpenAI completion client from environment variables, if configured."""
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None
    return OpenAICompletion(
        LLMConfig(
            api_key=api_key,
            model_name=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            base_url=os.getenv("OPENAI_BASE_URL"),
        )
    )
