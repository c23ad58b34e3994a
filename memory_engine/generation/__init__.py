"""Completion collaborators for LLM-backed summaries."""
from .completion import (
    ChatResponse, CompletionClient, LLMConfig,
    MockCompletion, OpenAICompletion, load_completion_from_env
)

__all__ = [
    'ChatResponse', 'CompletionClient', 'LLMConfig',
    'MockCompletion', 'OpenAICompletion', 'load_completion_from_env'
]
