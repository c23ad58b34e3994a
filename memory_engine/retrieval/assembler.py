"""Packing ranked search results into a bounded context block for the LLM."""

import math
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from memory_engine.config.settings import AssemblyOptions, RetrievalOptions
from memory_engine.telemetry import get_logger

from .semantic_search import EnhancedResult, SemanticSearch

logger = get_logger(__name__)

ENTRY_SEPARATOR = "\n\n"
MIN_TRUNCATION_SPACE = 200
CHARS_PER_TOKEN = 4


class AssembledContext(BaseModel):
    """A packed context block and what went into it."""
    content: str = ""
    results: List[EnhancedResult] = Field(default_factory=list)
    total_considered: int = 0
    truncated: bool = False
    estimated_tokens: int = 0


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def format_entry(result: EnhancedResult, index: int, options: AssemblyOptions) -> str:
    """
    Render one result in the configured format.

    Args:
        result: Ranked search result
        index: 1-based position in the block
        options: Assembly options (format, include_metadata)

    Returns:
        Formatted entry text
    """
    doc = result.document
    meta = doc.metadata
    content = doc.content.strip()

    if options.format == "structured":
        if not options.include_metadata:
            return f"--- Memory {index} ---\n{content}"
        lines = [
            f"--- Memory {index} ---",
            f"Type: {meta.source_type}",
            f"Importance: {meta.importance:.2f}",
            f"Relevance: {result.final_score:.2f}",
        ]
        if meta.topics:
            lines.append(f"Topics: {', '.join(meta.topics)}")
        lines.append(content)
        return "\n".join(lines)

    if options.format == "markdown":
        if not options.include_metadata:
            return f"- {content}"
        header = f"### {str(meta.source_type).capitalize()} (relevance {result.final_score:.2f})"
        if meta.topics:
            return f"{header}\n*Topics: {', '.join(meta.topics)}*\n\n{content}"
        return f"{header}\n\n{content}"

    if options.include_metadata:
        return f"[{meta.source_type}] {content}"
    return content


def prioritize(results: Sequence[EnhancedResult], priority: Sequence[str]) -> List[EnhancedResult]:
    """Stable sort by source-type priority (unlisted types last), then final score."""
    unlisted = len(priority)

    def key(result: EnhancedResult):
        source_type = result.document.metadata.source_type
        rank = priority.index(source_type) if source_type in priority else unlisted
        return (rank, -result.final_score)

    return sorted(results, key=key)


def assemble_from_results(
    results: Sequence[EnhancedResult],
    options: Optional[AssemblyOptions] = None,
) -> AssembledContext:
    """
    Pack as many results as fit into one context block.

    Entries are added until the document cap or the length cap is reached.
    An entry that would overflow is cut with ``...`` when more than 200
    characters of budget remain; otherwise it is dropped. Either way
    packing stops there.

    Args:
        results: Ranked search results
        options: Assembly options

    Returns:
        AssembledContext with content, included results and token estimate
    """
    options = options or AssemblyOptions()
    ordered = prioritize(results, options.priority_source_types)

    parts: List[str] = []
    included: List[EnhancedResult] = []
    length = 0
    truncated = len(results) > options.max_documents

    for result in ordered:
        if len(included) >= options.max_documents:
            break

        entry = format_entry(result, len(included) + 1, options)
        separator = ENTRY_SEPARATOR if parts else ""
        needed = len(separator) + len(entry)

        if length + needed > options.max_length:
            truncated = True
            remaining = options.max_length - length - len(separator)
            if remaining > MIN_TRUNCATION_SPACE:
                parts.append(entry[:remaining - 3] + "...")
                included.append(result)
            break

        parts.append(entry)
        included.append(result)
        length += needed

    content = ENTRY_SEPARATOR.join(parts)
    return AssembledContext(
        content=content,
        results=included,
        total_considered=len(results),
        truncated=truncated,
        estimated_tokens=estimate_tokens(content),
    )


class ContextAssembler:
    """Search-then-pack convenience wrapper around ``SemanticSearch``."""

    def __init__(self, search: SemanticSearch, options: Optional[AssemblyOptions] = None):
        self.search = search
        self.options = options or AssemblyOptions()

    def assemble_from_results(
        self,
        results: Sequence[EnhancedResult],
        options: Optional[AssemblyOptions] = None,
    ) -> AssembledContext:
        return assemble_from_results(results, options or self.options)

    async def assemble(
        self,
        query: str,
        retrieval: Optional[RetrievalOptions] = None,
        options: Optional[AssemblyOptions] = None,
        now: Optional[int] = None,
    ) -> AssembledContext:
        results = await self.search.search(query, retrieval, now=now)
        context = self.assemble_from_results(results, options)
        logger.debug(
            "context_assembled",
            considered=context.total_considered,
            included=len(context.results),
            tokens=context.estimated_tokens,
        )
        return context

    async def assemble_for_conversation(
        self,
        query: str,
        conversation_topics: Optional[Sequence[str]] = None,
        session_id: Optional[str] = None,
        retrieval: Optional[RetrievalOptions] = None,
        options: Optional[AssemblyOptions] = None,
        now: Optional[int] = None,
    ) -> AssembledContext:
        results = await self.search.search_with_context(
            query,
            conversation_topics=conversation_topics,
            session_id=session_id,
            options=retrieval,
            now=now,
        )
        return self.assemble_from_results(results, options)
