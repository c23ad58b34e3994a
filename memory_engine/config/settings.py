"""Application settings and configuration schema."""

import json
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

SourceTypeName = Literal["fact", "preference", "task", "context", "conversation", "other"]
SummaryStrategy = Literal["extractive", "abstractive", "hybrid"]
ContextFormat = Literal["plain", "structured", "markdown"]
ImportMode = Literal["merge", "replace"]
ConflictResolution = Literal[
    "keep_existing", "use_imported", "keep_newer", "keep_higher_importance"
]


def _default_home_dir(*parts: str) -> str:
    return str(Path.home().joinpath(".memory_engine", *parts))


class ChunkerConfig(BaseModel):
    """Configuration for conversation chunking."""
    max_turns_per_chunk: int = Field(10, ge=1)
    min_turns_per_chunk: int = Field(2, ge=1)
    topic_change_threshold: float = Field(0.3, ge=0.0, le=1.0)
    merge_threshold: float = Field(0.5, ge=0.0, le=1.0)
    base_importance: float = Field(0.3, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_turn_bounds(self) -> "ChunkerConfig":
        if self.min_turns_per_chunk > self.max_turns_per_chunk:
            raise ValueError(
                f"min_turns_per_chunk ({self.min_turns_per_chunk}) must not exceed "
                f"max_turns_per_chunk ({self.max_turns_per_chunk})"
            )
        return self


class SummarizerConfig(BaseModel):
    """Configuration for consolidation summaries."""
    strategy: SummaryStrategy = "hybrid"
    target_length: int = Field(500, ge=1)
    full_detail_threshold: float = Field(0.8, ge=0.0, le=1.0)
    light_summary_threshold: float = Field(0.5, ge=0.0, le=1.0)
    enable_llm_summarization: bool = True

    @model_validator(mode="after")
    def _check_thresholds(self) -> "SummarizerConfig":
        if self.light_summary_threshold > self.full_detail_threshold:
            raise ValueError("light_summary_threshold must not exceed full_detail_threshold")
        return self


class RetrievalOptions(BaseModel):
    """Options for a single scored search."""
    limit: int = Field(10, ge=1)
    min_score: float = Field(0.3, ge=0.0, le=1.0)
    min_importance: Optional[float] = Field(None, ge=0.0, le=1.0)
    source_types: List[SourceTypeName] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    include_summaries: bool = True
    boost_by_importance: bool = True
    boost_by_recency: bool = True
    semantic_weight: float = Field(0.6, ge=0.0)
    importance_weight: float = Field(0.25, ge=0.0)
    recency_weight: float = Field(0.15, ge=0.0)


class AssemblyOptions(BaseModel):
    """Options for packing search results into a context block."""
    max_length: int = Field(4000, ge=1)
    max_documents: int = Field(10, ge=1)
    include_metadata: bool = True
    format: ContextFormat = "plain"
    priority_source_types: List[SourceTypeName] = Field(
        default_factory=lambda: ["preference", "fact", "task", "context", "conversation"]
    )


class SessionContextConfig(BaseModel):
    """Configuration for cross-session context tracking."""
    storage_dir: str = Field(default_factory=lambda: _default_home_dir("contexts"))
    decay_rate_per_day: float = Field(0.1, ge=0.0, le=1.0)
    min_relevance_threshold: float = Field(0.1, ge=0.0, le=1.0)
    max_context_age_days: float = Field(30, gt=0)
    topic_overlap_threshold: float = Field(0.3, ge=0.0, le=1.0)
    max_related_sessions: int = Field(5, ge=0)
    welcome_summary_max_items: int = Field(5, ge=1)
    auto_save_interval: float = Field(30.0, ge=5.0, description="Seconds")
    decay_check_interval: float = Field(3600.0, gt=0, description="Seconds")
    max_session_contexts: int = Field(100, ge=1)
    enable_context_linking: bool = True


class ImportOptions(BaseModel):
    """Options for importing a backup file."""
    mode: ImportMode = "merge"
    import_entries: bool = True
    import_conversations: bool = True
    import_vectors: bool = True
    import_summaries: bool = True
    skip_validation: bool = False
    conflict_resolution: ConflictResolution = "keep_newer"
    start_date: Optional[int] = Field(None, description="Epoch ms, inclusive")
    end_date: Optional[int] = Field(None, description="Epoch ms, inclusive")
    min_importance: Optional[float] = Field(None, ge=0.0, le=1.0)
    transform_ids: bool = True
    dry_run: bool = False

    @model_validator(mode="after")
    def _check_dates(self) -> "ImportOptions":
        if self.start_date is not None and self.end_date is not None:
            if self.start_date > self.end_date:
                raise ValueError("start_date must not be after end_date")
        return self


class ExportOptions(BaseModel):
    """Options for writing a backup file."""
    compress: bool = False
    include_entries: bool = True
    include_conversations: bool = True
    include_vectors: bool = True
    include_summaries: bool = True


class MemoryConfig(BaseModel):
    """Configuration for the live memory manager."""
    storage_dir: str = Field(default_factory=lambda: _default_home_dir("memory"))
    max_conversations: int = Field(100, ge=1)
    max_messages_per_conversation: int = Field(50, ge=1)
    auto_save_interval: float = Field(30.0, ge=5.0, description="Seconds")
    enable_persistence: bool = True


class Settings(BaseModel):
    """Main application settings."""
    chunker: ChunkerConfig = ChunkerConfig()
    summarizer: SummarizerConfig = SummarizerConfig()
    retrieval: RetrievalOptions = RetrievalOptions()
    assembly: AssemblyOptions = AssemblyOptions()
    session_context: SessionContextConfig = SessionContextConfig()
    memory: MemoryConfig = MemoryConfig()
    log_level: str = "INFO"


def load_settings(path: Optional[Path] = None) -> Settings:
    """
    Load settings from a JSON file.

    Missing sections fall back to their defaults; a missing file yields
    the default settings.
    """
    if path is None or not Path(path).exists():
        return Settings()

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return Settings.model_validate(data)
