"""Configuration schema for the memory engine."""

from .settings import (
    AssemblyOptions,
    ChunkerConfig,
    ExportOptions,
    ImportOptions,
    MemoryConfig,
    RetrievalOptions,
    SessionContextConfig,
    Settings,
    SummarizerConfig,
    load_settings,
)

__all__ = [
    "AssemblyOptions",
    "ChunkerConfig",
    "ExportOptions",
    "ImportOptions",
    "MemoryConfig",
    "RetrievalOptions",
    "SessionContextConfig",
    "Settings",
    "SummarizerConfig",
    "load_settings",
]
