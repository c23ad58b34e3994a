"""
Versioned, checksummed backup files.

Export snapshots the live memory map and the vector store; import
validates a file and merges or replaces state with conflict resolution.
"""

from .checksum import envelope_checksum, string_hash
from .envelope import FORMAT_VERSION, get_export_file_info, is_valid_export_file
from .exporter import ExportResult, MemoryExporter
from .importer import (
    ImportProgress,
    ImportResult,
    ImportStats,
    MemoryImporter,
    ValidationIssue,
    ValidationResult,
    ValidationStats,
)

__all__ = [
    "FORMAT_VERSION",
    "ExportResult",
    "ImportProgress",
    "ImportResult",
    "ImportStats",
    "MemoryExporter",
    "MemoryImporter",
    "ValidationIssue",
    "ValidationResult",
    "ValidationStats",
    "envelope_checksum",
    "get_export_file_info",
    "is_valid_export_file",
    "string_hash",
]
