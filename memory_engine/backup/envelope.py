"""
Backup file format helpers.

A backup is UTF-8 JSON, optionally gzip-compressed (detected by the
``1f 8b`` magic bytes), with a ``header`` and four record arrays.
"""

import gzip
import json
import zlib
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from memory_engine.errors import BackupFormatError
from memory_engine.memory.schemas import BackupHeader

FORMAT_VERSION = 1
GZIP_MAGIC = b"\x1f\x8b"
BACKUP_FILE_SUFFIX = ".memory-backup.json"


def is_gzip(raw: bytes) -> bool:
    return raw[:2] == GZIP_MAGIC


def decode_backup(raw: bytes) -> Tuple[Any, bool]:
    """
    Decompress (if needed) and parse backup bytes.

    Args:
        raw: File contents

    Returns:
        Tuple of (parsed JSON, was_compressed)

    Raises:
        BackupFormatError: PARSE_ERROR if decompression, decoding or JSON parsing fails
    """
    compressed = is_gzip(raw)
    try:
        payload = gzip.decompress(raw) if compressed else raw
        return json.loads(payload.decode("utf-8")), compressed
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise BackupFormatError(
            "PARSE_ERROR",
            f"Failed to parse import file: {e}",
        ) from e


def read_backup(path: Union[str, Path]) -> Tuple[Any, bool, int]:
    """
    Read and parse a backup file.

    Returns:
        Tuple of (parsed JSON, was_compressed, file size in bytes)

    Raises:
        BackupFormatError: FILE_NOT_FOUND or PARSE_ERROR
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except FileNotFoundError as e:
        raise BackupFormatError("FILE_NOT_FOUND", f"File not found: {path}") from e
    except OSError as e:
        raise BackupFormatError("PARSE_ERROR", f"Failed to read import file: {e}") from e

    data, compressed = decode_backup(raw)
    return data, compressed, len(raw)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def has_valid_header(data: Any) -> bool:
    """True if ``data`` carries a header with numeric version and export time."""
    if not isinstance(data, dict):
        return False
    header = data.get("header")
    return (
        isinstance(header, dict)
        and _is_number(header.get("version"))
        and _is_number(header.get("exportedAt"))
    )


def is_valid_export_file(path: Union[str, Path]) -> bool:
    """Cheap structural check: readable, parseable, has header and record arrays."""
    try:
        data, _, _ = read_backup(path)
    except BackupFormatError:
        return False
    return (
        has_valid_header(data)
        and isinstance(data.get("entries"), list)
        and isinstance(data.get("conversations"), list)
    )


def get_export_file_info(path: Union[str, Path]) -> Optional[BackupHeader]:
    """Header of a backup file, or None if it cannot be read."""
    try:
        data, _, _ = read_backup(path)
    except BackupFormatError:
        return None
    if not has_valid_header(data):
        return None
    header: Dict[str, Any] = data["header"]
    try:
        return BackupHeader.from_wire(header)
    except ValueError:
        return None
