"""
Integrity checksum for backup files.

Non-cryptographic 32-bit string hash over the compact JSON of the envelope
with ``header.checksum`` blanked. It detects accidental modification, not
tampering.
"""

import json
from typing import Any, Dict


def canonical_json(obj: Any) -> str:
    """Compact JSON with keys in their existing order."""
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def string_hash(text: str) -> str:
    """
    32-bit rolling hash (``h = h * 31 + code_unit``) over UTF-16 code units.

    Returns:
        Absolute value of the signed 32-bit result as hex, zero-padded to 8 chars

    Examples:
        >>> string_hash("")
        '00000000'
        >>> string_hash("a")
        '00000061'
    """
    data = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        code_unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + code_unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return format(abs(h), "x").zfill(8)


def envelope_checksum(envelope: Dict[str, Any]) -> str:
    """
    Checksum of a backup envelope as a plain dict.

    The header's ``checksum`` field is blanked in place order before
    hashing, so the result can be stored back into the same field.
    """
    header = dict(envelope.get("header") or {})
    header["checksum"] = ""
    blanked = {**envelope, "header": header}
    return string_hash(canonical_json(blanked))
