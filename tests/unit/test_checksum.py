"""
Unit tests for the backup checksum.
"""

import re

from memory_engine.backup.checksum import canonical_json, envelope_checksum, string_hash


def test_string_hash_known_values():
    assert string_hash("") == "00000000"
    assert string_hash("a") == "00000061"
    assert string_hash("ab") == "00000c21"


def test_string_hash_uses_utf16_code_units():
    # U+1F600 is the surrogate pair D83D DE00
    assert string_hash("\U0001F600") == "001b0d63"


def test_string_hash_is_hex_and_padded():
    for text in ["hello world", "x" * 1000, "ünïcödé"]:
        digest = string_hash(text)
        assert re.fullmatch(r"[0-9a-f]{8,}", digest)


def test_canonical_json_is_compact_and_keeps_unicode():
    assert canonical_json({"a": [1, 2], "b": "é"}) == '{"a":[1,2],"b":"é"}'


def test_envelope_checksum_ignores_stored_checksum():
    envelope = {
        "header": {"version": 1, "exportedAt": 5, "checksum": "", "compressed": False},
        "entries": [{"id": "e1"}],
    }
    first = envelope_checksum(envelope)

    envelope["header"]["checksum"] = first
    assert envelope_checksum(envelope) == first


def test_envelope_checksum_detects_changes():
    envelope = {
        "header": {"version": 1, "exportedAt": 5, "checksum": "", "compressed": False},
        "entries": [{"id": "e1"}],
    }
    before = envelope_checksum(envelope)
    envelope["entries"][0]["id"] = "e2"
    assert envelope_checksum(envelope) != before


def test_envelope_checksum_does_not_mutate_input():
    envelope = {"header": {"version": 1, "checksum": "abc"}}
    envelope_checksum(envelope)
    assert envelope["header"]["checksum"] == "abc"
