"""Unit test for settings configuration."""

import json

import pytest
from pydantic import ValidationError

from memory_engine.config.settings import (
    ChunkerConfig,
    ImportOptions,
    Settings,
    SummarizerConfig,
    load_settings,
)


def test_default_settings():
    """Test that default settings are correctly configured."""
    settings = Settings()
    assert settings.chunker.max_turns_per_chunk == 10
    assert settings.summarizer.strategy == "hybrid"
    assert settings.retrieval.min_score == 0.3
    assert settings.session_context.decay_rate_per_day == 0.1
    assert settings.memory.storage_dir.endswith("memory")


def test_import_defaults():
    options = ImportOptions()
    assert options.mode == "merge"
    assert options.conflict_resolution == "keep_newer"
    assert options.transform_ids is True
    assert options.dry_run is False


def test_invalid_ranges_rejected():
    with pytest.raises(ValidationError):
        ChunkerConfig(min_turns_per_chunk=5, max_turns_per_chunk=2)
    with pytest.raises(ValidationError):
        SummarizerConfig(light_summary_threshold=0.9, full_detail_threshold=0.5)
    with pytest.raises(ValidationError):
        ImportOptions(start_date=200, end_date=100)
    with pytest.raises(ValidationError):
        ImportOptions(conflict_resolution="newest")


def test_load_settings_missing_file(tmp_path):
    assert load_settings(tmp_path / "missing.json") == Settings()
    assert load_settings(None) == Settings()


def test_load_settings_partial_file(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({
        "memory": {"storage_dir": str(tmp_path / "mem"), "max_conversations": 3},
        "log_level": "DEBUG",
    }))

    settings = load_settings(path)

    assert settings.memory.max_conversations == 3
    assert settings.memory.storage_dir == str(tmp_path / "mem")
    assert settings.log_level == "DEBUG"
    assert settings.chunker == ChunkerConfig()
