"""
Unit tests for topic and importance extraction.

Tests:
- extract_topics(): keyword categories, empty text
- score_importance(): base, keyword boost cap, question/length bonuses, clamp
- topic_similarity(): Jaccard with empty-set rules
- extract_tags(): topic, preference, task and question tags
"""

import pytest

from memory_engine.memory.extractor import (
    extract_tags,
    extract_topics,
    score_importance,
    topic_similarity,
    word_count,
)


# ============================================================================
# Topics
# ============================================================================

def test_extract_topics_programming():
    assert extract_topics("I need to fix a bug in my python code") == {"programming"}


def test_extract_topics_multiple_categories():
    topics = extract_topics("Book a flight and a hotel, then dinner at a restaurant")
    assert {"travel", "food"} <= topics


def test_extract_topics_is_case_insensitive():
    assert extract_topics("PYTHON") == extract_topics("python")


def test_extract_topics_empty():
    assert extract_topics("") == set()
    assert extract_topics("zzz qqq") == set()


# ============================================================================
# Importance
# ============================================================================

def test_score_importance_plain_text_is_base():
    assert score_importance("hello there") == pytest.approx(0.3)


def test_score_importance_keywords_boost():
    assert score_importance("This is important, remember it") == pytest.approx(0.5)


def test_score_importance_keyword_boost_is_capped():
    text = "important remember always never must urgent"
    assert score_importance(text) == pytest.approx(0.8)


def test_score_importance_question_bonus():
    assert score_importance("what time is it?") == pytest.approx(0.35)


def test_score_importance_length_bonuses():
    medium = " ".join(["word"] * 25)
    long = " ".join(["word"] * 60)
    assert score_importance(medium) == pytest.approx(0.35)
    assert score_importance(long) == pytest.approx(0.4)


def test_score_importance_clamped_to_one():
    assert score_importance("important must urgent never", base=0.9) == 1.0


def test_score_importance_custom_base():
    assert score_importance("hello", base=0.0) == 0.0


def test_word_count():
    assert word_count("  one two\tthree\n") == 3
    assert word_count("") == 0


# ============================================================================
# Topic similarity
# ============================================================================

def test_topic_similarity_both_empty_is_one():
    assert topic_similarity([], []) == 1.0


def test_topic_similarity_one_empty_is_zero():
    assert topic_similarity(["travel"], []) == 0.0
    assert topic_similarity([], ["travel"]) == 0.0


def test_topic_similarity_jaccard():
    assert topic_similarity(["a", "b"], ["b", "c"]) == pytest.approx(1 / 3)
    assert topic_similarity(["a"], ["a"]) == 1.0


# ============================================================================
# Tags
# ============================================================================

def test_extract_tags_task_and_question():
    tags = extract_tags("Remind me to call the doctor tomorrow?")
    assert tags == ["kind:question", "task:pending", "topic:health", "topic:schedule"]


def test_extract_tags_preference():
    assert "preference:user" in extract_tags("I prefer dark roast coffee")


def test_extract_tags_sorted_and_unique():
    tags = extract_tags("python python code code")
    assert tags == sorted(set(tags))
