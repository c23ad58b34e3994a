"""Sentence-level importance scoring and selection."""

import math
import re
from typing import List, Tuple

from .extractor import score_importance

# Simple sentence split on sentence-ending punctuation
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")

# Token extraction pattern
_WORD_RE = re.compile(r"[A-Za-z0-9_']+")

# Capitalised word that is not the first word of the sentence
_MID_CAPITAL_RE = re.compile(r"(?<=\s)[A-Z][a-z]+")

_DIGIT_RE = re.compile(r"\d")

MEDIUM_MIN_WORDS = 8
MEDIUM_MAX_WORDS = 30


def split_sentences(text: str) -> List[str]:
    """Split text into non-empty, stripped sentences."""
    if not text or not text.strip():
        return []
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text.strip()) if s.strip()]


def score_sentence(sentence: str) -> float:
    """Score how much a sentence is worth keeping.

    The document importance heuristic applied to the sentence, plus bonuses
    for medium length, a capitalised word mid-sentence (names, places) and
    digits (dates, amounts).

    Args:
        sentence: Sentence to score

    Returns:
        Score, not clamped; only used for ranking
    """
    score = score_importance(sentence, base=0.0)

    words = len(_WORD_RE.findall(sentence))
    if MEDIUM_MIN_WORDS <= words <= MEDIUM_MAX_WORDS:
        score += 0.1

    if _MID_CAPITAL_RE.search(sentence):
        score += 0.1

    if _DIGIT_RE.search(sentence):
        score += 0.05

    return score


def keep_top_sentences(text: str, fraction: float, minimum: int = 1, round_up: bool = False) -> str:
    """
    Keep the best-scoring share of sentences, in their original order.

    Args:
        text: Text to reduce
        fraction: Share of sentences to keep
        minimum: Lower bound on kept sentences
        round_up: Round the kept count up instead of down

    Returns:
        Kept sentences joined by spaces
    """
    sentences = split_sentences(text)
    if not sentences:
        return ""

    raw = len(sentences) * fraction
    count = math.ceil(raw) if round_up else int(raw)
    count = min(len(sentences), max(minimum, count))

    ranked: List[Tuple[float, int]] = sorted(
        ((score_sentence(s), i) for i, s in enumerate(sentences)),
        key=lambda pair: (-pair[0], pair[1]),
    )
    keep = sorted(i for _, i in ranked[:count])
    return " ".join(sentences[i] for i in keep)
