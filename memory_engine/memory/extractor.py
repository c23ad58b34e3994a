"""
Topic and importance extraction.

Keyword-driven scoring functions shared by the chunker, summarizer and
retrieval scorer. Everything here is pure and deterministic.
"""

import re
from typing import Dict, Iterable, List, Set, Tuple

# Curated keyword lists per topic category (matched as lowercase substrings)
TOPIC_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "programming": (
        "code", "function", "bug", "debug", "python", "javascript", "typescript",
        "compile", "api", "git", "refactor", "deploy", "repository",
    ),
    "work": (
        "meeting", "project", "deadline", "client", "manager", "colleague",
        "office", "presentation", "report",
    ),
    "schedule": (
        "tomorrow", "today", "tonight", "calendar", "appointment", "remind",
        "schedule", "next week", "monday", "friday",
    ),
    "health": (
        "doctor", "exercise", "workout", "sleep", "diet", "medication",
        "headache", "gym", "running",
    ),
    "finance": (
        "money", "budget", "bank", "invest", "stock", "salary", "payment",
        "invoice", "price", "crypto",
    ),
    "travel": (
        "flight", "hotel", "trip", "vacation", "airport", "passport", "travel",
    ),
    "food": (
        "dinner", "lunch", "breakfast", "recipe", "restaurant", "cook", "coffee",
    ),
    "entertainment": (
        "movie", "music", "song", "game", "book", "podcast", "show",
    ),
    "family": (
        "family", "wife", "husband", "partner", "kids", "son", "daughter",
        "mother", "father", "friend",
    ),
    "learning": (
        "learn", "study", "course", "tutorial", "explain", "understand", "lesson",
    ),
    "technology": (
        "computer", "laptop", "phone", "software", "install", "update",
        "network", "server", "database",
    ),
}

# Category-independent markers of memory-worthy content
IMPORTANCE_KEYWORDS: Tuple[str, ...] = (
    "important", "remember", "don't forget", "always", "never", "must",
    "urgent", "deadline", "prefer", "favorite", "my name", "birthday",
    "allergic", "password", "address",
)

KEYWORD_BOOST = 0.1
MAX_KEYWORD_BOOST = 0.5
QUESTION_BONUS = 0.05
LONG_TEXT_BONUS = 0.05
LONG_TEXT_WORDS = 20
VERY_LONG_TEXT_WORDS = 50

# Tag patterns layered on top of topic tags
_PREFERENCE_WORDS = ("prefer", "i like", "i love", "i hate", "favorite", "i want", "i need")
_TASK_WORDS = ("todo", "to do", "remind me", "need to", "have to", "follow up", "don't forget")
_WORD_RE = re.compile(r"\S+")


def extract_topics(text: str) -> Set[str]:
    """
    Tag text with topic categories.

    Args:
        text: Arbitrary text

    Returns:
        Set of category names whose keywords occur in the text
    """
    if not text:
        return set()
    lowered = text.lower()
    return {
        category
        for category, keywords in TOPIC_KEYWORDS.items()
        if any(keyword in lowered for keyword in keywords)
    }


def word_count(text: str) -> int:
    return len(_WORD_RE.findall(text or ""))


def score_importance(text: str, base: float = 0.3) -> float:
    """
    Heuristic importance of a piece of text.

    Base score plus a boost per matched importance keyword (the total boost
    is capped), plus small bonuses for questions and longer text.

    Args:
        text: Text to score
        base: Starting score

    Returns:
        Importance in [0, 1]
    """
    score = max(0.0, base)
    lowered = (text or "").lower()

    matched = sum(1 for keyword in IMPORTANCE_KEYWORDS if keyword in lowered)
    score += min(MAX_KEYWORD_BOOST, matched * KEYWORD_BOOST)

    if "?" in lowered:
        score += QUESTION_BONUS

    words = word_count(lowered)
    if words > LONG_TEXT_WORDS:
        score += LONG_TEXT_BONUS
    if words > VERY_LONG_TEXT_WORDS:
        score += LONG_TEXT_BONUS

    return min(1.0, score)


def topic_similarity(a: Iterable[str], b: Iterable[str]) -> float:
    """
    Jaccard similarity of two topic sets.

    Two empty sets are identical (1.0); an empty and a non-empty set share
    nothing (0.0).
    """
    set_a, set_b = set(a), set(b)
    if not set_a and not set_b:
        return 1.0
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def extract_tags(text: str) -> List[str]:
    """
    Extract tags from text based on content patterns.

    Args:
        text: Memory or query text

    Returns:
        Sorted list of tags such as ``topic:work`` or ``task:pending``
    """
    lowered = (text or "").lower()
    tags = {f"topic:{topic}" for topic in extract_topics(lowered)}

    if any(word in lowered for word in _PREFERENCE_WORDS):
        tags.add("preference:user")

    if any(word in lowered for word in _TASK_WORDS):
        tags.add("task:pending")

    if "?" in lowered:
        tags.add("kind:question")

    return sorted(tags)
