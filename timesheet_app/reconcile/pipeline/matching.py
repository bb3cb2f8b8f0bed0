"""
Name normalization and similarity scoring used by entity resolution.
"""

from __future__ import annotations

import re
from typing import Callable, Iterable, List, Sequence, Tuple, TypeVar

from rapidfuzz.distance import Hamming

EXACT_SCORE = 1.0
CONTAINMENT_SCORE = 0.9
WORD_OVERLAP_WEIGHT = 0.6
CHARACTER_WEIGHT = 0.4
MIN_WORD_LENGTH = 3
# A misspelled word must keep this many leading characters and reach
# WORD_MATCH_THRESHOLD to count as the same word.
MIN_SHARED_PREFIX = 4
WORD_MATCH_THRESHOLD = 0.6
DEFAULT_THRESHOLD = 0.7

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")

T = TypeVar("T")


def normalize_name(value: object | None) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    if value is None:
        return ""
    text = _PUNCTUATION_RE.sub("", str(value).lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def character_similarity(left: str, right: str) -> float:
    """
    Positional character similarity in [0, 1].

    ``1 - (positional mismatches + length delta) / max length``, which is the
    padded Hamming similarity.
    """
    if not left and not right:
        return 1.0
    return float(Hamming.normalized_similarity(left, right, pad=True))


def _words_match(left: str, right: str) -> bool:
    """Equal words, prefixes, or a late misspelling of the same word."""
    if left == right or left.startswith(right) or right.startswith(left):
        return True
    if left.isdigit() or right.isdigit():
        return False
    if left[:MIN_SHARED_PREFIX] != right[:MIN_SHARED_PREFIX] or len(left) < MIN_SHARED_PREFIX:
        return False
    return character_similarity(left, right) >= WORD_MATCH_THRESHOLD


def _numbers_conflict(left_words: Sequence[str], right_words: Sequence[str]) -> bool:
    # "Smith Attic 2024" and "Smith Attic 2025" are different jobs
    left_numbers = [word for word in left_words if word.isdigit()]
    right_numbers = [word for word in right_words if word.isdigit()]
    return bool(left_numbers) and bool(right_numbers) and left_numbers != right_numbers


def word_overlap_ratio(left_words: Sequence[str], right_words: Sequence[str]) -> float:
    if not left_words or not right_words:
        return 0.0
    shorter, longer = sorted((list(left_words), list(right_words)), key=len)
    remaining = list(longer)
    matched = 0
    for word in shorter:
        for index, candidate in enumerate(remaining):
            if _words_match(word, candidate):
                matched += 1
                del remaining[index]
                break
    return matched / len(longer)


def max_word_character_similarity(left_words: Sequence[str], right_words: Sequence[str]) -> float:
    best = 0.0
    for left in left_words:
        if len(left) < MIN_WORD_LENGTH:
            continue
        for right in right_words:
            if len(right) < MIN_WORD_LENGTH:
                continue
            best = max(best, character_similarity(left, right))
    return best


def name_similarity(left: object | None, right: object | None) -> float:
    """
    Score how alike two names are (0..1).

    Exact match after normalization scores 1.0 and containment of one name in
    the other scores 0.9. Anything else blends word overlap with the best
    per-word character similarity. Names carrying different numbers score 0.
    """
    a = normalize_name(left)
    b = normalize_name(right)
    if not a or not b:
        return 0.0
    if a == b:
        return EXACT_SCORE

    words_a = a.split(" ")
    words_b = b.split(" ")
    if _numbers_conflict(words_a, words_b):
        return 0.0
    if a in b or b in a:
        return CONTAINMENT_SCORE

    score = WORD_OVERLAP_WEIGHT * word_overlap_ratio(words_a, words_b) + CHARACTER_WEIGHT * max_word_character_similarity(
        words_a, words_b
    )
    return round(score, 6)


def rank_candidates(
    name: str,
    candidates: Iterable[T],
    *,
    key: Callable[[T], str],
    threshold: float = DEFAULT_THRESHOLD,
) -> List[Tuple[float, T]]:
    """
    Score candidates against ``name`` and keep those strictly above ``threshold``.

    Results are ordered best first; equal scores keep input order.
    """
    scored: List[Tuple[float, T]] = []
    for candidate in candidates:
        score = name_similarity(name, key(candidate))
        if score > threshold:
            scored.append((score, candidate))
    scored.sort(key=lambda item: item[0], reverse=True)
    return scored


def top_scoring(scored: Sequence[Tuple[float, T]]) -> List[T]:
    """Return every candidate sharing the best score."""
    if not scored:
        return []
    best = scored[0][0]
    return [candidate for score, candidate in scored if score == best]
