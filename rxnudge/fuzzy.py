"""
String-distance helpers for matching OCR'd drug names to terminology hits.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein

DEFAULT_MIN_SIMILARITY = 0.6


@dataclass(frozen=True)
class FuzzyMatch:
    candidate: str
    distance: int
    similarity: float


def edit_distance(a: str, b: str) -> int:
    """Case-insensitive Levenshtein distance."""
    return Levenshtein.distance((a or "").lower(), (b or "").lower())


def similarity(a: str, b: str) -> float:
    """1 - distance / max(len(a), len(b)); two empty strings are identical."""
    longest = max(len(a or ""), len(b or ""))
    if longest == 0:
        return 1.0
    return 1.0 - edit_distance(a, b) / longest


def best_match(query: str, candidates: Iterable[str],
               min_similarity: float = DEFAULT_MIN_SIMILARITY) -> Optional[FuzzyMatch]:
    """
    Lowest-distance candidate whose similarity is strictly above ``min_similarity``.

    Candidates at or below the threshold are skipped rather than ending the
    scan; ties keep the earlier candidate (the service's own ranking).
    """
    best = None
    for candidate in candidates:
        if not candidate or not isinstance(candidate, str):
            continue
        distance = edit_distance(query, candidate)
        score = similarity(query, candidate)
        if score <= min_similarity:
            continue
        if best is None or distance < best.distance:
            best = FuzzyMatch(candidate=candidate, distance=distance, similarity=score)
    return best
