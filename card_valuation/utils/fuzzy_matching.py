"""
Fuzzy string matching for OCR correction.

OCR on card photos routinely drops accents, swaps look-alike characters and
breaks words across lines. Everything here compares normalized text so that
"Charizard  VMAX!" and "charizard vmax" are identical, then scores the rest
with Levenshtein edit distance.

Common OCR errors:
- O/0 confusion: "Chari2ard" -> "Charizard"
- l/1/I confusion: "Pika chu" -> "Pikachu"
- Dropped diacritics: "Pokemon" vs "Pokémon"
"""

import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable, List, Optional

import Levenshtein
from fuzzywuzzy import fuzz

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.7

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class FuzzyMatch:
    """Best candidate for a fuzzy lookup."""

    match: str
    """Candidate exactly as it appeared in the dictionary."""

    confidence: float
    """Similarity in [0, 1]; 1.0 means identical after normalization."""


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two raw strings."""
    return Levenshtein.distance(a, b)


def normalize_for_comparison(text: str) -> str:
    """
    Normalize text for comparison.

    Lowercases, strips accents, removes punctuation and collapses whitespace.

    Examples:
        >>> normalize_for_comparison("  Pokémon  TCG! ")
        'pokemon tcg'
    """
    if not text:
        return ""
    text = unicodedata.normalize("NFKD", text)
    text = "".join(c for c in text if not unicodedata.combining(c))
    text = _NON_ALNUM.sub("", text.lower().strip())
    return _WHITESPACE.sub(" ", text).strip()


def similarity(a: str, b: str) -> float:
    """
    Normalized similarity in [0, 1] based on edit distance.

    Two strings that are both empty after normalization are identical.
    """
    norm_a = normalize_for_comparison(a)
    norm_b = normalize_for_comparison(b)
    max_len = max(len(norm_a), len(norm_b))
    if max_len == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(norm_a, norm_b) / max_len


def token_similarity(a: str, b: str) -> float:
    """Word-order-insensitive similarity ("VMAX Charizard" == "Charizard VMAX")."""
    return fuzz.token_sort_ratio(normalize_for_comparison(a), normalize_for_comparison(b)) / 100.0


def find_best_match(
    query: str,
    candidates: Iterable[str],
    threshold: float = DEFAULT_THRESHOLD
) -> Optional[FuzzyMatch]:
    """
    Find the candidate most similar to query.

    Args:
        query: Raw OCR text
        candidates: Known-good dictionary entries
        threshold: Minimum similarity to accept (default 0.7)

    Returns:
        FuzzyMatch for the best candidate, or None when the query or the
        candidate list is empty or nothing reaches the threshold.
    """
    if not query or not query.strip():
        return None

    best: Optional[FuzzyMatch] = None
    for candidate in candidates:
        score = similarity(query, candidate)
        if best is None or score > best.confidence:
            best = FuzzyMatch(match=candidate, confidence=score)
            if score == 1.0:
                break

    if best is None or best.confidence < threshold:
        return None

    logger.debug(f"Fuzzy match: '{query}' -> '{best.match}' ({best.confidence:.2f})")
    return best


def find_all_matches(
    query: str,
    candidates: Iterable[str],
    threshold: float = DEFAULT_THRESHOLD,
    limit: int = 5
) -> List[FuzzyMatch]:
    """Rank every candidate at or above threshold, best first."""
    if not query or not query.strip():
        return []

    matches = [
        FuzzyMatch(match=candidate, confidence=similarity(query, candidate))
        for candidate in candidates
    ]
    matches = [m for m in matches if m.confidence >= threshold]
    matches.sort(key=lambda m: m.confidence, reverse=True)
    return matches[:limit]
