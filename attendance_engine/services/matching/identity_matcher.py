"""
Identity matcher - maps an observed display name to a roster entry.

Scoring:
    1. Exact match on the normalized name          -> 1.0, exact_name
    2. Edit-distance similarity of normalized names -> weighted 0.8
    3. Token bonus: +0.1 per observed token (len > 2) that closely matches
       a roster token (similarity > 0.85)
    4. Clamp to [0.0, 1.0]

Pure functions only; safe to call from anywhere.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from rapidfuzz.distance import Levenshtein

from attendance_engine.infrastructure.observability.logging import get_logger
from attendance_engine.models.domain.attendance_domain import (
    METHOD_EXACT_NAME,
    METHOD_FUZZY_MATCH,
    METHOD_HIGH_CONFIDENCE,
)
from attendance_engine.models.domain.roster_domain import MatchResult, RosterEntry

logger = get_logger(__name__)

DEFAULT_THRESHOLD = 0.7
NAME_WEIGHT = 0.8
TOKEN_BONUS = 0.1
TOKEN_MIN_LENGTH = 3
TOKEN_SIMILARITY_CUTOFF = 0.85
HIGH_CONFIDENCE_SCORE = 0.9

_NON_LETTERS = re.compile(r"[^a-z\s]")


def normalize_name(name: str | None) -> str:
    """Lower-case, strip non-letters, collapse whitespace, sort words."""
    if not name:
        return ""
    cleaned = _NON_LETTERS.sub("", name.lower())
    return " ".join(sorted(cleaned.split()))


def levenshtein_distance(a: str, b: str) -> int:
    return Levenshtein.distance(a, b)


def string_similarity(a: str, b: str) -> float:
    """1 - distance / longest length; two empty strings are identical."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - (levenshtein_distance(a, b) / longest)


def _token_bonus(observed_tokens: list[str], roster_tokens: list[str]) -> float:
    bonus = 0.0
    for observed in observed_tokens:
        if len(observed) < TOKEN_MIN_LENGTH:
            continue
        for candidate in roster_tokens:
            if len(candidate) < TOKEN_MIN_LENGTH:
                continue
            if string_similarity(observed, candidate) > TOKEN_SIMILARITY_CUTOFF:
                bonus += TOKEN_BONUS
                break
    return bonus


def score_names(observed_normalized: str, roster_normalized: str) -> float:
    """Fuzzy score between two already-normalized names, clamped to [0, 1]."""
    if not observed_normalized or not roster_normalized:
        return 0.0

    score = string_similarity(observed_normalized, roster_normalized) * NAME_WEIGHT
    score += _token_bonus(observed_normalized.split(), roster_normalized.split())
    return min(max(score, 0.0), 1.0)


def match(
    observed_name: str | None,
    roster: Sequence[RosterEntry],
    threshold: float = DEFAULT_THRESHOLD,
) -> MatchResult | None:
    """
    Find the best roster entry for an observed display name.

    Args:
        observed_name: Name as shown in the meeting UI
        roster: Candidate identities, in priority order for ties
        threshold: Minimum score for a candidate to be accepted

    Returns:
        MatchResult for the best candidate, or None when nothing clears the threshold
    """
    observed = normalize_name(observed_name)
    if not observed or not roster:
        return None

    normalized_roster = [(entry, normalize_name(entry.display_name)) for entry in roster]

    for entry, normalized in normalized_roster:
        if normalized and normalized == observed:
            return MatchResult(identity=entry, score=1.0, method=METHOD_EXACT_NAME)

    best: MatchResult | None = None
    for entry, normalized in normalized_roster:
        score = score_names(observed, normalized)
        if score < threshold:
            continue
        # Strictly greater keeps the first entry on ties
        if best is None or score > best.score:
            method = METHOD_HIGH_CONFIDENCE if score >= HIGH_CONFIDENCE_SCORE else METHOD_FUZZY_MATCH
            best = MatchResult(identity=entry, score=score, method=method)

    if best is None:
        logger.debug("No roster match", observed=observed, roster_size=len(roster))
    return best


def batch_match(
    observed_names: Iterable[str],
    roster: Sequence[RosterEntry],
    threshold: float = DEFAULT_THRESHOLD,
) -> list[tuple[str, MatchResult | None]]:
    return [(name, match(name, roster, threshold)) for name in observed_names]


def confidence_label(score: float) -> str:
    if score >= HIGH_CONFIDENCE_SCORE:
        return "high"
    if score >= DEFAULT_THRESHOLD:
        return "medium"
    return "low"
