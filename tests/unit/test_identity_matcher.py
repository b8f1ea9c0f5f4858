"""
Tests for the identity matcher.
"""

from attendance_engine.models.domain.roster_domain import RosterEntry
from attendance_engine.services.matching import identity_matcher
from attendance_engine.services.matching.identity_matcher import (
    batch_match,
    confidence_label,
    match,
    normalize_name,
    string_similarity,
)


def test_normalize_ignores_word_order_case_and_spacing():
    assert normalize_name("John Doe") == normalize_name("Doe John") == normalize_name(" john   doe ")
    assert normalize_name("John Doe") == "doe john"


def test_normalize_strips_non_letters():
    assert normalize_name("J0hn D'oe!") == "doe jhn"
    assert normalize_name(None) == ""
    assert normalize_name("123") == ""


def test_levenshtein_distance():
    assert identity_matcher.levenshtein_distance("kitten", "sitting") == 3
    assert identity_matcher.levenshtein_distance("", "abc") == 3


def test_string_similarity_bounds():
    assert string_similarity("", "") == 1.0
    assert string_similarity("abc", "abc") == 1.0
    assert string_similarity("abc", "xyz") == 0.0


def test_exact_match_scores_one():
    roster = [RosterEntry("s-1", "John Doe")]

    result = match("John Doe", roster)

    assert result is not None
    assert result.score == 1.0
    assert result.method == "exact_name"
    assert result.identity.identity_id == "s-1"


def test_exact_match_with_reordered_name():
    roster = [RosterEntry("s-1", "Jane Roe"), RosterEntry("s-2", "John Doe")]

    result = match("Doe, John", roster)

    assert result.method == "exact_name"
    assert result.identity.identity_id == "s-2"


def test_fuzzy_match_for_close_spelling():
    roster = [RosterEntry("s-1", "John Doe")]

    result = match("Jon Doe", roster, threshold=0.7)

    assert result is not None
    assert result.method == "fuzzy_match"
    assert 0.7 < result.score < 1.0


def test_high_confidence_tag_for_strong_fuzzy_match():
    roster = [RosterEntry("s-1", "Jonathon Smithers")]

    result = match("Jonathan Smithers", roster)

    assert result.method == "high_confidence"
    assert 0.9 <= result.score < 1.0


def test_ties_go_to_first_roster_entry():
    roster = [RosterEntry("a", "John Doe"), RosterEntry("b", "Joan Doe")]

    result = match("Jon Doe", roster)

    assert result.identity.identity_id == "a"


def test_highest_score_wins_over_roster_order():
    roster = [RosterEntry("a", "Jane Doe"), RosterEntry("b", "Jonathon Smithers")]

    result = match("Jonathan Smithers", roster)

    assert result.identity.identity_id == "b"


def test_no_match_below_threshold():
    roster = [RosterEntry("s-1", "John Doe")]

    assert match("Zed Quux", roster) is None


def test_threshold_is_configurable():
    roster = [RosterEntry("s-1", "John Doe")]

    assert match("Jon Doe", roster, threshold=0.95) is None


def test_empty_roster_or_name_returns_none():
    assert match("John Doe", []) is None
    assert match("", [RosterEntry("s-1", "John Doe")]) is None
    assert match("!!!", [RosterEntry("s-1", "John Doe")]) is None


def test_score_is_clamped():
    score = identity_matcher.score_names("aaa bbb ccc ddd", "aaa bbb ccc ddd")

    assert score == 1.0


def test_batch_match_preserves_order():
    roster = [RosterEntry("s-1", "John Doe"), RosterEntry("s-2", "Alice Smith")]

    results = batch_match(["Alice Smith", "Nobody Here", "Jon Doe"], roster)

    assert [name for name, _ in results] == ["Alice Smith", "Nobody Here", "Jon Doe"]
    assert results[0][1].identity.identity_id == "s-2"
    assert results[1][1] is None
    assert results[2][1].identity.identity_id == "s-1"


def test_confidence_label():
    assert confidence_label(1.0) == "high"
    assert confidence_label(0.9) == "high"
    assert confidence_label(0.75) == "medium"
    assert confidence_label(0.5) == "low"
