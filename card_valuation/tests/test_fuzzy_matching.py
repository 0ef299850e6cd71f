"""
card_valuation/tests/test_fuzzy_matching.py: Unit tests for OCR fuzzy matching

Tests:
- Normalization (case, accents, punctuation, whitespace)
- Edit-distance similarity
- Best / ranked candidate lookup with thresholds
"""

import pytest

from card_valuation.utils.fuzzy_matching import (
    find_all_matches,
    find_best_match,
    levenshtein_distance,
    normalize_for_comparison,
    similarity,
    token_similarity,
)


class TestNormalization:
    """Test text normalization"""

    def test_lowercases_and_strips_punctuation(self):
        """Test that case and punctuation are ignored"""
        assert normalize_for_comparison("Charizard  VMAX!") == "charizard vmax"

    def test_strips_accents(self):
        """Test that é and e compare equal"""
        assert normalize_for_comparison("Pokémon") == "pokemon"

    def test_empty_string(self):
        """Test that empty input normalizes to empty"""
        assert normalize_for_comparison("") == ""
        assert normalize_for_comparison("   ") == ""


class TestSimilarity:
    """Test similarity scoring"""

    def test_identical_after_normalization(self):
        """Test that normalized-equal strings score 1.0"""
        assert similarity("charizard vmax", "Charizard VMAX") == 1.0

    def test_single_substitution(self):
        """Test that one OCR substitution in nine characters scores 8/9"""
        assert similarity("Chari2ard", "Charizard") == pytest.approx(8 / 9)

    def test_both_empty(self):
        """Test that two empty strings are identical"""
        assert similarity("", "") == 1.0

    def test_raw_distance(self):
        """Test raw edit distance is case sensitive"""
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("Pikachu", "pikachu") == 1

    def test_token_order_insensitive(self):
        """Test that word order does not matter for token similarity"""
        assert token_similarity("VMAX Charizard", "Charizard VMAX") == 1.0


class TestFindBestMatch:
    """Test candidate lookup"""

    def test_corrects_ocr_error(self):
        """Test that a misspelled name maps to the closest known name"""
        match = find_best_match("Pikachoo", ["Raichu", "Pikachu", "Pichu"])

        assert match is not None
        assert match.match == "Pikachu"
        assert match.confidence == pytest.approx(0.75)

    def test_below_threshold_returns_none(self):
        """Test that unrelated text does not match"""
        assert find_best_match("Energy Removal", ["Pikachu", "Charizard"]) is None

    def test_empty_query_returns_none(self):
        """Test that blank queries are rejected"""
        assert find_best_match("  ", ["Pikachu"]) is None

    def test_empty_candidates_returns_none(self):
        """Test that an empty dictionary yields no match"""
        assert find_best_match("Pikachu", []) is None

    def test_returns_candidate_as_written(self):
        """Test that the original candidate spelling is returned"""
        match = find_best_match("pokemon center", ["Pokémon Center"])
        assert match.match == "Pokémon Center"
        assert match.confidence == 1.0

    def test_find_all_matches_sorted_and_limited(self):
        """Test ranking of every candidate above threshold"""
        matches = find_all_matches("Charizard", ["Charizard", "Charizard V", "Charmander", "Blastoise"],
                                   threshold=0.5, limit=2)

        assert [m.match for m in matches] == ["Charizard", "Charizard V"]
        assert matches[0].confidence >= matches[1].confidence
