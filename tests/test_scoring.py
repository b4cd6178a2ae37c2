"""Tests for shared candidate scoring in recon_entity_db.scoring."""

import pytest

from recon_entity_db.models import Candidate
from recon_entity_db.scoring import (
    heuristic_score,
    is_match,
    length_ratio_score,
    normalization_scale,
    sort_candidates,
)


class TestIsMatch:
    def test_threshold_is_exclusive(self):
        """Exactly 80.0 is not a match; anything above is."""
        assert is_match(80.0) is False
        assert is_match(80.0001) is True

    def test_extremes(self):
        assert is_match(0.0) is False
        assert is_match(100.0) is True


class TestHeuristicScore:
    def test_case_insensitive_key(self):
        assert heuristic_score("Q42", "q42", "Douglas Adams") == 95.0

    def test_name_containment(self):
        assert heuristic_score("Douglas", "q42", "Douglas Adams") == pytest.approx(700 / 13)

    def test_case_insensitive_name(self):
        assert heuristic_score("ADAMS", "q5", "Adams") == pytest.approx(100.0)

    def test_no_overlap(self):
        assert heuristic_score("Tolkien", "q42", "Douglas Adams") == 0.0

    def test_key_match_beats_name_containment(self):
        """A raw key match scores 95 even when the name also contains the query."""
        assert heuristic_score("adams", "ADAMS", "Adams") == 95.0

    def test_empty_name(self):
        assert heuristic_score("x", "k", "") == 0.0


class TestLengthRatio:
    def test_best_of_id_and_name(self):
        # "Adams" covers all of the name but only 5/9 of "person:q5"
        assert length_ratio_score("Adams", "person:q5", "Adams") == pytest.approx(100.0)

    def test_id_ratio_wins(self):
        assert length_ratio_score("q42", "p:q42", "Douglas Adams") == pytest.approx(60.0)

    def test_empty_candidate(self):
        assert length_ratio_score("x", "", "") == 0.0


class TestNormalizationScale:
    def test_best_hit_maps_to_length_ratio(self):
        scale = normalization_scale("Adams", "person:q5", "Adams", -2.0)
        assert scale == pytest.approx(-50.0)
        assert -2.0 * scale == pytest.approx(100.0)

    def test_later_hits_scale_proportionally(self):
        scale = normalization_scale("Douglas", "person:q42", "Douglas Adams", -4.0)
        best = -4.0 * scale
        assert -2.0 * scale == pytest.approx(best / 2)

    def test_zero_native_score(self):
        assert normalization_scale("Adams", "person:q5", "Adams", 0.0) is None


class TestSortCandidates:
    def test_descending_with_id_tiebreak(self):
        candidates = [
            Candidate(id="b", name="B", score=50.0, match=False),
            Candidate(id="c", name="C", score=90.0, match=True),
            Candidate(id="a", name="A", score=50.0, match=False),
        ]
        assert [c.id for c in sort_candidates(candidates)] == ["c", "a", "b"]
