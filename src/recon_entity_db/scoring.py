"""
Candidate scoring shared by both entity sources.

Scores are on a 0-100 scale (heuristic scores may exceed 100 when the
query is longer than the matched name; they are not clamped). A candidate
is a match when its score is strictly above MATCH_THRESHOLD.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import Candidate

MATCH_THRESHOLD = 80.0
EXACT_ID_SCORE = 100.0
CASE_INSENSITIVE_ID_SCORE = 95.0
TYPE_BONUS = 10.0
DEFAULT_LIMIT = 25


def is_match(score: float) -> bool:
    return score > MATCH_THRESHOLD


def heuristic_score(query: str, key: str, name: str) -> float:
    """
    Score an entity against a query by id equality or name containment.

    Args:
        query: Query text
        key: Raw record key of the entity
        name: Entity name

    Returns:
        95.0 for a case-insensitive raw key match, otherwise the share of
        the name covered by the query when the name contains it, else 0.0.
    """
    low = query.lower()
    if key.lower() == low:
        return CASE_INSENSITIVE_ID_SCORE
    if name and low in name.lower():
        # recall: the whole query is found in the name
        return len(low) * 100.0 / len(name)
    return 0.0


def length_ratio_score(query: str, candidate_id: str, candidate_name: str) -> float:
    """Best of query/id and query/name length ratios, scaled to 100."""
    ratios = [0.0]
    if candidate_id:
        ratios.append(len(query) / len(candidate_id))
    if candidate_name:
        ratios.append(len(query) / len(candidate_name))
    return max(ratios) * 100.0


def normalization_scale(
    query: str,
    candidate_id: str,
    candidate_name: str,
    native_score: float,
) -> Optional[float]:
    """
    Factor mapping a full-text engine's native scores onto the 0-100 scale.

    Computed once from the best hit, which then scores
    ``length_ratio_score(query, id, name)``; every later hit is multiplied
    by the same factor. Returns None when the native score is zero.
    """
    if native_score == 0:
        return None
    return length_ratio_score(query, candidate_id, candidate_name) / native_score


def sort_candidates(candidates: list["Candidate"]) -> list["Candidate"]:
    """Order candidates by descending score, breaking ties by id."""
    return sorted(candidates, key=lambda c: (-c.score, c.id))
