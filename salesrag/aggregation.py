"""Aggregation of retrieved matches into problem/solution signals."""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

from .models import (
    BestPattern,
    ConfidenceScores,
    SemanticSearchResult,
    SimilarConversation,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

TOP_LABELS = 3
BEST_PATTERN_MIN_SCORE = 0.7
# Used when the winning record does not carry a stage of its own.
DEFAULT_PATTERN_STAGE = "solutioning"


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def count_labels(labels: Iterable[str | None]) -> Counter[str]:
    """Count non-empty labels, remembering first-seen order for ties.

    Returns:
        Counter keyed by label.
    """
    return Counter(label for label in labels if label)


def rank_labels(counts: Counter[str], top_n: int = TOP_LABELS) -> list[str]:
    """Return the ``top_n`` most frequent labels, most frequent first.

    ``Counter.most_common`` is stable, so equally frequent labels keep the
    order in which they were first seen.

    Returns:
        Distinct labels.
    """
    return [label for label, _count in counts.most_common(top_n)]


def select_best_pattern(pool: Sequence[SimilarConversation]) -> BestPattern | None:
    """Pick the highest-converting match scoring above 0.7.

    Returns:
        The best pattern, or None when no match qualifies.
    """
    best: SimilarConversation | None = None
    for match in pool:
        score = match.conversion_score
        if score is None or score <= BEST_PATTERN_MIN_SCORE:
            continue
        if best is None or score > (best.conversion_score or 0.0):
            best = match

    if best is None:
        return None
    return BestPattern(
        approach=best.assistant_response,
        conversion_score=float(best.conversion_score or 0.0),
        stage=best.conversation_stage or DEFAULT_PATTERN_STAGE,
    )


def score_confidence(
    pool: Sequence[SimilarConversation],
    problem_counts: Counter[str],
    solution_counts: Counter[str],
) -> ConfidenceScores:
    """Compute the three confidence scalars for a pool of matches.

    Returns:
        Scores clamped to [0, 1]; all zero for an empty pool.
    """
    if not pool:
        return ConfidenceScores()

    size = len(pool)
    avg_similarity = sum(match.similarity for match in pool) / size
    problem_detection = _clamp(
        max(problem_counts.values()) / size if problem_counts else 0.0
    )
    solution_match = _clamp(
        max(solution_counts.values()) / size if solution_counts else 0.0
    )
    overall = _clamp((avg_similarity + problem_detection + solution_match) / 3)

    return ConfidenceScores(
        problem_detection=problem_detection,
        solution_match=solution_match,
        overall_confidence=overall,
    )


def aggregate(pool: Sequence[SimilarConversation]) -> SemanticSearchResult:
    """Turn a merged pool of matches into a semantic search result.

    The function is pure: the same pool always yields the same result.

    Returns:
        Ranked problems and solutions, best pattern and confidence.
    """
    problem_counts = count_labels(match.problem_detected for match in pool)
    solution_counts = count_labels(match.solution_presented for match in pool)

    return SemanticSearchResult(
        similar_conversations=list(pool),
        detected_problems=rank_labels(problem_counts),
        recommended_solutions=rank_labels(solution_counts),
        best_pattern=select_best_pattern(pool),
        confidence=score_confidence(pool, problem_counts, solution_counts),
    )
