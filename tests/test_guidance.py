"""Tests for guidance synthesis."""

import pytest

from salesrag.guidance import (
    APPROACH_DISCOVER,
    APPROACH_PRESENT,
    APPROACH_QUALIFY,
    AVOID_SOLUTIONS,
    synthesize_guidance,
)
from salesrag.models import (
    BestPattern,
    ConfidenceScores,
    ConversationHistory,
    SemanticSearchResult,
)


def _result(confidence, problems=(), best_pattern=None):
    return SemanticSearchResult(
        detected_problems=list(problems),
        best_pattern=best_pattern,
        confidence=ConfidenceScores(overall_confidence=confidence),
    )


@pytest.fixture
def history():
    return ConversationHistory(stage="qualifying", message_count=3)


def test_high_confidence_with_best_pattern(history):
    pattern = BestPattern(approach="Proven reply", conversion_score=0.95, stage="solutioning")

    guidance = synthesize_guidance(_result(0.9, ["support"], pattern), history)

    assert guidance.suggested_approach == APPROACH_PRESENT
    assert guidance.key_points == [
        "Similar conversations with 95% conversion rate used this approach",
        "Focus on problem quantification and impact",
    ]
    assert guidance.avoid_topics == []
    assert guidance.urgency_level == "low"


def test_high_confidence_without_best_pattern_has_no_key_points(history):
    guidance = synthesize_guidance(_result(0.85), history)

    assert guidance.suggested_approach == APPROACH_PRESENT
    assert guidance.key_points == []


def test_medium_confidence_qualifies(history):
    guidance = synthesize_guidance(_result(0.6), history)

    assert guidance.suggested_approach == APPROACH_QUALIFY
    assert guidance.key_points == [
        "Ask 2-3 discovery questions to clarify the problem",
        "Avoid premature solution presentation",
    ]
    assert guidance.avoid_topics == []


def test_low_confidence_stays_in_discovery(history):
    guidance = synthesize_guidance(_result(0.0), history)

    assert guidance.suggested_approach == APPROACH_DISCOVER
    assert guidance.key_points == ["Stay in discovery mode - ask open-ended questions"]
    assert guidance.avoid_topics == [AVOID_SOLUTIONS]
    assert guidance.urgency_level == "low"


@pytest.mark.parametrize(
    ("confidence", "approach"),
    [
        (0.8, APPROACH_QUALIFY),
        (0.5, APPROACH_DISCOVER),
        (0.81, APPROACH_PRESENT),
        (0.51, APPROACH_QUALIFY),
    ],
)
def test_confidence_buckets_are_strict(history, confidence, approach):
    assert synthesize_guidance(_result(confidence), history).suggested_approach == approach


@pytest.mark.parametrize("problem", ["churn", "fraud", "customer_churn"])
def test_urgent_problems_raise_urgency(history, problem):
    guidance = synthesize_guidance(_result(0.6, [problem]), history)

    assert guidance.urgency_level == "high"
    assert guidance.key_points[-1] == "Emphasize cost of inaction and urgency"
    assert guidance.suggested_approach == APPROACH_QUALIFY


def test_urgency_combines_with_low_confidence(history):
    guidance = synthesize_guidance(_result(0.2, ["quality", "fraud"]), history)

    assert guidance.key_points == [
        "Stay in discovery mode - ask open-ended questions",
        "Emphasize cost of inaction and urgency",
    ]
    assert guidance.urgency_level == "high"


def test_custom_urgency_markers(history):
    guidance = synthesize_guidance(
        _result(0.6, ["maintenance"]), history, high_urgency_markers=("maintenance",)
    )

    assert guidance.urgency_level == "high"


def test_history_does_not_change_guidance():
    result = _result(0.6, ["support"])

    early = synthesize_guidance(result, ConversationHistory())
    late = synthesize_guidance(
        result, ConversationHistory(stage="closing", message_count=12)
    )

    assert early == late
