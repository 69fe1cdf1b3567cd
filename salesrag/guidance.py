"""Guidance synthesis from aggregated retrieval evidence."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .config import config
from .models import Guidance, UrgencyLevel

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .models import ConversationHistory, SemanticSearchResult

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.5
HIGH_URGENCY_MARKERS = ("churn", "fraud")

APPROACH_PRESENT = "Present solution with proven talking points"
APPROACH_QUALIFY = "Ask qualifying questions to confirm problem"
APPROACH_DISCOVER = "Continue discovery to understand pain points"
AVOID_SOLUTIONS = "Specific solution recommendations"

logger = config.get_logger(__name__)


def synthesize_guidance(
    search_result: SemanticSearchResult,
    history: ConversationHistory,
    high_urgency_markers: Sequence[str] = HIGH_URGENCY_MARKERS,
) -> Guidance:
    """Derive talking points and an approach from retrieval confidence.

    The confidence bucket rule and the urgency rule both always run, so
    ``key_points`` may hold entries from each. Urgency is two-valued: a
    detected problem containing one of ``high_urgency_markers`` makes it
    ``high``, anything else leaves it ``low``.

    Args:
        search_result: Aggregated evidence for the current message.
        history: Stage and counters of the ongoing conversation.
        high_urgency_markers: Substrings of problem labels that call for urgency.

    Returns:
        Guidance for prompt assembly.
    """
    confidence = search_result.confidence.overall_confidence
    best_pattern = search_result.best_pattern

    key_points: list[str] = []
    avoid_topics: list[str] = []
    urgency_level: UrgencyLevel = "low"

    if confidence > HIGH_CONFIDENCE:
        if best_pattern is not None:
            key_points.append(
                f"Similar conversations with "
                f"{round(best_pattern.conversion_score * 100)}% conversion rate "
                "used this approach"
            )
            key_points.append("Focus on problem quantification and impact")
        suggested_approach = APPROACH_PRESENT
    elif confidence > MEDIUM_CONFIDENCE:
        key_points.append("Ask 2-3 discovery questions to clarify the problem")
        key_points.append("Avoid premature solution presentation")
        suggested_approach = APPROACH_QUALIFY
    else:
        key_points.append("Stay in discovery mode - ask open-ended questions")
        avoid_topics.append(AVOID_SOLUTIONS)
        suggested_approach = APPROACH_DISCOVER

    if any(
        marker in problem
        for problem in search_result.detected_problems
        for marker in high_urgency_markers
    ):
        urgency_level = "high"
        key_points.append("Emphasize cost of inaction and urgency")

    logger.debug(
        "Guidance at stage %s after %d messages: %s (confidence %.2f, urgency %s)",
        history.stage,
        history.message_count,
        suggested_approach,
        confidence,
        urgency_level,
    )
    return Guidance(
        suggested_approach=suggested_approach,
        key_points=key_points,
        avoid_topics=avoid_topics,
        urgency_level=urgency_level,
    )
