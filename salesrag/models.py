"""Data models for the conversation RAG engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import TYPE_CHECKING, Any, Literal, get_args

from .errors import RecordValidationError

if TYPE_CHECKING:
    from collections.abc import Mapping

    import numpy as np

Collection = Literal["conversations", "examples"]
ConversationStage = Literal[
    "discovery", "qualifying", "solutioning", "closing", "complete"
]
Outcome = Literal["booking_completed", "conversation_ended", "in_progress"]
UrgencyLevel = Literal["low", "medium", "high"]

COLLECTIONS: tuple[Collection, ...] = get_args(Collection)
OUTCOMES: tuple[Outcome, ...] = get_args(Outcome)

MIN_SATISFACTION = 1
MAX_SATISFACTION = 5


def _to_snake_case(key: str) -> str:
    return "".join(f"_{char.lower()}" if char.isupper() else char for char in key)


@dataclass
class ConversationRecord:
    """One real user/assistant exchange stored in the ``conversations`` collection."""

    industry: str
    session_id: str
    user_message: str
    assistant_response: str
    conversation_stage: str = "discovery"
    outcome: Outcome = "in_progress"
    booking_completed: bool = False
    client_id: str | None = None
    problem_detected: str | None = None
    solution_presented: str | None = None
    conversion_score: float | None = None
    response_time_ms: int | None = None
    user_satisfaction: int | None = None
    id: int | None = None
    embedding: np.ndarray | None = field(default=None, repr=False)
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ConversationRecord:
        """Build a record from a caller payload using camelCase or snake_case keys.

        Store-managed fields (``id``, ``embedding``, ``createdAt``,
        ``updatedAt``) are ignored.

        Raises:
            RecordValidationError: If a required field is missing.
        """
        known = {f.name for f in fields(cls)} - {
            "id",
            "embedding",
            "created_at",
            "updated_at",
        }
        values = {
            name: value
            for key, value in payload.items()
            if (name := _to_snake_case(key)) in known
        }
        missing = [
            name
            for name in ("industry", "session_id", "user_message", "assistant_response")
            if name not in values
        ]
        if missing:
            msg = f"Conversation record is missing fields: {', '.join(missing)}"
            raise RecordValidationError(msg)
        return cls(**values)

    def validate(self) -> None:
        """Check required text fields and value ranges.

        Raises:
            RecordValidationError: If the record cannot be stored.
        """
        for name in ("industry", "session_id", "user_message"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                msg = f"Conversation record requires a non-empty {name}"
                raise RecordValidationError(msg)
        if not isinstance(self.assistant_response, str):
            msg = "Conversation record requires an assistant_response string"
            raise RecordValidationError(msg)
        if self.outcome not in OUTCOMES:
            msg = f"Unknown outcome: {self.outcome}"
            raise RecordValidationError(msg)
        if self.conversion_score is not None and not (
            0.0 <= self.conversion_score <= 1.0
        ):
            msg = f"conversion_score must be between 0 and 1, got {self.conversion_score}"
            raise RecordValidationError(msg)
        if self.user_satisfaction is not None and not (
            MIN_SATISFACTION <= self.user_satisfaction <= MAX_SATISFACTION
        ):
            msg = (
                f"user_satisfaction must be between {MIN_SATISFACTION} and "
                f"{MAX_SATISFACTION}, got {self.user_satisfaction}"
            )
            raise RecordValidationError(msg)


@dataclass
class ExampleRecord:
    """A curated, verified exchange stored in the ``examples`` collection."""

    industry: str
    user_message: str
    assistant_response: str
    problem_detected: str | None = None
    solution_presented: str | None = None
    conversation_stage: str = "discovery"
    outcome: Outcome = "booking_completed"
    conversion_score: float | None = None
    is_verified: bool = True
    notes: str | None = None
    id: int | None = None
    embedding: np.ndarray | None = field(default=None, repr=False)
    created_at: str | None = None


@dataclass
class SimilarConversation:
    """A stored exchange matched against the current user message."""

    id: int
    collection: Collection
    user_message: str
    assistant_response: str
    similarity: float
    problem_detected: str | None = None
    solution_presented: str | None = None
    conversation_stage: str | None = None
    outcome: str | None = None
    conversion_score: float | None = None


@dataclass
class BestPattern:
    """The highest-converting matched response."""

    approach: str
    conversion_score: float
    stage: str


@dataclass
class ConfidenceScores:
    problem_detection: float = 0.0
    solution_match: float = 0.0
    overall_confidence: float = 0.0


@dataclass
class SemanticSearchResult:
    """Aggregated retrieval evidence for one user message."""

    similar_conversations: list[SimilarConversation] = field(default_factory=list)
    detected_problems: list[str] = field(default_factory=list)
    recommended_solutions: list[str] = field(default_factory=list)
    best_pattern: BestPattern | None = None
    confidence: ConfidenceScores = field(default_factory=ConfidenceScores)


@dataclass
class ConversationHistory:
    """Lightweight state of the ongoing conversation supplied by the caller."""

    stage: str = "discovery"
    message_count: int = 0
    problems_discussed: list[str] = field(default_factory=list)


@dataclass
class Guidance:
    suggested_approach: str
    key_points: list[str] = field(default_factory=list)
    avoid_topics: list[str] = field(default_factory=list)
    urgency_level: UrgencyLevel = "low"


@dataclass
class RAGContext:
    """Everything prompt assembly needs for one turn."""

    user_message: str
    search_results: SemanticSearchResult
    conversation_history: ConversationHistory
    guidance: Guidance

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable representation.

        Returns:
            Nested dictionaries mirroring the dataclass fields.
        """
        return asdict(self)


@dataclass
class ChatMessage:
    role: Literal["user", "assistant", "system"]
    content: str
