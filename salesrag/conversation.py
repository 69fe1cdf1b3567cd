"""Turn driver: prompt enrichment, streamed replies and turn recording."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from openai import AsyncOpenAI

from .config import config
from .models import ChatMessage, ConversationHistory, ConversationRecord

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from .context_builder import ContextBuilder
    from .models import RAGContext

PROBLEM_KEYWORDS = (
    "losing customers",
    "churn",
    "defects",
    "quality",
    "support tickets",
    "fraud",
    "maintenance",
    "inventory",
)

# Upper bound on user messages for each stage, checked in order.
STAGE_THRESHOLDS = (
    (2, "discovery"),
    (4, "qualifying"),
    (6, "solutioning"),
)
FINAL_STAGE = "closing"

PROVEN_APPROACH_NOTE = (
    "This type of conversation typically succeeds when you focus on "
    "quantifying the problem's impact and showing clear ROI."
)

logger = config.get_logger(__name__)


def determine_conversation_stage(messages: Sequence[ChatMessage]) -> str:
    """Infer the conversation stage from how many times the user has spoken.

    Returns:
        One of discovery, qualifying, solutioning or closing.
    """
    user_messages = sum(1 for message in messages if message.role == "user")
    for upper_bound, stage in STAGE_THRESHOLDS:
        if user_messages <= upper_bound:
            return stage
    return FINAL_STAGE


def extract_problems_discussed(messages: Sequence[ChatMessage]) -> list[str]:
    """Collect known problem keywords mentioned anywhere in the conversation.

    Returns:
        Keywords in first-seen order, without duplicates.
    """
    problems: list[str] = []
    for message in messages:
        content = message.content.lower()
        for keyword in PROBLEM_KEYWORDS:
            if keyword in content and keyword not in problems:
                problems.append(keyword)
    return problems


def build_conversation_history(messages: Sequence[ChatMessage]) -> ConversationHistory:
    return ConversationHistory(
        stage=determine_conversation_stage(messages),
        message_count=len(messages),
        problems_discussed=extract_problems_discussed(messages),
    )


def build_enhanced_system_prompt(base_prompt: str, context: RAGContext) -> str:
    """Append the retrieval-derived guidance block to a system prompt.

    Returns:
        The base prompt followed by the contextual intelligence section.
    """
    search_results = context.search_results
    guidance = context.guidance

    sections = ["\n\n## 🎯 CONTEXTUAL INTELLIGENCE (RAG-Enhanced)\n\n"]

    if search_results.detected_problems:
        sections.append("**Similar Conversations Detected These Problems:**\n")
        sections.extend(f"- {problem}\n" for problem in search_results.detected_problems)
        sections.append("\n")

    if search_results.best_pattern is not None:
        rate = round(search_results.best_pattern.conversion_score * 100)
        sections.append(f"**Proven Approach ({rate}% conversion rate):**\n")
        sections.append(f"{PROVEN_APPROACH_NOTE}\n\n")

    sections.append(f"**Recommended Strategy:**\n{guidance.suggested_approach}\n\n")

    if guidance.key_points:
        sections.append("**Key Points to Include:**\n")
        sections.extend(f"- {point}\n" for point in guidance.key_points)
        sections.append("\n")

    if guidance.avoid_topics:
        sections.append("**Topics to Avoid:**\n")
        sections.extend(f"- {topic}\n" for topic in guidance.avoid_topics)
        sections.append("\n")

    confidence = round(search_results.confidence.overall_confidence * 100)
    sections.append(f"**Confidence Level:** {confidence}%\n")
    sections.append(f"**Urgency:** {guidance.urgency_level}\n")

    return base_prompt + "".join(sections)


class SalesConversation:
    """Drives one assistant turn: retrieve, prompt, stream, then record."""

    def __init__(
        self,
        context_builder: ContextBuilder,
        client: AsyncOpenAI | None = None,
        openai_api_key: str | None = None,
    ) -> None:
        """Initialize SalesConversation.

        Args:
            context_builder: Builder used for retrieval and for recording turns.
            client: Chat completion client. If None, one is created from config.
            openai_api_key: OpenAI API key used when ``client`` is None.
        """
        self.context_builder = context_builder
        if client is None:
            default_headers = config.get_api_headers()
            client = AsyncOpenAI(
                api_key=openai_api_key or config.get_openai_api_key(),
                base_url=config.OPENAI_BASE_URL,
                default_headers=default_headers or None,
            )
        self.client = client

    @staticmethod
    def _chat_messages(
        system_prompt: str, messages: Sequence[ChatMessage]
    ) -> list[dict[str, str]]:
        chat = [{"role": "system", "content": system_prompt}]
        chat.extend(
            {"role": message.role, "content": message.content}
            for message in messages
            if message.role != "system"
        )
        return chat

    async def stream_reply(  # noqa: PLR0913
        self,
        messages: Sequence[ChatMessage],
        *,
        industry: str,
        session_id: str,
        base_prompt: str = "",
        client_id: str | None = None,
    ) -> AsyncIterator[str]:
        """Stream the assistant reply to the latest user message.

        The turn is recorded only after the stream finishes with a non-empty
        reply. Closing the generator early or cancelling the consuming task
        skips recording.

        Yields:
            Text deltas of the assistant reply.

        Raises:
            ValueError: If ``messages`` is empty.
        """
        if not messages:
            msg = "At least one message is required"
            raise ValueError(msg)

        started = time.perf_counter()
        latest = messages[-1]
        history = build_conversation_history(messages)
        context = await self.context_builder.build_rag_context(
            latest.content, industry, history
        )
        system_prompt = build_enhanced_system_prompt(base_prompt, context)

        stream = await self.client.chat.completions.create(
            model=config.CHAT_MODEL,
            messages=self._chat_messages(system_prompt, messages),
            max_tokens=config.CHAT_MAX_TOKENS,
            temperature=config.CHAT_TEMPERATURE,
            stream=True,
        )

        parts: list[str] = []
        # Closes the HTTP response on completion, early close and cancellation.
        async with stream:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content or ""
                if content:
                    parts.append(content)
                    yield content

        reply = "".join(parts)
        if not reply.strip():
            logger.warning("Empty reply for session %s; turn not recorded", session_id)
            return

        search_results = context.search_results
        record = ConversationRecord(
            industry=industry,
            session_id=session_id,
            client_id=client_id,
            user_message=latest.content,
            assistant_response=reply,
            conversation_stage=history.stage,
            outcome="in_progress",
            booking_completed=False,
            problem_detected=next(iter(search_results.detected_problems), None),
            solution_presented=next(iter(search_results.recommended_solutions), None),
            response_time_ms=int((time.perf_counter() - started) * 1000),
        )
        await self.context_builder.record_turn(record)
