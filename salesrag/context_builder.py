"""Per-turn RAG context building and the conversation write path."""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from .aggregation import aggregate
from .cache import TTLCache
from .config import config
from .errors import (
    ConfigurationMismatchError,
    EmbeddingUnavailableError,
    RecordValidationError,
    SearchUnavailableError,
    WriteFailedError,
)
from .guidance import HIGH_URGENCY_MARKERS, synthesize_guidance
from .models import (
    COLLECTIONS,
    Collection,
    ConversationHistory,
    ConversationRecord,
    RAGContext,
    SemanticSearchResult,
    SimilarConversation,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    import numpy as np

    from .embeddings import EmbeddingService
    from .vector_store import FaissVectorStore, SQLiteVectorStore

# Failures a store call may surface; anything else is a bug and propagates.
STORE_ERRORS = (
    TimeoutError,
    sqlite3.Error,
    OSError,
    RuntimeError,
    ValueError,
    ConfigurationMismatchError,
)
WRITE_ATTEMPTS = 2
HEALTH_CHECK_TEXT = "health check"

logger = config.get_logger(__name__)


class ContextBuilder:
    """Orchestrates embed -> search -> aggregate -> synthesize for each turn.

    Retrieval failures never escape ``build_rag_context``: a missing query
    embedding yields a zero-evidence context and a failed collection search
    contributes no matches. The write path raises ``WriteFailedError`` from
    ``store_conversation``; ``record_turn`` retries once and then gives up
    quietly.
    """

    def __init__(  # noqa: PLR0913
        self,
        embedding_service: EmbeddingService,
        vector_store: FaissVectorStore | SQLiteVectorStore,
        cache: TTLCache | None = None,
        *,
        threshold: float | None = None,
        limit: int | None = None,
        search_timeout: float | None = None,
        write_timeout: float | None = None,
        high_urgency_markers: Sequence[str] = HIGH_URGENCY_MARKERS,
    ) -> None:
        """Wire the builder to its collaborators.

        Args:
            embedding_service: Provider of query and record embeddings.
            vector_store: Store holding both collections.
            cache: Optional cache for query embeddings, owned by the caller.
            threshold: Minimum similarity. If None, uses config.RAG_MATCH_THRESHOLD.
            limit: Matches per collection. If None, uses config.RAG_MATCH_LIMIT.
            search_timeout: Seconds per collection search. If None, uses
                config.SEARCH_TIMEOUT_SECONDS.
            write_timeout: Seconds per insert or update. If None, uses
                config.WRITE_TIMEOUT_SECONDS.
            high_urgency_markers: Problem label substrings that raise urgency.
        """
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.cache = cache
        self.threshold = threshold if threshold is not None else config.RAG_MATCH_THRESHOLD
        self.limit = limit if limit is not None else config.RAG_MATCH_LIMIT
        self.search_timeout = (
            search_timeout if search_timeout is not None else config.SEARCH_TIMEOUT_SECONDS
        )
        self.write_timeout = (
            write_timeout if write_timeout is not None else config.WRITE_TIMEOUT_SECONDS
        )
        self.high_urgency_markers = tuple(high_urgency_markers)

    async def _embed(self, text: str) -> np.ndarray:
        """Embed text, reusing a cached vector for text seen recently.

        Returns:
            The embedding of ``text``.
        """
        key = TTLCache.create_key("embedding", self.embedding_service.model, text)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        embedding = await self.embedding_service.embed(text)
        if self.cache is not None:
            self.cache.set(key, embedding)
        return embedding

    async def _search_collection(  # noqa: PLR0913
        self,
        embedding: np.ndarray,
        industry: str,
        collection: Collection,
        threshold: float,
        limit: int,
    ) -> list[SimilarConversation]:
        """Search one collection off the event loop within the search timeout.

        Returns:
            Ranked matches.

        Raises:
            SearchUnavailableError: If the store fails or times out.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(
                    self.vector_store.search,
                    embedding,
                    industry=industry,
                    collection=collection,
                    threshold=threshold,
                    limit=limit,
                ),
                timeout=self.search_timeout,
            )
        except STORE_ERRORS as exc:
            msg = f"Search over {collection} failed: {exc!r}"
            raise SearchUnavailableError(msg) from exc

    async def search_similar_conversations(
        self,
        user_message: str,
        industry: str,
        *,
        threshold: float | None = None,
        limit: int | None = None,
        include_examples: bool = True,
    ) -> SemanticSearchResult:
        """Retrieve and aggregate matches from both collections.

        The two searches run concurrently and their results are merged
        without re-ranking; each match keeps its own similarity.

        Returns:
            Aggregated search result.

        Raises:
            EmbeddingUnavailableError: If the query cannot be embedded.
        """
        threshold = self.threshold if threshold is None else threshold
        limit = self.limit if limit is None else limit
        collections = COLLECTIONS if include_examples else ("conversations",)

        embedding = await self._embed(user_message)

        results = await asyncio.gather(
            *(
                self._search_collection(embedding, industry, collection, threshold, limit)
                for collection in collections
            ),
            return_exceptions=True,
        )

        pool: list[SimilarConversation] = []
        for collection, result in zip(collections, results, strict=True):
            if isinstance(result, SearchUnavailableError):
                logger.error(
                    "Searching %s failed; continuing without it",
                    collection,
                    exc_info=result,
                )
                continue
            if isinstance(result, BaseException):
                raise result
            logger.info(
                "Found %d %s matches for industry %s", len(result), collection, industry
            )
            pool.extend(result)

        return aggregate(pool)

    async def build_rag_context(
        self,
        user_message: str,
        industry: str,
        conversation_history: ConversationHistory | None = None,
    ) -> RAGContext:
        """Build the grounding context for one user turn.

        Returns:
            A complete context; with zero evidence when retrieval is unavailable.
        """
        history = conversation_history or ConversationHistory()

        try:
            search_results = await self.search_similar_conversations(
                user_message, industry
            )
        except EmbeddingUnavailableError:
            logger.exception(
                "Query embedding unavailable; falling back to zero-evidence context"
            )
            search_results = aggregate([])

        guidance = synthesize_guidance(
            search_results, history, self.high_urgency_markers
        )
        logger.info(
            "RAG context: problems=%s confidence=%.2f approach=%s",
            search_results.detected_problems,
            search_results.confidence.overall_confidence,
            guidance.suggested_approach,
        )
        return RAGContext(
            user_message=user_message,
            search_results=search_results,
            conversation_history=history,
            guidance=guidance,
        )

    def _insert(self, record: ConversationRecord) -> ConversationRecord:
        stored = self.vector_store.add_conversation(record)
        # The row is committed and searchable; the next save picks up the index.
        try:
            self.vector_store.save()
        except (OSError, RuntimeError):
            logger.exception(
                "Stored turn %s but could not persist the %s index",
                stored.id,
                self.vector_store.backend,
            )
        return stored

    async def store_conversation(
        self,
        record: ConversationRecord | Mapping[str, Any],
    ) -> ConversationRecord:
        """Embed a finished turn's user message and persist the turn.

        Validation happens before any external call.

        Returns:
            The stored record with id, embedding and timestamps filled in.

        Raises:
            RecordValidationError: If the record is incomplete or out of range.
            WriteFailedError: If embedding or insertion fails.
        """
        if isinstance(record, Mapping):
            record = ConversationRecord.from_payload(record)
        record.validate()

        try:
            embedding = await self._embed(record.user_message)
        except EmbeddingUnavailableError as exc:
            msg = f"Could not embed turn for session {record.session_id}"
            raise WriteFailedError(msg) from exc

        pending = replace(
            record, id=None, embedding=embedding, created_at=None, updated_at=None
        )
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._insert, pending),
                timeout=self.write_timeout,
            )
        except STORE_ERRORS as exc:
            logger.exception("Error storing conversation for session %s", record.session_id)
            msg = f"Could not store turn for session {record.session_id}: {exc!r}"
            raise WriteFailedError(msg) from exc

    async def record_turn(self, record: ConversationRecord | Mapping[str, Any]) -> bool:
        """Persist a completed turn, retrying once; never raises on storage trouble.

        Returns:
            True if the turn was stored.
        """
        for attempt in range(1, WRITE_ATTEMPTS + 1):
            try:
                await self.store_conversation(record)
            except RecordValidationError:
                logger.exception("Turn rejected by validation; not stored")
                return False
            except WriteFailedError:
                logger.exception(
                    "Storing turn failed (attempt %d of %d)", attempt, WRITE_ATTEMPTS
                )
            else:
                return True

        logger.error("Giving up on storing turn after %d attempts", WRITE_ATTEMPTS)
        return False

    async def mark_conversation_success(
        self,
        session_id: str,
        conversion_score: float = 1.0,
    ) -> int:
        """Record a confirmed booking for every stored turn of a session.

        Returns:
            Number of turns updated; 0 if the update failed.

        Raises:
            RecordValidationError: If ``conversion_score`` is outside [0, 1].
        """
        if not 0.0 <= conversion_score <= 1.0:
            msg = f"conversion_score must be between 0 and 1, got {conversion_score}"
            raise RecordValidationError(msg)

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(
                    self.vector_store.mark_session_outcome,
                    session_id,
                    outcome="booking_completed",
                    booking_completed=True,
                    conversion_score=conversion_score,
                ),
                timeout=self.write_timeout,
            )
        except STORE_ERRORS:
            logger.exception("Error marking conversation success for %s", session_id)
            return 0

    async def verify_configuration(
        self,
        expected_dimension: int | None = None,
    ) -> int:
        """Check that provider, configuration and store agree on vector size.

        Meant for startup and health checks, not for individual requests.

        Returns:
            The embedding dimension.

        Raises:
            ConfigurationMismatchError: If any two dimensions disagree.
        """
        expected = (
            expected_dimension
            if expected_dimension is not None
            else config.EMBEDDING_DIMENSION
        )
        embedding = await self.embedding_service.embed(HEALTH_CHECK_TEXT)
        provided = int(embedding.shape[0])
        stored = self.vector_store.dimension()

        if provided != expected:
            msg = (
                f"Embedding model {self.embedding_service.model} returns "
                f"{provided} dimensions, configuration expects {expected}"
            )
            raise ConfigurationMismatchError(msg)
        if stored is not None and stored != provided:
            msg = f"Vector store holds {stored}-dimension vectors, provider returns {provided}"
            raise ConfigurationMismatchError(msg)

        logger.info("Vector configuration verified: %d dimensions", provided)
        return provided
