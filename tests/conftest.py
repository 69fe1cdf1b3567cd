"""Test configuration and fixtures for SalesRAG tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Mock services and API responses
- EmbeddingService fixtures
- Vector store fixtures
- Record and match factories
- ContextBuilder helpers
"""

import hashlib
from unittest.mock import AsyncMock, Mock, patch

import numpy as np
import pytest

from salesrag import (
    ContextBuilder,
    ConversationRecord,
    EmbeddingService,
    ExampleRecord,
    FaissVectorStore,
    SimilarConversation,
    SQLiteVectorStore,
    TTLCache,
)


class TestConstants:
    """Centralized test constants to avoid repetition across test files.

    All test constants are defined here to maintain consistency across
    the test suite and make it easy to update values globally.
    """

    # API Configuration
    TEST_API_KEY = "test-key"
    TEST_OPENAI_MODEL = "text-embedding-3-small"
    DEFAULT_EMBEDDING_DIMENSION = 8

    # Retrieval Configuration
    INDUSTRY = "strive"
    OTHER_INDUSTRY = "roofing"
    SESSION_ID = "session-1"
    THRESHOLD = 0.75
    LIMIT = 5


def vector_at_similarity(
    similarity: float,
    dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION,
    axis: int = 1,
) -> np.ndarray:
    """Unit vector whose cosine similarity to the first basis vector is fixed.

    Args:
        similarity: Desired cosine similarity with ``e0``.
        dimension: Vector length.
        axis: Orthogonal axis that absorbs the remaining norm.

    Returns:
        Float32 unit vector.
    """
    vector = np.zeros(dimension, dtype=np.float64)
    vector[0] = similarity
    vector[axis] = np.sqrt(max(0.0, 1.0 - similarity**2))
    return vector.astype(np.float32)


def query_vector(dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION) -> np.ndarray:
    vector = np.zeros(dimension, dtype=np.float32)
    vector[0] = 1.0
    return vector


class MockEmbeddingService:
    """Async stand-in for ``EmbeddingService`` that never calls the network.

    Texts registered in ``vectors`` get exactly that embedding; any other
    text gets a deterministic unit vector derived from its hash.
    """

    def __init__(
        self,
        dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION,
        vectors: dict[str, np.ndarray] | None = None,
    ) -> None:
        self.dimension = dimension
        self.model = TestConstants.TEST_OPENAI_MODEL
        self.vectors = dict(vectors or {})
        self.calls: list[str] = []
        self.error: Exception | None = None

    def get_embedding(self, text: str) -> np.ndarray:
        """Generate deterministic mock embedding based on text hash."""
        if text in self.vectors:
            return np.asarray(self.vectors[text], dtype=np.float32)
        seed = int.from_bytes(
            hashlib.sha256(text.lower().encode("utf-8")).digest()[:8],
            byteorder="big",
            signed=False,
        )
        rng = np.random.default_rng(seed)
        embedding = rng.normal(0, 1, self.dimension)
        return (embedding / np.linalg.norm(embedding)).astype(np.float32)

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.get_embedding(text)

    async def embed_batch(self, texts: list[str], batch_size: int = 100) -> list[np.ndarray]:  # noqa: ARG002
        self.calls.extend(texts)
        if self.error is not None:
            raise self.error
        return [self.get_embedding(text) for text in texts]


def create_mock_openai_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response.

    Args:
        embeddings: List of embedding vectors to return.

    Returns:
        Mock object representing OpenAI embeddings API response.
    """
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_chat_chunk(content: str | None) -> Mock:
    """Create one streamed chat completion chunk.

    Args:
        content: Text delta carried by the chunk.

    Returns:
        Mock object shaped like an OpenAI ``ChatCompletionChunk``.
    """
    chunk = Mock()
    chunk.choices = [Mock(delta=Mock(content=content))]
    return chunk


class FakeChatStream:
    """Async iterator over canned chat chunks, closable like ``AsyncStream``."""

    def __init__(self, contents: list[str | None]) -> None:
        self._chunks = [create_mock_chat_chunk(content) for content in contents]
        self.closed = False

    async def close(self) -> None:
        self.closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self._chunks:
            yield chunk


@pytest.fixture
def openai_embeddings_api_mock():
    """Base fixture that patches the async OpenAI embeddings.create method.

    Returns the mock object directly without any pre-configuration.
    """
    with patch(
        "openai.resources.embeddings.AsyncEmbeddings.create",
        new_callable=AsyncMock,
    ) as mock_create:
        yield mock_create


@pytest.fixture
def openai_embeddings_factory(openai_embeddings_api_mock):
    """Factory for creating OpenAI embeddings API mocks with different scenarios."""

    def _create_mock(  # noqa: ANN202
        scenario="single_success",
        embeddings=None,
        error=None,
        side_effects=None,
    ):
        """Create a mock based on scenario type.

        Args:
            scenario: Type of mock ('single_success', 'batch_success', 'error',
                'multiple_batches', 'partial_failure')
            embeddings: Custom embeddings to return, or None for defaults
            error: Exception raised in the error scenario
            side_effects: Custom side effects list for complex scenarios
        """
        openai_embeddings_api_mock.reset_mock()
        openai_embeddings_api_mock.side_effect = None
        openai_embeddings_api_mock.return_value = None

        if scenario == "single_success":
            mock_embedding = embeddings or [0.1, 0.2, 0.3, 0.4, 0.5]
            openai_embeddings_api_mock.return_value = create_mock_openai_response(
                [mock_embedding]
            )
        elif scenario == "batch_success":
            mock_embeddings = embeddings or [
                [0.1, 0.2, 0.3],
                [0.4, 0.5, 0.6],
                [0.7, 0.8, 0.9],
            ]
            openai_embeddings_api_mock.return_value = create_mock_openai_response(
                mock_embeddings
            )
        elif scenario == "error":
            openai_embeddings_api_mock.side_effect = error
        elif scenario == "multiple_batches":
            if side_effects:
                openai_embeddings_api_mock.side_effect = side_effects
            else:
                openai_embeddings_api_mock.side_effect = [
                    create_mock_openai_response([[0.1, 0.2], [0.3, 0.4]]),
                    create_mock_openai_response([[0.5, 0.6], [0.7, 0.8]]),
                ]
        elif scenario == "partial_failure":
            openai_embeddings_api_mock.side_effect = [
                create_mock_openai_response([[0.1, 0.2]]),
                error,
            ]

        return openai_embeddings_api_mock

    return _create_mock


@pytest.fixture
def embedding_service_factory():
    """Factory for creating EmbeddingService instances with different configurations."""

    def _create_service(api_key=None, model=None, timeout=None):  # noqa: ANN202
        """Create an EmbeddingService instance.

        Args:
            api_key: API key to use, defaults to TestConstants.TEST_API_KEY
            model: Model to use, or None for the config default
            timeout: Per-call timeout, or None for the config default
        """
        return EmbeddingService(
            api_key=api_key or TestConstants.TEST_API_KEY,
            model=model,
            timeout=timeout,
        )

    return _create_service


@pytest.fixture
def embedding_service(embedding_service_factory):
    """Default EmbeddingService with test API key for most tests."""
    return embedding_service_factory()


@pytest.fixture
def mock_embedding_service():
    """Fresh MockEmbeddingService; the query text ``"query"`` maps to ``e0``."""
    return MockEmbeddingService(vectors={"query": query_vector()})


@pytest.fixture
def temp_vector_store(tmp_path) -> SQLiteVectorStore:
    """Create temporary SQLite vector store for testing."""
    return SQLiteVectorStore(tmp_path / "test_store.db", tmp_path / "vectors")


@pytest.fixture
def temp_faiss_store(tmp_path) -> FaissVectorStore:
    """Create temporary FAISS vector store for testing."""
    return FaissVectorStore(
        db_path=tmp_path / "faiss_store.db",
        index_dir=tmp_path / "faiss",
        raw_top_k_multiplier=2,
    )


@pytest.fixture(params=["sqlite", "faiss"])
def any_vector_store(request, tmp_path):
    """Parametrized fixture running a test against both backends."""
    if request.param == "sqlite":
        return SQLiteVectorStore(tmp_path / "store.db", tmp_path / "vectors")
    return FaissVectorStore(
        db_path=tmp_path / "store.db",
        index_dir=tmp_path / "faiss",
        raw_top_k_multiplier=2,
    )


@pytest.fixture
def conversation_record_factory():
    """Factory for ConversationRecord instances with sensible defaults."""

    def _create_record(
        user_message: str = "We're losing customers every month",
        *,
        industry: str = TestConstants.INDUSTRY,
        session_id: str = TestConstants.SESSION_ID,
        assistant_response: str = "How many customers do you lose each month?",
        embedding: np.ndarray | None = None,
        **overrides,
    ) -> ConversationRecord:
        return ConversationRecord(
            industry=industry,
            session_id=session_id,
            user_message=user_message,
            assistant_response=assistant_response,
            embedding=embedding,
            **overrides,
        )

    return _create_record


@pytest.fixture
def example_record_factory():
    """Factory for ExampleRecord instances with sensible defaults."""

    def _create_example(
        user_message: str = "Customers keep switching to competitors",
        *,
        industry: str = TestConstants.INDUSTRY,
        assistant_response: str = "Let's quantify what churn costs you.",
        problem_detected: str | None = "churn",
        solution_presented: str | None = "churn_prediction",
        conversion_score: float | None = 0.95,
        embedding: np.ndarray | None = None,
        **overrides,
    ) -> ExampleRecord:
        return ExampleRecord(
            industry=industry,
            user_message=user_message,
            assistant_response=assistant_response,
            problem_detected=problem_detected,
            solution_presented=solution_presented,
            conversion_score=conversion_score,
            embedding=embedding,
            **overrides,
        )

    return _create_example


@pytest.fixture
def match_factory():
    """Factory for SimilarConversation matches used by aggregation tests."""
    counter = iter(range(1, 10_000))

    def _create_match(
        similarity: float = 0.8,
        problem: str | None = "churn",
        solution: str | None = "churn_prediction",
        conversion_score: float | None = None,
        *,
        stage: str | None = None,
        collection: str = "examples",
        response: str = "Proven response",
    ) -> SimilarConversation:
        return SimilarConversation(
            id=next(counter),
            collection=collection,
            user_message="user message",
            assistant_response=response,
            similarity=similarity,
            problem_detected=problem,
            solution_presented=solution,
            conversation_stage=stage,
            conversion_score=conversion_score,
        )

    return _create_match


@pytest.fixture
def context_builder_factory(mock_embedding_service, temp_faiss_store):
    """Factory for ContextBuilder instances over the mock provider and a temp store."""

    def _create_builder(
        store=None,
        embedding_service=None,
        cache: TTLCache | None = None,
        **kwargs,
    ) -> ContextBuilder:
        kwargs.setdefault("threshold", TestConstants.THRESHOLD)
        kwargs.setdefault("limit", TestConstants.LIMIT)
        return ContextBuilder(
            embedding_service or mock_embedding_service,
            store if store is not None else temp_faiss_store,
            cache=cache,
            **kwargs,
        )

    return _create_builder


@pytest.fixture
def context_builder(context_builder_factory):
    """Default ContextBuilder backed by the temporary FAISS store."""
    return context_builder_factory()


@pytest.fixture
def similarity_vector():
    """Factory returning unit vectors at a chosen similarity to the ``"query"`` text."""
    return vector_at_similarity


@pytest.fixture
def chat_stream_factory():
    """Factory for fake streamed chat completions."""

    def _create_stream(contents: list[str | None]) -> FakeChatStream:
        return FakeChatStream(contents)

    return _create_stream


@pytest.fixture
def mock_embedding_service_factory():
    """Factory for MockEmbeddingService instances with a chosen dimension."""

    def _create_service(
        dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION,
    ) -> MockEmbeddingService:
        return MockEmbeddingService(dimension=dimension)

    return _create_service
