"""OpenAI embeddings service."""

import asyncio

import numpy as np
from openai import AsyncOpenAI, OpenAIError

from .config import config
from .errors import EmbeddingUnavailableError

logger = config.get_logger(__name__)


class EmbeddingService:
    """Handles OpenAI embeddings generation."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the EmbeddingService with OpenAI API key and model.

        Args:
            api_key: OpenAI API key. If None,
                reads from OPENAI_API_KEY environment variable.
            model: Embedding model name. If None, uses config.EMBEDDING_MODEL.
            timeout: Seconds allowed per embeddings call. If None, uses
                config.EMBEDDING_TIMEOUT_SECONDS.
        """
        api_key = api_key or config.get_openai_api_key()
        default_headers = config.get_api_headers()
        self.timeout = timeout if timeout is not None else config.EMBEDDING_TIMEOUT_SECONDS
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=config.OPENAI_BASE_URL,
            default_headers=default_headers or None,
            timeout=self.timeout,
        )
        self.model = model or config.EMBEDDING_MODEL
        self.dimension: int | None = None

    async def _create(self, texts: str | list[str]) -> list[np.ndarray]:
        try:
            response = await asyncio.wait_for(
                self.client.embeddings.create(model=self.model, input=texts),
                timeout=self.timeout,
            )
        except TimeoutError as exc:
            logger.exception("Embedding request timed out after %.1fs", self.timeout)
            msg = f"Embedding request timed out after {self.timeout}s"
            raise EmbeddingUnavailableError(msg) from exc
        except OpenAIError as exc:
            logger.exception("Error generating embedding")
            msg = f"Embedding provider error: {exc}"
            raise EmbeddingUnavailableError(msg) from exc

        embeddings = [np.asarray(data.embedding, dtype=np.float32) for data in response.data]
        if embeddings and self.dimension is None:
            self.dimension = int(embeddings[0].shape[0])
        return embeddings

    async def embed(self, text: str) -> np.ndarray:
        """Get embedding for a single text.

        Args:
            text: The input text to generate an embedding for.

        Returns:
            np.ndarray: The embedding vector for the input text.

        Raises:
            EmbeddingUnavailableError: If the provider fails, times out or
                returns no vector.
        """
        embeddings = await self._create(text)
        if not embeddings:
            msg = "Embedding provider returned no vectors"
            raise EmbeddingUnavailableError(msg)
        return embeddings[0]

    async def embed_batch(
        self,
        texts: list[str],
        batch_size: int = 100,
    ) -> list[np.ndarray]:
        """Get embeddings for multiple texts in batches.

        Args:
            texts: List of input texts to generate embeddings for.
            batch_size: Number of texts to process in each batch.

        Returns:
            list[np.ndarray]: List of embedding vectors for the input texts.
        """
        embeddings: list[np.ndarray] = []

        for i in range(0, len(texts), batch_size):
            batch_texts = texts[i : i + batch_size]
            embeddings.extend(await self._create(batch_texts))
            logger.info("Generated embeddings for batch %d", i // batch_size + 1)

        return embeddings
