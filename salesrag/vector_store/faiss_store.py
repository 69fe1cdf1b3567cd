"""FAISS-backed vector storage with SQLite metadata."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import TYPE_CHECKING

import faiss
import numpy as np

from salesrag.config import config
from salesrag.models import COLLECTIONS, Collection
from salesrag.vector_store.base import (
    DEFAULT_MATCH_LIMIT,
    DEFAULT_MATCH_THRESHOLD,
    BaseSQLiteStore,
)

if TYPE_CHECKING:
    from salesrag.models import SimilarConversation

logger = config.get_logger(__name__)


class FaissVectorStore(BaseSQLiteStore):
    """Vector storage using one FAISS index per collection and SQLite for metadata."""

    backend = "faiss"

    def __init__(
        self,
        db_path: Path = Path("data/salesrag.db"),
        index_dir: Path = Path("data/faiss"),
        raw_top_k_multiplier: int = 4,
    ) -> None:
        """Configure FAISS-backed vector store."""
        self.index_dir = Path(index_dir)
        self.index_dir.mkdir(exist_ok=True, parents=True)

        self.indexes: dict[Collection, faiss.IndexIDMap | None] = dict.fromkeys(
            COLLECTIONS
        )
        self.raw_top_k_multiplier = max(1, raw_top_k_multiplier)
        self._lock = threading.Lock()

        super().__init__(db_path)

    def index_path(self, collection: Collection) -> Path:
        """Location of the persisted index for a collection."""  # noqa: DOC201
        return self.index_dir / f"{collection}.faiss"

    def dimension(self) -> int | None:
        """Dimension of the loaded indexes.

        Returns:
            Vector length, or None while no index exists.
        """
        for index in self.indexes.values():
            if index is not None:
                return int(index.d)
        return None

    @staticmethod
    def _normalize_embedding(embedding: np.ndarray) -> np.ndarray:
        """Normalize embedding for cosine similarity using inner product search.

        Returns:
            Normalized copy of the embedding vector.
        """
        vector = np.array(embedding, dtype="float32").reshape(1, -1)
        if np.linalg.norm(vector) == 0:
            return vector[0]
        faiss.normalize_L2(vector)
        return vector[0]

    def _init_index(self, collection: Collection, dimension: int) -> faiss.IndexIDMap:
        """Create an empty inner-product index for a collection.

        Returns:
            The new index.
        """
        index = faiss.IndexIDMap(faiss.IndexFlatIP(dimension))
        self.indexes[collection] = index
        logger.info(
            "Initialized FAISS IndexIDMap for %s with dimension %d",
            collection,
            dimension,
        )
        return index

    def _persist_vector(  # noqa: PLR6301
        self,
        cursor: sqlite3.Cursor,
        collection: Collection,
        record_id: int,
        embedding: np.ndarray,
    ) -> None:
        """Vectors live in the FAISS index and are written by ``save``."""

    def _index_vectors(
        self,
        collection: Collection,
        record_ids: list[int],
        industries: list[str],  # noqa: ARG002
        embeddings: list[np.ndarray],
    ) -> None:
        vectors = np.vstack([self._normalize_embedding(e) for e in embeddings])
        ids_array = np.asarray(record_ids, dtype="int64")
        try:
            with self._lock:
                index = self.indexes[collection]
                if index is None:
                    index = self._init_index(collection, vectors.shape[1])
                index.add_with_ids(vectors, ids_array)  # pyright: ignore[reportCallIssue]  # FAISS stubs may not reflect add_with_ids signature
        except RuntimeError:
            logger.exception(
                "FAISS index does not support add_with_ids; ensure IndexIDMap is used."
            )
            raise
        logger.info("Added %d vectors to FAISS %s index", len(record_ids), collection)

    def search(  # noqa: PLR0913
        self,
        query_embedding: np.ndarray,
        *,
        industry: str,
        collection: Collection,
        threshold: float = DEFAULT_MATCH_THRESHOLD,
        limit: int = DEFAULT_MATCH_LIMIT,
    ) -> list[SimilarConversation]:
        """Search similar records of one industry using the collection's FAISS index.

        The index is over-fetched by ``raw_top_k_multiplier`` and widened until
        enough records of the requested industry are found, the scores fall
        below ``threshold`` or the index is exhausted.

        Returns:
            Ranked matches with similarity at or above ``threshold``.
        """
        collection = self._table(collection)
        index = self.indexes[collection]
        if index is None or index.ntotal == 0:
            return []

        candidate_ids = self._industry_ids(collection, industry)
        if not candidate_ids:
            return []

        query = self._normalize_embedding(self._check_dimension(query_embedding))
        raw_top_k = min(index.ntotal, max(limit, self.raw_top_k_multiplier * limit))

        while True:
            with self._lock:
                scores, vector_ids = index.search(query.reshape(1, -1), raw_top_k)  # pyright: ignore[reportCallIssue]
            returned = [
                (int(vector_id), float(score))
                for score, vector_id in zip(scores[0], vector_ids[0], strict=True)
                if int(vector_id) != -1  # faiss returns -1 for empty results
            ]
            scored = [
                (vector_id, score)
                for vector_id, score in returned
                if vector_id in candidate_ids
                and self._within_threshold(score, threshold)
            ]
            exhausted = raw_top_k >= index.ntotal
            below_threshold = bool(returned) and not self._within_threshold(
                returned[-1][1], threshold
            )
            if len(scored) >= limit or exhausted or below_threshold:
                break
            raw_top_k = min(index.ntotal, raw_top_k * 2)

        return self._fetch_matches(collection, self._rank(scored, limit))

    def save(self) -> None:
        """Persist FAISS indexes to disk."""
        self.index_dir.mkdir(exist_ok=True, parents=True)
        for collection, index in self.indexes.items():
            if index is None:
                continue
            with self._lock:
                faiss.write_index(index, str(self.index_path(collection)))
            logger.info(
                "Saved FAISS %s index to %s", collection, self.index_path(collection)
            )

    def load(self) -> None:
        """Load FAISS indexes from disk and check them against the metadata store.

        Raises:
            sqlite3.Error: If metadata read fails.
        """
        for collection in COLLECTIONS:
            path = self.index_path(collection)
            if not path.exists():
                logger.warning(
                    "FAISS index not found at %s. Start with an empty index.", path
                )
                self.indexes[collection] = None
                continue

            index = faiss.read_index(str(path))
            if not isinstance(index, (faiss.IndexIDMap, faiss.IndexIDMap2)):
                logger.warning(
                    "Loaded FAISS index is %s; wrapping with IndexIDMap to enable IDs",
                    type(index).__name__,
                )
                index = faiss.IndexIDMap(index)
            self.indexes[collection] = index
            logger.info(
                "Loaded FAISS %s index from %s with %d vectors",
                collection,
                path,
                index.ntotal,
            )

        try:
            for collection in COLLECTIONS:
                stored = len(self._load_rows(collection))
                index = self.indexes[collection]
                indexed = index.ntotal if index is not None else 0
                if stored != indexed:
                    logger.warning(
                        "%s has %d metadata rows but %d indexed vectors",
                        collection,
                        stored,
                        indexed,
                    )
        except sqlite3.Error:
            logger.exception("Error loading metadata for FAISS vector store")
            raise
