"""SQLite-based vector storage with numpy file backend."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

import numpy as np

from salesrag.config import config
from salesrag.models import COLLECTIONS, Collection, SimilarConversation
from salesrag.vector_store.base import (
    DEFAULT_MATCH_LIMIT,
    DEFAULT_MATCH_THRESHOLD,
    BaseSQLiteStore,
)

logger = config.get_logger(__name__)


class SQLiteVectorStore(BaseSQLiteStore):
    """Vector storage using SQLite for metadata and numpy files for embeddings.

    Search is a brute-force cosine scan over one in-memory matrix per
    collection, which is adequate for small corpora and for tests.
    """

    backend = "sqlite"

    def __init__(
        self,
        db_path: Path = Path("data/salesrag.db"),
        vectors_dir: Path = Path("data/vectors"),
    ) -> None:
        """Initialize the SQLiteVectorStore with database and vector directory paths.

        Args:
            db_path: Path to the SQLite database file.
            vectors_dir: Directory to store numpy vector files.
        """
        self.vectors_dir = Path(vectors_dir)
        for collection in COLLECTIONS:
            (self.vectors_dir / collection).mkdir(exist_ok=True, parents=True)

        self.embeddings: dict[Collection, np.ndarray | None] = dict.fromkeys(
            COLLECTIONS
        )
        self.record_ids: dict[Collection, list[int]] = {c: [] for c in COLLECTIONS}
        self.industries: dict[Collection, list[str]] = {c: [] for c in COLLECTIONS}
        self._lock = threading.Lock()

        super().__init__(db_path)

    def dimension(self) -> int | None:
        """Dimension of stored vectors across both collections.

        Returns:
            Vector length, or None while no vectors are loaded.
        """
        for matrix in self.embeddings.values():
            if matrix is not None:
                return int(matrix.shape[1])
        return None

    def _persist_vector(
        self,
        cursor: sqlite3.Cursor,
        collection: Collection,
        record_id: int,
        embedding: np.ndarray,
    ) -> None:
        vector_file = f"{collection}/{record_id:08d}.npy"
        np.save(self.vectors_dir / vector_file, embedding)
        cursor.execute(
            f"UPDATE {collection} SET vector_file = ? WHERE id = ?",  # noqa: S608
            (vector_file, record_id),
        )

    def _index_vectors(
        self,
        collection: Collection,
        record_ids: list[int],
        industries: list[str],
        embeddings: list[np.ndarray],
    ) -> None:
        new_rows = np.vstack(embeddings).astype("float32")
        with self._lock:
            current = self.embeddings[collection]
            self.embeddings[collection] = (
                new_rows if current is None else np.vstack([current, new_rows])
            )
            self.record_ids[collection] = [*self.record_ids[collection], *record_ids]
            self.industries[collection] = [*self.industries[collection], *industries]

    @staticmethod
    def cosine_similarity(
        query_embedding: np.ndarray,
        embeddings: np.ndarray,
    ) -> np.ndarray:
        """Calculate cosine similarity between query and stored embeddings.

        Returns:
            np.ndarray: Array of cosine similarity scores
                    between the query and each stored embedding.
        """
        query_norm = query_embedding / np.linalg.norm(query_embedding)
        doc_norms = embeddings / np.linalg.norm(embeddings, axis=1, keepdims=True)

        return np.dot(doc_norms, query_norm)

    def search(  # noqa: PLR0913
        self,
        query_embedding: np.ndarray,
        *,
        industry: str,
        collection: Collection,
        threshold: float = DEFAULT_MATCH_THRESHOLD,
        limit: int = DEFAULT_MATCH_LIMIT,
    ) -> list[SimilarConversation]:
        """Search a collection for records similar to the query embedding.

        Returns:
            At most ``limit`` matches of the given industry with similarity at
            or above ``threshold``, best first.
        """
        collection = self._table(collection)
        with self._lock:
            matrix = self.embeddings[collection]
            record_ids = self.record_ids[collection]
            industries = self.industries[collection]
        if matrix is None:
            return []

        query = self._check_dimension(query_embedding)
        similarities = self.cosine_similarity(query, matrix)

        scored = [
            (record_id, float(score))
            for record_id, record_industry, score in zip(
                record_ids,
                industries,
                similarities,
                strict=True,
            )
            if record_industry == industry
            and self._within_threshold(float(score), threshold)
        ]
        results = self._fetch_matches(collection, self._rank(scored, limit))

        for match in results:
            logger.debug(
                "Matched %s record %d with similarity %.4f",
                collection,
                match.id,
                match.similarity,
            )
        return results

    def save(self) -> None:  # noqa: PLR6301
        """
        Save operation - data is already persisted in SQLite and files.

        Note:
            This method is kept as an instance method for interface consistency
            with other vector store implementations, even though it does not use `self`.
        """
        logger.debug("Data already persisted in SQLite database and vector files")

    def load(self) -> None:
        """Load record vectors from the SQLite database and vector files.

        Raises:
            sqlite3.Error: If an error occurs while loading
                    from the SQLite vector store.
        """
        try:
            for collection in COLLECTIONS:
                record_ids: list[int] = []
                industries: list[str] = []
                vectors: list[np.ndarray] = []

                for record_id, industry, vector_file in self._load_rows(collection):
                    if not vector_file:
                        logger.warning(
                            "Record %d in %s has no vector file", record_id, collection
                        )
                        continue
                    vector_path = self.vectors_dir / vector_file
                    if not vector_path.exists():
                        logger.warning("Vector file missing: %s", vector_path)
                        continue
                    record_ids.append(record_id)
                    industries.append(industry)
                    vectors.append(np.load(vector_path))

                with self._lock:
                    self.record_ids[collection] = record_ids
                    self.industries[collection] = industries
                    self.embeddings[collection] = (
                        np.vstack(vectors).astype("float32") if vectors else None
                    )
                logger.info(
                    "Loaded %d %s vectors from SQLite vector store",
                    len(record_ids),
                    collection,
                )

        except sqlite3.Error:
            logger.exception("Error loading from SQLite vector store")
            raise
