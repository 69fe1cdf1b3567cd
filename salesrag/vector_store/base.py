"""Shared helpers for SQLite-backed vector stores."""

from __future__ import annotations

import datetime
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from salesrag.config import config
from salesrag.errors import ConfigurationMismatchError
from salesrag.models import (
    COLLECTIONS,
    Collection,
    ConversationRecord,
    ExampleRecord,
    SimilarConversation,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

DEFAULT_MATCH_THRESHOLD = 0.75
DEFAULT_MATCH_LIMIT = 5
# Float32 dot products land a hair below exact boundaries such as 0.75.
SIMILARITY_TOLERANCE = 1e-6

CONVERSATION_COLUMNS = (
    "id",
    "industry",
    "client_id",
    "session_id",
    "user_message",
    "assistant_response",
    "problem_detected",
    "solution_presented",
    "conversation_stage",
    "outcome",
    "conversion_score",
    "booking_completed",
    "response_time_ms",
    "user_satisfaction",
    "created_at",
    "updated_at",
)

MATCH_COLUMNS = (
    "id",
    "user_message",
    "assistant_response",
    "problem_detected",
    "solution_presented",
    "conversation_stage",
    "outcome",
    "conversion_score",
)

logger = config.get_logger(__name__)


def utc_now() -> str:
    """Return the current UTC time as an ISO 8601 string."""  # noqa: DOC201
    return datetime.datetime.now(tz=datetime.UTC).isoformat()


class BaseSQLiteStore:
    """Common schema management and helpers for the two conversation collections."""

    backend = "base"

    def __init__(self, db_path: Path) -> None:
        """Initialize metadata store and ensure schema exists."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self._create_tables()

    def _create_tables(self) -> None:
        """Create conversation and example tables if they don't exist."""
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS conversations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    industry TEXT NOT NULL,
                    client_id TEXT,
                    session_id TEXT NOT NULL,
                    user_message TEXT NOT NULL,
                    assistant_response TEXT NOT NULL,
                    vector_file TEXT,
                    problem_detected TEXT,
                    solution_presented TEXT,
                    conversation_stage TEXT,
                    outcome TEXT NOT NULL DEFAULT 'in_progress' CHECK(
                        outcome IN (
                            'booking_completed','conversation_ended','in_progress'
                        )
                    ),
                    conversion_score REAL,
                    booking_completed INTEGER NOT NULL DEFAULT 0,
                    response_time_ms INTEGER,
                    user_satisfaction INTEGER CHECK(
                        user_satisfaction IS NULL OR user_satisfaction BETWEEN 1 AND 5
                    ),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS examples (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    industry TEXT NOT NULL,
                    user_message TEXT NOT NULL,
                    assistant_response TEXT NOT NULL,
                    vector_file TEXT,
                    problem_detected TEXT,
                    solution_presented TEXT,
                    conversation_stage TEXT,
                    outcome TEXT,
                    conversion_score REAL,
                    is_verified INTEGER NOT NULL DEFAULT 0,
                    notes TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            self._create_indexes(cursor)
            conn.commit()

    @staticmethod
    def _create_indexes(cursor: sqlite3.Cursor) -> None:
        """Ensure metadata indexes exist for common filters."""
        cursor.execute(
            (
                "CREATE INDEX IF NOT EXISTS idx_conversations_industry "
                "ON conversations(industry)"
            ),
        )
        cursor.execute(
            (
                "CREATE INDEX IF NOT EXISTS idx_conversations_session "
                "ON conversations(session_id, created_at DESC)"
            ),
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_examples_industry ON examples(industry)",
        )

    @staticmethod
    def _table(collection: str) -> Collection:
        """Validate a collection name before it is used as a table name.

        Returns:
            The collection name.

        Raises:
            ValueError: If the collection is unknown.
        """
        if collection not in COLLECTIONS:
            msg = f"Unknown collection: {collection}"
            raise ValueError(msg)
        return collection  # type: ignore[return-value]

    @staticmethod
    def _within_threshold(similarity: float, threshold: float) -> bool:
        """Inclusive threshold check tolerant to float32 rounding.

        Returns:
            True if the similarity meets the threshold.
        """
        return similarity >= threshold - SIMILARITY_TOLERANCE

    @staticmethod
    def _rank(scored: Sequence[tuple[int, float]], limit: int) -> list[tuple[int, float]]:
        """Order (record_id, score) pairs by score, ties by insertion order.

        Returns:
            At most ``limit`` pairs.
        """
        return sorted(scored, key=lambda item: (-item[1], item[0]))[: max(limit, 0)]

    def _check_dimension(self, embedding: np.ndarray) -> np.ndarray:
        """Validate an embedding against the store's vector dimension.

        Returns:
            The embedding as a 1-D float32 array.

        Raises:
            ConfigurationMismatchError: If dimensions disagree.
        """
        vector = np.asarray(embedding, dtype="float32").reshape(-1)
        expected = self.dimension()
        if expected is not None and vector.shape[0] != expected:
            msg = (
                f"Embedding dimension {vector.shape[0]} does not match "
                f"vector store dimension {expected}"
            )
            raise ConfigurationMismatchError(msg)
        return vector

    @staticmethod
    def _insert_conversation_row(
        cursor: sqlite3.Cursor,
        record: ConversationRecord,
        timestamp: str,
    ) -> int:
        """Persist a conversation row and return its id.

        Raises:
            RuntimeError: If the row cannot be inserted.

        Returns:
            Row id of the new conversation.
        """
        cursor.execute(
            """
            INSERT INTO conversations (
                industry,
                client_id,
                session_id,
                user_message,
                assistant_response,
                problem_detected,
                solution_presented,
                conversation_stage,
                outcome,
                conversion_score,
                booking_completed,
                response_time_ms,
                user_satisfaction,
                created_at,
                updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.industry,
                record.client_id,
                record.session_id,
                record.user_message,
                record.assistant_response,
                record.problem_detected,
                record.solution_presented,
                record.conversation_stage,
                record.outcome,
                record.conversion_score,
                int(record.booking_completed),
                record.response_time_ms,
                record.user_satisfaction,
                timestamp,
                timestamp,
            ),
        )
        row_id = cursor.lastrowid
        if row_id is None:
            msg = "Failed to insert conversation row"
            raise RuntimeError(msg)
        return int(row_id)

    @staticmethod
    def _insert_example_row(
        cursor: sqlite3.Cursor,
        record: ExampleRecord,
        timestamp: str,
    ) -> int:
        """Persist an example row and return its id.

        Raises:
            RuntimeError: If the row cannot be inserted.

        Returns:
            Row id of the new example.
        """
        cursor.execute(
            """
            INSERT INTO examples (
                industry,
                user_message,
                assistant_response,
                problem_detected,
                solution_presented,
                conversation_stage,
                outcome,
                conversion_score,
                is_verified,
                notes,
                created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.industry,
                record.user_message,
                record.assistant_response,
                record.problem_detected,
                record.solution_presented,
                record.conversation_stage,
                record.outcome,
                record.conversion_score,
                int(record.is_verified),
                record.notes,
                timestamp,
            ),
        )
        row_id = cursor.lastrowid
        if row_id is None:
            msg = "Failed to insert example row"
            raise RuntimeError(msg)
        return int(row_id)

    def add_conversation(self, record: ConversationRecord) -> ConversationRecord:
        """Insert a conversation with its embedding.

        Returns:
            The same record with ``id``, ``created_at`` and ``updated_at`` set.

        Raises:
            ValueError: If the record has no embedding.
        """
        if record.embedding is None:
            msg = "Refusing to store a conversation without an embedding"
            raise ValueError(msg)
        embedding = self._check_dimension(record.embedding)
        timestamp = utc_now()

        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            record_id = self._insert_conversation_row(cursor, record, timestamp)
            self._persist_vector(cursor, "conversations", record_id, embedding)
            conn.commit()

        self._index_vectors("conversations", [record_id], [record.industry], [embedding])

        record.id = record_id
        record.created_at = timestamp
        record.updated_at = timestamp
        logger.info(
            "Stored conversation %d for session %s", record_id, record.session_id
        )
        return record

    def add_examples(self, records: list[ExampleRecord]) -> int:
        """Insert curated examples; records without embeddings are skipped.

        Returns:
            Number of examples inserted.
        """
        if not records:
            return 0

        record_ids: list[int] = []
        industries: list[str] = []
        embeddings: list[np.ndarray] = []
        timestamp = utc_now()

        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            for record in records:
                if record.embedding is None:
                    logger.warning(
                        "Skipping example without embedding: %.50s", record.user_message
                    )
                    continue
                embedding = self._check_dimension(record.embedding)
                record_id = self._insert_example_row(cursor, record, timestamp)
                self._persist_vector(cursor, "examples", record_id, embedding)

                record.id = record_id
                record.created_at = timestamp
                record_ids.append(record_id)
                industries.append(record.industry)
                embeddings.append(embedding)
            conn.commit()

        if record_ids:
            self._index_vectors("examples", record_ids, industries, embeddings)
        logger.info("Added %d examples to %s vector store", len(record_ids), self.backend)
        return len(record_ids)

    def mark_session_outcome(
        self,
        session_id: str,
        *,
        outcome: str = "booking_completed",
        booking_completed: bool = True,
        conversion_score: float | None = 1.0,
    ) -> int:
        """Update the outcome of every stored turn of a session.

        Returns:
            Number of conversation rows updated.
        """
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE conversations
                SET outcome = ?,
                    booking_completed = ?,
                    conversion_score = ?,
                    updated_at = ?
                WHERE session_id = ?
                """,
                (
                    outcome,
                    int(booking_completed),
                    conversion_score,
                    utc_now(),
                    session_id,
                ),
            )
            updated = cursor.rowcount
            conn.commit()

        logger.info("Marked %d turns of session %s as %s", updated, session_id, outcome)
        return updated

    def get_conversations(self, session_id: str) -> list[ConversationRecord]:
        """Fetch the stored turns of a session, oldest first.

        Returns:
            Conversation records without embeddings.
        """
        columns = ", ".join(CONVERSATION_COLUMNS)
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {columns} FROM conversations WHERE session_id = ? ORDER BY id",  # noqa: S608
                (session_id,),
            )
            rows = cursor.fetchall()

        records = []
        for row in rows:
            values = dict(zip(CONVERSATION_COLUMNS, row, strict=True))
            values["booking_completed"] = bool(values["booking_completed"])
            records.append(ConversationRecord(**values))
        return records

    def count(self, collection: str, industry: str | None = None) -> int:
        """Count stored records in a collection, optionally for one industry.

        Returns:
            Number of rows.
        """
        table = self._table(collection)
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            if industry is None:
                cursor.execute(f"SELECT COUNT(*) FROM {table}")  # noqa: S608
            else:
                cursor.execute(
                    f"SELECT COUNT(*) FROM {table} WHERE industry = ?",  # noqa: S608
                    (industry,),
                )
            return int(cursor.fetchone()[0])

    def _load_rows(self, collection: Collection) -> list[tuple[int, str, str | None]]:
        """Read (id, industry, vector_file) for every record in insertion order.

        Returns:
            Row tuples.
        """
        table = self._table(collection)
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT id, industry, vector_file FROM {table} ORDER BY id"  # noqa: S608
            )
            return [(int(row[0]), row[1], row[2]) for row in cursor.fetchall()]

    def _fetch_matches(
        self,
        collection: Collection,
        scored: Sequence[tuple[int, float]],
    ) -> list[SimilarConversation]:
        """Hydrate ranked (record_id, similarity) pairs into matches.

        Returns:
            Matches in the order of ``scored``.
        """
        if not scored:
            return []

        table = self._table(collection)
        placeholders = ", ".join("?" for _ in scored)
        columns = ", ".join(MATCH_COLUMNS)
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {columns} FROM {table} WHERE id IN ({placeholders})",  # noqa: S608
                [record_id for record_id, _ in scored],
            )
            rows = {int(row[0]): row for row in cursor.fetchall()}

        matches = []
        for record_id, similarity in scored:
            row = rows.get(record_id)
            if row is None:
                logger.warning("Vector %d in %s has no metadata row", record_id, table)
                continue
            values = dict(zip(MATCH_COLUMNS, row, strict=True))
            matches.append(
                SimilarConversation(
                    collection=collection,
                    similarity=float(similarity),
                    **values,
                )
            )
        return matches

    def _industry_ids(self, collection: Collection, industry: str) -> set[int]:
        """Return the ids of records tagged with an industry."""  # noqa: DOC201
        table = self._table(collection)
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT id FROM {table} WHERE industry = ?",  # noqa: S608
                (industry,),
            )
            return {int(row[0]) for row in cursor.fetchall()}

    def dimension(self) -> int | None:
        """Placeholder for the vector dimension implemented by subclasses.

        Returns:
            Dimension of stored vectors, or None while the store is empty.
        """
        raise NotImplementedError

    def _persist_vector(
        self,
        cursor: sqlite3.Cursor,
        collection: Collection,
        record_id: int,
        embedding: np.ndarray,
    ) -> None:
        """Placeholder for durable vector storage implemented by subclasses."""
        raise NotImplementedError

    def _index_vectors(
        self,
        collection: Collection,
        record_ids: list[int],
        industries: list[str],
        embeddings: list[np.ndarray],
    ) -> None:
        """Placeholder for in-memory indexing implemented by subclasses."""
        raise NotImplementedError
