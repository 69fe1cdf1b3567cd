"""Unit tests shared by both vector store backends, plus SQLite specifics."""

import sqlite3

import numpy as np
import pytest

from salesrag import ConfigurationMismatchError, SQLiteVectorStore
from salesrag.vector_store import FaissVectorStore, get_vector_store

INDUSTRY = "strive"


def _reopen(store):
    if isinstance(store, FaissVectorStore):
        reopened = FaissVectorStore(
            db_path=store.db_path,
            index_dir=store.index_dir,
            raw_top_k_multiplier=store.raw_top_k_multiplier,
        )
    else:
        reopened = SQLiteVectorStore(store.db_path, store.vectors_dir)
    reopened.load()
    return reopened


def test_store_initialization(any_vector_store):
    store = any_vector_store

    assert store.db_path.exists()
    with sqlite3.connect(store.db_path) as conn:
        tables = {
            name
            for (name,) in conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            )
        }
    assert {"conversations", "examples"} <= tables
    assert store.count("conversations") == 0
    assert store.count("examples") == 0
    assert store.dimension() is None


def test_add_conversation_assigns_id_and_timestamps(
    any_vector_store, conversation_record_factory, similarity_vector
):
    store = any_vector_store
    record = conversation_record_factory(embedding=similarity_vector(0.9))

    stored = store.add_conversation(record)

    assert stored.id is not None
    assert stored.created_at is not None
    assert stored.updated_at == stored.created_at
    assert store.count("conversations") == 1
    assert store.dimension() == 8

    [loaded] = store.get_conversations(record.session_id)
    assert loaded.id == stored.id
    assert loaded.user_message == record.user_message
    assert loaded.outcome == "in_progress"
    assert loaded.booking_completed is False
    assert loaded.embedding is None


def test_add_conversation_without_embedding_is_rejected(
    any_vector_store, conversation_record_factory
):
    store = any_vector_store

    with pytest.raises(ValueError, match="without an embedding"):
        store.add_conversation(conversation_record_factory())

    assert store.count("conversations") == 0


def test_dimension_mismatch_is_rejected(
    any_vector_store, conversation_record_factory, similarity_vector
):
    store = any_vector_store
    store.add_conversation(conversation_record_factory(embedding=similarity_vector(0.9)))

    with pytest.raises(ConfigurationMismatchError):
        store.add_conversation(
            conversation_record_factory(embedding=np.ones(4, dtype=np.float32))
        )
    with pytest.raises(ConfigurationMismatchError):
        store.search(
            np.ones(4, dtype=np.float32),
            industry=INDUSTRY,
            collection="conversations",
        )


def test_search_filters_by_industry(
    any_vector_store, conversation_record_factory, similarity_vector
):
    store = any_vector_store
    store.add_conversation(
        conversation_record_factory("strive turn", embedding=similarity_vector(0.9))
    )
    store.add_conversation(
        conversation_record_factory(
            "roofing turn", industry="roofing", embedding=similarity_vector(0.95)
        )
    )

    results = store.search(
        similarity_vector(1.0), industry=INDUSTRY, collection="conversations"
    )

    assert [match.user_message for match in results] == ["strive turn"]
    assert results[0].collection == "conversations"


def test_search_threshold_is_inclusive(
    any_vector_store, conversation_record_factory, similarity_vector
):
    store = any_vector_store
    store.add_conversation(
        conversation_record_factory("at threshold", embedding=similarity_vector(0.75))
    )
    store.add_conversation(
        conversation_record_factory(
            "below threshold", embedding=similarity_vector(0.74, axis=2)
        )
    )

    results = store.search(
        similarity_vector(1.0),
        industry=INDUSTRY,
        collection="conversations",
        threshold=0.75,
    )

    assert [match.user_message for match in results] == ["at threshold"]
    assert results[0].similarity == pytest.approx(0.75, abs=1e-5)


def test_search_orders_by_similarity_and_applies_limit(
    any_vector_store, conversation_record_factory, similarity_vector
):
    store = any_vector_store
    for text, similarity, axis in (
        ("low", 0.8, 1),
        ("high", 0.95, 2),
        ("mid", 0.9, 3),
    ):
        store.add_conversation(
            conversation_record_factory(text, embedding=similarity_vector(similarity, axis=axis))
        )

    results = store.search(
        similarity_vector(1.0),
        industry=INDUSTRY,
        collection="conversations",
        limit=2,
    )

    assert [match.user_message for match in results] == ["high", "mid"]
    similarities = [match.similarity for match in results]
    assert similarities == sorted(similarities, reverse=True)


def test_search_ties_keep_insertion_order(
    any_vector_store, conversation_record_factory, similarity_vector
):
    store = any_vector_store
    for text in ("first", "second", "third"):
        store.add_conversation(
            conversation_record_factory(text, embedding=similarity_vector(0.9))
        )

    results = store.search(
        similarity_vector(1.0), industry=INDUSTRY, collection="conversations"
    )

    assert [match.user_message for match in results] == ["first", "second", "third"]


def test_collections_are_searched_independently(
    any_vector_store,
    conversation_record_factory,
    example_record_factory,
    similarity_vector,
):
    store = any_vector_store
    store.add_conversation(
        conversation_record_factory("real turn", embedding=similarity_vector(0.9))
    )
    store.add_examples([example_record_factory(embedding=similarity_vector(0.85))])

    conversations = store.search(
        similarity_vector(1.0), industry=INDUSTRY, collection="conversations"
    )
    examples = store.search(
        similarity_vector(1.0), industry=INDUSTRY, collection="examples"
    )

    assert [match.collection for match in conversations] == ["conversations"]
    assert [match.collection for match in examples] == ["examples"]
    assert examples[0].problem_detected == "churn"
    assert examples[0].solution_presented == "churn_prediction"
    assert examples[0].conversion_score == pytest.approx(0.95)
    assert examples[0].outcome == "booking_completed"


def test_add_examples_skips_records_without_embeddings(
    any_vector_store, example_record_factory, similarity_vector
):
    store = any_vector_store
    examples = [
        example_record_factory("embedded", embedding=similarity_vector(0.9)),
        example_record_factory("not embedded"),
    ]

    inserted = store.add_examples(examples)

    assert inserted == 1
    assert examples[0].id is not None
    assert examples[1].id is None
    assert store.count("examples") == 1


def test_empty_search(any_vector_store, similarity_vector):
    results = any_vector_store.search(
        similarity_vector(1.0), industry=INDUSTRY, collection="examples"
    )

    assert results == []


def test_unknown_collection_is_rejected(any_vector_store, similarity_vector):
    with pytest.raises(ValueError, match="Unknown collection"):
        any_vector_store.search(
            similarity_vector(1.0), industry=INDUSTRY, collection="documents"
        )


def test_mark_session_outcome_updates_every_turn_of_the_session(
    any_vector_store, conversation_record_factory, similarity_vector
):
    store = any_vector_store
    for text in ("turn one", "turn two"):
        store.add_conversation(
            conversation_record_factory(text, embedding=similarity_vector(0.9))
        )
    store.add_conversation(
        conversation_record_factory(
            "other session", session_id="session-2", embedding=similarity_vector(0.9)
        )
    )

    updated = store.mark_session_outcome("session-1", conversion_score=0.9)

    assert updated == 2
    for record in store.get_conversations("session-1"):
        assert record.outcome == "booking_completed"
        assert record.booking_completed is True
        assert record.conversion_score == pytest.approx(0.9)
        assert record.updated_at >= record.created_at
    [untouched] = store.get_conversations("session-2")
    assert untouched.outcome == "in_progress"
    assert store.mark_session_outcome("missing-session") == 0


def test_count_by_industry(any_vector_store, conversation_record_factory, similarity_vector):
    store = any_vector_store
    store.add_conversation(conversation_record_factory(embedding=similarity_vector(0.9)))
    store.add_conversation(
        conversation_record_factory(industry="roofing", embedding=similarity_vector(0.9))
    )

    assert store.count("conversations") == 2
    assert store.count("conversations", INDUSTRY) == 1
    assert store.count("conversations", "unknown") == 0


def test_persistence_roundtrip(
    any_vector_store,
    conversation_record_factory,
    example_record_factory,
    similarity_vector,
):
    store = any_vector_store
    store.add_conversation(
        conversation_record_factory("persisted", embedding=similarity_vector(0.9))
    )
    store.add_examples([example_record_factory(embedding=similarity_vector(0.8, axis=2))])
    store.save()

    reopened = _reopen(store)

    for collection in ("conversations", "examples"):
        original = store.search(
            similarity_vector(1.0), industry=INDUSTRY, collection=collection
        )
        loaded = reopened.search(
            similarity_vector(1.0), industry=INDUSTRY, collection=collection
        )
        assert [m.id for m in loaded] == [m.id for m in original]
        for before, after in zip(original, loaded, strict=True):
            assert abs(before.similarity - after.similarity) < 1e-6


def test_sqlite_store_writes_vector_files(
    temp_vector_store, conversation_record_factory, similarity_vector
):
    store = temp_vector_store
    stored = store.add_conversation(
        conversation_record_factory(embedding=similarity_vector(0.9))
    )

    vector_file = store.vectors_dir / "conversations" / f"{stored.id:08d}.npy"
    assert vector_file.exists()
    np.testing.assert_allclose(np.load(vector_file), similarity_vector(0.9))


def test_sqlite_load_skips_missing_vector_files(
    temp_vector_store, conversation_record_factory, similarity_vector
):
    store = temp_vector_store
    stored = store.add_conversation(
        conversation_record_factory(embedding=similarity_vector(0.9))
    )
    (store.vectors_dir / "conversations" / f"{stored.id:08d}.npy").unlink()

    reopened = _reopen(store)

    assert reopened.record_ids["conversations"] == []
    assert reopened.embeddings["conversations"] is None


def test_cosine_similarity():
    vec1 = np.array([1, 0, 0], dtype=np.float32)
    vec2 = np.array([0, 1, 0], dtype=np.float32)
    vec3 = np.array([1, 1, 0], dtype=np.float32) / np.sqrt(2)

    similarities = SQLiteVectorStore.cosine_similarity(vec1, np.vstack([vec1, vec2, vec3]))

    assert abs(similarities[0] - 1.0) < 1e-6
    assert abs(similarities[1] - 0.0) < 1e-6
    assert abs(similarities[2] - (1 / np.sqrt(2))) < 1e-6


@pytest.mark.parametrize(
    ("backend", "expected_type"),
    [("faiss", FaissVectorStore), ("sqlite", SQLiteVectorStore), ("FAISS", FaissVectorStore)],
)
def test_get_vector_store_backends(tmp_path, backend, expected_type):
    store = get_vector_store(
        backend,
        db_path=tmp_path / "store.db",
        vectors_dir=tmp_path / "vectors",
        index_dir=tmp_path / "faiss",
    )

    assert isinstance(store, expected_type)


def test_get_vector_store_rejects_unknown_backend(tmp_path):
    with pytest.raises(ValueError, match="Unsupported vector store backend"):
        get_vector_store("chroma", db_path=tmp_path / "store.db")
