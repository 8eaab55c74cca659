# tests/embeddings/test_vector_index.py

import pytest

from concept_linker.embeddings.similarity import encode_vector
from concept_linker.embeddings.vector_index import (
    VectorIndex,
    get_vector_index,
    initialize_vector_index,
    reset_vector_index,
)
from concept_linker.utils.db import get_db_connection, utc_now_iso


@pytest.fixture
def index():
    idx = VectorIndex()
    idx.upsert("a", [1.0, 0.0, 0.0])
    idx.upsert("b", [0.9, 0.1, 0.0])
    idx.upsert("c", [0.0, 1.0, 0.0])
    idx.upsert("d", [0.0, 0.0, 1.0])
    return idx


def _store_embedding(db_path, concept_id, vector, model):
    now = utc_now_iso()
    conn = get_db_connection(db_path)
    try:
        conn.execute(
            "INSERT INTO concept (id, title, content) VALUES (?, ?, ?)", (concept_id, concept_id, concept_id)
        )
        conn.execute(
            "INSERT INTO concept_embedding (concept_id, embedding, model, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (concept_id, encode_vector(vector), model, now, now),
        )
        conn.commit()
    finally:
        conn.close()


def test_query_orders_by_similarity(index):
    results = index.query([1.0, 0.0, 0.0], k=3)

    assert [r["concept_id"] for r in results] == ["a", "b", "c"]
    assert results[0]["similarity"] == pytest.approx(1.0)
    sims = [r["similarity"] for r in results]
    assert sims == sorted(sims, reverse=True)


def test_query_respects_k_and_exclusions(index):
    results = index.query([1.0, 0.0, 0.0], k=2, exclude_ids={"a"})

    ids = [r["concept_id"] for r in results]
    # c 与 d 相似度同为 0，按 id 取 c
    assert ids == ["b", "c"]
    assert index.query([1.0, 0.0, 0.0], k=0) == []


def test_query_ties_broken_by_id():
    idx = VectorIndex()
    idx.upsert("z", [0.0, 1.0])
    idx.upsert("m", [0.0, 2.0])
    idx.upsert("a", [0.0, 3.0])

    assert [r["concept_id"] for r in idx.query([0.0, 1.0], k=3)] == ["a", "m", "z"]


def test_query_min_similarity_and_dimension_mismatch(index):
    index.upsert("odd", [1.0, 0.0])

    results = index.query([1.0, 0.0, 0.0], k=10, min_similarity=0.5)
    assert [r["concept_id"] for r in results] == ["a", "b"]

    everything = index.query([1.0, 0.0, 0.0], k=10)
    odd = [r for r in everything if r["concept_id"] == "odd"]
    assert odd[0]["similarity"] == 0.0


def test_zero_vectors_score_zero(index):
    index.upsert("zero", [0.0, 0.0, 0.0])

    stored = [r for r in index.query([1.0, 0.0, 0.0], k=10) if r["concept_id"] == "zero"]
    assert stored[0]["similarity"] == 0.0

    results = index.query([0.0, 0.0, 0.0], k=10)
    assert len(results) == 5
    assert all(r["similarity"] == 0.0 for r in results)
    # 全部为 0 时按 id 排序
    assert [r["concept_id"] for r in results] == ["a", "b", "c", "d", "zero"]


def test_upsert_replaces_and_remove_is_idempotent(index):
    index.upsert("a", [0.0, 1.0, 0.0])
    assert index.size() == 4
    assert index.query([0.0, 1.0, 0.0], k=1)[0]["concept_id"] in {"a", "c"}

    index.remove("a")
    index.remove("never-added")
    assert not index.contains("a")
    assert index.size() == 3


def test_initialize_loads_only_requested_model(db_path):
    _store_embedding(db_path, "x", [1.0, 0.0], "model-a")
    _store_embedding(db_path, "y", [0.0, 1.0], "model-b")

    idx = VectorIndex()
    assert not idx.is_initialized
    assert idx.initialize(db_path, "model-a") == 1
    assert idx.is_initialized
    assert idx.model == "model-a"
    assert idx.contains("x") and not idx.contains("y")

    idx.reset()
    assert idx.size() == 0
    assert not idx.is_initialized
    assert idx.model is None


def test_singleton_lifecycle(db_path):
    _store_embedding(db_path, "x", [1.0, 0.0], "model-a")

    idx = initialize_vector_index(db_path, "model-a")
    assert idx is get_vector_index()
    assert idx.size() == 1

    reset_vector_index()
    assert get_vector_index() is not idx
    assert get_vector_index().size() == 0
