# tests/llm/test_semantic_cache.py

import pytest

from concept_linker.errors import LLMProviderError
from concept_linker.llm.semantic_cache import (
    clear_cache,
    get_cache_stats,
    get_cached_response,
    store_cached_response,
)
from concept_linker.utils.db import get_db_connection

QUERY = "What is the relationship between machine learning and statistics?"


def _count(db_path, provider=None):
    conn = get_db_connection(db_path)
    try:
        if provider is None:
            return conn.execute("SELECT COUNT(*) FROM llm_cache").fetchone()[0]
        return conn.execute("SELECT COUNT(*) FROM llm_cache WHERE provider = ?", (provider,)).fetchone()[0]
    finally:
        conn.close()


def _last_used(db_path):
    conn = get_db_connection(db_path)
    try:
        return [row[0] for row in conn.execute("SELECT last_used_at FROM llm_cache ORDER BY id")]
    finally:
        conn.close()


def test_store_then_hit_same_query(db_path, fake_llm):
    store_cached_response(db_path, QUERY, {"a": 1}, "openai", "gpt-test", llm_client=fake_llm)

    assert get_cached_response(db_path, QUERY, "openai", "gpt-test", llm_client=fake_llm) == {"a": 1}


def test_unrelated_query_misses(db_path, fake_llm):
    store_cached_response(db_path, QUERY, {"a": 1}, "openai", "gpt-test", llm_client=fake_llm)

    assert get_cached_response(db_path, "Best pasta recipe tonight", "openai", "gpt-test", llm_client=fake_llm) is None


def test_threshold_boundary(db_path, fake_llm):
    fake_llm.vectors = {"stored": [1.0, 0.0], "close": [0.96, 0.28], "far": [0.6, 0.8]}
    store_cached_response(db_path, "stored", {"hit": True}, "openai", "gpt-test", llm_client=fake_llm)

    # cos(close) = 0.96, cos(far) = 0.6
    assert get_cached_response(db_path, "close", "openai", "gpt-test", 0.95, llm_client=fake_llm) == {"hit": True}
    assert get_cached_response(db_path, "far", "openai", "gpt-test", 0.95, llm_client=fake_llm) is None
    assert get_cached_response(db_path, "far", "openai", "gpt-test", 0.5, llm_client=fake_llm) == {"hit": True}


def test_lookup_is_scoped_to_provider_and_model(db_path, fake_llm):
    store_cached_response(db_path, QUERY, {"a": 1}, "openai", "gpt-test", llm_client=fake_llm)

    assert get_cached_response(db_path, QUERY, "gemini", "gpt-test", llm_client=fake_llm) is None
    assert get_cached_response(db_path, QUERY, "openai", "gpt-other", llm_client=fake_llm) is None


def test_best_match_wins_and_newest_breaks_ties(db_path, fake_llm):
    fake_llm.vectors = {"q": [1.0, 0.0], "near": [0.99, 0.14], "exact-old": [1.0, 0.0], "exact-new": [2.0, 0.0]}
    store_cached_response(db_path, "near", {"v": "near"}, "openai", "m", llm_client=fake_llm)
    store_cached_response(db_path, "exact-old", {"v": "old"}, "openai", "m", llm_client=fake_llm)
    store_cached_response(db_path, "exact-new", {"v": "new"}, "openai", "m", llm_client=fake_llm)

    assert get_cached_response(db_path, "q", "openai", "m", llm_client=fake_llm) == {"v": "new"}


def test_hit_updates_last_used(db_path, fake_llm):
    store_cached_response(db_path, QUERY, {"a": 1}, "openai", "gpt-test", llm_client=fake_llm)
    before = _last_used(db_path)

    get_cached_response(db_path, QUERY, "openai", "gpt-test", llm_client=fake_llm)

    after = _last_used(db_path)
    assert after[0] >= before[0]
    assert after[0] is not None


def test_writes_always_insert(db_path, fake_llm):
    store_cached_response(db_path, QUERY, {"a": 1}, "openai", "gpt-test", llm_client=fake_llm)
    store_cached_response(db_path, QUERY, {"a": 2}, "openai", "gpt-test", llm_client=fake_llm)

    assert _count(db_path) == 2


def test_clear_cache_by_provider(db_path, fake_llm):
    store_cached_response(db_path, "q1", {"a": 1}, "openai", "gpt-test", llm_client=fake_llm)
    store_cached_response(db_path, "q2", {"a": 2}, "openai", "gpt-other", llm_client=fake_llm)
    store_cached_response(db_path, "q3", {"a": 3}, "gemini", "gemini-test", llm_client=fake_llm)
    gemini_before = _count(db_path, "gemini")

    assert clear_cache(db_path, provider="openai") == 2

    assert _count(db_path, "openai") == 0
    assert _count(db_path, "gemini") == gemini_before == 1


def test_clear_cache_by_provider_and_model_and_all(db_path, fake_llm):
    store_cached_response(db_path, "q1", {"a": 1}, "openai", "gpt-test", llm_client=fake_llm)
    store_cached_response(db_path, "q2", {"a": 2}, "openai", "gpt-other", llm_client=fake_llm)
    store_cached_response(db_path, "q3", {"a": 3}, "gemini", "gemini-test", llm_client=fake_llm)

    assert clear_cache(db_path, provider="openai", model="gpt-test") == 1
    assert _count(db_path) == 2
    assert clear_cache(db_path) == 2
    assert _count(db_path) == 0


def test_cache_stats(db_path, fake_llm):
    store_cached_response(db_path, "q1", {"a": 1}, "openai", "gpt-test", llm_client=fake_llm)
    store_cached_response(db_path, "q2", {"a": 2}, "openai", "gpt-test", llm_client=fake_llm)

    stats = get_cache_stats(db_path)

    assert len(stats) == 1
    assert stats[0]["provider"] == "openai"
    assert stats[0]["entries"] == 2


def test_provider_error_propagates(db_path, fake_llm):
    fake_llm.embed_error = LLMProviderError("down", provider="openai")

    with pytest.raises(LLMProviderError):
        get_cached_response(db_path, QUERY, "openai", "gpt-test", llm_client=fake_llm)
