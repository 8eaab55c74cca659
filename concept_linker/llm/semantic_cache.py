"""Semantic cache for LLM JSON responses.

Entries are matched by cosine similarity between the embedding of the new
query and the stored query embeddings of the same (provider, model), not by
exact text. Writes always insert: near-duplicate phrasings may coexist and
converge at read time through the threshold. There is no eviction; the
``last_used_at`` column is bookkeeping for maintenance only.
"""
from __future__ import annotations

import json
from typing import Dict, List

from concept_linker.config import DEFAULT_CACHE_SIMILARITY_THRESHOLD, MAX_CHARS_FOR_EMBEDDING
from concept_linker.embeddings.similarity import cosine_similarities, decode_vector, encode_vector
from concept_linker.llm.client import LLMClient, get_llm_client
from concept_linker.utils.db import get_db_connection, utc_now_iso
from concept_linker.utils.logger import get_logger

logger = get_logger(__name__)


def get_query_embedding(query_text: str, llm_client: LLMClient | None = None) -> List[float]:
    if len(query_text) > MAX_CHARS_FOR_EMBEDDING:
        logger.warning(
            "缓存查询文本 %s 字符，超过嵌入上限 %s，超出部分不参与匹配", len(query_text), MAX_CHARS_FOR_EMBEDDING
        )
    return (llm_client or get_llm_client()).embed(query_text)


def get_cached_response(
    db_path: str,
    query_text: str,
    provider: str,
    model: str,
    similarity_threshold: float = DEFAULT_CACHE_SIMILARITY_THRESHOLD,
    llm_client: LLMClient | None = None,
) -> Dict | None:
    """查找语义相近查询的缓存响应；命中时更新 last_used_at，未命中返回 None。"""
    query_embedding = get_query_embedding(query_text, llm_client)

    conn = get_db_connection(db_path)
    try:
        rows = conn.execute(
            """
            SELECT id, query_embedding, response FROM llm_cache
            WHERE provider = ? AND model = ?
            ORDER BY created_at DESC, id DESC
            """,
            (provider, model),
        ).fetchall()
        if not rows:
            return None

        ids: List[int] = []
        vectors: List[List[float]] = []
        for row in rows:
            vector = decode_vector(row["query_embedding"])
            if vector:
                ids.append(row["id"])
                vectors.append(vector)
        if not vectors:
            return None

        sims = cosine_similarities(query_embedding, vectors)
        # 相似度相同时取较新的条目
        best_idx = max(range(len(sims)), key=lambda i: (sims[i], -i))
        best_similarity = sims[best_idx]
        if best_similarity < similarity_threshold:
            logger.debug("语义缓存未命中 (最高相似度 %.4f < %.2f)", best_similarity, similarity_threshold)
            return None

        best_id = ids[best_idx]
        response_text = next(row["response"] for row in rows if row["id"] == best_id)
        try:
            response = json.loads(response_text)
        except ValueError as exc:
            logger.warning("缓存条目 %s 的响应无法解析，视为未命中: %s", best_id, exc)
            return None

        conn.execute("UPDATE llm_cache SET last_used_at = ? WHERE id = ?", (utc_now_iso(), best_id))
        conn.commit()
    finally:
        conn.close()

    logger.debug(
        "语义缓存命中: id=%s 相似度 %.4f 查询 %.100s", best_id, best_similarity, query_text
    )
    return response


def store_cached_response(
    db_path: str,
    query_text: str,
    response: Dict,
    provider: str,
    model: str,
    llm_client: LLMClient | None = None,
) -> None:
    """无条件插入新的缓存条目（不做写入时去重）。"""
    query_embedding = get_query_embedding(query_text, llm_client)
    now = utc_now_iso()
    conn = get_db_connection(db_path)
    try:
        conn.execute(
            """
            INSERT INTO llm_cache (
                query_embedding, query_text, response, provider, model, created_at, last_used_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                encode_vector(query_embedding),
                query_text,
                json.dumps(response, ensure_ascii=False),
                provider,
                model,
                now,
                now,
            ),
        )
        conn.commit()
    finally:
        conn.close()
    logger.debug("已写入语义缓存 (%s/%s): %.100s", provider, model, query_text)


def clear_cache(db_path: str, provider: str | None = None, model: str | None = None) -> int:
    """删除匹配的缓存条目并返回删除数量。

    只给 provider 时删除该 provider 的全部条目；provider 与 model 都给时只删该组合；
    都不给时清空缓存。只给 model 同样按 model 过滤。"""
    clauses: List[str] = []
    params: List[str] = []
    if provider is not None:
        clauses.append("provider = ?")
        params.append(provider)
    if model is not None:
        clauses.append("model = ?")
        params.append(model)
    sql = "DELETE FROM llm_cache"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)

    conn = get_db_connection(db_path)
    try:
        cur = conn.execute(sql, params)
        conn.commit()
        deleted = cur.rowcount
    finally:
        conn.close()
    logger.info("已清理语义缓存 %s 条 (provider=%s, model=%s)", deleted, provider, model)
    return deleted


def get_cache_stats(db_path: str) -> List[Dict]:
    """按 (provider, model) 统计缓存条目数。"""
    conn = get_db_connection(db_path)
    try:
        rows = conn.execute(
            """
            SELECT provider, model, COUNT(*) AS entries, MAX(last_used_at) AS last_used_at
            FROM llm_cache
            GROUP BY provider, model
            ORDER BY provider, model
            """
        ).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


__all__ = [
    "get_query_embedding",
    "get_cached_response",
    "store_cached_response",
    "clear_cache",
    "get_cache_stats",
]
