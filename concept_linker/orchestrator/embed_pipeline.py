"""Concept embedding pipeline (high-level orchestration).

Ensures every concept has an embedding for the active model, computing it
through the LLM client on a miss and keeping the in-memory vector index in
step with the ``concept_embedding`` table.

Concurrent requests for the same (concept, model) share one outbound embed
call: the first caller registers a ``Future`` in ``_in_flight`` and does the
work, later callers block on that future. Requests for different concepts
never wait on each other.
"""
from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Callable, Dict, List, Tuple

from concept_linker.config import EMBEDDING_BATCH_SIZE
from concept_linker.db.queries import get_concept
from concept_linker.embeddings.similarity import decode_vector, encode_vector
from concept_linker.embeddings.vector_index import VectorIndex, get_vector_index
from concept_linker.errors import ConceptLinkerError, ConceptNotFoundError
from concept_linker.llm.client import LLMClient, get_llm_client
from concept_linker.utils.db import (
    get_db_connection,
    get_metadata_value,
    set_metadata_value,
    utc_now_iso,
)
from concept_linker.utils.logger import get_logger
from concept_linker.utils.timer import timeit

logger = get_logger(__name__)

LAST_INDEXED_AT_KEY = "embeddings_last_indexed_at"

_in_flight: Dict[Tuple[str, str], Future] = {}
_in_flight_lock = threading.Lock()

# 正在运行的补齐任务数量；大于 0 时 is_indexing 为 True
_indexing_runs = 0
_indexing_lock = threading.Lock()


# ---------------------------------------------------------------------------
# 存储读写
# ---------------------------------------------------------------------------


def build_embedding_text(concept: Dict) -> str:
    """标题 + 描述 + 正文，作为嵌入输入。"""
    return f"{concept.get('title') or ''}\n{concept.get('description') or ''}\n{concept.get('content') or ''}"


def _load_embedding(db_path: str, concept_id: str, model: str) -> List[float] | None:
    conn = get_db_connection(db_path)
    try:
        row = conn.execute(
            "SELECT embedding FROM concept_embedding WHERE concept_id = ? AND model = ?",
            (concept_id, model),
        ).fetchone()
    finally:
        conn.close()
    if row is None:
        return None
    vector = decode_vector(row["embedding"])
    if not vector:
        logger.warning("概念 %s 的已存嵌入无法解析，将重新生成", concept_id)
        return None
    return vector


def _save_embedding(db_path: str, concept_id: str, vector: List[float], model: str) -> None:
    """写入或覆盖概念的嵌入（每个概念仅一行，旧模型的向量被替换）。"""
    now = utc_now_iso()
    conn = get_db_connection(db_path)
    try:
        conn.execute(
            """
            INSERT INTO concept_embedding (concept_id, embedding, model, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(concept_id) DO UPDATE SET
                embedding  = excluded.embedding,
                model      = excluded.model,
                updated_at = excluded.updated_at
            """,
            (concept_id, encode_vector(vector), model, now, now),
        )
        conn.commit()
    finally:
        conn.close()


def _delete_embedding(db_path: str, concept_id: str) -> bool:
    conn = get_db_connection(db_path)
    try:
        cur = conn.execute("DELETE FROM concept_embedding WHERE concept_id = ?", (concept_id,))
        conn.commit()
        return cur.rowcount > 0
    finally:
        conn.close()


def _sync_index(index: VectorIndex, concept_id: str, vector: List[float], model: str) -> None:
    # 索引只镜像当前激活模型的向量
    if index.model is None or index.model == model:
        index.upsert(concept_id, vector)


# ---------------------------------------------------------------------------
# 单个概念
# ---------------------------------------------------------------------------


def get_or_create_embedding(
    concept_id: str,
    text: str,
    db_path: str,
    model: str | None = None,
    llm_client: LLMClient | None = None,
    vector_index: VectorIndex | None = None,
) -> List[float]:
    """返回概念在 model 下的嵌入；缺失时调用 LLM 生成、落库并同步索引。

    已存在的嵌入原样返回，不做刷新也不触碰索引。"""
    client = llm_client or get_llm_client()
    model = model or client.get_embedding_model()

    existing = _load_embedding(db_path, concept_id, model)
    if existing is not None:
        return existing

    key = (concept_id, model)
    with _in_flight_lock:
        future = _in_flight.get(key)
        is_leader = future is None
        if is_leader:
            future = Future()
            _in_flight[key] = future

    if not is_leader:
        logger.debug("概念 %s 的嵌入正在生成，等待已有请求", concept_id)
        return list(future.result())

    try:
        # 注册前可能已有请求完成并落库
        vector = _load_embedding(db_path, concept_id, model)
        if vector is None:
            vector = client.embed(text)
            _save_embedding(db_path, concept_id, vector, model)
            _sync_index(vector_index or get_vector_index(), concept_id, vector, model)
            logger.debug("已生成概念 %s 的嵌入 (模型 %s, 维度 %s)", concept_id, model, len(vector))
        future.set_result(vector)
        return vector
    except BaseException as exc:
        future.set_exception(exc)
        raise
    finally:
        with _in_flight_lock:
            _in_flight.pop(key, None)


def generate_embedding_for_concept(
    concept_id: str,
    db_path: str,
    model: str | None = None,
    llm_client: LLMClient | None = None,
    vector_index: VectorIndex | None = None,
) -> List[float]:
    """概念创建后立即生成嵌入。"""
    concept = get_concept(db_path, concept_id)
    if concept is None:
        raise ConceptNotFoundError(concept_id)
    return get_or_create_embedding(
        concept_id,
        build_embedding_text(concept),
        db_path,
        model=model,
        llm_client=llm_client,
        vector_index=vector_index,
    )


def regenerate_embedding(
    concept_id: str,
    db_path: str,
    model: str | None = None,
    llm_client: LLMClient | None = None,
    vector_index: VectorIndex | None = None,
) -> List[float]:
    """概念内容更新后丢弃旧嵌入并重新生成。"""
    remove_embedding(concept_id, db_path, vector_index=vector_index)
    return generate_embedding_for_concept(
        concept_id, db_path, model=model, llm_client=llm_client, vector_index=vector_index
    )


def remove_embedding(concept_id: str, db_path: str, vector_index: VectorIndex | None = None) -> bool:
    """删除概念的嵌入并从索引移除；返回库中是否有记录被删除。"""
    deleted = _delete_embedding(db_path, concept_id)
    (vector_index or get_vector_index()).remove(concept_id)
    return deleted


def switch_embedding_model(db_path: str, model: str, vector_index: VectorIndex | None = None) -> int:
    """切换激活模型：清空索引并按新模型重建。旧模型的向量需由补齐任务重新生成。"""
    index = vector_index or get_vector_index()
    index.reset()
    loaded = index.initialize(db_path, model)
    logger.info("已切换嵌入模型为 %s，索引载入 %s 条", model, loaded)
    return loaded


# ---------------------------------------------------------------------------
# 批量补齐与状态
# ---------------------------------------------------------------------------


def _find_concepts_missing_embeddings(db_path: str, model: str, limit: int) -> List[Dict]:
    conn = get_db_connection(db_path)
    try:
        rows = conn.execute(
            """
            SELECT c.id, c.title, c.description, c.content
            FROM concept c
            LEFT JOIN concept_embedding e ON e.concept_id = c.id
            WHERE e.id IS NULL OR e.model != ?
            ORDER BY c.created_at, c.id
            LIMIT ?
            """,
            (model, limit),
        ).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def _set_indexing(active: bool) -> None:
    global _indexing_runs
    with _indexing_lock:
        _indexing_runs = _indexing_runs + 1 if active else max(0, _indexing_runs - 1)


def is_indexing() -> bool:
    return _indexing_runs > 0


def get_embedding_status(db_path: str, model: str | None = None) -> Dict:
    """嵌入覆盖情况。model 为空时统计任意模型的嵌入。纯读取，无副作用。"""
    conn = get_db_connection(db_path)
    try:
        total = conn.execute("SELECT COUNT(*) FROM concept").fetchone()[0]
        if model is None:
            with_embeddings = conn.execute(
                "SELECT COUNT(*) FROM concept_embedding e JOIN concept c ON c.id = e.concept_id"
            ).fetchone()[0]
        else:
            with_embeddings = conn.execute(
                """
                SELECT COUNT(*) FROM concept_embedding e
                JOIN concept c ON c.id = e.concept_id
                WHERE e.model = ?
                """,
                (model,),
            ).fetchone()[0]
    finally:
        conn.close()

    return {
        "total": total,
        "with_embeddings": with_embeddings,
        "without_embeddings": total - with_embeddings,
        "is_indexing": is_indexing(),
        "last_indexed_at": get_metadata_value(db_path, LAST_INDEXED_AT_KEY),
    }


@timeit
def check_and_generate_missing(
    batch_size: int | None,
    db_path: str,
    model: str | None = None,
    llm_client: LLMClient | None = None,
    vector_index: VectorIndex | None = None,
    on_progress: Callable[[Dict], None] | None = None,
) -> Dict:
    """为缺少嵌入（或嵌入来自旧模型）的概念补齐嵌入，最多处理 batch_size 个。

    batch_size 为 None 时使用默认批量；小于等于 0 时不处理任何概念。
    单个概念失败只记录日志并继续；数据库不可用等系统性错误直接抛出。
    返回 {"attempted", "succeeded", "failed"}。"""
    client = llm_client or get_llm_client()
    model = model or client.get_embedding_model()
    if batch_size is None:
        batch_size = EMBEDDING_BATCH_SIZE
    summary = {"attempted": 0, "succeeded": 0, "failed": 0}
    if batch_size <= 0:
        logger.warning("batch_size=%s，本次不补齐任何嵌入", batch_size)
        return summary

    pending = _find_concepts_missing_embeddings(db_path, model, batch_size)
    if not pending:
        logger.info("所有概念均已有 %s 嵌入，无需补齐", model)
        if on_progress:
            on_progress(get_embedding_status(db_path, model))
        return summary

    logger.info("开始补齐嵌入: 本批 %s 个概念 (模型 %s)", len(pending), model)
    _set_indexing(True)
    try:
        for concept in pending:
            summary["attempted"] += 1
            try:
                get_or_create_embedding(
                    concept["id"],
                    build_embedding_text(concept),
                    db_path,
                    model=model,
                    llm_client=client,
                    vector_index=vector_index,
                )
                summary["succeeded"] += 1
            except (ConceptLinkerError, ValueError) as exc:
                summary["failed"] += 1
                logger.error("概念 %s 生成嵌入失败，已跳过: %s", concept["id"], exc)

            if on_progress:
                on_progress(get_embedding_status(db_path, model))
    finally:
        _set_indexing(False)

    set_metadata_value(db_path, LAST_INDEXED_AT_KEY, utc_now_iso())
    logger.info(
        "嵌入补齐完成：尝试 %s，成功 %s，失败 %s",
        summary["attempted"],
        summary["succeeded"],
        summary["failed"],
    )
    return summary


__all__ = [
    "build_embedding_text",
    "get_or_create_embedding",
    "generate_embedding_for_concept",
    "regenerate_embedding",
    "remove_embedding",
    "switch_embedding_model",
    "get_embedding_status",
    "check_and_generate_missing",
    "is_indexing",
]
