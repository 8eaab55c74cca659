"""In-memory vector index over concept embeddings.

Holds one vector per concept for the active embedding model and answers
top-K cosine queries with a linear scan. At personal-knowledge-base scale
(low thousands of concepts) a numpy matrix product over pre-normalised rows
is fast enough; an approximate index only pays off past ~1e5 entries.

The index mirrors the ``concept_embedding`` table and is never the source of
truth: ``initialize`` rebuilds it from the store, ``upsert`` must only be
called after the corresponding store write has committed.
"""
from __future__ import annotations

import threading
from typing import Dict, Iterable, List

import numpy as np

from concept_linker.embeddings.similarity import decode_vector
from concept_linker.utils.db import get_db_connection
from concept_linker.utils.logger import get_logger

logger = get_logger(__name__)


def _normalise(vector) -> np.ndarray:
    arr = np.asarray(vector, dtype=np.float64).ravel()
    norm = float(np.linalg.norm(arr))
    if norm == 0:
        return arr
    return arr / norm


class VectorIndex:
    """Process-wide nearest-neighbour index with an explicit lifecycle."""

    def __init__(self) -> None:
        self._entries: Dict[str, np.ndarray] = {}
        self._model: str | None = None
        self._initialized = False
        # 仅保护 dict 本身，使查询拿到一致快照
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ state
    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def model(self) -> str | None:
        return self._model

    def size(self) -> int:
        return len(self._entries)

    def contains(self, concept_id: str) -> bool:
        return concept_id in self._entries

    # -------------------------------------------------------------- lifecycle
    def initialize(self, db_path: str, model: str) -> int:
        """Load every stored embedding for ``model``; returns the number loaded."""
        conn = get_db_connection(db_path)
        try:
            rows = conn.execute(
                "SELECT concept_id, embedding FROM concept_embedding WHERE model = ?",
                (model,),
            ).fetchall()
        finally:
            conn.close()

        entries: Dict[str, np.ndarray] = {}
        for row in rows:
            vector = decode_vector(row["embedding"])
            if not vector:
                logger.warning("概念 %s 的嵌入无法解析，未载入索引", row["concept_id"])
                continue
            entries[str(row["concept_id"])] = _normalise(vector)

        with self._lock:
            self._entries = entries
            self._model = model
            self._initialized = True

        logger.info("向量索引初始化完成: %s 条 (模型 %s)", len(entries), model)
        return len(entries)

    def reset(self) -> None:
        """Drop every entry and return to the uninitialized state."""
        with self._lock:
            self._entries = {}
            self._model = None
            self._initialized = False

    # -------------------------------------------------------------- mutation
    def upsert(self, concept_id: str, vector) -> None:
        normalised = _normalise(vector)
        with self._lock:
            self._entries[str(concept_id)] = normalised

    def remove(self, concept_id: str) -> None:
        with self._lock:
            self._entries.pop(str(concept_id), None)

    # ----------------------------------------------------------------- query
    def query(
        self,
        vector,
        k: int = 20,
        exclude_ids: Iterable[str] | None = None,
        min_similarity: float | None = None,
    ) -> List[Dict]:
        """Top ``k`` entries by cosine similarity to ``vector``.

        Results are ``{"concept_id", "similarity"}`` dicts sorted by similarity
        descending, ties broken by concept id ascending. Ids in ``exclude_ids``
        never appear. Entries with a different dimensionality, and every entry
        when the query is a zero vector, score 0.0.
        """
        if k <= 0:
            return []
        excluded = set(exclude_ids or ())
        query_vec = _normalise(vector)
        dim = query_vec.shape[0]

        with self._lock:
            items = [(cid, vec) for cid, vec in self._entries.items() if cid not in excluded]
        if not items:
            return []

        scored: List[tuple[str, float]] = []
        same_dim = [(cid, vec) for cid, vec in items if vec.shape[0] == dim]
        if same_dim:
            matrix = np.vstack([vec for _, vec in same_dim])
            sims = matrix @ query_vec
            scored.extend((cid, float(sim)) for (cid, _), sim in zip(same_dim, sims))
        scored.extend((cid, 0.0) for cid, vec in items if vec.shape[0] != dim)

        if min_similarity is not None:
            scored = [item for item in scored if item[1] >= min_similarity]

        scored.sort(key=lambda item: (-item[1], item[0]))
        return [{"concept_id": cid, "similarity": sim} for cid, sim in scored[:k]]


# ---------------------------------------------------------------------------
# 进程级单例
# ---------------------------------------------------------------------------

_vector_index: VectorIndex | None = None
_singleton_lock = threading.Lock()


def get_vector_index() -> VectorIndex:
    """Get or create the process-wide index instance."""
    global _vector_index
    with _singleton_lock:
        if _vector_index is None:
            _vector_index = VectorIndex()
        return _vector_index


def initialize_vector_index(db_path: str, model: str) -> VectorIndex:
    """Load the process-wide index from the store; call on startup."""
    index = get_vector_index()
    index.initialize(db_path, model)
    return index


def reset_vector_index() -> None:
    """Clear the process-wide index (model migration, test isolation)."""
    global _vector_index
    with _singleton_lock:
        if _vector_index is not None:
            _vector_index.reset()
        _vector_index = None


__all__ = [
    "VectorIndex",
    "get_vector_index",
    "initialize_vector_index",
    "reset_vector_index",
]
