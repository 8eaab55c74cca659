"""Embedding similarity and vector (de)serialisation helpers."""
from __future__ import annotations

import json
from typing import List, Sequence

import numpy as np

from concept_linker.utils.logger import get_logger

logger = get_logger(__name__)


# --------------------------- 基础相似度计算 ---------------------------

def cosine_similarity(vec1: Sequence[float] | None, vec2: Sequence[float] | None) -> float:
    """计算两个向量的余弦相似度。向量维度不一致、为空或为零向量时返回 0.0。"""
    if vec1 is None or vec2 is None or len(vec1) == 0 or len(vec1) != len(vec2):
        return 0.0
    a = np.asarray(vec1, dtype=np.float64)
    b = np.asarray(vec2, dtype=np.float64)
    mag1 = float(np.linalg.norm(a))
    mag2 = float(np.linalg.norm(b))
    if mag1 == 0 or mag2 == 0:
        return 0.0
    return float(np.dot(a, b) / (mag1 * mag2))


def normalize_rows(vectors: np.ndarray) -> np.ndarray:
    """按行 L2 归一化；零向量保持为零，使其相似度恒为 0。"""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return vectors / norms


def cosine_similarities(query: Sequence[float], vectors: List[Sequence[float]]) -> List[float]:
    """批量计算 query 与每个向量的余弦相似度，维度不一致的向量得 0.0。"""
    if not vectors:
        return []
    dim = len(query)
    q = np.asarray(query, dtype=np.float64)
    q_norm = float(np.linalg.norm(q))
    if dim == 0 or q_norm == 0:
        return [0.0] * len(vectors)

    scores = [0.0] * len(vectors)
    same_dim = [i for i, v in enumerate(vectors) if len(v) == dim]
    if same_dim:
        matrix = normalize_rows(np.asarray([vectors[i] for i in same_dim], dtype=np.float64))
        sims = matrix @ (q / q_norm)
        for i, sim in zip(same_dim, sims):
            scores[i] = float(sim)
    return scores


# --------------------------- 向量存储格式 ---------------------------

def encode_vector(vector: Sequence[float]) -> str:
    """向量以 JSON 数组形式落库。"""
    return json.dumps([float(x) for x in vector])


def decode_vector(raw: str | bytes | memoryview | None) -> List[float] | None:
    """解析库中的向量，兼容 JSON 文本与旧版 float32 二进制。无法解析时返回 None。"""
    if raw is None:
        return None
    if isinstance(raw, memoryview):
        raw = raw.tobytes()
    if isinstance(raw, bytes):
        stripped = raw.lstrip()
        if stripped.startswith(b"["):
            raw = raw.decode("utf-8")
        else:
            if len(raw) % 4 != 0:
                logger.warning("二进制向量长度 %s 不是 4 的倍数，已跳过", len(raw))
                return None
            return np.frombuffer(raw, dtype=np.float32).astype(float).tolist()
    try:
        data = json.loads(raw)
        if not isinstance(data, list):
            return None
        return [float(x) for x in data]
    except (TypeError, ValueError) as exc:
        logger.warning("解析向量 JSON 失败: %s", exc)
        return None


__all__ = [
    "cosine_similarity",
    "cosine_similarities",
    "normalize_rows",
    "encode_vector",
    "decode_vector",
]
