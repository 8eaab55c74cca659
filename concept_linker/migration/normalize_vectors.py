"""旧版 float32 二进制向量 -> JSON 数组 的迁移助手。"""
from __future__ import annotations

from typing import Dict

from concept_linker.embeddings.similarity import decode_vector, encode_vector
from concept_linker.utils.db import get_db_connection
from concept_linker.utils.logger import get_logger

logger = get_logger(__name__)

# (表名, 主键列, 向量列)
_VECTOR_COLUMNS = (
    ("concept_embedding", "id", "embedding"),
    ("llm_cache", "id", "query_embedding"),
)


def normalize_vector_storage(db_path: str) -> Dict[str, int]:
    """把所有以二进制存储的向量改写为 JSON 文本，返回每张表改写的行数。

    无法解析的行保持原样并记录警告。"""
    converted: Dict[str, int] = {}
    conn = get_db_connection(db_path)
    try:
        for table, pk, column in _VECTOR_COLUMNS:
            rows = conn.execute(
                f"SELECT {pk} AS pk, {column} AS vec FROM {table} WHERE typeof({column}) = 'blob'"
            ).fetchall()
            count = 0
            for row in rows:
                vector = decode_vector(row["vec"])
                if not vector:
                    logger.warning("[迁移] %s.%s=%s 的向量无法解析，保持原样", table, pk, row["pk"])
                    continue
                conn.execute(
                    f"UPDATE {table} SET {column} = ? WHERE {pk} = ?",
                    (encode_vector(vector), row["pk"]),
                )
                count += 1
            converted[table] = count
        conn.commit()
    finally:
        conn.close()

    logger.info("[迁移] 向量格式转换完成: %s", converted)
    return converted


__all__ = ["normalize_vector_storage"]
