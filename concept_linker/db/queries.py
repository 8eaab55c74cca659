"""Read-only accessors for the tables owned by the CRUD layer.

核心模块只读取 concept / link / link_name，写入由外部 CRUD 层负责。"""
from __future__ import annotations

from typing import Dict, List, Set

from concept_linker.utils.db import get_db_connection


def get_concept(db_path: str, concept_id: str) -> Dict | None:
    """按 id 读取概念，不存在时返回 None。"""
    conn = get_db_connection(db_path)
    try:
        row = conn.execute(
            "SELECT id, title, description, content, status FROM concept WHERE id = ?",
            (concept_id,),
        ).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def get_concepts_by_ids(db_path: str, concept_ids: List[str]) -> Dict[str, Dict]:
    if not concept_ids:
        return {}
    placeholders = ",".join("?" for _ in concept_ids)
    conn = get_db_connection(db_path)
    try:
        rows = conn.execute(
            f"SELECT id, title, description, content, status FROM concept WHERE id IN ({placeholders})",
            list(concept_ids),
        ).fetchall()
        return {row["id"]: dict(row) for row in rows}
    finally:
        conn.close()


def get_linked_concept_ids(db_path: str, concept_id: str) -> Set[str]:
    """返回与 concept_id 已存在链接的所有概念 id（正向与反向都算）。"""
    conn = get_db_connection(db_path)
    try:
        rows = conn.execute(
            """
            SELECT target_id AS other_id FROM link WHERE source_id = ?
            UNION
            SELECT source_id AS other_id FROM link WHERE target_id = ?
            """,
            (concept_id, concept_id),
        ).fetchall()
        return {row["other_id"] for row in rows}
    finally:
        conn.close()


def get_inactive_concept_ids(db_path: str) -> Set[str]:
    conn = get_db_connection(db_path)
    try:
        rows = conn.execute("SELECT id FROM concept WHERE status != 'active'").fetchall()
        return {row["id"] for row in rows}
    finally:
        conn.close()


def get_active_link_names(db_path: str) -> List[str]:
    """未被逻辑删除的链接名称（正向名称）。"""
    conn = get_db_connection(db_path)
    try:
        rows = conn.execute(
            "SELECT forward_name FROM link_name WHERE is_deleted = 0 ORDER BY forward_name"
        ).fetchall()
        return [row["forward_name"] for row in rows]
    finally:
        conn.close()


__all__ = [
    "get_concept",
    "get_concepts_by_ids",
    "get_linked_concept_ids",
    "get_inactive_concept_ids",
    "get_active_link_names",
]
