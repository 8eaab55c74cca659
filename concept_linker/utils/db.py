"""SQLite 数据库连接与初始化助手。"""
from __future__ import annotations

import datetime as _dt
import os
import sqlite3
from typing import List

from concept_linker.db.schema import MAIN_DB_SCHEMA
from concept_linker.utils.logger import get_logger

logger = get_logger(__name__)


def get_db_connection(db_path: str) -> sqlite3.Connection:
    """获取 SQLite 连接，设置外键约束并返回。

    每个操作各自打开连接，因此可以在多个线程中并发调用。"""
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def initialize_database(db_path: str, schema_sql: str = MAIN_DB_SCHEMA) -> None:
    """创建数据库文件（如不存在）并执行幂等的建表 SQL。"""
    is_new = not os.path.exists(db_path)
    if is_new:
        logger.info("创建新数据库: %s", db_path)
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        conn.executescript(schema_sql)
        conn.commit()
    finally:
        conn.close()
    if is_new:
        logger.info("数据库结构初始化完成: %s", db_path)


def list_database_tables(db_path: str) -> List[str]:
    """列出数据库中的所有表"""
    conn = get_db_connection(db_path)
    try:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        return [row[0] for row in rows]
    finally:
        conn.close()


def utc_now_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def get_metadata_value(db_path: str, key: str) -> str | None:
    conn = get_db_connection(db_path)
    try:
        row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None
    finally:
        conn.close()


def set_metadata_value(db_path: str, key: str, value: str) -> None:
    conn = get_db_connection(db_path)
    try:
        conn.execute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
            (key, value),
        )
        conn.commit()
    finally:
        conn.close()


__all__ = [
    "get_db_connection",
    "initialize_database",
    "list_database_tables",
    "utc_now_iso",
    "get_metadata_value",
    "set_metadata_value",
]
