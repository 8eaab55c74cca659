"""Centralised configuration constants for the concept-linker toolkit.

嵌入、语义缓存与链接推荐共用的常量统一放在此文件，供各模块引用。"""
from __future__ import annotations

# ------------------------------- Storage ----------------------------------
DEFAULT_MAIN_DB_FILE_NAME: str = "concept_linker.db"
DEFAULT_CONFIG_DIR_NAME: str = "config"

# ------------------------------ Embeddings --------------------------------
EMBEDDING_BATCH_SIZE: int = 10  # 每次补齐缺失嵌入时最多处理的概念数
# 嵌入文本最大字符数，超出部分截断
MAX_CHARS_FOR_EMBEDDING: int = 8000

# --------------------------- Semantic cache -------------------------------
DEFAULT_CACHE_SIMILARITY_THRESHOLD: float = 0.95

# ---------------------------- Link proposer -------------------------------
LINK_CONFIDENCE_THRESHOLD: float = 0.5
DEFAULT_MAX_PROPOSALS: int = 5
MAX_CANDIDATES_FOR_RERANK: int = 20  # 发送给 LLM 重排的候选数量上限
CONTENT_PREVIEW_CHARS: int = 500

DEFAULT_LINK_NAMES: list[str] = [
    "belongs to",
    "references",
    "is a subset of",
    "builds on",
    "contradicts",
    "related to",
    "example of",
    "prerequisite for",
    "extends",
    "similar to",
    "part of",
    "contains",
    "inspired by",
    "opposes",
]
FALLBACK_LINK_NAME: str = "related to"

# --------------------------- AI provider generic ---------------------------
DEFAULT_TEMPERATURE: float = 0.7
# HTTP 超时 (秒)
AI_API_TIMEOUT_SECONDS: float = 60.0
EMBEDDING_API_TIMEOUT_SECONDS: float = 30.0

OPENAI_API_KEY_ENV: str = "OPENAI_API_KEY"
GOOGLE_API_KEY_ENV: str = "GOOGLE_API_KEY"

# ------------------------- Provider endpoint map --------------------------
DEFAULT_AI_CONFIGS: dict[str, dict[str, str]] = {
    "openai": {
        "api_url": "https://api.openai.com/v1/chat/completions",
        "embedding_url": "https://api.openai.com/v1/embeddings",
        "model_name": "gpt-4o-mini",
        "embedding_model": "text-embedding-3-small",
    },
    "gemini": {
        "api_url": "https://generativelanguage.googleapis.com/v1beta/models",
        "embedding_url": "https://generativelanguage.googleapis.com/v1beta/models",
        "model_name": "gemini-1.5-flash",
        "embedding_model": "text-embedding-004",
    },
}

SUPPORTED_PROVIDERS: tuple[str, ...] = tuple(DEFAULT_AI_CONFIGS)
