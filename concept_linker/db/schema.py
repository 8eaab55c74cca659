MAIN_DB_SCHEMA = """
-- 元数据表
CREATE TABLE IF NOT EXISTS metadata (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT UNIQUE NOT NULL,
    value TEXT NOT NULL
);

-- Concept 表: 由 CRUD 层维护，核心只读取 id/title/description/content/status
CREATE TABLE IF NOT EXISTS concept (
    id          TEXT PRIMARY KEY,
    title       TEXT NOT NULL,
    description TEXT DEFAULT '',
    content     TEXT NOT NULL,
    status      TEXT NOT NULL DEFAULT 'active',  -- active / trash
    created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_concept_status ON concept(status);

-- LinkName 表: 正向/反向链接名称对，只做逻辑删除
CREATE TABLE IF NOT EXISTS link_name (
    id           TEXT PRIMARY KEY,
    forward_name TEXT UNIQUE NOT NULL,
    reverse_name TEXT NOT NULL,
    is_symmetric INTEGER NOT NULL DEFAULT 0,
    is_default   INTEGER NOT NULL DEFAULT 0,
    is_deleted   INTEGER NOT NULL DEFAULT 0,
    created_at   TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Link 表: (source_id, target_id) 唯一
CREATE TABLE IF NOT EXISTS link (
    id           TEXT PRIMARY KEY,
    source_id    TEXT NOT NULL REFERENCES concept(id) ON DELETE CASCADE,
    target_id    TEXT NOT NULL REFERENCES concept(id) ON DELETE CASCADE,
    link_name_id TEXT NOT NULL REFERENCES link_name(id) ON DELETE RESTRICT,
    notes        TEXT,
    created_at   TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(source_id, target_id)
);
CREATE INDEX IF NOT EXISTS idx_link_source ON link(source_id);
CREATE INDEX IF NOT EXISTS idx_link_target ON link(target_id);

-- ConceptEmbedding 表: 每个概念一行，model 记录生成向量的嵌入模型
CREATE TABLE IF NOT EXISTS concept_embedding (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    concept_id TEXT UNIQUE NOT NULL REFERENCES concept(id) ON DELETE CASCADE,
    embedding  BLOB NOT NULL,  -- JSON 数组 (旧版本为 float32 字节)
    model      TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_concept_embedding_model ON concept_embedding(model);

-- LLMCache 表: 语义缓存，query_embedding 不设唯一约束
CREATE TABLE IF NOT EXISTS llm_cache (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    query_embedding BLOB NOT NULL,
    query_text      TEXT NOT NULL,
    response        TEXT NOT NULL,
    provider        TEXT NOT NULL,
    model           TEXT NOT NULL,
    created_at      TEXT NOT NULL,
    last_used_at    TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_llm_cache_provider_model ON llm_cache(provider, model);
CREATE INDEX IF NOT EXISTS idx_llm_cache_last_used ON llm_cache(last_used_at);

INSERT OR IGNORE INTO metadata (key, value) VALUES ('schema_version', '1.0');
"""
