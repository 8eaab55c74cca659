import hashlib
import re
import threading
import time

import pytest

from concept_linker.config_loader import ConfigLoader, reset_config_loader
from concept_linker.embeddings.vector_index import reset_vector_index
from concept_linker.llm.client import reset_llm_client
from concept_linker.utils.db import get_db_connection, initialize_database

EMBED_DIM = 64


def bag_of_words_vector(text, dim=EMBED_DIM):
    """确定性的词袋哈希向量：相同文本得到相同向量，无共同词的文本近似正交。"""
    vec = [0.0] * dim
    for token in re.findall(r"\w+", text.lower()):
        bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % dim
        vec[bucket] += 1.0
    return vec


def hashed_vector(text, dim=EMBED_DIM):
    """sha512 派生的向量：任意两段不同文本的向量近似正交。"""
    digest = hashlib.sha512(text.encode("utf-8")).digest()
    return [(b - 127.5) / 127.5 for b in digest[:dim]]


class FakeLLMClient:
    """LLMClient 的测试替身，记录 embed / complete_json 调用次数。"""

    def __init__(self, provider="openai", model="gpt-test", embedding_model="embed-test"):
        self.provider = provider
        self.model = model
        self.embedding_model = embedding_model
        self.vectors = {}
        self.embed_calls = []
        self.json_calls = []
        self.json_response = {"proposals": []}
        self.embed_delay = 0.0
        self.embed_error = None
        self.json_error = None
        # 模拟真实客户端的输入截断与不可比的哈希向量
        self.truncate_at = None
        self.hashed = False
        self._lock = threading.Lock()

    def get_provider(self):
        return self.provider

    def get_model(self):
        return self.model

    def get_embedding_model(self):
        return self.embedding_model

    def get_temperature(self):
        return 0.7

    def embed(self, text):
        with self._lock:
            self.embed_calls.append(text)
        if self.embed_delay:
            time.sleep(self.embed_delay)
        if self.embed_error is not None:
            error = self.embed_error(text) if callable(self.embed_error) else self.embed_error
            if error is not None:
                raise error
        if self.truncate_at is not None:
            text = text[: self.truncate_at]
        if text in self.vectors:
            return list(self.vectors[text])
        if self.hashed:
            return hashed_vector(text)
        return bag_of_words_vector(text)

    def complete_json(self, prompt, system_prompt=None):
        self.json_calls.append((prompt, system_prompt))
        if self.json_error is not None:
            raise self.json_error
        if callable(self.json_response):
            return self.json_response(prompt)
        return self.json_response

    def complete(self, prompt, system_prompt=None, max_tokens=None, temperature=None):
        return ""


@pytest.fixture(autouse=True)
def _reset_singletons():
    reset_vector_index()
    reset_llm_client()
    reset_config_loader()
    yield
    reset_vector_index()
    reset_llm_client()
    reset_config_loader()


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "concepts.db")
    initialize_database(path)
    return path


@pytest.fixture
def fake_llm():
    return FakeLLMClient()


@pytest.fixture
def add_concept(db_path):
    def _add(concept_id, title, content="", status="active", description=""):
        conn = get_db_connection(db_path)
        try:
            conn.execute(
                "INSERT INTO concept (id, title, description, content, status) VALUES (?, ?, ?, ?, ?)",
                (concept_id, title, description, content or title, status),
            )
            conn.commit()
        finally:
            conn.close()
        return concept_id

    return _add


@pytest.fixture
def add_link(db_path):
    def _add(source_id, target_id, forward_name="references"):
        conn = get_db_connection(db_path)
        try:
            conn.execute(
                "INSERT OR IGNORE INTO link_name (id, forward_name, reverse_name) VALUES (?, ?, ?)",
                (f"ln-{forward_name}", forward_name, f"{forward_name} (reverse)"),
            )
            conn.execute(
                """
                INSERT INTO link (id, source_id, target_id, link_name_id) VALUES (?, ?, ?, ?)
                ON CONFLICT(source_id, target_id) DO UPDATE SET link_name_id = excluded.link_name_id
                """,
                (f"{source_id}->{target_id}", source_id, target_id, f"ln-{forward_name}"),
            )
            conn.commit()
        finally:
            conn.close()

    return _add


@pytest.fixture
def config_dir(tmp_path):
    path = tmp_path / "config"
    path.mkdir()
    (path / "style_guide.yaml").write_text(
        "voice:\n  tone: curious\nwriting_style:\n  sentences: short\n", encoding="utf-8"
    )
    return path


@pytest.fixture
def config_loader(config_dir):
    return ConfigLoader(str(config_dir))
