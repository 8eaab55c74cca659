"""Unified LLM client (OpenAI / Gemini) over plain HTTP."""
from __future__ import annotations

import os
import threading
from typing import Dict, List

from concept_linker.config import (
    AI_API_TIMEOUT_SECONDS,
    DEFAULT_AI_CONFIGS,
    DEFAULT_TEMPERATURE,
    EMBEDDING_API_TIMEOUT_SECONDS,
    GOOGLE_API_KEY_ENV,
    MAX_CHARS_FOR_EMBEDDING,
    OPENAI_API_KEY_ENV,
    SUPPORTED_PROVIDERS,
)
from concept_linker.errors import LLMProviderError, MalformedResponseError
from concept_linker.llm.json_utils import extract_json_object
from concept_linker.llm.provider import (
    build_completion_request,
    build_embedding_request,
    parse_completion_response,
    parse_embedding_response,
    post_json,
)
from concept_linker.utils.logger import get_logger

logger = get_logger(__name__)

_API_KEY_ENVS = {"openai": OPENAI_API_KEY_ENV, "gemini": GOOGLE_API_KEY_ENV}


def default_provider() -> str:
    """Gemini 优先，其次 OpenAI；两者都未配置时报错。"""
    if os.environ.get(GOOGLE_API_KEY_ENV):
        return "gemini"
    if os.environ.get(OPENAI_API_KEY_ENV):
        return "openai"
    raise LLMProviderError(f"未找到 LLM API Key，请设置 {OPENAI_API_KEY_ENV} 或 {GOOGLE_API_KEY_ENV}")


def default_embedding_model(provider: str) -> str:
    return DEFAULT_AI_CONFIGS[provider]["embedding_model"]


class LLMClient:
    """Completion, JSON completion and embedding calls against one provider.

    API keys come from the environment unless passed explicitly. The client
    keeps no per-request state, so one instance can be shared across threads.
    """

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        temperature: float = DEFAULT_TEMPERATURE,
        api_key: str | None = None,
        embedding_model: str | None = None,
        max_retries: int = 1,
    ) -> None:
        provider = provider or default_provider()
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported ai_provider: {provider}")
        api_key = api_key or os.environ.get(_API_KEY_ENVS[provider], "")
        if not api_key:
            raise LLMProviderError(f"{_API_KEY_ENVS[provider]} 未设置，无法使用 {provider}", provider=provider)

        self._provider = provider
        self._api_key = api_key
        self._model = model or DEFAULT_AI_CONFIGS[provider]["model_name"]
        self._embedding_model = embedding_model or default_embedding_model(provider)
        self._temperature = temperature
        self._max_retries = max_retries

    # -------------------------------------------------------------- accessors
    def get_provider(self) -> str:
        return self._provider

    def get_model(self) -> str:
        return self._model

    def get_embedding_model(self) -> str:
        return self._embedding_model

    def get_temperature(self) -> float:
        return self._temperature

    def set_model(self, model: str) -> None:
        self._model = model

    def set_temperature(self, temperature: float) -> None:
        self._temperature = temperature

    # ------------------------------------------------------------------ calls
    def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        data, headers, url = build_completion_request(
            self._provider,
            self._model,
            self._api_key,
            prompt,
            system_prompt=system_prompt,
            temperature=self._temperature if temperature is None else temperature,
            max_tokens=max_tokens,
        )
        response_json = post_json(
            self._provider, url, headers, data, timeout=AI_API_TIMEOUT_SECONDS, max_retries=self._max_retries
        )
        return parse_completion_response(self._provider, response_json)

    def complete_json(self, prompt: str, system_prompt: str | None = None) -> Dict:
        """JSON 模式 completion；返回内容无法解析为 JSON 对象时抛出 MalformedResponseError。"""
        data, headers, url = build_completion_request(
            self._provider,
            self._model,
            self._api_key,
            prompt,
            system_prompt=system_prompt,
            temperature=self._temperature,
            json_mode=True,
        )
        response_json = post_json(
            self._provider, url, headers, data, timeout=AI_API_TIMEOUT_SECONDS, max_retries=self._max_retries
        )
        content = parse_completion_response(self._provider, response_json)
        parsed = extract_json_object(content)
        if parsed is None:
            raise MalformedResponseError(
                f"{self._provider} 返回的内容不是 JSON 对象: {content[:200]!r}", provider=self._provider
            )
        return parsed

    def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise ValueError("输入文本为空，无法生成嵌入")
        data, headers, url = build_embedding_request(
            self._provider,
            self._embedding_model,
            self._api_key,
            text[:MAX_CHARS_FOR_EMBEDDING],
        )
        response_json = post_json(
            self._provider, url, headers, data, timeout=EMBEDDING_API_TIMEOUT_SECONDS, max_retries=self._max_retries
        )
        return parse_embedding_response(self._provider, response_json)


# Singleton instance
_llm_client: LLMClient | None = None
_client_lock = threading.Lock()


def get_llm_client() -> LLMClient:
    global _llm_client
    with _client_lock:
        if _llm_client is None:
            _llm_client = LLMClient()
        return _llm_client


def reset_llm_client() -> None:
    """Reset the singleton (useful for testing)."""
    global _llm_client
    with _client_lock:
        _llm_client = None


__all__ = [
    "LLMClient",
    "default_provider",
    "default_embedding_model",
    "get_llm_client",
    "reset_llm_client",
]
