"""Exception taxonomy for the concept-linker core.

缺失源概念属于软错误 (返回空结果)，配置错误与 provider 错误向调用方传播。
"""
from __future__ import annotations


class ConceptLinkerError(Exception):
    """Base exception for all concept-linker errors."""


class ConceptNotFoundError(ConceptLinkerError):
    """Requested concept does not exist in the store."""

    def __init__(self, concept_id: str):
        super().__init__(f"Concept {concept_id} not found")
        self.concept_id = concept_id


class ConfigInvalidError(ConceptLinkerError):
    """
    Prompt configuration is missing or failed to load.

    Raised before any prompt is built so a misconfigured pipeline never
    reaches the provider.
    """


class LLMProviderError(ConceptLinkerError):
    """
    Error communicating with an LLM provider.

    Raised when:
    - Provider is unreachable or the request times out
    - Provider returns an error status (auth, rate limit, 5xx)
    - API key for the provider is not configured
    """

    def __init__(self, message: str, provider: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class MalformedResponseError(ConceptLinkerError):
    """Provider answered, but the payload does not have the expected shape."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


__all__ = [
    "ConceptLinkerError",
    "ConceptNotFoundError",
    "ConfigInvalidError",
    "LLMProviderError",
    "MalformedResponseError",
]
