"""AI provider HTTP helpers (请求构造、响应解析与 HTTP 调用)."""
from __future__ import annotations

import time
from typing import Dict, List, Tuple

import requests

from concept_linker.config import AI_API_TIMEOUT_SECONDS, DEFAULT_AI_CONFIGS
from concept_linker.errors import LLMProviderError, MalformedResponseError
from concept_linker.utils.logger import get_logger

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# 构建请求
# ---------------------------------------------------------------------------


def build_completion_request(
    ai_provider: str,
    model_name: str,
    api_key: str,
    prompt: str,
    system_prompt: str | None = None,
    temperature: float = 0.7,
    max_tokens: int | None = None,
    json_mode: bool = False,
) -> Tuple[Dict, Dict, str]:
    """根据 provider 构造 completion 请求，返回 (data, headers, api_url)。"""
    if ai_provider == "openai":
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"}
        api_url = DEFAULT_AI_CONFIGS["openai"]["api_url"]
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        data: Dict = {
            "model": model_name,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens:
            data["max_tokens"] = max_tokens
        if json_mode:
            data["response_format"] = {"type": "json_object"}
        return data, headers, api_url

    if ai_provider == "gemini":
        headers = {"Content-Type": "application/json", "x-goog-api-key": api_key}
        api_url = f"{DEFAULT_AI_CONFIGS['gemini']['api_url']}/{model_name}:generateContent"
        generation_config: Dict = {"temperature": temperature}
        if max_tokens:
            generation_config["maxOutputTokens"] = max_tokens
        if json_mode:
            generation_config["responseMimeType"] = "application/json"
        data = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }
        if system_prompt:
            data["systemInstruction"] = {"role": "system", "parts": [{"text": system_prompt}]}
        return data, headers, api_url

    raise ValueError(f"Unsupported ai_provider: {ai_provider}")


def build_embedding_request(
    ai_provider: str,
    embedding_model: str,
    api_key: str,
    text: str,
) -> Tuple[Dict, Dict, str]:
    """构造嵌入请求，返回 (data, headers, api_url)。"""
    if ai_provider == "openai":
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"}
        api_url = DEFAULT_AI_CONFIGS["openai"]["embedding_url"]
        return {"input": text, "model": embedding_model}, headers, api_url

    if ai_provider == "gemini":
        headers = {"Content-Type": "application/json", "x-goog-api-key": api_key}
        api_url = f"{DEFAULT_AI_CONFIGS['gemini']['embedding_url']}/{embedding_model}:embedContent"
        data = {
            "model": f"models/{embedding_model}",
            "content": {"parts": [{"text": text}]},
        }
        return data, headers, api_url

    raise ValueError(f"Unsupported ai_provider: {ai_provider}")


# ---------------------------------------------------------------------------
# 解析响应
# ---------------------------------------------------------------------------


def parse_completion_response(ai_provider: str, response_data: Dict) -> str:
    """提取模型返回的文本内容。"""
    if not isinstance(response_data, dict):
        raise MalformedResponseError("响应不是 JSON 对象", provider=ai_provider)

    content = ""
    if ai_provider == "openai":
        choices = response_data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
    elif ai_provider == "gemini":
        if response_data.get("candidates"):
            # 处理新旧两种格式的Gemini API响应
            candidate = response_data["candidates"][0]
            content_obj = candidate.get("content", {})

            # 新格式: candidates[0].content.text 直接包含文本
            if "text" in content_obj:
                content = content_obj["text"]
            # 新格式: candidates[0].text 直接包含文本
            elif "text" in candidate:
                content = candidate["text"]
            # 旧格式: candidates[0].content.parts[*].text
            elif "parts" in content_obj:
                content = "".join(p.get("text", "") for p in content_obj.get("parts", []))
    else:
        raise ValueError(f"Unsupported ai_provider: {ai_provider}")

    return content.strip()


def parse_embedding_response(ai_provider: str, response_data: Dict) -> List[float]:
    """提取嵌入向量，格式不正确时抛出 MalformedResponseError。"""
    embedding = None
    if isinstance(response_data, dict):
        if ai_provider == "openai":
            data = response_data.get("data")
            if data and isinstance(data, list):
                embedding = data[0].get("embedding")
        elif ai_provider == "gemini":
            embedding = (response_data.get("embedding") or {}).get("values")
        else:
            raise ValueError(f"Unsupported ai_provider: {ai_provider}")

    if not isinstance(embedding, list) or not embedding:
        raise MalformedResponseError(f"{ai_provider} 嵌入响应格式不正确", provider=ai_provider)
    try:
        return [float(x) for x in embedding]
    except (TypeError, ValueError) as exc:
        raise MalformedResponseError(f"{ai_provider} 嵌入包含非数值: {exc}", provider=ai_provider) from exc


# ---------------------------------------------------------------------------
# HTTP 调用
# ---------------------------------------------------------------------------


def post_json(
    ai_provider: str,
    api_url: str,
    headers: Dict,
    data: Dict,
    timeout: float = AI_API_TIMEOUT_SECONDS,
    max_retries: int = 1,
    initial_delay: float = 1.0,
) -> Dict:
    """POST 请求并返回 JSON。

    仅在网络错误与 5xx 时按指数退避重试；4xx 立即失败。最终失败抛出 LLMProviderError。"""
    delay = initial_delay
    attempts = max(1, max_retries)
    last_exc: Exception | None = None
    for attempt in range(attempts):
        try:
            logger.debug("正在调用 %s (%s/%s)…", ai_provider, attempt + 1, attempts)
            response = requests.post(api_url, headers=headers, json=data, timeout=timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as exc:
            last_exc = exc
            status_code = None
            if getattr(exc, "response", None) is not None:
                status_code = exc.response.status_code
                logger.error(
                    "调用 %s 失败: 状态码 %s, 响应内容: %.500s",
                    ai_provider,
                    status_code,
                    exc.response.text,
                )
                if 400 <= status_code < 500:
                    raise LLMProviderError(
                        f"{ai_provider} 请求被拒绝: {exc}", provider=ai_provider, status_code=status_code
                    ) from exc
            else:
                logger.error("调用 %s 失败 (尝试 %s/%s): %s", ai_provider, attempt + 1, attempts, exc)
            if attempt < attempts - 1:
                time.sleep(delay)
                delay *= 2
            continue

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"{ai_provider} 响应不是合法 JSON: {exc}", provider=ai_provider) from exc

    status = getattr(getattr(last_exc, "response", None), "status_code", None)
    raise LLMProviderError(
        f"调用 {ai_provider} 在 {attempts} 次尝试后仍然失败: {last_exc}",
        provider=ai_provider,
        status_code=status,
    )


__all__ = [
    "build_completion_request",
    "build_embedding_request",
    "parse_completion_response",
    "parse_embedding_response",
    "post_json",
]
