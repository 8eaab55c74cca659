"""YAML configuration loader for content-generation prompts.

读取 config 目录下的 style_guide.yaml / credo.yaml / constraints.yaml / prompts.yaml。
解析失败不会抛出，而是记录下来，在生成内容前由
``validate_config_for_content_generation`` 统一报错。
"""
from __future__ import annotations

import os
import threading
from typing import Dict

import yaml

from concept_linker.config import DEFAULT_CONFIG_DIR_NAME
from concept_linker.errors import ConfigInvalidError
from concept_linker.utils.logger import get_logger

logger = get_logger(__name__)

STYLE_GUIDE_FILE = "style_guide.yaml"
CREDO_FILE = "credo.yaml"
CONSTRAINTS_FILE = "constraints.yaml"
PROMPTS_FILE = "prompts.yaml"

# 影响生成内容的关键配置；prompts.yaml 缺失时使用内置默认提示词
CRITICAL_FILES = (STYLE_GUIDE_FILE, CREDO_FILE, CONSTRAINTS_FILE)


class ConfigLoader:
    def __init__(self, config_dir: str | None = None) -> None:
        self.config_dir = config_dir or os.path.join(os.getcwd(), DEFAULT_CONFIG_DIR_NAME)
        self._documents: Dict[str, Dict] = {}
        self._errors: Dict[str, Exception] = {}
        self.load_configs()

    # ----------------------------------------------------------------- loading
    def _path(self, file_name: str) -> str:
        return os.path.join(self.config_dir, file_name)

    def _load_yaml(self, file_name: str) -> Dict:
        path = self._path(file_name)
        if not os.path.exists(path):
            return {}
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
            if not isinstance(data, dict):
                raise ValueError(f"顶层必须是映射，实际为 {type(data).__name__}")
            return data
        except (yaml.YAMLError, ValueError, OSError) as exc:
            self._errors[file_name] = exc
            if file_name in CRITICAL_FILES:
                logger.error("关键配置 %s 加载失败，内容生成将被拒绝: %s", file_name, exc)
            else:
                logger.warning("%s 加载失败，使用默认提示词: %s", file_name, exc)
            return {}

    def load_configs(self) -> None:
        self._errors.clear()
        for file_name in (*CRITICAL_FILES, PROMPTS_FILE):
            self._documents[file_name] = self._load_yaml(file_name)

    def reload_configs(self) -> None:
        """配置文件修改后重新加载。"""
        self.load_configs()
        logger.info("配置文件已重新加载")

    # --------------------------------------------------------------- accessors
    def get_style_guide(self) -> Dict:
        return self._documents.get(STYLE_GUIDE_FILE, {})

    def get_credo(self) -> Dict:
        return self._documents.get(CREDO_FILE, {})

    def get_constraints(self) -> Dict:
        return self._documents.get(CONSTRAINTS_FILE, {})

    def get_prompts(self) -> Dict:
        return self._documents.get(PROMPTS_FILE, {})

    def get_prompt(self, path: str, default_value: str) -> str:
        """按点号路径读取提示词，如 ``linkProposer.systemPrompt``；缺失或非字符串时返回默认值。"""
        value: object = self.get_prompts()
        for part in path.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default_value
        return value if isinstance(value, str) else default_value

    def get_config_errors(self) -> Dict[str, Exception]:
        return dict(self._errors)

    def is_config_valid(self) -> bool:
        return not any(name in self._errors for name in CRITICAL_FILES)

    def validate_config_for_content_generation(self) -> None:
        """内容生成前的校验：关键配置解析失败或风格指南缺失/为空时抛出 ConfigInvalidError。"""
        critical_errors = {name: err for name, err in self._errors.items() if name in CRITICAL_FILES}
        if critical_errors:
            details = "; ".join(f"{name}: {err}" for name, err in critical_errors.items())
            raise ConfigInvalidError(f"无法生成内容：关键配置文件加载失败。{details}")
        if not self.get_style_guide():
            raise ConfigInvalidError(
                f"无法生成内容：{STYLE_GUIDE_FILE} 缺失或为空 (目录 {self.config_dir})"
            )

    def get_config_status(self) -> Dict[str, Dict]:
        status = {}
        for file_name in CRITICAL_FILES:
            doc = self._documents.get(file_name, {})
            err = self._errors.get(file_name)
            status[file_name] = {
                "loaded": bool(doc),
                "is_empty": not doc,
                "error": str(err) if err else None,
            }
        return status

    def get_system_prompt(self, context: str | None = None) -> str:
        """把风格指南、信条与约束拼接成系统提示词。"""
        sections = [
            ("Writing Style Guide", self.get_style_guide()),
            ("Core Beliefs and Values", self.get_credo()),
            ("Content Constraints and Rules", self.get_constraints()),
        ]
        prompt = ""
        for heading, doc in sections:
            if doc:
                prompt += f"{heading}:\n"
                prompt += yaml.safe_dump(doc, allow_unicode=True, sort_keys=False, indent=2)
                prompt += "\n"
        if context:
            prompt += f"Context: {context}\n\n"
        return prompt


# Singleton instance
_config_loader: ConfigLoader | None = None
_loader_lock = threading.Lock()


def get_config_loader() -> ConfigLoader:
    global _config_loader
    with _loader_lock:
        if _config_loader is None:
            _config_loader = ConfigLoader()
        return _config_loader


def reset_config_loader() -> None:
    global _config_loader
    with _loader_lock:
        _config_loader = None


__all__ = [
    "ConfigLoader",
    "get_config_loader",
    "reset_config_loader",
]
