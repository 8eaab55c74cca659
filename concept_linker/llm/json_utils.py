"""Utilities for robustly extracting JSON from LLM responses."""

from __future__ import annotations

import json
import re
from typing import Any

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def _strip_code_fences(text: str) -> str:
    """Remove surrounding ```...``` fences (with or without 'json') if present."""
    t = text.strip()
    if t.startswith("```") and t.endswith("```"):
        t = re.sub(r"^```[A-Za-z0-9_-]*\s*", "", t, flags=re.DOTALL)
        t = re.sub(r"\s*```$", "", t, flags=re.DOTALL)
    return t.strip()


def extract_json_object(text: str) -> dict[str, Any] | None:
    """
    Extract and parse the first JSON object from an LLM response.
    - Handles code fences and leading/trailing prose.
    - Returns None when no object can be parsed.
    """
    if not text:
        return None
    t = _strip_code_fences(text)

    try:
        data = json.loads(t)
    except ValueError:
        m = _JSON_OBJECT.search(t)
        if not m:
            return None
        try:
            data = json.loads(m.group(0))
        except ValueError:
            return None
    return data if isinstance(data, dict) else None
