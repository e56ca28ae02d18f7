"""
LLM 응답 파싱 유틸리티

Gemini sometimes wraps JSON answers in markdown fences even when a JSON mime
type is requested; these helpers strip them before parsing.
"""
import json
from typing import Any


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json ... ``` (or bare ```) fence."""
    text = (text or "").strip()
    if not text.startswith("```"):
        return text
    parts = text.split("```")
    if len(parts) >= 3:
        inner = parts[1]
        if inner.startswith("json"):
            inner = inner[4:]
        return inner.strip()
    # unterminated fence
    text = text.split("\n", 1)[1] if "\n" in text else text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_llm_json(text: str) -> Any:
    """Parse an LLM JSON answer. Raises ValueError (json.JSONDecodeError) on bad input."""
    return json.loads(strip_code_fence(text))
