"""JSON extraction from LLM output."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

from trusteye.logging import get_logger

logger = get_logger(__name__)


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Extract one JSON object from model output, as leniently as is safe.

    Strategies, strictest first:
        1. A fenced markdown block (```json ... ``` or ``` ... ```).
        2. The whole text, when it starts with ``{`` and ends with ``}``.
        3. The outermost ``{ ... }`` span found in the text.

    Returns ``None`` instead of raising when nothing parses.
    """

    if not text:
        return None

    cleaned = text.strip()

    m = re.search(r"```json\s*\n?(.*?)\n?```", cleaned, re.DOTALL | re.IGNORECASE)
    if not m:
        m = re.search(r"```\s*\n?(.*?)\n?```", cleaned, re.DOTALL)
    if m:
        inner = m.group(1).strip()
        if inner.startswith("{") and inner.endswith("}"):
            try:
                return _as_object(json.loads(inner))
            except json.JSONDecodeError:
                logger.debug("extract_json_object: fenced JSON parse failed")

    if cleaned.startswith("{") and cleaned.endswith("}"):
        try:
            return _as_object(json.loads(cleaned))
        except json.JSONDecodeError:
            logger.debug("extract_json_object: whole-text JSON parse failed")

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if 0 <= start < end:
        try:
            return _as_object(json.loads(cleaned[start : end + 1]))
        except json.JSONDecodeError:
            logger.debug("extract_json_object: span JSON parse failed")

    return None


def _as_object(value: Any) -> Optional[Dict[str, Any]]:
    return value if isinstance(value, dict) else None
