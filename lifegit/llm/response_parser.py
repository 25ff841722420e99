"""Response parsing utilities for LLM output.

Extracts code blocks and the JSON payload from raw completion text.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional


def extract_code_blocks(text: str, language: Optional[str] = None) -> list[str]:
    """Extract fenced code blocks from LLM output.

    Args:
        text: Raw LLM response.
        language: If specified, only return blocks with this language tag.

    Returns:
        List of code block contents (without fences).
    """
    if language:
        pattern = rf"```{re.escape(language)}\s*\n(.*?)```"
    else:
        pattern = r"```(?:\w+)?\s*\n(.*?)```"

    matches = re.findall(pattern, text, re.DOTALL)
    return [m.strip() for m in matches]


def strip_json_envelope(text: str) -> str:
    """Reduce a completion to the text of its outermost JSON object.

    Drops surrounding code fences, then any prose before the first ``{``
    and after the last ``}``. Text without braces is returned stripped.
    """
    cleaned = text.strip()

    blocks = extract_code_blocks(cleaned, "json") or extract_code_blocks(cleaned)
    if blocks:
        cleaned = blocks[0]
    else:
        # Unterminated or single-line fences
        cleaned = re.sub(r"^```(?:json)?", "", cleaned).strip()
        cleaned = re.sub(r"```$", "", cleaned).strip()

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        cleaned = cleaned[start:end + 1]
    return cleaned.strip()


def extract_json_block(text: str) -> Optional[dict[str, Any]]:
    """Extract and parse the JSON object in LLM output, or None."""
    try:
        data = json.loads(strip_json_envelope(text))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None
