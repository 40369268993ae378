"""Prompt sanitization for the generative reasoning service.

Field names and sample values come straight from the source file, so they
are scrubbed before being interpolated into a prompt.
"""

import json
import re
from typing import Any

from .logging import get_logger

logger = get_logger(__name__)

_INJECTION_PATTERNS = [
    re.compile(r"(?i)(ignore|forget|disregard)\s+(previous|above|all)\s+instructions?"),
    re.compile(r"(?i)\b(system|assistant|user)\s*:"),
    re.compile(r"(?i)new\s+instructions?"),
]


class PromptSanitizationError(Exception):
    """Raised when prompt sanitization fails."""

    pass


def sanitize_string_for_prompt(text: str, max_length: int = 2000) -> str:
    """Truncate, drop control characters and defuse instruction-like phrases.

    Args:
        text: String to sanitize
        max_length: Maximum length kept

    Returns:
        Sanitized string safe for prompt inclusion
    """
    text = str(text)
    if len(text) > max_length:
        logger.warning(f"String truncated from {len(text)} to {max_length} characters")
        text = text[:max_length]

    sanitized = "".join(c for c in text if c.isprintable() or c in "\n\t")
    for pattern in _INJECTION_PATTERNS:
        sanitized = pattern.sub(lambda m: f"[sanitized: {m.group(0)}]", sanitized)
    return sanitized


def sanitize_column_name(name: str) -> str:
    """Sanitize a field name (printable characters only, at most 200)."""
    sanitized = "".join(c for c in str(name) if c.isprintable())
    if len(sanitized) > 200:
        logger.warning(f"Column name truncated from {len(sanitized)} to 200 characters")
        sanitized = sanitized[:200]
    return sanitized


def sanitize_json_for_prompt(data: Any, max_string_length: int = 500) -> str:
    """Sanitize every string in a nested structure and dump it as JSON.

    Raises:
        PromptSanitizationError: If the data cannot be serialized
    """

    def _clean(value: Any) -> Any:
        if isinstance(value, str):
            return sanitize_string_for_prompt(value, max_length=max_string_length)
        if isinstance(value, dict):
            return {sanitize_column_name(k): _clean(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [_clean(item) for item in value]
        if isinstance(value, (int, float, bool)) or value is None:
            return value
        return sanitize_string_for_prompt(str(value), max_length=max_string_length)

    try:
        return json.dumps(_clean(data), indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise PromptSanitizationError(f"Failed to sanitize data for prompt: {e}") from e
