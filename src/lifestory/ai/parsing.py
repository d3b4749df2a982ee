"""Parsing of JSON replies from the model.

Models often wrap JSON in Markdown code fences or add a sentence around
it. These helpers strip that and raise :class:`ResponseParseError` when
what remains is not the expected JSON shape, so callers can pick their
documented fallback.
"""

from __future__ import annotations

import json
import re
from typing import Any

CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
EMBEDDED_JSON_PATTERN = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")


class ResponseParseError(ValueError):
    """The model reply is not the JSON shape the caller asked for."""


def strip_code_fences(text: str) -> str:
    """Return the content of the first fenced block, or the trimmed text."""
    match = CODE_FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    return text.replace("```", "").strip()


def parse_json(text: str) -> Any:
    """Parse a model reply as JSON after removing code fences.

    Raises:
        ResponseParseError: If no valid JSON can be found.
    """
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        # Fall back to the outermost object/array embedded in prose
        match = EMBEDDED_JSON_PATTERN.search(cleaned)
        if match:
            try:
                return json.loads(match.group(1))
            except json.JSONDecodeError:
                pass
        raise ResponseParseError(f"Invalid JSON in model reply: {e.msg}") from e


def parse_json_array(text: str, expected_length: int | None = None) -> list[Any]:
    """Parse a reply that must be a JSON array.

    Args:
        text: Raw model reply.
        expected_length: When given, the array must have exactly this length.

    Raises:
        ResponseParseError: On invalid JSON, a non-array, or a length mismatch.
    """
    data = parse_json(text)
    if not isinstance(data, list):
        raise ResponseParseError(f"Expected a JSON array, got {type(data).__name__}")
    if expected_length is not None and len(data) != expected_length:
        raise ResponseParseError(f"Expected {expected_length} items, got {len(data)}")
    return data


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse a reply that must be a JSON object.

    Raises:
        ResponseParseError: On invalid JSON or a non-object.
    """
    data = parse_json(text)
    if not isinstance(data, dict):
        raise ResponseParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data
