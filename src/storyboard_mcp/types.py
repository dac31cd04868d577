"""Shared type aliases and helpers for tool parameters."""

from __future__ import annotations

import json
import re
from typing import Annotated, Literal

from pydantic import Field

_SIZE_RE = re.compile(r"^\s*(\d+)\s*[xX]\s*(\d+)\s*$")


def parse_size(size: str) -> tuple[int, int]:
    """Split a ``WIDTHxHEIGHT`` size string into positive integer dimensions.

    Raises:
        ValueError: If the string is malformed or a dimension is not positive.
    """
    match = _SIZE_RE.match(size)
    if match is None:
        raise ValueError(f"Invalid size '{size}'. Expected WIDTHxHEIGHT, e.g. 1024x1024")
    width, height = int(match.group(1)), int(match.group(2))
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid size '{size}'. Dimensions must be positive")
    return width, height


def coerce_json_param(value: str | dict | list | None, expected_type: type) -> dict | list | None:
    """Parse MCP JSON-RPC string params back to dict/list.

    Some MCP hosts serialize structured params as JSON strings; this turns
    them back into the expected container so pydantic can validate them.

    Args:
        value: The parameter value (possibly a JSON string).
        expected_type: Expected Python type (``dict`` or ``list``).

    Returns:
        Parsed value if coercion succeeded, original value otherwise.
    """
    if not isinstance(value, str):
        return value
    try:
        parsed = json.loads(value)
        if isinstance(parsed, expected_type):
            return parsed
    except (json.JSONDecodeError, TypeError):
        pass
    return value

# ── Literal enums ────────────────────────────────────────────────────────────

CacheAction = Literal["stats", "clear"]

# ── Annotated aliases ────────────────────────────────────────────────────────

ProjectId = Annotated[str, Field(min_length=1, description="Project identifier that groups the shots of one run")]
