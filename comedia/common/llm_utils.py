"""Shared utilities for parsing LLM responses."""

from __future__ import annotations

import json
from typing import Optional, Tuple


def find_json_array_span(raw: str) -> Optional[Tuple[int, int]]:
    """Locate the first top-level ``[...]`` span in free text.

    Brackets inside JSON string literals are ignored. Returns ``(start, end)``
    with ``end`` exclusive, or None if no balanced span exists.
    """
    if not raw:
        return None

    start = raw.find("[")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(raw)):
        ch = raw[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                return start, i + 1

    # Unbalanced: the first '[' is never closed
    return None


def parse_llm_json_array(raw: str) -> Optional[list]:
    """Parse the first JSON array embedded in an LLM response.

    Returns None when the response has no array span at all. Raises
    ``json.JSONDecodeError`` when a span exists but is not valid JSON.
    Code fences around the array need no special handling since only the
    bracketed span is parsed.
    """
    span = find_json_array_span(raw)
    if span is None:
        return None
    start, end = span
    return json.loads(raw[start:end])
