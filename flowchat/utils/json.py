"""JSON helpers for the TEXT columns that hold lists (tags, memory ids, embeddings)."""

import json
from typing import Any


def parse_json_list(raw: str | list | None) -> list[Any]:
    """Parse a JSON array column, returning [] on failure or empty.

    Returns []: None, empty string, invalid JSON, non-list JSON.
    Lists are returned as-is without re-parsing.
    """
    if raw is None:
        return []
    if isinstance(raw, list):
        return raw
    if isinstance(raw, str):
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except (ValueError, TypeError):
            return []
        if isinstance(parsed, list):
            return parsed
    return []


def parse_json_or_none(raw: str | dict | list | None) -> dict | list | None:
    """Parse a JSON string or return structured value as-is, None on failure.

    For nullable columns (embedding) where "absent" must stay distinct from "empty".
    """
    if raw is None:
        return None
    if isinstance(raw, (dict, list)):
        return raw
    if isinstance(raw, str):
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (ValueError, TypeError):
            return None
    return None


def dump_json(value: Any) -> str:
    """Serialize for storage. Non-ASCII text is kept readable."""
    return json.dumps(value, ensure_ascii=False)
