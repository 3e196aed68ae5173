"""Helpers for reading request bodies and building JSON responses."""

from __future__ import annotations

import json
import math
from typing import Any, Optional


def _member(obj: Any, key: str) -> Any:
    if not isinstance(obj, dict):
        return None
    return obj.get(key)


def get_string(obj: Any, key: str, max_len: Optional[int] = None) -> Optional[str]:
    """Return the string under key, cut to max_len characters, or None."""
    value = _member(obj, key)
    if not isinstance(value, str):
        return None
    return value if max_len is None else value[:max_len]


def get_int64(obj: Any, key: str) -> Optional[int]:
    """Return the number under key truncated towards zero, or None."""
    value = _member(obj, key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return math.trunc(value)
    return value


def error_body(message: str) -> dict:
    """Build the standard error object."""
    return {"error": message}


def to_json(obj: Any) -> str:
    """Serialise without whitespace."""
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)