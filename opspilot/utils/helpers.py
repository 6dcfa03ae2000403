"""Utility functions for OpsPilot."""

import json
import uuid
from typing import Any


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def truncate_string(s: str, max_length: int = 200) -> str:
    """Truncate string to max length with ellipsis."""
    if len(s) <= max_length:
        return s
    return s[:max_length - 3] + "..."


def safe_json_dumps(obj: Any, default: str = "{}") -> str:
    """Serialize to JSON, keeping non-ASCII text readable.

    Returns ``default`` when the object cannot be serialized.
    """
    try:
        return json.dumps(obj, ensure_ascii=False)
    except (TypeError, ValueError):
        return default


def canonical_json(obj: Any, default: str = "{}") -> str:
    """Serialize with sorted keys so equal mappings give equal strings.

    Values that cannot be serialized collapse to ``default``.
    """
    try:
        return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return default
