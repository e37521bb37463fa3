"""Helpers for the JSON-encoded text columns (items, terms, pricing, ...)."""
import json
from typing import Any


def dumps(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value)


def loads(text: str | None, default: Any = None) -> Any:
    """Decode a stored JSON column; anything unreadable becomes ``default``."""
    if text is None or text == "":
        return default
    if not isinstance(text, str):
        return text
    try:
        return json.loads(text)
    except (TypeError, json.JSONDecodeError):
        return default
