"""Helpers for safe debug logging of store state.

Stores frequently hold user data (session ids, tokens, profile
fields). Debug log lines pass state through :func:`summarize_state`
so configured keys are masked and large values stay readable.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel


def summarize_state(
    value: Any,
    *,
    sensitive_keys: frozenset[str] = frozenset(),
    max_string: int = 200,
    max_items: int = 50,
    _depth: int = 0,
) -> Any:
    """Return a log-safe copy of *value*.

    Mapping keys are matched against *sensitive_keys* case-insensitively.
    """
    if _depth > 10:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, BaseModel):
        value = value.model_dump()

    kwargs = {"sensitive_keys": sensitive_keys, "max_string": max_string, "max_items": max_items}

    if isinstance(value, Mapping):
        summary: dict[str, Any] = {}
        for index, (k, v) in enumerate(value.items()):
            if index >= max_items:
                summary["…"] = f"<{len(value) - max_items} more>"
                break
            key = str(k)
            if key.lower() in sensitive_keys:
                summary[key] = "<redacted>"
            else:
                summary[key] = summarize_state(v, _depth=_depth + 1, **kwargs)
        return summary

    if isinstance(value, (Sequence, set, frozenset)):
        items = list(value)
        summarized = [summarize_state(v, _depth=_depth + 1, **kwargs) for v in items[:max_items]]
        if len(items) > max_items:
            summarized.append(f"<{len(items) - max_items} more>")
        return summarized

    return repr(value)
