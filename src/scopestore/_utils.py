"""Small helpers shared by the store components."""

from __future__ import annotations

import copy
import inspect
from collections.abc import Mapping
from typing import Any


async def maybe_await(value: Any) -> Any:
    """Await *value* if it is awaitable, otherwise return it as-is.

    Middleware stages, adapter methods and lifecycle callbacks may be
    plain functions or coroutine functions.
    """
    if inspect.isawaitable(value):
        return await value
    return value


def merge_state(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Shallow merge: keys in *overrides* win."""
    return {**base, **overrides}


def resolve_initial(initial: Any) -> Any:
    """Evaluate the configured initial state.

    Factories are called on every evaluation. Static values are
    deep-copied so two records never share mutable containers.
    """
    if callable(initial):
        return initial()
    return copy.deepcopy(initial)
