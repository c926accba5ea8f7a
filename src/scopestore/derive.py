"""Derived-state memoization.

A derived view is recomputed only when the record's base state is a
different object from the one it was last computed from. Mutations
replace the base state object and clear the cache explicitly, so a
derived view is never served for a state it was not computed from.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Mapping
from typing import Any

from scopestore._utils import merge_state
from scopestore.operations import ErrorContext
from scopestore.scope import InstanceRecord

_logger = logging.getLogger(__name__)

# Strong references to fire-and-forget error callbacks until they finish.
_pending_callbacks: set[asyncio.Task[Any]] = set()


def invalidate_derived(record: InstanceRecord) -> None:
    record.last_derived_base_state = None
    record.cached_derived_state = None


def _dispatch_error(
    on_error: Callable[[BaseException, ErrorContext], Any],
    error: BaseException,
    context: ErrorContext,
) -> None:
    """Notify ``on_error`` without waiting for it.

    Reads are synchronous, so an async callback is scheduled on the
    running loop. With no loop running it cannot be driven and is
    dropped.
    """
    result = on_error(error, context)
    if not inspect.isawaitable(result):
        return

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        _logger.warning("on_error returned an awaitable outside an event loop; dropping it")
        if inspect.iscoroutine(result):
            result.close()
        return

    task = loop.create_task(_await(result))
    _pending_callbacks.add(task)
    task.add_done_callback(_pending_callbacks.discard)


async def _await(awaitable: Any) -> None:
    try:
        await awaitable
    except Exception:
        _logger.warning("on_error callback failed", exc_info=True)


def compute_derived(
    base_state: Any,
    record: InstanceRecord,
    *,
    derive: Callable[[Any], Mapping[str, Any]] | None,
    on_error: Callable[[BaseException, ErrorContext], Any] | None = None,
    debug: bool = False,
    label: str = "",
) -> Any:
    """Return *base_state* merged with its (possibly cached) derived view.

    A failing derive function never propagates: ``on_error`` is
    notified and the base state is returned without derived keys.
    """
    if derive is None:
        return base_state

    if base_state is record.last_derived_base_state and record.cached_derived_state is not None:
        return merge_state(base_state, record.cached_derived_state)

    try:
        derived = dict(derive(base_state))
    except Exception as exc:
        if on_error is not None:
            _dispatch_error(on_error, exc, ErrorContext(method="derive", state=base_state))
        if debug:
            _logger.warning("[scopestore:%s] Error in derive function: %s", label, exc)
        return base_state

    record.last_derived_base_state = base_state
    record.cached_derived_state = derived
    return merge_state(base_state, derived)
