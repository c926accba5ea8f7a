"""Batch coordinator: several steps, one commit."""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping
from typing import Any

from scopestore._utils import merge_state
from scopestore.exceptions import StoreUsageError
from scopestore.scope import InstanceRecord


class BatchApi:
    """Restricted mutation surface handed to a ``batch`` callback.

    Steps write straight to the record, so each step sees the result of
    the previous one. Middleware, persistence and callbacks run once,
    after the callback returns.
    """

    __slots__ = ("_record",)

    def __init__(self, record: InstanceRecord) -> None:
        self._record = record

    @property
    def state(self) -> Any:
        """Current accumulated state."""
        return self._record.state

    def update(self, reducer: Callable[[Any], Any]) -> None:
        self._record.state = reducer(self._record.state)

    def set(self, new_state: Any) -> None:
        self._record.state = new_state

    def patch(self, partial: Mapping[str, Any]) -> None:
        self._record.state = merge_state(self._record.state, partial)


def run_batch_callback(record: InstanceRecord, callback: Callable[[BatchApi], Any]) -> Any:
    """Run *callback* against *record* and return the accumulated state.

    On failure the record is put back to its state before the callback.
    """
    initial_state = record.state
    try:
        result = callback(BatchApi(record))
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise StoreUsageError("batch callback must be synchronous; it returned an awaitable")
    except BaseException:
        record.state = initial_state
        raise
    return record.state
