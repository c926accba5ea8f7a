"""Store facade: the public operation surface.

Every mutating operation follows the same sequence:

1. resolve the instance record for the current scope
2. compute the candidate state
3. run the middleware pipeline
4. commit (state, initialized flag, derived-cache invalidation)
5. write through to the storage adapter (persistent mode only)
6. fire the lifecycle callback

A failure before step 4 leaves the record untouched. Failures in steps
5 and 6 propagate after the commit is already visible.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from scopestore._redact import summarize_state
from scopestore._utils import maybe_await, merge_state, resolve_initial
from scopestore.adapters import write_through
from scopestore.batch import BatchApi, run_batch_callback
from scopestore.config import StorageMode, StoreConfig
from scopestore.derive import compute_derived, invalidate_derived
from scopestore.middleware import apply_middleware
from scopestore.operations import OperationKind
from scopestore.scope import InstanceRecord, PersistentScope, RequestScope

_logger = logging.getLogger(__name__)

R = TypeVar("R")

_COMMIT_VERBS: dict[OperationKind, str] = {
    OperationKind.INITIALIZE: "Initialized",
    OperationKind.UPDATE: "Updated",
    OperationKind.SET: "Set",
    OperationKind.PATCH: "Patched",
    OperationKind.RESET: "Reset",
    OperationKind.BATCH: "Batch updated",
}


class ServerStore:
    """State container bound to one configuration.

    Usage::

        counter = create_store(StoreConfig(initial={"count": 0}))

        with request_scope():
            await counter.initialize({"count": 1})
            await counter.update(lambda s: {**s, "count": s["count"] + 1})
            counter.read()  # {"count": 2}

    Stores never share records: two stores built from equal
    configurations are fully independent.
    """

    def __init__(self, config: StoreConfig) -> None:
        self._config = config
        self._initial = lambda: resolve_initial(config.initial)
        self._scope: RequestScope | PersistentScope
        if config.storage is StorageMode.PERSISTENT:
            self._scope = PersistentScope(self._initial, config.adapter)
        else:
            self._scope = RequestScope(config.memoize, self._initial)

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def storage(self) -> StorageMode:
        return self._config.storage

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _record_for_read(self) -> InstanceRecord:
        record = self._scope.peek()
        if self._config.debug and isinstance(self._scope, PersistentScope) and not self._scope.seeded:
            _logger.warning(
                "[scopestore:%s] Reading before the storage adapter seeded the store",
                self._config.label,
            )
        return record

    async def _commit(
        self,
        record: InstanceRecord,
        kind: OperationKind,
        previous_state: Any,
        candidate: Any,
        *,
        mark_initialized: bool = False,
    ) -> Any:
        final_state = await apply_middleware(self._config.middleware, kind, previous_state, candidate)
        await self._store(record, kind, final_state, mark_initialized=mark_initialized)
        return final_state

    async def _store(
        self,
        record: InstanceRecord,
        kind: OperationKind,
        final_state: Any,
        *,
        mark_initialized: bool = False,
    ) -> None:
        record.state = final_state
        if mark_initialized:
            record.initialized = True
        invalidate_derived(record)

        await write_through(self._config.adapter, self._config.storage, final_state)

        if self._config.debug:
            _logger.info(
                "[scopestore:%s] %s: %s",
                self._config.label,
                _COMMIT_VERBS[kind],
                summarize_state(final_state, sensitive_keys=self._config.redact_keys),
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self) -> Any:
        """Return the base state merged with its derived view.

        Never raises because of the derive function; see ``on_error``.
        """
        record = self._record_for_read()
        if not record.initialized and self._config.debug:
            _logger.warning("[scopestore:%s] Reading uninitialized store", self._config.label)
        return compute_derived(
            record.state,
            record,
            derive=self._config.derive,
            on_error=self._config.on_error,
            debug=self._config.debug,
            label=self._config.label,
        )

    def select(self, selector: Callable[[Any], R]) -> R:
        """Project the current full state through *selector*."""
        return selector(self.read())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def initialize(self, state: Any) -> None:
        record = await self._scope.resolve()
        final_state = await self._commit(
            record, OperationKind.INITIALIZE, record.state, state, mark_initialized=True
        )
        if self._config.on_initialize is not None:
            await maybe_await(self._config.on_initialize(final_state))

    async def update(self, reducer: Callable[[Any], Any]) -> None:
        record = await self._scope.resolve()
        previous_state = record.state
        final_state = await self._commit(record, OperationKind.UPDATE, previous_state, reducer(previous_state))
        if self._config.on_update is not None:
            await maybe_await(self._config.on_update(previous_state, final_state))

    async def set(self, new_state: Any) -> None:
        record = await self._scope.resolve()
        previous_state = record.state
        final_state = await self._commit(
            record, OperationKind.SET, previous_state, new_state, mark_initialized=True
        )
        if self._config.on_update is not None:
            await maybe_await(self._config.on_update(previous_state, final_state))

    async def patch(self, partial: Mapping[str, Any]) -> None:
        record = await self._scope.resolve()
        previous_state = record.state
        final_state = await self._commit(
            record, OperationKind.PATCH, previous_state, merge_state(previous_state, partial)
        )
        if self._config.on_update is not None:
            await maybe_await(self._config.on_update(previous_state, final_state))

    async def reset(self) -> None:
        record = await self._scope.resolve()
        await self._commit(
            record, OperationKind.RESET, record.state, self._initial(), mark_initialized=True
        )
        if self._config.on_reset is not None:
            await maybe_await(self._config.on_reset())

    async def batch(self, callback: Callable[[BatchApi], Any]) -> None:
        """Apply several steps as one operation.

        Steps inside *callback* see each other's results immediately.
        Middleware, persistence and ``on_update`` run once afterwards.
        If the callback or the pipeline fails, the state before the
        batch is restored.
        """
        record = await self._scope.resolve()
        initial_state = record.state
        accumulated = run_batch_callback(record, callback)
        try:
            final_state = await apply_middleware(self._config.middleware, OperationKind.BATCH, initial_state, accumulated)
        except BaseException:
            record.state = initial_state
            raise
        await self._store(record, OperationKind.BATCH, final_state)
        if self._config.on_update is not None:
            await maybe_await(self._config.on_update(initial_state, final_state))


def create_store(config: StoreConfig) -> ServerStore:
    """Create an independent store from *config*."""
    return ServerStore(config)
