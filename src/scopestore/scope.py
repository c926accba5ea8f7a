"""Scope resolution: which instance record an operation works on.

Two providers exist:

* :class:`RequestScope` hands out one record per logical request. The
  request boundary itself belongs to the host; the default primitive,
  :func:`request_cache`, keys records on the innermost
  :func:`request_scope` block via a context variable.
* :class:`PersistentScope` holds a single process-wide record, seeded
  lazily (optionally from a storage adapter) exactly once.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterator
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from scopestore._utils import maybe_await

if TYPE_CHECKING:
    from scopestore.adapters import StorageAdapter

_logger = logging.getLogger(__name__)

T = TypeVar("T")

_request_values: ContextVar[dict[object, Any] | None] = ContextVar("scopestore_request_values", default=None)


@contextlib.contextmanager
def request_scope() -> Iterator[None]:
    """Run the enclosed block as one logical request.

    Every record memoized through :func:`request_cache` inside the block
    is discarded when the block exits. Tasks created inside the block
    copy the current context and therefore share the same request.
    """
    token = _request_values.set({})
    try:
        yield
    finally:
        _request_values.reset(token)


def in_request_scope() -> bool:
    """Return whether a :func:`request_scope` block is active in this context."""
    return _request_values.get() is not None


def request_cache(factory: Callable[[], T]) -> Callable[[], T]:
    """Memoize *factory* once per logical request.

    Outside of any :func:`request_scope` block there is no request to
    attach the value to, so the factory runs on every call.
    """
    key = object()

    def scoped() -> T:
        values = _request_values.get()
        if values is None:
            _logger.debug("No active request scope; building an unshared value")
            return factory()
        try:
            return values[key]
        except KeyError:
            value = factory()
            values[key] = value
            return value

    return scoped


@dataclass
class InstanceRecord:
    """Mutable container for one scope's state.

    ``cached_derived_state`` may only be reused while ``state`` is the
    very object stored in ``last_derived_base_state``.
    """

    state: Any
    initialized: bool = False
    last_derived_base_state: Any = None
    cached_derived_state: dict[str, Any] | None = None


class RequestScope:
    """Per-request records built through the host's memoize primitive."""

    def __init__(
        self,
        memoize: Callable[[Callable[[], InstanceRecord]], Callable[[], InstanceRecord]],
        seed: Callable[[], Any],
    ) -> None:
        self._seed = seed
        self._scoped_record = memoize(self._new_record)

    def _new_record(self) -> InstanceRecord:
        return InstanceRecord(state=self._seed())

    async def resolve(self) -> InstanceRecord:
        return self._scoped_record()

    def peek(self) -> InstanceRecord:
        return self._scoped_record()


class PersistentScope:
    """Process-wide record, created on first access.

    Concurrent first accesses share one in-flight seed task, so the
    adapter is read at most once. A failed seed caches nothing and the
    next access retries.
    """

    def __init__(self, seed: Callable[[], Any], adapter: StorageAdapter | None = None) -> None:
        self._seed = seed
        self._adapter = adapter
        self._record: InstanceRecord | None = None
        self._placeholder: InstanceRecord | None = None
        self._seeding: asyncio.Task[InstanceRecord] | None = None

    @property
    def record(self) -> InstanceRecord | None:
        return self._record

    @property
    def seeded(self) -> bool:
        return self._record is not None

    def _start_seed(self, loop: asyncio.AbstractEventLoop) -> asyncio.Task[InstanceRecord]:
        if self._seeding is None:
            self._seeding = loop.create_task(self._seed_record())
            self._seeding.add_done_callback(_log_seed_failure)
        return self._seeding

    async def resolve(self) -> InstanceRecord:
        if self._record is not None:
            return self._record
        seeding = self._start_seed(asyncio.get_running_loop())
        # Shielded: a cancelled caller must not cancel the seed other callers wait on.
        return await asyncio.shield(seeding)

    async def _seed_record(self) -> InstanceRecord:
        if self._record is not None:
            return self._record
        try:
            stored: Any = None
            if self._adapter is not None:
                _logger.debug("Seeding persistent record from %s", type(self._adapter).__name__)
                stored = await maybe_await(self._adapter.read())

            if stored is not None:
                record = InstanceRecord(state=stored, initialized=True)
            else:
                record = InstanceRecord(state=self._seed())
        except BaseException:
            self._seeding = None
            raise

        self._record = record
        self._placeholder = None
        return record

    def peek(self) -> InstanceRecord:
        """Return a record without awaiting.

        Without an adapter the record is created synchronously. With
        one, the shared seed task is started (when a loop is running)
        and a placeholder built from the initial state is served until
        the seed lands. The placeholder is reused across reads so its
        derived cache survives.
        """
        if self._record is not None:
            return self._record
        if self._adapter is None:
            self._record = InstanceRecord(state=self._seed())
            return self._record

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _logger.debug("No running loop; persistent seed deferred to the first awaited operation")
        else:
            self._start_seed(loop)

        if self._placeholder is None:
            self._placeholder = InstanceRecord(state=self._seed())
        return self._placeholder


def _log_seed_failure(task: asyncio.Task[InstanceRecord]) -> None:
    # Seeds started by a read have no awaiting caller; retrieve the error here.
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _logger.debug("Persistent seed failed: %s", exc)
