"""Store configuration for scopestore."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Awaitable, Callable, Mapping, Sequence
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from scopestore.exceptions import StoreConfigError
from scopestore.operations import ErrorContext, Operation
from scopestore.scope import request_cache

if TYPE_CHECKING:
    from scopestore.adapters import StorageAdapter

State = dict[str, Any]
Middleware = Callable[[Operation], State | Awaitable[State]]
DeriveFunction = Callable[[State], Mapping[str, Any]]
Memoizer = Callable[[Callable[[], Any]], Callable[[], Any]]

#: Keys masked in debug log lines unless overridden.
DEFAULT_REDACT_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "secret",
        "token",
        "accesstoken",
        "refreshtoken",
        "apikey",
        "authorization",
        "cookie",
        "session",
    }
)


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


class StorageMode(StrEnum):
    """Lifetime of a store's instance record."""

    REQUEST = "request"
    PERSISTENT = "persistent"


@dataclasses.dataclass(frozen=True)
class StoreConfig:
    """Store configuration.

    Parameters
    ----------
    initial : state or callable
        Initial base state, or a zero-argument factory producing it.
        Factories run every time a record is seeded and on ``reset``.
    storage : StorageMode
        ``"request"`` (default) isolates state per logical request.
        ``"persistent"`` keeps one record for the whole process, shared
        by every request.
    derive : callable or None
        Pure function computing extra keys from the base state. The
        result is memoized until the base state changes.
    middleware : sequence of callables
        Stages applied in order to every mutating operation. Each stage
        receives an :class:`~scopestore.operations.Operation` and returns
        the next state (optionally as an awaitable).
    adapter : StorageAdapter or None
        External persistence. Only consulted in persistent mode.
    on_initialize, on_update, on_reset, on_error : callable or None
        Lifecycle callbacks, sync or async.
    debug : bool
        Log every commit, derive failures and uninitialized reads.
    memoize : callable
        Request-scoping primitive: ``memoize(factory)`` returns a
        function yielding one value per logical request.
    name : str or None
        Label used in log lines. Defaults to the storage mode.
    redact_keys : frozenset of str
        State keys (case-insensitive) masked in debug log lines.
    """

    initial: Any
    storage: StorageMode = StorageMode.REQUEST
    derive: DeriveFunction | None = None
    middleware: Sequence[Middleware] = ()
    adapter: StorageAdapter | None = None
    on_initialize: Callable[[State], Any] | None = None
    on_update: Callable[[State, State], Any] | None = None
    on_reset: Callable[[], Any] | None = None
    on_error: Callable[[BaseException, ErrorContext], Any] | None = None
    debug: bool = False
    memoize: Memoizer = request_cache
    name: str | None = None
    redact_keys: frozenset[str] = DEFAULT_REDACT_KEYS

    def __post_init__(self) -> None:
        try:
            storage = StorageMode(self.storage)
        except ValueError as exc:
            raise StoreConfigError(
                f"Unknown storage mode {self.storage!r}; expected one of "
                f"{', '.join(mode.value for mode in StorageMode)}"
            ) from exc
        object.__setattr__(self, "storage", storage)

        middleware = tuple(self.middleware)
        for stage in middleware:
            if not callable(stage):
                raise StoreConfigError(f"Middleware stage {stage!r} is not callable")
        object.__setattr__(self, "middleware", middleware)

        if self.derive is not None and not callable(self.derive):
            raise StoreConfigError(f"derive must be callable, got {self.derive!r}")
        if not callable(self.memoize):
            raise StoreConfigError(f"memoize must be callable, got {self.memoize!r}")

        if self.adapter is not None:
            for method in ("read", "write"):
                if not callable(getattr(self.adapter, method, None)):
                    raise StoreConfigError(
                        f"Storage adapter {type(self.adapter).__name__} has no callable {method}()"
                    )

        object.__setattr__(self, "redact_keys", frozenset(key.lower() for key in self.redact_keys))

    @property
    def label(self) -> str:
        return self.name or self.storage.value

    @classmethod
    def from_env(cls, initial: Any, **overrides: Any) -> StoreConfig:
        """Create configuration from environment variables.

        Reads ``SCOPESTORE_STORAGE`` and ``SCOPESTORE_DEBUG``. Explicit
        keyword arguments override environment values.

        Parameters
        ----------
        initial
            Initial state or factory.
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        StoreConfig
            Populated configuration.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        storage_env = env.get("SCOPESTORE_STORAGE")
        if storage_env is not None and "storage" not in overrides:
            config_kwargs["storage"] = storage_env.strip().lower()

        if "debug" not in overrides:
            config_kwargs["debug"] = _env_bool(env.get("SCOPESTORE_DEBUG"), False)

        config_kwargs.update(overrides)

        return cls(initial=initial, **config_kwargs)
