"""Custom exception hierarchy for scopestore."""

from __future__ import annotations


class ScopeStoreError(Exception):
    """Base exception for all scopestore errors."""


class StoreConfigError(ScopeStoreError):
    """Invalid store configuration."""


class StoreUsageError(ScopeStoreError):
    """A store operation was called in a way it does not support.

    Raised for example when a ``batch`` callback returns an awaitable:
    batch steps must run synchronously against the record.
    """


class StorageAdapterError(ScopeStoreError):
    """A bundled storage backend failed to read or write state."""

    def __init__(
        self,
        message: str,
        *,
        backend: str = "",
        status_code: int | None = None,
    ) -> None:
        self.backend = backend
        self.status_code = status_code
        super().__init__(message)
