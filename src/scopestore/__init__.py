"""scopestore - Request-scoped and process-wide async state stores."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("scopestore")
except PackageNotFoundError:
    __version__ = "0+local"
from scopestore.adapters import HttpAdapter, JsonFileAdapter, MemoryAdapter, StorageAdapter
from scopestore.batch import BatchApi
from scopestore.config import StorageMode, StoreConfig
from scopestore.exceptions import (
    ScopeStoreError,
    StorageAdapterError,
    StoreConfigError,
    StoreUsageError,
)
from scopestore.operations import ErrorContext, Operation, OperationKind
from scopestore.scope import InstanceRecord, in_request_scope, request_cache, request_scope
from scopestore.store import ServerStore, create_store

__all__ = [
    "__version__",
    "BatchApi",
    "ErrorContext",
    "HttpAdapter",
    "InstanceRecord",
    "JsonFileAdapter",
    "MemoryAdapter",
    "Operation",
    "OperationKind",
    "ScopeStoreError",
    "ServerStore",
    "StorageAdapter",
    "StorageAdapterError",
    "StorageMode",
    "StoreConfig",
    "StoreConfigError",
    "StoreUsageError",
    "create_store",
    "in_request_scope",
    "request_cache",
    "request_scope",
]
