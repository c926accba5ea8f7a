"""Storage adapters: external persistence for persistent-mode stores.

A storage adapter is anything with ``read()`` and ``write(state)``;
either may be a coroutine function. ``read`` returns ``None`` when
nothing is stored yet.

The bridge only talks to an adapter in persistent mode: ``read`` once
to seed the process-wide record and ``write`` after every commit.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Protocol

import aiohttp

from scopestore._utils import maybe_await
from scopestore.config import StorageMode
from scopestore.exceptions import StorageAdapterError

_logger = logging.getLogger(__name__)


class StorageAdapter(Protocol):
    """Structural adapter interface.

    Implementations may be synchronous or asynchronous; the store
    awaits whatever is returned.
    """

    def read(self) -> Any:
        ...

    def write(self, state: Any) -> Any:
        ...


async def write_through(adapter: StorageAdapter | None, storage: StorageMode, state: Any) -> None:
    """Persist a committed state.

    No-op in request mode or without an adapter. Errors propagate; the
    in-memory commit has already happened and is not rolled back.
    """
    if storage is not StorageMode.PERSISTENT or adapter is None:
        return
    await maybe_await(adapter.write(state))


class MemoryAdapter:
    """In-process adapter, mostly for tests and demos.

    Parameters
    ----------
    initial : state or None
        Value returned by the first ``read``.
    delay : float
        Simulated latency in seconds for every call.
    """

    def __init__(self, initial: Any = None, *, delay: float = 0.0) -> None:
        self.value = initial
        self.delay = delay
        self.reads = 0
        self.writes = 0

    async def read(self) -> Any:
        self.reads += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        _logger.debug("MemoryAdapter read: present=%s", self.value is not None)
        return self.value

    async def write(self, state: Any) -> None:
        self.writes += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        self.value = state


class JsonFileAdapter:
    """Persist state as an indented JSON document on disk.

    File I/O runs in a worker thread so the event loop is not blocked.
    """

    def __init__(self, path: str | Path, *, encoding: str = "utf-8") -> None:
        self._path = Path(path)
        self._encoding = encoding

    @property
    def path(self) -> Path:
        return self._path

    def _read_sync(self) -> Any:
        try:
            text = self._path.read_text(encoding=self._encoding)
        except FileNotFoundError:
            _logger.debug("No data file at %s", self._path)
            return None
        except OSError as exc:
            raise StorageAdapterError(f"Could not read {self._path}: {exc}", backend="file") from exc

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise StorageAdapterError(f"Invalid JSON in {self._path}: {exc}", backend="file") from exc

    def _write_sync(self, state: Any) -> None:
        try:
            body = json.dumps(state, indent=2)
        except (TypeError, ValueError) as exc:
            raise StorageAdapterError(f"State is not JSON serializable: {exc}", backend="file") from exc

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(body, encoding=self._encoding)
        except OSError as exc:
            raise StorageAdapterError(f"Could not write {self._path}: {exc}", backend="file") from exc
        _logger.debug("Wrote %d bytes to %s", len(body), self._path)

    def _delete_sync(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageAdapterError(f"Could not delete {self._path}: {exc}", backend="file") from exc

    async def read(self) -> Any:
        return await asyncio.to_thread(self._read_sync)

    async def write(self, state: Any) -> None:
        await asyncio.to_thread(self._write_sync, state)

    async def delete(self) -> None:
        """Remove the data file if it exists."""
        await asyncio.to_thread(self._delete_sync)


class HttpAdapter:
    """Persist state as a JSON document behind an HTTP endpoint.

    ``GET <url>`` loads the document (404 means nothing stored) and
    ``PUT <url>`` replaces it.

    Usage::

        async with HttpAdapter("https://kv.example.com/settings") as adapter:
            store = create_store(StoreConfig(initial={}, storage="persistent", adapter=adapter))
    """

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._url = url
        self._external_session = session is not None
        self._http = session
        self._headers = {"accept": "application/json", **(headers or {})}

    async def __aenter__(self) -> HttpAdapter:
        if self._http is None:
            self._http = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if not self._external_session and self._http is not None:
            await self._http.close()
            self._http = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self._http is None:
            raise StorageAdapterError(
                "HttpAdapter has no session. Use 'async with HttpAdapter(...)' or pass session=",
                backend="http",
            )
        return self._http

    async def read(self) -> Any:
        http = self._require_session()
        _logger.debug("GET %s", self._url)
        try:
            async with http.get(self._url, headers=self._headers) as resp:
                text = await resp.text()
                if resp.status == 404:
                    return None
                if resp.status >= 300:
                    raise StorageAdapterError(
                        f"HTTP {resp.status} reading {self._url}: {text[:200]}",
                        backend="http",
                        status_code=resp.status,
                    )
        except StorageAdapterError:
            raise
        except aiohttp.ClientError as exc:
            raise StorageAdapterError(f"Request to {self._url} failed: {exc}", backend="http") from exc

        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise StorageAdapterError(
                f"Invalid JSON from {self._url}: {text[:200]}",
                backend="http",
            ) from exc

    async def write(self, state: Any) -> None:
        http = self._require_session()
        body = json.dumps(state, separators=(",", ":"))
        headers = {**self._headers, "content-type": "application/json; charset=UTF-8"}
        _logger.debug("PUT %s", self._url)
        try:
            async with http.put(self._url, data=body, headers=headers) as resp:
                if resp.status >= 300:
                    text = await resp.text()
                    raise StorageAdapterError(
                        f"HTTP {resp.status} writing {self._url}: {text[:200]}",
                        backend="http",
                        status_code=resp.status,
                    )
        except StorageAdapterError:
            raise
        except aiohttp.ClientError as exc:
            raise StorageAdapterError(f"Request to {self._url} failed: {exc}", backend="http") from exc
