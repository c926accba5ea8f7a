from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from scopestore.adapters import MemoryAdapter
from scopestore.config import StorageMode, StoreConfig
from scopestore.operations import ErrorContext, Operation
from scopestore.scope import request_scope
from scopestore.store import ServerStore, create_store


def _counting_derive(calls: list[dict[str, Any]]):
    def derive(state: dict[str, Any]) -> dict[str, Any]:
        calls.append(state)
        return {"doubled": state["count"] * 2}

    return derive


@pytest.mark.asyncio
async def test_read_memoizes_derived_state_until_mutation() -> None:
    calls: list[dict[str, Any]] = []
    store = create_store(StoreConfig(initial={"count": 1}, derive=_counting_derive(calls)))

    with request_scope():
        first = store.read()
        second = store.read()
        assert first == second == {"count": 1, "doubled": 2}
        assert len(calls) == 1

        await store.update(lambda s: {**s, "count": 3})
        assert store.read() == {"count": 3, "doubled": 6}
        assert len(calls) == 2


@pytest.mark.asyncio
async def test_derive_failure_is_contained_and_reported_once() -> None:
    errors: list[tuple[BaseException, ErrorContext]] = []

    def derive(state: dict[str, Any]) -> dict[str, Any]:
        if state["value"] is None:
            raise ValueError("value is required")
        return {"label": str(state["value"])}

    store = create_store(
        StoreConfig(
            initial={"value": None},
            derive=derive,
            on_error=lambda error, context: errors.append((error, context)),
        )
    )

    with request_scope():
        assert store.read() == {"value": None}

    assert len(errors) == 1
    error, context = errors[0]
    assert isinstance(error, ValueError)
    assert context == ErrorContext(method="derive", state={"value": None})


@pytest.mark.asyncio
async def test_async_error_callback_is_scheduled_without_blocking_read() -> None:
    seen: list[str] = []

    async def on_error(error: BaseException, context: ErrorContext) -> None:
        seen.append(context.method)

    def derive(state: dict[str, Any]) -> dict[str, Any]:
        raise RuntimeError("boom")

    store = create_store(StoreConfig(initial={"a": 1}, derive=derive, on_error=on_error))

    with request_scope():
        assert store.read() == {"a": 1}
    assert seen == []
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert seen == ["derive"]


@pytest.mark.asyncio
async def test_batch_runs_derive_and_on_update_once() -> None:
    calls: list[dict[str, Any]] = []
    updates: list[tuple[dict[str, Any], dict[str, Any]]] = []
    store = create_store(
        StoreConfig(
            initial={"count": 0},
            derive=_counting_derive(calls),
            on_update=lambda previous, nxt: updates.append((previous, nxt)),
        )
    )

    with request_scope():
        before = store.read()
        calls.clear()

        def steps(api) -> None:
            api.update(lambda s: {**s, "count": s["count"] + 1})
            api.update(lambda s: {**s, "count": s["count"] + 1})
            api.update(lambda s: {**s, "count": s["count"] + 1})

        await store.batch(steps)
        assert store.read()["count"] == 3

    assert len(calls) == 1
    assert updates == [({"count": 0}, {"count": 3})]
    assert before == {"count": 0, "doubled": 0}


@pytest.mark.asyncio
async def test_request_scopes_do_not_share_state() -> None:
    store = create_store(StoreConfig(initial={"count": 0}))

    with request_scope():
        await store.initialize({"count": 5})
        assert store.read()["count"] == 5

    with request_scope():
        assert store.read()["count"] == 0


@pytest.mark.asyncio
async def test_persistent_store_shares_state_across_requests() -> None:
    store = create_store(StoreConfig(initial={"count": 0}, storage=StorageMode.PERSISTENT))

    with request_scope():
        await store.set({"count": 42})

    with request_scope():
        assert store.read()["count"] == 42


@pytest.mark.asyncio
async def test_stores_with_equal_config_are_independent() -> None:
    config = StoreConfig(initial={"count": 0}, storage="persistent")
    first = ServerStore(config)
    second = ServerStore(config)

    await first.set({"count": 1})

    assert first.read() == {"count": 1}
    assert second.read() == {"count": 0}


@pytest.mark.asyncio
async def test_middleware_runs_in_order() -> None:
    def add_one(op: Operation) -> dict[str, Any]:
        return {**op.next_state, "count": op.next_state["count"] + 1}

    async def double(op: Operation) -> dict[str, Any]:
        await asyncio.sleep(0)
        return {**op.next_state, "count": op.next_state["count"] * 2}

    store = create_store(StoreConfig(initial={"count": 0}, middleware=[add_one, double]))

    with request_scope():
        await store.update(lambda s: {"count": 5})
        assert store.read()["count"] == 12


@pytest.mark.asyncio
async def test_failing_middleware_leaves_state_untouched() -> None:
    updates: list[Any] = []

    def reject_updates(op: Operation) -> dict[str, Any]:
        if op.kind == "update":
            raise PermissionError("read-only")
        return op.next_state

    store = create_store(
        StoreConfig(
            initial={"count": 7},
            middleware=[reject_updates],
            on_update=lambda previous, nxt: updates.append(nxt),
        )
    )

    with request_scope():
        with pytest.raises(PermissionError):
            await store.update(lambda s: {"count": 100})
        assert store.read()["count"] == 7

    assert updates == []


@pytest.mark.asyncio
async def test_reducer_and_selector_errors_propagate() -> None:
    store = create_store(StoreConfig(initial={"count": 0}))

    def broken(state: dict[str, Any]) -> dict[str, Any]:
        raise KeyError("missing")

    with request_scope():
        with pytest.raises(KeyError):
            await store.update(broken)
        with pytest.raises(ZeroDivisionError):
            store.select(lambda s: 1 / s["count"])
        assert store.select(lambda s: s["count"] + 1) == 1


@pytest.mark.asyncio
async def test_patch_merges_and_reset_restores_initial() -> None:
    resets: list[bool] = []
    store = create_store(
        StoreConfig(
            initial=lambda: {"theme": "light", "volume": 80},
            on_reset=lambda: resets.append(True),
        )
    )

    with request_scope():
        await store.patch({"theme": "dark"})
        assert store.read() == {"theme": "dark", "volume": 80}

        await store.reset()
        assert store.read() == {"theme": "light", "volume": 80}

    assert resets == [True]


@pytest.mark.asyncio
async def test_initialize_marks_record_and_fires_callback() -> None:
    initialized: list[dict[str, Any]] = []

    async def on_initialize(state: dict[str, Any]) -> None:
        initialized.append(state)

    store = create_store(StoreConfig(initial={"user": None}, on_initialize=on_initialize))

    with request_scope():
        await store.initialize({"user": "ada"})
        assert store.read() == {"user": "ada"}

    assert initialized == [{"user": "ada"}]


@pytest.mark.asyncio
async def test_callback_failure_propagates_after_commit() -> None:
    def on_update(previous: dict[str, Any], nxt: dict[str, Any]) -> None:
        raise RuntimeError("listener failed")

    store = create_store(StoreConfig(initial={"count": 0}, on_update=on_update))

    with request_scope():
        with pytest.raises(RuntimeError):
            await store.set({"count": 1})
        assert store.read() == {"count": 1}


@pytest.mark.asyncio
async def test_adapter_write_happens_once_per_operation_in_persistent_mode() -> None:
    adapter = MemoryAdapter()
    store = create_store(StoreConfig(initial={"count": 0}, storage="persistent", adapter=adapter))

    await store.set({"count": 1})
    await store.patch({"count": 2})
    await store.batch(lambda api: (api.patch({"count": 3}), api.patch({"count": 4})))

    assert adapter.writes == 3
    assert adapter.value == {"count": 4}


@pytest.mark.asyncio
async def test_adapter_is_ignored_in_request_mode() -> None:
    adapter = MemoryAdapter({"count": 99})
    store = create_store(StoreConfig(initial={"count": 0}, adapter=adapter))

    with request_scope():
        await store.set({"count": 1})
        assert store.read() == {"count": 1}

    assert adapter.reads == 0
    assert adapter.writes == 0


@pytest.mark.asyncio
async def test_adapter_write_failure_keeps_in_memory_commit() -> None:
    class FailingWrites:
        def read(self) -> None:
            return None

        def write(self, state: dict[str, Any]) -> None:
            raise OSError("disk full")

    store = create_store(StoreConfig(initial={"count": 0}, storage="persistent", adapter=FailingWrites()))

    with pytest.raises(OSError):
        await store.set({"count": 5})
    assert store.read() == {"count": 5}


@pytest.mark.asyncio
async def test_debug_logging_reports_commits_and_uninitialized_reads(caplog: pytest.LogCaptureFixture) -> None:
    store = create_store(StoreConfig(initial={"count": 0, "token": "abc"}, debug=True, name="counter"))

    with caplog.at_level(logging.INFO, logger="scopestore"):
        with request_scope():
            store.read()
            await store.initialize({"count": 1, "token": "abc"})
            await store.update(lambda s: {**s, "count": 2})
            await store.reset()

    messages = [record.getMessage() for record in caplog.records]
    assert any("Reading uninitialized store" in message for message in messages)
    assert any("[scopestore:counter] Initialized" in message for message in messages)
    assert any("[scopestore:counter] Updated" in message for message in messages)
    assert any("[scopestore:counter] Reset" in message for message in messages)
    assert not any("abc" in message for message in messages)


@pytest.mark.asyncio
async def test_no_logging_without_debug(caplog: pytest.LogCaptureFixture) -> None:
    store = create_store(StoreConfig(initial={"count": 0}))

    with caplog.at_level(logging.INFO, logger="scopestore"):
        with request_scope():
            store.read()
            await store.set({"count": 1})

    assert [record for record in caplog.records if record.name.startswith("scopestore")] == []


@pytest.mark.asyncio
async def test_read_only_persistent_store_loads_adapter_state() -> None:
    adapter = MemoryAdapter({"theme": "dark"})
    store = create_store(StoreConfig(initial={"theme": "light"}, storage="persistent", adapter=adapter))

    # The first read starts the seed; until it lands the initial state is served.
    assert store.read() == {"theme": "light"}
    await asyncio.sleep(0.01)

    assert store.read() == {"theme": "dark"}
    await asyncio.sleep(0.01)
    assert store.select(lambda s: s["theme"]) == "dark"
    assert adapter.reads == 1


@pytest.mark.asyncio
async def test_reads_before_adapter_seed_reuse_derived_cache() -> None:
    calls: list[dict[str, Any]] = []
    adapter = MemoryAdapter(delay=0.05)
    store = create_store(
        StoreConfig(initial={"count": 1}, storage="persistent", adapter=adapter, derive=_counting_derive(calls))
    )

    assert store.read() == store.read() == store.read() == {"count": 1, "doubled": 2}
    assert len(calls) == 1
    assert adapter.reads == 0

    await asyncio.sleep(0.1)
    assert adapter.reads == 1


@pytest.mark.asyncio
async def test_set_and_reset_mark_store_initialized(caplog: pytest.LogCaptureFixture) -> None:
    store = create_store(StoreConfig(initial={"count": 0}, debug=True))

    def uninitialized_warnings() -> int:
        return sum("Reading uninitialized store" in record.getMessage() for record in caplog.records)

    with caplog.at_level(logging.INFO, logger="scopestore"):
        with request_scope():
            await store.set({"count": 1})
            store.read()
        assert uninitialized_warnings() == 0

        with request_scope():
            await store.reset()
            store.read()
        assert uninitialized_warnings() == 0


@pytest.mark.asyncio
async def test_update_patch_and_batch_leave_store_uninitialized(caplog: pytest.LogCaptureFixture) -> None:
    store = create_store(StoreConfig(initial={"count": 0}, debug=True))
    mutations = [
        lambda: store.update(lambda s: {**s, "count": 1}),
        lambda: store.patch({"count": 2}),
        lambda: store.batch(lambda api: api.patch({"count": 3})),
    ]

    for mutate in mutations:
        caplog.clear()
        with caplog.at_level(logging.INFO, logger="scopestore"):
            with request_scope():
                await mutate()
                store.read()
        assert any("Reading uninitialized store" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_adapter_write_happens_before_lifecycle_callbacks() -> None:
    events: list[str] = []

    class RecordingAdapter:
        def read(self) -> None:
            return None

        async def write(self, state: dict[str, Any]) -> None:
            events.append(f"write:{state['count']}")

    store = create_store(
        StoreConfig(
            initial={"count": 0},
            storage="persistent",
            adapter=RecordingAdapter(),
            on_initialize=lambda state: events.append("on_initialize"),
            on_update=lambda previous, nxt: events.append("on_update"),
            on_reset=lambda: events.append("on_reset"),
        )
    )

    await store.initialize({"count": 1})
    await store.update(lambda s: {**s, "count": 2})
    await store.batch(lambda api: api.set({"count": 3}))
    await store.reset()

    assert events == [
        "write:1",
        "on_initialize",
        "write:2",
        "on_update",
        "write:3",
        "on_update",
        "write:0",
        "on_reset",
    ]


@pytest.mark.asyncio
async def test_on_update_receives_previous_and_final_state() -> None:
    updates: list[tuple[dict[str, Any], dict[str, Any]]] = []

    def stamp(op: Operation) -> dict[str, Any]:
        return {**op.next_state, "kind": str(op.kind)}

    store = create_store(
        StoreConfig(
            initial={"count": 0},
            middleware=[stamp],
            on_update=lambda previous, nxt: updates.append((previous, nxt)),
        )
    )

    with request_scope():
        await store.update(lambda s: {**s, "count": s["count"] + 1})
        await store.patch({"count": 5})

    assert updates == [
        ({"count": 0}, {"count": 1, "kind": "update"}),
        ({"count": 1, "kind": "update"}, {"count": 5, "kind": "patch"}),
    ]
