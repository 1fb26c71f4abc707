from __future__ import annotations

import asyncio

from cutroom.errors import RemoteError
from cutroom.store.graph import EntityGraphStore
from cutroom.sync.coordinator import WorkspaceLoader

from fakes import FakeBackend, make_shot, make_take, make_workspace


async def _wait_for_fetch(backend: FakeBackend, n: int) -> None:
    while backend.workspace_calls < n:
        await asyncio.sleep(0)


def test_overlapping_loads_share_one_fetch(backend: FakeBackend) -> None:
    async def scenario() -> None:
        store = EntityGraphStore()
        loader = WorkspaceLoader(backend, store)
        backend.workspace_gate = asyncio.Event()

        waiters = [asyncio.ensure_future(loader.load(1)) for _ in range(4)]
        await _wait_for_fetch(backend, 1)
        assert loader.loading(1)
        backend.workspace_gate.set()
        results = await asyncio.gather(*waiters)

        assert backend.workspace_calls == 1
        assert loader.fetch_count == 1
        assert all(r is results[0] for r in results)
        assert store.workspace is results[0]
        assert not loader.loading(1)

    asyncio.run(scenario())


def test_fetch_error_reaches_all_waiters_and_next_load_retries(backend: FakeBackend) -> None:
    async def scenario() -> None:
        store = EntityGraphStore()
        loader = WorkspaceLoader(backend, store)
        err = RemoteError("[E_HTTP_500] boom")
        backend.workspace_error = err
        backend.workspace_gate = asyncio.Event()

        waiters = [asyncio.ensure_future(loader.load(1)) for _ in range(3)]
        await _wait_for_fetch(backend, 1)
        backend.workspace_gate.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)
        assert all(r is err for r in results)
        assert store.workspace is None
        assert not loader.loading(1)

        backend.workspace_error = None
        ws = await loader.load(1)
        assert store.workspace is ws
        assert backend.workspace_calls == 2

    asyncio.run(scenario())


def test_selection_made_during_fetch_survives_reconcile(backend: FakeBackend) -> None:
    async def scenario() -> None:
        store = EntityGraphStore()
        loader = WorkspaceLoader(backend, store)
        await loader.load(1)
        assert store.selection.shot_id == 10

        backend.workspace_gate = asyncio.Event()
        pending = asyncio.ensure_future(loader.load(1))
        await _wait_for_fetch(backend, 2)
        store.select_shot(20)
        store.select_take(10, 101)
        backend.workspace_gate.set()
        await pending

        assert store.selection.shot_id == 20
        assert store.selection.take_for(10) == 101

    asyncio.run(scenario())


def test_vanished_selection_falls_back_after_reload(backend: FakeBackend) -> None:
    async def scenario() -> None:
        store = EntityGraphStore()
        loader = WorkspaceLoader(backend, store)
        await loader.load(1)
        store.select_shot(20)
        store.select_take(10, 101)

        backend.workspace = make_workspace(make_shot(10, [make_take(100, 10, "Succeeded")]))
        await loader.load(1)
        assert store.selection.shot_id == 10
        assert store.selection.take_for(10) == 100

    asyncio.run(scenario())


def test_after_load_hooks_run_with_published_snapshot(backend: FakeBackend) -> None:
    async def scenario() -> None:
        store = EntityGraphStore()
        loader = WorkspaceLoader(backend, store)
        seen = []
        loader.add_after_load(lambda ws: seen.append((ws is store.workspace, store.outstanding_job_ids())))
        await loader.load(1)
        assert seen == [(True, [101])]

    asyncio.run(scenario())


def test_load_finishing_after_close_is_discarded(backend: FakeBackend) -> None:
    async def scenario() -> None:
        store = EntityGraphStore()
        loader = WorkspaceLoader(backend, store)
        backend.workspace_gate = asyncio.Event()
        pending = asyncio.ensure_future(loader.load(1))
        await _wait_for_fetch(backend, 1)
        loader.close()
        backend.workspace_gate.set()
        await pending
        assert store.workspace is None
        assert store.version == 0

    asyncio.run(scenario())


def test_fresh_load_does_not_join_a_fetch_started_before_it(backend: FakeBackend) -> None:
    async def scenario() -> None:
        store = EntityGraphStore()
        loader = WorkspaceLoader(backend, store)
        backend.workspace_gate = asyncio.Event()

        early = asyncio.ensure_future(loader.load(1))
        await _wait_for_fetch(backend, 1)
        backend.workspace = make_workspace(make_shot(10, [make_take(100, 10, "Queued")]))
        late = asyncio.ensure_future(loader.load(1, fresh=True))
        joined = asyncio.ensure_future(loader.load(1))
        backend.workspace_gate.set()

        old_ws, new_ws, joined_ws = await asyncio.gather(early, late, joined)
        assert backend.workspace_calls == 2
        assert old_ws.find_take(101) is not None
        assert joined_ws is old_ws
        assert new_ws.find_take(100).status == "Queued"
        assert store.workspace is new_ws

    asyncio.run(scenario())


def test_reset_load_does_not_join_a_preserving_fetch(backend: FakeBackend) -> None:
    async def scenario() -> None:
        store = EntityGraphStore()
        loader = WorkspaceLoader(backend, store)
        await loader.load(1)
        store.select_shot(20)
        store.select_take(10, 101)

        backend.workspace_gate = asyncio.Event()
        keeping = asyncio.ensure_future(loader.load(1))
        await _wait_for_fetch(backend, 2)
        resetting = asyncio.ensure_future(loader.load(1, preserve_selection=False))
        backend.workspace_gate.set()
        await asyncio.gather(keeping, resetting)

        assert backend.workspace_calls == 3
        assert store.selection.shot_id == 10
        assert store.selection.take_for(10) == 100

    asyncio.run(scenario())


def test_preserving_load_may_join_a_resetting_fetch(backend: FakeBackend) -> None:
    async def scenario() -> None:
        store = EntityGraphStore()
        loader = WorkspaceLoader(backend, store)
        backend.workspace_gate = asyncio.Event()
        resetting = asyncio.ensure_future(loader.load(1, preserve_selection=False))
        await _wait_for_fetch(backend, 1)
        keeping = asyncio.ensure_future(loader.load(1))
        backend.workspace_gate.set()
        a, b = await asyncio.gather(resetting, keeping)
        assert a is b
        assert backend.workspace_calls == 1

    asyncio.run(scenario())
