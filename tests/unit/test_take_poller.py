from __future__ import annotations

import asyncio
from typing import List

from cutroom.errors import RemoteError
from cutroom.models import ErrorReport, JobStatus
from cutroom.poller.take_poller import STATUS_SCOPE, PollerConfig, TakeStatusPoller
from cutroom.store.graph import EntityGraphStore
from cutroom.workspace.session import WorkspaceSession

from fakes import FakeBackend, make_shot, make_take, make_workspace


def _two_running() -> FakeBackend:
    return FakeBackend(
        make_workspace(
            make_shot(10, [make_take(101, 10, "Running")]),
            make_shot(20, [make_take(201, 20, "Queued")]),
        )
    )


def _session(backend: FakeBackend, reports: List[ErrorReport], *, interval_s: float = 30.0) -> WorkspaceSession:
    return WorkspaceSession(backend, 1, sink=reports.append, poller_cfg=PollerConfig(interval_s=interval_s, floor_s=0.0))


def test_next_delay_uses_smallest_suggestion_clamped_to_floor() -> None:
    async def refresh() -> None:
        return None

    poller = TakeStatusPoller(FakeBackend(), EntityGraphStore(), refresh, cfg=PollerConfig(interval_s=3.5, floor_s=1.0))
    assert poller.next_delay([None, 10.0, 3.0]) == 3.0
    assert poller.next_delay([]) == 3.5
    assert poller.next_delay([None, None]) == 3.5
    assert poller.next_delay([0.2]) == 1.0


def test_polls_until_drained_then_leaves_no_timer(backend: FakeBackend) -> None:
    async def scenario() -> None:
        backend.status_scripts[101] = [JobStatus(status="Running"), JobStatus(status="Succeeded", video_url="v.mp4")]
        reports: List[ErrorReport] = []
        session = _session(backend, reports, interval_s=0.01)
        await session.open()
        assert session.poller.running
        await asyncio.wait_for(session.wait_until_settled(), timeout=5)

        assert not session.poller.running
        assert not session.poller.scheduled
        assert session.poller.cycles == 2
        assert backend.status_calls[101] == 2
        take = session.store.workspace.find_take(101)
        assert take.status == "Succeeded"
        assert take.video_url == "v.mp4"
        assert reports == []
        await session.close()

    asyncio.run(scenario())


def test_start_is_idempotent_and_needs_outstanding_jobs(backend: FakeBackend) -> None:
    async def scenario() -> None:
        session = _session(backend, [])
        assert session.poller.start() is False  # nothing loaded yet
        await session.open()
        assert session.poller.running
        assert session.poller.start() is False
        assert session.poller.scheduled
        await session.close()
        assert not session.poller.running
        assert not session.poller.scheduled

    asyncio.run(scenario())


def test_one_failing_query_does_not_block_others() -> None:
    async def scenario() -> None:
        backend = _two_running()
        backend.status_scripts[101] = [RemoteError("[E_HTTP_503] status service unavailable"), JobStatus(status="Succeeded")]
        backend.status_scripts[201] = [JobStatus(status="Succeeded")]
        reports: List[ErrorReport] = []
        session = _session(backend, reports)
        await session.open()

        delay = await session.poller.poll_once()
        assert delay == 30.0
        assert session.store.workspace.find_take(201).status == "Succeeded"
        assert session.store.workspace.find_take(101).status == "Running"
        assert session.store.outstanding_job_ids() == [101]
        assert [r.title for r in reports] == [STATUS_SCOPE]

        assert await session.poller.poll_once() is None
        assert session.store.outstanding_job_ids() == []
        assert not session.poller.running
        await session.close()

    asyncio.run(scenario())


def test_repeated_status_failures_are_reported_once(backend: FakeBackend) -> None:
    async def scenario() -> None:
        err = RemoteError("[E_TIMEOUT] request timeout")
        backend.status_scripts[101] = [err, err, err, JobStatus(status="Failed")]
        reports: List[ErrorReport] = []
        session = _session(backend, reports)
        await session.open()
        for _ in range(3):
            assert await session.poller.poll_once() == 30.0
        assert len(reports) == 1
        assert "network" in reports[0].hint.lower()

        assert await session.poller.poll_once() is None
        assert session.store.workspace.find_take(101).status == "Failed"
        await session.close()

    asyncio.run(scenario())


def test_backend_suggested_interval_drives_next_delay(backend: FakeBackend) -> None:
    async def scenario() -> None:
        backend.status_scripts[101] = [JobStatus(status="Running", poll_interval=10000)]
        session = WorkspaceSession(backend, 1, poller_cfg=PollerConfig(interval_s=3.5, floor_s=1.0))
        await session.open()
        assert await session.poller.poll_once() == 10.0
        assert session.poller.last_delay_s == 10.0
        await session.close()

    asyncio.run(scenario())


def test_response_arriving_after_stop_is_discarded(backend: FakeBackend) -> None:
    async def scenario() -> None:
        gate = asyncio.Event()
        backend.status_gates[101] = gate
        backend.status_scripts[101] = [JobStatus(status="Succeeded")]
        session = _session(backend, [])
        await session.open()
        loads_before = backend.workspace_calls

        cycle = asyncio.ensure_future(session.poller.poll_once())
        while backend.status_calls.get(101, 0) == 0:
            await asyncio.sleep(0)
        session.poller.stop()
        gate.set()

        assert await cycle is None
        assert session.poller.discarded == 1
        assert session.store.workspace.find_take(101).status == "Running"
        assert backend.workspace_calls == loads_before
        assert not session.poller.scheduled
        await session.close()

    asyncio.run(scenario())


def test_refresh_failure_is_reported_and_polling_continues(backend: FakeBackend) -> None:
    async def scenario() -> None:
        backend.status_scripts[101] = [JobStatus(status="Running")]
        reports: List[ErrorReport] = []
        session = _session(backend, reports)
        await session.open()
        backend.workspace_error = RemoteError("[E_NETWORK] network error: connection refused")

        assert await session.poller.poll_once() == 30.0
        assert await session.poller.poll_once() == 30.0
        assert [r.title for r in reports] == ["Workspace refresh failed"]
        assert session.poller.running
        await session.close()

    asyncio.run(scenario())


def test_newly_submitted_job_restarts_stopped_poller(backend: FakeBackend) -> None:
    async def scenario() -> None:
        session = _session(backend, [])
        await session.open()
        await session.poller.poll_once()
        assert not session.poller.running

        await session.commands.generate_take(200)
        assert session.poller.running
        assert session.store.outstanding_job_ids() == [200]
        await session.close()

    asyncio.run(scenario())


def test_job_submitted_while_cycle_refresh_is_in_flight_keeps_being_polled(backend: FakeBackend) -> None:
    async def scenario() -> None:
        backend.status_scripts[101] = [JobStatus(status="Succeeded")]
        session = _session(backend, [])
        await session.open()
        loads = backend.workspace_calls

        backend.workspace_gate = asyncio.Event()
        cycle = asyncio.ensure_future(session.poller.poll_once())
        while backend.workspace_calls == loads:
            await asyncio.sleep(0)
        # The cycle's refresh has reached the server; now submit another job.
        submit = asyncio.ensure_future(session.commands.generate_take(200))
        while "submit_take" not in backend.call_names():
            await asyncio.sleep(0)
        backend.workspace_gate.set()

        assert await cycle is None
        res = await submit
        assert res.task_id == "task-200"
        assert backend.workspace_calls == loads + 2
        assert session.store.workspace.find_take(200).status == "Queued"
        assert session.store.outstanding_job_ids() == [200]
        assert session.poller.running
        assert session.poller.scheduled
        await session.close()

    asyncio.run(scenario())
