from __future__ import annotations

import logging
from typing import Callable, Dict, List

from cutroom.models import Workspace
from cutroom.remote.base import StudioBackend
from cutroom.store.graph import EntityGraphStore
from cutroom.store.reconcile import reconcile_selection
from cutroom.sync.single_flight import SingleFlight

logger = logging.getLogger(__name__)

LoadHook = Callable[[Workspace], None]


class WorkspaceLoader:
    """
    Fetch a workspace snapshot, reconcile selection against it and publish both to the store.

    `load` is single-flight per project: N overlapping callers share one backend fetch and
    all observe its outcome. Errors propagate unchanged to every waiter.

    A caller only joins a fetch that can answer it. With `fresh=True` the fetch already
    running when the call is made is waited out and a new one is issued, so the result
    reflects every write the caller completed before asking. A load that resets selection
    never joins one that preserves it. Either way at most one fetch per project is in flight.
    """

    def __init__(self, backend: StudioBackend, store: EntityGraphStore) -> None:
        self.backend = backend
        self.store = store
        self._flight: SingleFlight[Workspace] = SingleFlight()
        self._preserving: Dict[int, bool] = {}
        self._after_load: List[LoadHook] = []
        self._closed = False

    @property
    def fetch_count(self) -> int:
        return self._flight.started

    def loading(self, project_id: int) -> bool:
        return self._flight.in_flight(("workspace", int(project_id)))

    def add_after_load(self, hook: LoadHook) -> None:
        self._after_load.append(hook)

    def close(self) -> None:
        self._closed = True

    async def load(self, project_id: int, *, preserve_selection: bool = True, fresh: bool = False) -> Workspace:
        pid = int(project_id)
        key = ("workspace", pid)
        # Only the flight pending at call time can predate the caller's writes.
        stale = fresh
        while self._flight.in_flight(key):
            if not stale and (preserve_selection or not self._preserving.get(pid, True)):
                break
            await self._flight.settle(key)
            stale = False
        if not self._flight.in_flight(key):
            self._preserving[pid] = preserve_selection
        return await self._flight.do(key, lambda: self._fetch_and_apply(pid, preserve_selection))

    async def _fetch_and_apply(self, project_id: int, preserve_selection: bool) -> Workspace:
        ws = await self.backend.get_workspace(project_id)
        if self._closed:
            logger.debug("discarding workspace %s fetched after teardown", project_id)
            return ws
        # Read the prior selection only now, so a choice made while the fetch was in
        # flight is what gets reconciled.
        selection = reconcile_selection(ws, self.store.selection, preserve_selection=preserve_selection)
        self.store.replace(ws, selection)
        for hook in list(self._after_load):
            hook(ws)
        return ws
