from __future__ import annotations

import uuid
from typing import Optional

from cutroom.models import Workspace
from cutroom.poller.take_poller import PollerConfig, TakeStatusPoller
from cutroom.remote.base import StudioBackend
from cutroom.settings import Settings
from cutroom.store.graph import EntityGraphStore, Listener, StoreSnapshot
from cutroom.sync.coordinator import WorkspaceLoader
from cutroom.telemetry.audit import AuditLogger
from cutroom.telemetry.reporter import ErrorReporter, ReportSink
from cutroom.workspace.commands import WorkspaceCommands


class WorkspaceSession:
    """
    Everything one open workspace view needs: store, loader, poller, reporter and commands.

    Built per view and torn down explicitly with `close()` (or `async with`), so several
    independent sessions can coexist and nothing outlives its view.
    """

    def __init__(
        self,
        backend: StudioBackend,
        project_id: int,
        *,
        settings: Optional[Settings] = None,
        sink: Optional[ReportSink] = None,
        reporter: Optional[ErrorReporter] = None,
        poller_cfg: Optional[PollerConfig] = None,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        s = settings or Settings()
        self.settings = s
        self.backend = backend
        self.project_id = int(project_id)
        self.audit = audit or (AuditLogger(s.audit_log_path) if s.audit_log_path else None)
        self.session_id = self.audit.new_session_id() if self.audit else uuid.uuid4().hex

        self.store = EntityGraphStore()
        self.reporter = reporter or ErrorReporter(
            sink,
            ttl_s=s.error_dedup_ttl_s,
            key_prefix_chars=s.error_key_prefix_chars,
            audit=self.audit,
            session_id=self.session_id,
        )
        self.loader = WorkspaceLoader(backend, self.store)
        self.poller = TakeStatusPoller(
            backend,
            self.store,
            self._poll_refresh,
            cfg=poller_cfg or PollerConfig.from_settings(s),
            reporter=self.reporter,
            audit=self.audit,
            session_id=self.session_id,
        )
        self.loader.add_after_load(lambda _ws: self.poller.sync())
        self.commands = WorkspaceCommands(
            backend,
            self.store,
            self.refresh,
            self.reporter,
            project_id=self.project_id,
            audit=self.audit,
            session_id=self.session_id,
        )
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> Workspace:
        ws = await self.loader.load(self.project_id, preserve_selection=False)
        self._write_audit("session.opened", {"shots": len(ws.storyboards)})
        return ws

    async def refresh(self, preserve_selection: bool = True) -> Workspace:
        """Reload after a write; never served by a fetch that started before the call."""
        return await self.loader.load(self.project_id, preserve_selection=preserve_selection, fresh=True)

    async def _poll_refresh(self) -> Workspace:
        return await self.refresh(True)

    def snapshot(self) -> StoreSnapshot:
        return self.store.snapshot()

    def subscribe(self, listener: Listener):
        return self.store.subscribe(listener)

    async def wait_until_settled(self) -> None:
        """Wait until no job is outstanding and polling has stopped."""
        await self.poller.wait_stopped()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.loader.close()
        await self.poller.aclose()
        self.store.clear()
        self._write_audit("session.closed", {})

    async def __aenter__(self) -> "WorkspaceSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _write_audit(self, event_type: str, payload: dict) -> None:
        if self.audit is not None:
            self.audit.write(self.session_id, event_type, payload, project_id=self.project_id)
