from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from cutroom.remote.base import StudioBackend
from cutroom.settings import Settings
from cutroom.store.graph import EntityGraphStore
from cutroom.telemetry.audit import AuditLogger
from cutroom.telemetry.reporter import ErrorReporter

logger = logging.getLogger(__name__)

STATUS_SCOPE = "Status update failed"
REFRESH_SCOPE = "Workspace refresh failed"


@dataclass(frozen=True)
class PollerConfig:
    # Used when no response in a cycle suggests an interval.
    interval_s: float = 3.5
    # Lower bound for any delay, so a bad suggestion cannot spin the loop.
    floor_s: float = 1.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "PollerConfig":
        return cls(interval_s=float(settings.poll_interval_s), floor_s=float(settings.poll_floor_s))


class TakeStatusPoller:
    """
    Polls every outstanding (Queued/Running) take on one repeating cycle until none remain.

    Each cycle queries all outstanding takes concurrently, applies each response to the
    store as it lands, then refreshes the workspace once after every query has settled.
    The next delay is the smallest interval the backend suggested, clamped to the floor.

    One failing query never blocks the others and never drops its take from the set; it
    is simply asked again next cycle. After `stop()` no scheduled cycle fires and any
    response still in flight is discarded instead of written to the store.
    """

    def __init__(
        self,
        backend: StudioBackend,
        store: EntityGraphStore,
        refresh: Callable[[], Awaitable[Any]],
        *,
        cfg: Optional[PollerConfig] = None,
        reporter: Optional[ErrorReporter] = None,
        audit: Optional[AuditLogger] = None,
        session_id: str = "poller",
    ) -> None:
        self.backend = backend
        self.store = store
        self.cfg = cfg or PollerConfig()
        self.reporter = reporter
        self._refresh = refresh
        self._audit = audit
        self._session_id = session_id

        self._active = False
        self._generation = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._cycle_task: Optional["asyncio.Task[Optional[float]]"] = None
        self._in_cycle = False
        self._stop_waiters: List["asyncio.Future[None]"] = []

        self.cycles = 0
        self.discarded = 0
        self.last_delay_s: Optional[float] = None

        # Audit dedupe for repeated identical query failures.
        self._last_error_sig: Optional[str] = None
        self._last_error_ts: float = 0.0

    @property
    def running(self) -> bool:
        return self._active

    @property
    def scheduled(self) -> bool:
        return self._timer is not None

    def start(self) -> bool:
        """
        Begin polling if there is anything outstanding. Idempotent: returns False when
        already running or when there is nothing to poll.
        """
        if self._active:
            return False
        if not self.store.outstanding_job_ids():
            return False
        self._active = True
        self._generation += 1
        self._schedule(self.cfg.interval_s, self._generation)
        self._write_audit("poller.started", {"outstanding": len(self.store.outstanding_job_ids())})
        return True

    def stop(self) -> None:
        if not self._active and self._timer is None:
            return
        self._halt("stopped")

    def sync(self) -> None:
        """
        Re-evaluate the outstanding set after a workspace load: start when jobs appeared,
        stop an idle poller when none remain.
        """
        if self.store.outstanding_job_ids():
            self.start()
        elif self._active and not self._in_cycle:
            self._halt("idle")

    async def poll_once(self) -> Optional[float]:
        """
        Run a cycle now instead of waiting for the timer. Returns the delay scheduled for the
        following cycle, or None when polling stopped.
        """
        if self._cycle_task is not None and not self._cycle_task.done():
            return await asyncio.shield(self._cycle_task)
        if not self._active:
            self._active = True
            self._generation += 1
        self._cancel_timer()
        self._cycle_task = asyncio.ensure_future(self._cycle(self._generation))
        return await asyncio.shield(self._cycle_task)

    async def wait_stopped(self) -> None:
        """Resolve once polling has halted (drained, idle or stopped)."""
        if not self._active:
            return
        fut: "asyncio.Future[None]" = asyncio.get_running_loop().create_future()
        self._stop_waiters.append(fut)
        await fut

    async def aclose(self) -> None:
        self.stop()
        task = self._cycle_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    def next_delay(self, suggested: Iterable[Optional[float]]) -> float:
        values = [float(s) for s in suggested if s]
        delay = min(values) if values else float(self.cfg.interval_s)
        return max(delay, float(self.cfg.floor_s))

    # -------- internals --------

    def _is_current(self, gen: int) -> bool:
        return self._active and gen == self._generation

    def _schedule(self, delay_s: float, gen: int) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(max(0.0, float(delay_s)), self._fire, gen)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, gen: int) -> None:
        self._timer = None
        if not self._is_current(gen):
            return
        self._cycle_task = asyncio.ensure_future(self._cycle(gen))

    def _halt(self, reason: str) -> None:
        was_active = self._active
        self._active = False
        self._generation += 1
        self._cancel_timer()
        waiters, self._stop_waiters = self._stop_waiters, []
        for w in waiters:
            if not w.done():
                w.set_result(None)
        if was_active:
            self._write_audit("poller.stopped", {"reason": reason, "cycles": self.cycles})

    async def _cycle(self, gen: int) -> Optional[float]:
        self._in_cycle = True
        try:
            take_ids = self.store.outstanding_job_ids()
            if not take_ids:
                self._halt("idle")
                return None

            suggested = await asyncio.gather(*(self._poll_one(gen, tid) for tid in take_ids))
            if not self._is_current(gen):
                return None

            # Only after every query settled, so derived fields never mix old and new statuses.
            try:
                await self._refresh()
            except Exception as e:  # noqa: BLE001
                logger.warning("[poll] workspace refresh failed: %s", e)
                if self.reporter is not None:
                    self.reporter.report_once(REFRESH_SCOPE, e, log_suppressed=True)
            if not self._is_current(gen):
                return None

            self.cycles += 1
            remaining = self.store.outstanding_job_ids()
            self._write_audit("poller.cycle", {"polled": len(take_ids), "remaining": len(remaining)})
            if not remaining:
                self._halt("drained")
                return None

            delay = self.next_delay(suggested)
            self.last_delay_s = delay
            self._schedule(delay, gen)
            return delay
        finally:
            self._in_cycle = False

    async def _poll_one(self, gen: int, take_id: int) -> Optional[float]:
        try:
            result = await self.backend.get_job_status(take_id)
        except Exception as e:  # noqa: BLE001
            if self._is_current(gen):
                self._note_failure(take_id, e)
            return None
        if not self._is_current(gen):
            logger.debug("[poll] discarding status for take %s received after stop", take_id)
            self.discarded += 1
            return None
        self.store.apply_job_status(take_id, result)
        return result.suggested_interval_s

    def _note_failure(self, take_id: int, err: Exception) -> None:
        logger.warning("[poll] status query failed for take %s: %s", take_id, err)
        if self.reporter is not None:
            self.reporter.report_once(STATUS_SCOPE, err, log_suppressed=True)
        err_sig = f"{type(err).__name__}: {err}"
        now_s = time.monotonic()
        if (self._last_error_sig != err_sig) or (now_s - self._last_error_ts > 60.0):
            self._write_audit("poller.job_error", {"take_id": take_id, "error": err_sig})
            self._last_error_sig = err_sig
            self._last_error_ts = now_s

    def _write_audit(self, event_type: str, payload: dict) -> None:
        if self._audit is not None:
            self._audit.write(self._session_id, event_type, payload, source="poller")
