from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from cutroom.errors import PreconditionError
from cutroom.models import JobStatus, Selection, Shot, Take, Workspace
from cutroom.store.reconcile import fallback_take_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreEvent:
    kind: str  # loaded|job_updated|selection_changed|cleared
    version: int
    take_id: Optional[int] = None


@dataclass(frozen=True)
class StoreSnapshot:
    workspace: Optional[Workspace]
    selection: Selection
    version: int


Listener = Callable[[StoreEvent], None]


class EntityGraphStore:
    """
    In-memory mirror of one remote workspace plus the local selection pointers.

    Every mutation swaps in new immutable objects and then notifies subscribers, so a
    snapshot obtained by a reader never changes underneath it.
    """

    def __init__(self) -> None:
        self._workspace: Optional[Workspace] = None
        self._selection = Selection()
        self._version = 0
        self._listeners: List[Listener] = []

    @property
    def workspace(self) -> Optional[Workspace]:
        return self._workspace

    @property
    def selection(self) -> Selection:
        return self._selection

    @property
    def version(self) -> int:
        return self._version

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(workspace=self._workspace, selection=self._selection, version=self._version)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, kind: str, *, take_id: Optional[int] = None) -> None:
        self._version += 1
        ev = StoreEvent(kind=kind, version=self._version, take_id=take_id)
        for listener in list(self._listeners):
            try:
                listener(ev)
            except Exception:  # noqa: BLE001
                # A broken subscriber must not leave the store half-notified.
                logger.exception("store listener failed on %s", kind)

    # -------- writes --------

    def replace(self, workspace: Workspace, selection: Selection) -> None:
        self._workspace = workspace
        self._selection = selection
        self._notify("loaded")

    def clear(self) -> None:
        self._workspace = None
        self._selection = Selection()
        self._notify("cleared")

    def select_shot(self, shot_id: int) -> None:
        ws = self._require_workspace()
        if ws.find_shot(shot_id) is None:
            raise PreconditionError(f"[E_SHOT_NOT_FOUND] shot {shot_id} is not in the current workspace")
        self._selection = self._selection.model_copy(update={"shot_id": shot_id})
        self._notify("selection_changed")

    def select_take(self, shot_id: int, take_id: int) -> None:
        ws = self._require_workspace()
        shot = ws.find_shot(shot_id)
        if shot is None or shot.find_take(take_id) is None:
            raise PreconditionError(f"[E_TAKE_NOT_FOUND] take {take_id} is not part of shot {shot_id}")
        take_by_shot: Dict[int, int] = dict(self._selection.take_by_shot)
        take_by_shot[shot_id] = take_id
        self._selection = self._selection.model_copy(update={"take_by_shot": take_by_shot})
        self._notify("selection_changed")

    def apply_job_status(self, take_id: int, result: JobStatus) -> bool:
        """
        Apply one job-status response to the matching take. Returns False when the take is
        gone from the snapshot or is already terminal and the response would move it back.
        """
        ws = self._workspace
        if ws is None:
            return False
        for idx, shot in enumerate(ws.storyboards):
            take = shot.find_take(take_id)
            if take is None:
                continue
            if take.is_terminal and not result.is_terminal:
                logger.debug("ignoring non-terminal status %r for terminal take %s", result.status, take_id)
                return False
            updated = _merge_status(take, result)
            if updated == take:
                return False
            storyboards = list(ws.storyboards)
            storyboards[idx] = _replace_take(shot, updated)
            self._workspace = ws.model_copy(update={"storyboards": storyboards})
            self._notify("job_updated", take_id=take_id)
            return True
        return False

    # -------- reads --------

    def outstanding_job_ids(self) -> List[int]:
        ws = self._workspace
        return ws.outstanding_take_ids() if ws is not None else []

    def selected_shot(self) -> Optional[Shot]:
        ws = self._workspace
        if ws is None:
            return None
        return ws.find_shot(self._selection.shot_id)

    def selected_take(self, shot_id: Optional[int] = None) -> Optional[Take]:
        ws = self._workspace
        if ws is None:
            return None
        shot = ws.find_shot(shot_id) if shot_id is not None else self.selected_shot()
        if shot is None:
            return None
        specific = shot.find_take(self._selection.take_for(shot.id))
        if specific is not None:
            return specific
        return shot.find_take(fallback_take_id(shot))

    def _require_workspace(self) -> Workspace:
        if self._workspace is None:
            raise PreconditionError("[E_WORKSPACE_NOT_LOADED] workspace has not been loaded yet")
        return self._workspace


def _merge_status(take: Take, result: JobStatus) -> Take:
    update: Dict[str, object] = {"status": result.status or take.status}
    if result.video_url:
        update["video_url"] = result.video_url
    if result.last_frame_url:
        update["last_frame_url"] = result.last_frame_url
    if result.download_status:
        update["download_status"] = result.download_status
    return take.model_copy(update=update)


def _replace_take(shot: Shot, updated: Take) -> Shot:
    takes = [updated if t.id == updated.id else t for t in shot.takes]
    update: Dict[str, object] = {"takes": takes}
    if shot.active_take is not None and shot.active_take.id == updated.id:
        update["active_take"] = updated
    return shot.model_copy(update=update)
