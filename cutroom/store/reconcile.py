from __future__ import annotations

from typing import Dict, Optional

from cutroom.models import Selection, Shot, Workspace


def fallback_take_id(shot: Shot) -> Optional[int]:
    """
    Server-designated active take first, then the newest take (last in server order).
    """
    active = shot.active_take_id
    if active is not None:
        return active
    return shot.latest_take_id


def reconcile_selection(workspace: Workspace, prior: Selection, *, preserve_selection: bool = True) -> Selection:
    """
    Recompute selection pointers against a freshly fetched snapshot.

    Pure and idempotent: the same (workspace, prior, preserve_selection) always yields
    the same Selection, and reconciling the result again changes nothing.
    """
    shot_ids = workspace.shot_ids
    if preserve_selection and prior.shot_id in shot_ids:
        shot_id: Optional[int] = prior.shot_id
    else:
        shot_id = shot_ids[0] if shot_ids else None

    previous = prior.take_by_shot if preserve_selection else {}
    take_by_shot: Dict[int, int] = {}
    for shot in workspace.storyboards:
        prev = previous.get(shot.id)
        if prev is not None and prev in shot.take_ids:
            take_by_shot[shot.id] = prev
            continue
        fb = fallback_take_id(shot)
        if fb is not None:
            take_by_shot[shot.id] = fb

    return Selection(shot_id=shot_id, take_by_shot=take_by_shot)
