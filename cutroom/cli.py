from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from cutroom.classifier.rules import ErrorClassifier
from cutroom.models import ErrorReport, TakeStatus, Workspace
from cutroom.remote.http_backend import HttpStudioBackend
from cutroom.settings import Settings
from cutroom.store.graph import StoreEvent
from cutroom.workspace.session import WorkspaceSession


class StderrSink:
    """Prints reports for the terminal and remembers how many were shown."""

    def __init__(self) -> None:
        self.shown: List[ErrorReport] = []

    def __call__(self, report: ErrorReport) -> None:
        self.shown.append(report)
        print(report.text, file=sys.stderr)


def render_workspace(ws: Workspace, selected_shot: Optional[int] = None) -> str:
    lines = [f"{ws.project.name} (#{ws.project.id}, {ws.project.aspect_ratio})"]
    for shot in ws.storyboards:
        mark = "*" if shot.id == selected_shot else " "
        lines.append(f"{mark} shot {shot.shot_no or shot.shot_order} (#{shot.id}) {shot.frame_content[:60]}")
        active = shot.active_take_id
        for t in shot.takes:
            flags = []
            if t.id == active:
                flags.append("active")
            if t.is_good:
                flags.append("good")
            suffix = f" [{', '.join(flags)}]" if flags else ""
            lines.append(f"    take #{t.id} {t.status or '-'}{suffix}")
    for c in ws.asset_catalogs:
        lines.append(f"  asset {c.asset_code} {c.name} ({len(c.versions)} versions)")
    return "\n".join(lines)


async def _show(session: WorkspaceSession) -> int:
    ws = await session.open()
    print(render_workspace(ws, session.store.selection.shot_id))
    return 0


def _print_job_updates(session: WorkspaceSession) -> None:
    def on_event(ev: StoreEvent) -> None:
        if ev.kind == "job_updated" and ev.take_id is not None:
            take = session.store.workspace.find_take(ev.take_id) if session.store.workspace else None
            if take is not None:
                print(f"take #{take.id}: {take.status}")

    session.subscribe(on_event)


async def _watch(session: WorkspaceSession, timeout_s: float) -> int:
    _print_job_updates(session)
    await session.open()
    outstanding = session.store.outstanding_job_ids()
    if not outstanding:
        print("nothing outstanding")
        return 0
    print(f"watching {len(outstanding)} take(s)")
    try:
        await asyncio.wait_for(session.wait_until_settled(), timeout=timeout_s)
    except asyncio.TimeoutError:
        print(f"still outstanding after {timeout_s:.0f}s", file=sys.stderr)
        return 2
    print(render_workspace(session.store.workspace, session.store.selection.shot_id))
    return 0


async def _generate(session: WorkspaceSession, take_id: int, wait: bool, timeout_s: float) -> int:
    if wait:
        _print_job_updates(session)
    await session.open()
    res = await session.commands.generate_take(take_id)
    print(f"submitted take #{take_id} task={res.task_id}")
    if not wait:
        return 0
    return await _wait_for_take(session, take_id, timeout_s)


async def _wait_for_take(session: WorkspaceSession, take_id: int, timeout_s: float) -> int:
    try:
        await asyncio.wait_for(session.wait_until_settled(), timeout=timeout_s)
    except asyncio.TimeoutError:
        print(f"still outstanding after {timeout_s:.0f}s", file=sys.stderr)
        return 2
    take = session.store.workspace.find_take(take_id) if session.store.workspace else None
    if take is None:
        return 0
    print(f"take #{take.id}: {take.status}")
    return 1 if take.parsed_status == TakeStatus.failed else 0


async def run(args: argparse.Namespace, settings: Settings, sink: StderrSink) -> int:
    backend = HttpStudioBackend.from_settings(settings)
    session = WorkspaceSession(backend, args.project_id, settings=settings, sink=sink)
    try:
        if args.cmd == "show":
            return await _show(session)
        if args.cmd == "watch":
            return await _watch(session, args.timeout_s)
        return await _generate(session, args.take_id, not args.no_wait, args.timeout_s)
    finally:
        await session.close()


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="cutroom", description="Inspect and drive a cutroom studio workspace.")
    ap.add_argument("--base-url", default=None, help="Studio API base URL (overrides CUTROOM_API_BASE_URL)")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_show = sub.add_parser("show", help="Print the workspace tree")
    p_show.add_argument("project_id", type=int)

    p_watch = sub.add_parser("watch", help="Poll outstanding takes until they finish")
    p_watch.add_argument("project_id", type=int)
    p_watch.add_argument("--timeout-s", type=float, default=600.0)

    p_gen = sub.add_parser("generate", help="Submit a take for generation and watch it")
    p_gen.add_argument("project_id", type=int)
    p_gen.add_argument("take_id", type=int)
    p_gen.add_argument("--no-wait", action="store_true", help="Return right after submitting")
    p_gen.add_argument("--timeout-s", type=float, default=600.0)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    if args.base_url:
        settings = settings.model_copy(update={"api_base_url": args.base_url})
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    sink = StderrSink()
    try:
        return asyncio.run(run(args, settings, sink))
    except Exception as e:  # noqa: BLE001
        # Failed commands were already reported through the sink.
        if not sink.shown:
            c = ErrorClassifier().classify(e)
            print(f"{c.message}\n\n{c.hint}" if c.hint else c.message, file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
