from __future__ import annotations

import json
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class AuditLogger:
    """
    Append-only JSONL trail of workspace session events.

    One record per line:
    {"ts", "session_id", "project_id", "source", "event_type", "payload"}

    `source` names the part of the session that emitted the event
    (session, poller, reporter, commands). Several sessions may share one file;
    `read_all(session_id=...)` picks one of them back out.
    """

    def __init__(self, path: str):
        self.path = path
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)

    def new_session_id(self) -> str:
        return uuid.uuid4().hex

    def write(
        self,
        session_id: str,
        event_type: str,
        payload: Dict[str, Any],
        *,
        source: str = "session",
        project_id: Optional[int] = None,
    ) -> None:
        record = {
            "ts": _utc_now(),
            "session_id": session_id,
            "project_id": project_id,
            "source": source,
            "event_type": event_type,
            "payload": payload,
        }
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")

    def read_all(
        self, *, session_id: Optional[str] = None, event_type: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return []
        out: List[Dict[str, Any]] = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    rec = json.loads(line)
                except json.JSONDecodeError:
                    # A torn final line from an interrupted write.
                    continue
                if session_id is not None and rec.get("session_id") != session_id:
                    continue
                if event_type is not None and rec.get("event_type") != event_type:
                    continue
                out.append(rec)
        return out
