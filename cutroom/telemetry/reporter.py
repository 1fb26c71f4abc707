from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Mapping, Optional

from cutroom.classifier.rules import ErrorClassifier, raw_error_message, strip_error_code, with_prefix
from cutroom.errors import extract_error_code
from cutroom.models import ErrorReport
from cutroom.telemetry.audit import AuditLogger

logger = logging.getLogger(__name__)

ReportSink = Callable[[ErrorReport], None]

DEFAULT_DEDUP_TTL_S = 60.0
DEFAULT_KEY_PREFIX_CHARS = 120
DEFAULT_HISTORY_SIZE = 50


def default_dedupe_key(scope_key: str, err: Any, *, prefix_chars: int = DEFAULT_KEY_PREFIX_CHARS) -> str:
    raw = raw_error_message(err)
    code = extract_error_code(raw) or (getattr(err, "code", "") or "")
    if code:
        return f"{scope_key}::{code}"
    return f"{scope_key}::{strip_error_code(raw)[:prefix_chars]}"


def should_show(shown_at: Mapping[str, float], key: str, *, now: float, ttl_s: float) -> bool:
    if ttl_s <= 0 or key not in shown_at:
        return True
    return now - shown_at[key] >= ttl_s


def _log_sink(report: ErrorReport) -> None:
    logger.warning("%s", report.text)


class ErrorReporter:
    """
    Formats errors for the user and suppresses repeats of the same background failure.

    `report` always reaches the sink (direct consequences of a user action).
    `report_once` only does when the same dedup key was not shown within the TTL.
    """

    def __init__(
        self,
        sink: Optional[ReportSink] = None,
        *,
        classifier: Optional[ErrorClassifier] = None,
        ttl_s: float = DEFAULT_DEDUP_TTL_S,
        key_prefix_chars: int = DEFAULT_KEY_PREFIX_CHARS,
        clock: Callable[[], float] = time.monotonic,
        audit: Optional[AuditLogger] = None,
        session_id: str = "reporter",
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        self.sink = sink or _log_sink
        self.classifier = classifier or ErrorClassifier()
        self.ttl_s = float(ttl_s)
        self.key_prefix_chars = int(key_prefix_chars)
        self._clock = clock
        self._audit = audit
        self._session_id = session_id
        self._shown_at: Dict[str, float] = {}
        # Most recent reports only.
        self.history: Deque[ErrorReport] = deque(maxlen=int(history_size))

    def build(self, prefix: str, err: Any, *, open_settings_on_credential: bool = True) -> ErrorReport:
        c = self.classifier.classify(err)
        return ErrorReport(
            title=(prefix or "").strip(),
            message=with_prefix(prefix, err),
            code=c.code,
            hint=c.hint,
            open_settings=open_settings_on_credential and c.open_settings,
        )

    def report(self, prefix: str, err: Any, *, open_settings_on_credential: bool = True) -> ErrorReport:
        rep = self.build(prefix, err, open_settings_on_credential=open_settings_on_credential)
        self.history.append(rep)
        if self._audit is not None:
            payload = {"title": rep.title, "code": rep.code, "message": rep.message}
            self._audit.write(self._session_id, "error.reported", payload, source="reporter")
        self.sink(rep)
        return rep

    def report_once(
        self,
        scope_key: str,
        err: Any,
        *,
        ttl_s: Optional[float] = None,
        dedupe_key: Optional[str] = None,
        log_suppressed: bool = False,
        open_settings_on_credential: bool = True,
    ) -> Optional[ErrorReport]:
        ttl = self.ttl_s if ttl_s is None else float(ttl_s)
        key = dedupe_key or default_dedupe_key(scope_key, err, prefix_chars=self.key_prefix_chars)
        now = self._clock()
        if not should_show(self._shown_at, key, now=now, ttl_s=ttl):
            if log_suppressed:
                logger.debug("suppressed duplicate error %s: %s", key, raw_error_message(err))
                if self._audit is not None:
                    self._audit.write(self._session_id, "error.suppressed", {"key": key}, source="reporter")
            return None
        self._shown_at[key] = now
        return self.report(scope_key, err, open_settings_on_credential=open_settings_on_credential)

    def forget(self) -> None:
        self._shown_at.clear()
