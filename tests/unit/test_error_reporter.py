from __future__ import annotations

from typing import List

from cutroom.errors import RemoteError
from cutroom.models import ErrorReport
from cutroom.telemetry.audit import AuditLogger
from cutroom.telemetry.reporter import ErrorReporter, default_dedupe_key, should_show


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _reporter(clock: FakeClock, **kwargs) -> tuple[ErrorReporter, List[ErrorReport]]:
    shown: List[ErrorReport] = []
    return ErrorReporter(shown.append, clock=clock, **kwargs), shown


def test_same_error_shown_once_per_window() -> None:
    clock = FakeClock()
    rep, shown = _reporter(clock, ttl_s=60)
    err = RemoteError("[E_HTTP_503] status service unavailable")

    assert rep.report_once("Status update failed", err) is not None
    clock.now += 10
    assert rep.report_once("Status update failed", err) is None
    clock.now += 49
    assert rep.report_once("Status update failed", err) is None
    clock.now += 1
    assert rep.report_once("Status update failed", err) is not None

    assert len(shown) == 2
    assert shown[0].message == "Status update failed: status service unavailable"
    assert shown[0].title == "Status update failed"


def test_key_uses_code_so_message_details_do_not_split_it() -> None:
    clock = FakeClock()
    rep, shown = _reporter(clock)
    rep.report_once("Status update failed", "[E_TIMEOUT] take 1 timed out")
    rep.report_once("Status update failed", "[E_TIMEOUT] take 2 timed out")
    assert len(shown) == 1


def test_key_without_code_uses_message_prefix() -> None:
    long_a = "x" * 120 + "tail-a"
    long_b = "x" * 120 + "tail-b"
    assert default_dedupe_key("s", long_a) == default_dedupe_key("s", long_b)
    assert default_dedupe_key("s", "disk full") == "s::disk full"
    assert default_dedupe_key("s", "[E_HTTP_500] boom") == "s::E_HTTP_500"


def test_scopes_are_deduplicated_independently() -> None:
    clock = FakeClock()
    rep, shown = _reporter(clock)
    rep.report_once("Status update failed", "[E_NETWORK] down")
    rep.report_once("Workspace refresh failed", "[E_NETWORK] down")
    assert [r.title for r in shown] == ["Status update failed", "Workspace refresh failed"]


def test_explicit_key_and_ttl_override() -> None:
    clock = FakeClock()
    rep, shown = _reporter(clock)
    rep.report_once("a", "one", dedupe_key="k")
    rep.report_once("b", "two", dedupe_key="k")
    assert len(shown) == 1
    rep.report_once("b", "two", dedupe_key="k", ttl_s=0)
    assert len(shown) == 2


def test_report_is_never_deduplicated() -> None:
    clock = FakeClock()
    rep, shown = _reporter(clock)
    rep.report("Save take failed", "[E_HTTP_500] boom")
    rep.report("Save take failed", "[E_HTTP_500] boom")
    assert len(shown) == 2
    assert len(rep.history) == 2


def test_history_keeps_only_the_latest_reports() -> None:
    clock = FakeClock()
    rep, shown = _reporter(clock, history_size=3)
    for i in range(10):
        rep.report("Save take failed", f"[E_HTTP_500] boom {i}")
    assert len(shown) == 10
    assert [r.message for r in rep.history] == [f"Save take failed: boom {i}" for i in (7, 8, 9)]


def test_forget_resets_window() -> None:
    clock = FakeClock()
    rep, shown = _reporter(clock)
    rep.report_once("s", "boom")
    rep.forget()
    rep.report_once("s", "boom")
    assert len(shown) == 2


def test_should_show_boundaries() -> None:
    assert should_show({}, "k", now=0, ttl_s=60)
    assert not should_show({"k": 0.0}, "k", now=59.99, ttl_s=60)
    assert should_show({"k": 0.0}, "k", now=60.0, ttl_s=60)
    assert should_show({"k": 0.0}, "k", now=0.0, ttl_s=0)


def test_open_settings_flag_and_hint_on_report() -> None:
    clock = FakeClock()
    rep, shown = _reporter(clock)
    r = rep.report("Submit generation failed", "[E_APIKEY_MISSING] API Key is not configured")
    assert r.open_settings is True
    assert r.code == "E_APIKEY_MISSING"
    assert r.hint in r.text
    r2 = rep.report("Submit generation failed", "[E_APIKEY_MISSING] x", open_settings_on_credential=False)
    assert r2.open_settings is False


def test_reports_and_suppressions_are_audited(tmp_path) -> None:
    audit = AuditLogger(str(tmp_path / "audit.jsonl"))
    clock = FakeClock()
    rep, _ = _reporter(clock, audit=audit, session_id="c1")
    rep.report_once("s", "[E_NETWORK] down", log_suppressed=True)
    rep.report_once("s", "[E_NETWORK] down", log_suppressed=True)
    events = [r["event_type"] for r in audit.read_all()]
    assert events == ["error.reported", "error.suppressed"]
    assert all(r["session_id"] == "c1" for r in audit.read_all())


def test_default_sink_logs_warning(caplog) -> None:
    rep = ErrorReporter()
    with caplog.at_level("WARNING"):
        rep.report("Export failed", "[E_HTTP_500] boom")
    assert "Export failed: boom" in caplog.text
