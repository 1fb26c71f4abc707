from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Tuple

from cutroom.errors import MISSING_CREDENTIAL_CODE, CutroomError, extract_error_code
from cutroom.models import ClassifiedError

_STRIP_CODE_RE = re.compile(r"^\s*\[[A-Z0-9_]+\]\s*", re.IGNORECASE)

UNKNOWN_ERROR_MESSAGE = "Unknown error"


def strip_error_code(message: str | None) -> str:
    return _STRIP_CODE_RE.sub("", str(message or ""), count=1).strip()


def raw_error_message(err: Any) -> str:
    """
    Best-effort raw text of anything a remote call might hand back: exceptions,
    plain strings, or error-shaped dicts ({"message": ...} / {"error": ...}).
    """
    if err is None:
        return ""
    if isinstance(err, str):
        return err
    if isinstance(err, CutroomError):
        return err.message
    if isinstance(err, BaseException):
        return str(err) or type(err).__name__
    if isinstance(err, dict):
        msg = err.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg
        if err.get("error") is not None:
            return raw_error_message(err.get("error"))
        try:
            return json.dumps(err, ensure_ascii=False)
        except (TypeError, ValueError):
            return str(err)
    return str(err)


def format_error(err: Any) -> str:
    if err is None:
        return UNKNOWN_ERROR_MESSAGE
    return strip_error_code(raw_error_message(err)) or UNKNOWN_ERROR_MESSAGE


def with_prefix(prefix: str | None, err: Any) -> str:
    p = (prefix or "").strip()
    msg = format_error(err)
    return f"{p}: {msg}" if p else msg


@dataclass(frozen=True)
class HintRule:
    category: str
    hint: str
    codes: Tuple[str, ...] = ()
    # Matched case-insensitively against the raw message.
    phrases: Tuple[str, ...] = ()

    def matches(self, code: str, lowered: str) -> bool:
        if code and code in self.codes:
            return True
        return any(p.lower() in lowered for p in self.phrases)


DEFAULT_HINT_RULES: Tuple[HintRule, ...] = (
    HintRule(
        category="credential_missing",
        hint="Hint: open Settings and enter an API Key; make sure the key is valid and not expired.",
        codes=(MISSING_CREDENTIAL_CODE,),
        phrases=("未配置 API Key", "API Key"),
    ),
    HintRule(
        category="credential_invalid",
        hint="Hint: the API Key may be invalid or lack permission; update it in Settings.",
        codes=("E_HTTP_401", "E_HTTP_403"),
        phrases=("401", "unauthorized", "鉴权", "无权限"),
    ),
    HintRule(
        category="rate_limited",
        hint="Hint: requests are being rate limited; wait 30-60 seconds before retrying or run fewer operations at once.",
        codes=("E_HTTP_429",),
        phrases=("429", "rate limit", "限流"),
    ),
    HintRule(
        category="timeout",
        hint="Hint: the network may be unstable; check your proxy/network and retry (flex-tier jobs may need a longer timeout).",
        codes=("E_TIMEOUT",),
        phrases=("timeout", "timed out", "deadline exceeded", "超时"),
    ),
    HintRule(
        category="network",
        hint="Hint: check your network/proxy configuration and confirm the server address is reachable.",
        codes=("E_NETWORK",),
        phrases=("connection refused", "network", "网络"),
    ),
)

# Phrases that, like the missing-credential code, should bring up credential entry.
_OPEN_SETTINGS_PHRASES: Tuple[str, ...] = ("未配置 API Key", "API Key is not configured")


@dataclass(frozen=True)
class ErrorClassifier:
    """
    Turns a raw error into {message, code, hint}. First matching rule wins.
    """

    rules: Tuple[HintRule, ...] = field(default=DEFAULT_HINT_RULES)

    def classify(self, err: Any) -> ClassifiedError:
        raw = raw_error_message(err)
        code = extract_error_code(raw)
        if not code and isinstance(err, CutroomError):
            code = err.code
        lowered = raw.lower()

        category = ""
        hint = ""
        for rule in self.rules:
            if rule.matches(code, lowered):
                category = rule.category
                hint = rule.hint
                break

        open_settings = code == MISSING_CREDENTIAL_CODE or any(p.lower() in lowered for p in _OPEN_SETTINGS_PHRASES)
        return ClassifiedError(
            message=format_error(err),
            code=code,
            hint=hint,
            category=category,
            open_settings=open_settings,
        )
