"""
Error taxonomy for the workspace client.

- RemoteError: anything that came back from (or failed on the way to) the backend.
- PreconditionError: raised locally, before any network call is made.
- MissingCredentialError: the precondition that asks the user to open settings.

Messages follow the backend convention "[E_CODE] human text"; the code is kept on the
exception so callers never have to re-parse it.
"""

from __future__ import annotations

import re
from typing import Optional

_CODE_PREFIX_RE = re.compile(r"^\s*\[([A-Z0-9_]+)\]", re.IGNORECASE)

MISSING_CREDENTIAL_CODE = "E_APIKEY_MISSING"


def extract_error_code(message: str | None) -> str:
    m = _CODE_PREFIX_RE.match(str(message or ""))
    return m.group(1).upper() if m else ""


class CutroomError(Exception):
    """Base exception for all workspace client failures."""

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = (code or extract_error_code(message)).upper()


class RemoteError(CutroomError):
    """Transport or backend failure from a remote call."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, code: Optional[str] = None) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code


class PreconditionError(CutroomError):
    """Raised before a remote call when the request cannot possibly succeed."""


class MissingCredentialError(PreconditionError):
    """No generation API key is configured on the backend."""

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(
            message
            or f"[{MISSING_CREDENTIAL_CODE}] API Key is not configured: open Settings and enter an API Key, then retry.",
            code=MISSING_CREDENTIAL_CODE,
        )
