from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CUTROOM_", extra="ignore")

    # Studio backend (see mock_api/app.py for a local stand-in)
    api_base_url: str = "http://127.0.0.1:8765"
    api_token: str | None = None
    api_timeout_s: float = 20.0

    # Polling: default delay when no job suggests one, and the floor no suggestion may go below.
    poll_interval_s: float = 3.5
    poll_floor_s: float = 1.0

    # Identical background errors are shown at most once per window.
    error_dedup_ttl_s: float = 60.0
    # Without an error code, the dedup key uses this many chars of the stripped message.
    error_key_prefix_chars: int = 120

    # JSONL audit trail; disabled when unset.
    audit_log_path: str | None = None
    log_level: str = "INFO"
