from __future__ import annotations

import os

import pytest

from fakes import FakeBackend, studio_workspace


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Keep tests deterministic and isolated from developer machine env.
    """
    for k in list(os.environ.keys()):
        if k.startswith("CUTROOM_"):
            monkeypatch.delenv(k, raising=False)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend(studio_workspace())
