"""Pytest configuration for ghcore tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`), and provides
fake HTTP sessions so no test touches the network.
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@dataclass
class DummyResponse:
    status_code: int
    payload: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    reason: str = ""
    url: str = ""

    @property
    def text(self) -> str:
        payload = self.payload
        if payload is None:
            return ""
        if isinstance(payload, (dict, list)):
            return json.dumps(payload)
        return str(payload)


class DummySession:
    def __init__(self, responses: list[Any]):
        self._responses = list(responses)
        self.request_log: list[tuple[str, str, dict[str, Any]]] = []
        self.headers: dict[str, str] = {}
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any) -> Any:
        self.request_log.append((method, url, kwargs))
        if not self._responses:
            raise AssertionError("No response queued for request")
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "GHCORE_API_HOST",
        "GHCORE_DISABLE_UPDATE_CHECK",
        "GHCORE_TELEMETRY",
        "GHCORE_TELEMETRY_PATH",
        "GHCORE_RETRY_ATTEMPTS",
        "GHCORE_RETRY_BASE",
        "GHCORE_RETRY_MAX_SLEEP",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def response_cls() -> type[DummyResponse]:
    return DummyResponse


@pytest.fixture
def session_cls() -> type[DummySession]:
    return DummySession
