from __future__ import annotations

import json
from pathlib import Path

import pytest

from ghcore import telemetry
from ghcore.config import ClientConfig


def test_resolve_config_honours_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("GHCORE_TELEMETRY", "1")
    monkeypatch.setenv("GHCORE_TELEMETRY_PATH", "custom.log")
    cfg = ClientConfig(telemetry_enabled=False, telemetry_store_path=str(tmp_path / "ignored.log"))

    resolved = telemetry.resolve_config(cfg)

    assert resolved.enabled is True
    assert resolved.store_path.name == "custom.log"


def test_emit_event_writes_line_when_enabled(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    target = tmp_path / "telemetry.jsonl"
    cfg = ClientConfig(telemetry_enabled=True, telemetry_store_path=str(target))

    class FakeTime:
        def strftime(self, fmt: str, ts: object) -> str:
            return "2026-01-01T00:00:00Z"

        def gmtime(self) -> object:
            return object()

    monkeypatch.setattr(telemetry, "time", FakeTime())
    written = telemetry.emit_event(
        cfg, "New-GitHubIssue", duration_seconds=0.25, properties={"repo": "acme/widgets"}
    )

    payload = json.loads(target.read_text(encoding="utf-8").splitlines()[0])
    assert written is True
    assert payload["event"] == "New-GitHubIssue"
    assert payload["duration_ms"] == 250
    assert payload["timestamp"] == "2026-01-01T00:00:00Z"
    assert payload["properties"] == {"repo": "acme/widgets"}


def test_emit_event_skips_when_disabled(tmp_path: Path) -> None:
    cfg = ClientConfig(telemetry_enabled=False, telemetry_store_path=str(tmp_path / "telemetry.jsonl"))
    assert telemetry.emit_event(cfg, "Get-GitHubIssue", duration_seconds=0.5) is False
    assert not (tmp_path / "telemetry.jsonl").exists()
