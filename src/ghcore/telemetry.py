"""Lightweight usage-event sink (opt-in)."""

from __future__ import annotations

import json
import os
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ghcore.config import ClientConfig

DEFAULT_FILENAME = "telemetry.jsonl"
DEFAULT_DIRNAME = ".ghcore"


@dataclass(frozen=True)
class TelemetryConfig:
    enabled: bool
    store_path: Path


def _environment_enabled() -> bool | None:
    flag = os.environ.get("GHCORE_TELEMETRY")
    if flag is None:
        return None
    return flag == "1"


def _environment_store_path(default_path: Path) -> Path:
    override = os.environ.get("GHCORE_TELEMETRY_PATH")
    if not override:
        return default_path
    override_path = Path(override)
    return (
        override_path
        if override_path.is_absolute()
        else default_path.with_name(override_path.name)
    )


def resolve_config(cfg: ClientConfig | None) -> TelemetryConfig:
    env_override = _environment_enabled()
    enabled = (
        env_override
        if env_override is not None
        else bool(cfg and cfg.telemetry_enabled)
    )
    base_path = (
        Path(cfg.telemetry_store_path)
        if cfg and cfg.telemetry_store_path
        else Path.home() / DEFAULT_DIRNAME / DEFAULT_FILENAME
    )
    store_path = _environment_store_path(base_path)
    return TelemetryConfig(enabled=enabled, store_path=store_path)


def emit_event(
    cfg: ClientConfig | None,
    event_name: str,
    *,
    duration_seconds: float,
    properties: Mapping[str, Any] | None = None,
    succeeded: bool = True,
) -> bool:
    """Append one usage event with its duration metric.

    Returns False when telemetry is disabled. Write errors propagate; callers
    decide whether telemetry failures matter.
    """
    config = resolve_config(cfg)
    if not config.enabled:
        return False
    payload: dict[str, Any] = {
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "event": event_name,
        "succeeded": bool(succeeded),
        "duration_ms": int(duration_seconds * 1000),
        "pid": os.getpid(),
        "version": getattr(__import__("ghcore"), "__version__", "unknown"),
    }
    if properties:
        payload["properties"] = dict(properties)
    config.store_path.parent.mkdir(parents=True, exist_ok=True)
    with config.store_path.open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(payload, separators=(",", ":"), default=str) + "\n")
    return True


__all__ = ["TelemetryConfig", "emit_event", "resolve_config"]
