"""Wait for a remote resource to leave its transitional lifecycle states."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any

from .logging import StructuredLogger, get_logger

MIN_SLEEP_SECONDS = 2

TRANSITIONAL_STATUSES = frozenset(
    {
        "Awaiting",
        "Exporting",
        "Provisioning",
        "Queued",
        "Rebuilding",
        "ShuttingDown",
        "Starting",
        "Updating",
    }
)
TERMINAL_STATUSES = frozenset(
    {
        "Archived",
        "Available",
        "Created",
        "Deleted",
        "Failed",
        "Moved",
        "Shutdown",
        "Unavailable",
        "Unknown",
    }
)


class StatusClass(str, Enum):
    TRANSITIONAL = "transitional"
    TERMINAL = "terminal"
    UNRECOGNIZED = "unrecognized"


@lru_cache(maxsize=8)
def _folded(statuses: frozenset[str]) -> frozenset[str]:
    return frozenset(s.casefold() for s in statuses)


@dataclass(frozen=True)
class StatusVocabulary:
    transitional: frozenset[str] = TRANSITIONAL_STATUSES
    terminal: frozenset[str] = TERMINAL_STATUSES

    def classify(self, status: str | None) -> StatusClass:
        if status is None:
            return StatusClass.UNRECOGNIZED
        folded = status.casefold()
        if folded in _folded(self.transitional):
            return StatusClass.TRANSITIONAL
        if folded in _folded(self.terminal):
            return StatusClass.TERMINAL
        return StatusClass.UNRECOGNIZED

    def is_transitional(self, status: str | None) -> bool:
        # Unrecognized statuses end the wait rather than looping on them.
        return self.classify(status) is StatusClass.TRANSITIONAL


DEFAULT_VOCABULARY = StatusVocabulary()


class PollTimeoutError(RuntimeError):
    """The resource was still transitional when the poll timeout expired."""

    def __init__(self, resource_id: str, last_status: str | None, payload: Any, elapsed: float):
        super().__init__(
            f"Timed out after {elapsed:.0f}s waiting for {resource_id}; "
            f"last observed status: {last_status}"
        )
        self.resource_id = resource_id
        self.last_status = last_status
        self.payload = payload
        self.elapsed = elapsed


def status_of(payload: Any) -> str | None:
    """Read the lifecycle status from a fetched payload."""
    if payload is None:
        return None
    if isinstance(payload, Mapping):
        for key in ("state", "status"):
            value = payload.get(key)
            if value is not None:
                return str(value)
        return None
    if isinstance(payload, str):
        return payload
    value = getattr(payload, "state", None) or getattr(payload, "status", None)
    return str(value) if value is not None else str(payload)


def wait_until_stable(
    resource_id: str,
    fetch_status: Callable[[str], Any],
    sleep_seconds: float = MIN_SLEEP_SECONDS,
    *,
    timeout_seconds: float | None = None,
    vocabulary: StatusVocabulary = DEFAULT_VOCABULARY,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    logger: StructuredLogger | None = None,
) -> Any:
    """Poll ``fetch_status`` until the resource reaches a non-transitional status.

    Each iteration sleeps first (never less than ``MIN_SLEEP_SECONDS``), then
    fetches. The final payload is returned unchanged; deciding whether the
    terminal status means success is left to the caller. Without
    ``timeout_seconds`` the wait is unbounded.
    """
    log = logger or get_logger()
    interval = max(float(sleep_seconds), MIN_SLEEP_SECONDS)
    started = clock()
    with log.timed_operation("wait_until_stable", resource_id=resource_id):
        while True:
            sleep(interval)
            payload = fetch_status(resource_id)
            status = status_of(payload)
            category = vocabulary.classify(status)
            log.info(
                f"{resource_id} status: {status}",
                resource_id=resource_id,
                resource_status=status,
            )
            if category is StatusClass.UNRECOGNIZED:
                log.warning(
                    f"{resource_id} reported unrecognized status {status!r}; treating it as terminal",
                    resource_id=resource_id,
                    resource_status=status,
                )
            if category is not StatusClass.TRANSITIONAL:
                return payload
            elapsed = clock() - started
            if timeout_seconds is not None and elapsed >= timeout_seconds:
                raise PollTimeoutError(resource_id, status, payload, elapsed)


__all__ = [
    "DEFAULT_VOCABULARY",
    "MIN_SLEEP_SECONDS",
    "PollTimeoutError",
    "StatusClass",
    "StatusVocabulary",
    "TERMINAL_STATUSES",
    "TRANSITIONAL_STATUSES",
    "status_of",
    "wait_until_stable",
]
