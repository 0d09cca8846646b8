"""Centralized retry / backoff helpers.

Provides a single small function ``run_with_retries`` that encapsulates
exponential backoff with jitter for transient GitHub failure modes (primary
and secondary rate limits, abuse detection).

Environment overrides:
  GHCORE_RETRY_ATTEMPTS (default 3)
  GHCORE_RETRY_BASE (seconds base, default 0.5)
  GHCORE_RETRY_MAX_SLEEP (optional cap on any single sleep)

The caller supplies a thunk returning the desired result or raising
:class:`TransientResponseError`. Only that error triggers a retry; every other
failure propagates immediately.
"""

from __future__ import annotations

import os
import random
import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .logging import get_logger

T = TypeVar("T")

TRANSIENT_TOKENS = (
    "rate limit",
    "abuse detection",
    "secondary rate",
)
RATE_LIMIT_STATUS = 429
FORBIDDEN_STATUS = 403

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)
_RE_SECONDS_HINT = re.compile(r"wait\s*(\d+)\s*seconds", re.IGNORECASE)
_JITTER = random.SystemRandom()


class TransientResponseError(Exception):
    """A response that should be retried after a pause."""

    def __init__(self, response: Any):
        self.response = response
        self.text = getattr(response, "text", "") or ""
        super().__init__(f"transient HTTP {getattr(response, 'status_code', '?')}")


def _extract_explicit_backoff(text: str, headers: Mapping[str, str] | None = None) -> float | None:
    """Extract an explicit backoff (seconds) from a Retry-After header or body text.

    Supports patterns like:
      Retry-After: 12
      retry after 12
      wait 30 seconds
    Returns None if no valid positive value found.
    """
    if headers:
        header = headers.get("Retry-After")
        if header is not None:
            try:
                val = float(header)
                if val > 0:
                    return val
            except ValueError:
                pass
    if not text:
        return None
    m = _RE_RETRY_AFTER.search(text)
    if m:
        val = float(m.group(1))
        return val if val > 0 else None
    m2 = _RE_SECONDS_HINT.search(text)
    if m2:
        val = float(m2.group(1))
        return val if val > 0 else None
    return None


@dataclass
class RetryConfig:
    attempts: int = field(default_factory=lambda: int(os.environ.get("GHCORE_RETRY_ATTEMPTS", "3")))
    base_sleep: float = field(default_factory=lambda: float(os.environ.get("GHCORE_RETRY_BASE", "0.5")))


def is_transient(output: str) -> bool:
    out_lower = output.lower()
    return any(tok in out_lower for tok in TRANSIENT_TOKENS)


def is_transient_response(response: Any) -> bool:
    status = getattr(response, "status_code", None)
    if status == RATE_LIMIT_STATUS:
        return True
    if status == FORBIDDEN_STATUS:
        return is_transient(getattr(response, "text", "") or "")
    return False


def _compute_sleep(attempt: int, cfg: RetryConfig, exc: TransientResponseError) -> float:
    headers = getattr(exc.response, "headers", None)
    explicit = _extract_explicit_backoff(exc.text, headers)
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    sleep_for: float = explicit if explicit is not None else backoff
    max_cap_env = os.environ.get("GHCORE_RETRY_MAX_SLEEP")
    if max_cap_env:
        try:
            cap = float(max_cap_env)
            if cap >= 0:
                sleep_for = min(sleep_for, cap)
        except ValueError:  # pragma: no cover
            return sleep_for
    return sleep_for


def run_with_retries(fn: Callable[[], T], *, cfg: RetryConfig | None = None) -> T:
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    for attempt in range(1, attempts + 1):  # noqa: PLR2004
        try:
            return fn()
        except TransientResponseError as exc:
            if attempt >= attempts:
                raise
            sleep_for = _compute_sleep(attempt, cfg, exc)
            get_logger().warning(
                f"[retry] transient error, attempt {attempt}/{attempts}, sleeping {sleep_for:.2f}s",
                attempt=attempt,
                sleep_seconds=round(sleep_for, 2),
            )
            time.sleep(sleep_for)
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = [
    "RetryConfig",
    "TransientResponseError",
    "is_transient",
    "is_transient_response",
    "run_with_retries",
]
