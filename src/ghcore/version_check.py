"""Daily, non-blocking check for a newer published release of ghcore.

The check is keyed by calendar day. The first consultation of a day submits a
feed download to a daemon background thread and returns immediately; later
consultations poll that fetch's future and, once it has finished, record the
outcome for the rest of the day. Any problem while fetching or parsing fails
open: ``has_latest_version`` is set to True and nothing is raised.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Executor, Future
from concurrent.futures import wait as wait_futures
from datetime import date
from enum import Enum
from typing import Any
from xml.etree import (  # nosec B405 - feed comes from the configured package index
    ElementTree,
)

import requests
from packaging.version import Version

from . import __version__
from .config import DEFAULT_INDEX_URL
from .logging import StructuredLogger, get_logger

MODULE_NAME = "ghcore"
FEED_TIMEOUT_SECONDS = 30

Fetcher = Callable[[str], str]


class CheckState(str, Enum):
    NOT_STARTED = "NotStarted"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


def feed_url(index_url: str, module_name: str) -> str:
    return f"{index_url.rstrip('/')}/api/v2/FindPackagesById()?id='{module_name}'"


def fetch_feed(url: str) -> str:
    """Download the package feed; raises on transport or HTTP errors."""
    response = requests.get(
        url,
        headers={"User-Agent": f"{MODULE_NAME}/{__version__}"},
        timeout=FEED_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    return response.text


def first_feed_document(body: str) -> str:
    """Return the first feed document from a response body.

    The index has been observed returning two near-identical feeds separated
    by a newline, so only the first line is kept. A standalone XML declaration
    line is joined with the document that follows it.
    """
    lines = [line for line in body.lstrip("\ufeff").splitlines() if line.strip()]
    if not lines:
        raise ValueError("empty feed response")
    first = lines[0].strip()
    if first.startswith("<?xml") and first.endswith("?>") and len(lines) > 1:
        first = f"{first}{lines[1].strip()}"
    return first


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].lower()


def published_versions(body: str) -> list[Version]:
    """Extract every ``entry/properties/Version`` value from an Atom feed."""
    root = ElementTree.fromstring(first_feed_document(body))  # nosec B314
    versions: list[Version] = []
    for element in root.iter():
        if _local_name(element.tag) != "properties":
            continue
        for child in element:
            if _local_name(child.tag) == "version" and child.text:
                versions.append(Version(child.text.strip()))
    if not versions:
        raise ValueError("feed contains no version entries")
    return versions


class DaemonThreadExecutor(Executor):
    """Run each submitted call on its own daemon thread.

    Interpreter exit never waits for an outstanding fetch.
    """

    def __init__(self, thread_name_prefix: str = "ghcore-version-check") -> None:
        self._thread_name_prefix = thread_name_prefix
        self._count = 0

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future[Any]:
        future: Future[Any] = Future()
        self._count += 1

        def _run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                result = fn(*args, **kwargs)
            except Exception as exc:  # noqa: BLE001
                future.set_exception(exc)
            else:
                future.set_result(result)

        threading.Thread(
            target=_run, name=f"{self._thread_name_prefix}-{self._count}", daemon=True
        ).start()
        return future


class VersionCheckContext:
    """Per-process cache for the daily release check.

    ``fetch`` and ``today`` are injectable so tests can drive the state machine
    with a fake feed and a fake calendar.
    """

    def __init__(
        self,
        *,
        module_name: str = MODULE_NAME,
        module_version: str = __version__,
        enabled: bool = True,
        index_url: str = DEFAULT_INDEX_URL,
        fetch: Fetcher | None = None,
        today: Callable[[], date] = date.today,
        executor_factory: Callable[[], Executor] | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.module_name = module_name
        self.module_version = Version(module_version)
        self.enabled = enabled
        self.index_url = index_url
        self._fetch = fetch or fetch_feed
        self._today = today
        self._executor_factory: Callable[[], Executor] = executor_factory or DaemonThreadExecutor
        self._executor: Executor | None = None
        self.logger = logger or get_logger()

        self.day_key: str | None = None
        self.state = CheckState.NOT_STARTED
        self.has_latest_version: bool | None = None
        self.latest_version: Version | None = None
        self.fetches_started = 0
        self._future: Future[str] | None = None

    def check_if_due(self, force: bool = False) -> None:
        """Start, poll or skip the daily check. Never blocks on the fetch."""
        if not self.enabled:
            return
        today = self._today().isoformat()
        if force or self.day_key != today:
            self._launch(today)
            return
        if self.state is CheckState.RUNNING:
            self._collect()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for an outstanding fetch and record its outcome.

        Intended for orderly shutdown and tests; returns False if the fetch is
        still running when ``timeout`` expires.
        """
        future = self._future
        if future is None or self.state is not CheckState.RUNNING:
            return True
        done, _ = wait_futures([future], timeout=timeout)
        if not done:
            return False
        self._collect()
        return True

    def shutdown(self) -> None:
        if self._future is not None:
            self._future.cancel()
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    # ---- internals ----------------------------------------------------
    def _launch(self, day_key: str) -> None:
        if self._future is not None:
            self._future.cancel()
        self.day_key = day_key
        self.state = CheckState.NOT_STARTED
        self.has_latest_version = None
        self.latest_version = None
        if self._executor is None:
            self._executor = self._executor_factory()
        url = feed_url(self.index_url, self.module_name)
        self._future = self._executor.submit(self._fetch, url)
        self.fetches_started += 1
        self.state = CheckState.RUNNING
        self.logger.debug("version check started", url=url, day=day_key)

    def _collect(self) -> None:
        future = self._future
        if future is None or not future.done():
            return
        self._future = None
        if future.cancelled():
            self._fail_open("version check was cancelled")
            return
        error = future.exception()
        if error is not None:
            self._fail_open(f"version check fetch failed: {error}")
            return
        self._apply(future.result())

    def _apply(self, body: str) -> None:
        try:
            latest = max(published_versions(body))
        except Exception as exc:  # noqa: BLE001
            self._fail_open(f"version check response could not be parsed: {exc}")
            return

        self.latest_version = latest
        self.state = CheckState.COMPLETED
        if self.module_version == latest:
            self.has_latest_version = True
            self.logger.debug("running the latest published version", version=str(latest))
        elif self.module_version > latest:
            self.has_latest_version = True
            self.logger.info(
                f"{self.module_name} {self.module_version} is newer than the latest "
                f"published version {latest}",
                version=str(self.module_version),
                latest_version=str(latest),
            )
        else:
            self.has_latest_version = False
            self.logger.warning(
                f"A newer version of {self.module_name} is available ({latest}); "
                f"you are running {self.module_version}. Consider upgrading.",
                version=str(self.module_version),
                latest_version=str(latest),
            )

    def _fail_open(self, reason: str) -> None:
        self.state = CheckState.FAILED
        self.has_latest_version = True
        self.logger.debug(reason, day=self.day_key)


__all__ = [
    "CheckState",
    "DaemonThreadExecutor",
    "VersionCheckContext",
    "feed_url",
    "fetch_feed",
    "first_feed_document",
    "published_versions",
]
