from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import Any

import requests

from .config import ClientConfig, load_config
from .executor import RequestExecutor
from .logging import StructuredLogger, configure_logging, get_logger
from .polling import wait_until_stable
from .version_check import VersionCheckContext


@dataclass
class GitHubClient:
    """Application root: owns the session, executor and release-check cache.

    Resource operations call :meth:`graphql`, :meth:`rest` and
    :meth:`rest_paged`, and :meth:`wait_until_stable` when a caller asks to
    block until a start/stop/create has converged.
    """

    token: str | None = field(default=None, repr=False)
    config: ClientConfig = field(default_factory=load_config)
    session: requests.Session | None = field(default=None, repr=False)
    version_checker: VersionCheckContext | None = None
    logger: StructuredLogger | None = field(default=None, repr=False)
    executor: RequestExecutor = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = self.logger or get_logger()
        self.session = self.session or requests.Session()
        if self.version_checker is None:
            self.version_checker = VersionCheckContext(
                enabled=self.config.update_check_enabled,
                index_url=self.config.update_check_index_url,
                logger=self.logger,
            )
        self.executor = RequestExecutor(
            config=self.config,
            token=self.token,
            session=self.session,
            version_checker=self.version_checker,
            logger=self.logger,
        )
        self.version_checker.check_if_due()

    @classmethod
    def from_config_path(
        cls, config_path: str | Path, *, token: str | None = None, **kwargs: Any
    ) -> GitHubClient:
        cfg = load_config(config_path)
        logger = kwargs.pop("logger", None) or configure_logging(
            json_logging=cfg.logging_json_enabled, level=cfg.logging_level
        )
        return cls(token=token, config=cfg, logger=logger, **kwargs)

    def graphql(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        description: str | None = None,
        event_name: str | None = None,
        event_properties: Mapping[str, Any] | None = None,
    ) -> Any:
        return self.executor.graphql(
            query,
            variables,
            description=description,
            event_name=event_name,
            event_properties=event_properties,
        )

    def rest(
        self,
        method: str,
        uri_fragment: str,
        *,
        body: Any = None,
        accept: str | Sequence[str] | None = None,
        params: Mapping[str, Any] | None = None,
        description: str | None = None,
        event_name: str | None = None,
        event_properties: Mapping[str, Any] | None = None,
    ) -> Any:
        return self.executor.invoke(
            method,
            uri_fragment,
            body=body,
            accept=accept,
            params=params,
            description=description,
            event_name=event_name,
            event_properties=event_properties,
        )

    def rest_paged(
        self,
        uri_fragment: str,
        *,
        accept: str | Sequence[str] | None = None,
        params: Mapping[str, Any] | None = None,
        description: str | None = None,
        event_name: str | None = None,
    ) -> list[Any]:
        return self.executor.invoke_paged(
            uri_fragment,
            accept=accept,
            params=params,
            description=description,
            event_name=event_name,
        )

    def wait_until_stable(
        self,
        resource_id: str,
        fetch_status: Callable[[str], Any],
        *,
        sleep_seconds: float | None = None,
        timeout_seconds: float | None = None,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> Any:
        """Block until ``resource_id`` leaves its transitional states.

        Defaults come from ``polling.sleep_seconds`` and
        ``polling.timeout_seconds`` in the configuration.
        """
        extra: dict[str, Any] = {}
        if sleep is not None:
            extra["sleep"] = sleep
        if clock is not None:
            extra["clock"] = clock
        return wait_until_stable(
            resource_id,
            fetch_status,
            self.config.poll_sleep_seconds if sleep_seconds is None else sleep_seconds,
            timeout_seconds=(
                self.config.poll_timeout_seconds if timeout_seconds is None else timeout_seconds
            ),
            logger=self.logger,
            **extra,
        )

    def close(self) -> None:
        if self.version_checker is not None:
            self.version_checker.shutdown()
        self.executor.close()
        if self.session is not None:
            self.session.close()

    def __enter__(self) -> GitHubClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


__all__ = ["GitHubClient"]
