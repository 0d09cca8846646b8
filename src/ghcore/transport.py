from __future__ import annotations

import ssl
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter

from .errors import HttpFailure, NetworkFailure, TransportFailure, UnknownFailure

DEFAULT_API_HOST = "github.com"
DEFAULT_ACCEPT = "application/vnd.github+json"
DEFAULT_TIMEOUT = 30.0
HTTP_ERROR_STATUS = 400

_TLS_VERSIONS = {
    "TLSv1.2": ssl.TLSVersion.TLSv1_2,
    "TLSv1.3": ssl.TLSVersion.TLSv1_3,
}


@dataclass(frozen=True)
class Request:
    """A fully assembled HTTP call. Immutable once built."""

    method: str
    url: str
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout: float | None = DEFAULT_TIMEOUT
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))


def _bare_host(api_host: str) -> str:
    host = (api_host or DEFAULT_API_HOST).strip()
    if "://" in host:
        host = urlparse(host).netloc or host
    return host.rstrip("/")


def rest_base_url(api_host: str = DEFAULT_API_HOST) -> str:
    host = _bare_host(api_host)
    if host in (DEFAULT_API_HOST, f"api.{DEFAULT_API_HOST}"):
        return f"https://api.{DEFAULT_API_HOST}"
    return f"https://{host}/api/v3"


def graphql_url(api_host: str = DEFAULT_API_HOST) -> str:
    return f"{rest_base_url(api_host)}/graphql"


def build_url(api_host: str, uri_fragment: str) -> str:
    if uri_fragment.startswith("http"):
        return uri_fragment
    return f"{rest_base_url(api_host)}/{uri_fragment.lstrip('/')}"


def build_headers(
    *,
    user_agent: str,
    token: str | None = None,
    accept: str | Sequence[str] | None = None,
    extra: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Assemble request headers. Multiple accept values are comma-joined."""
    if accept is None:
        accept_value = DEFAULT_ACCEPT
    elif isinstance(accept, str):
        accept_value = accept
    else:
        accept_value = ",".join(accept)
    headers = {"User-Agent": user_agent, "Accept": accept_value}
    if token:
        headers["Authorization"] = f"token {token}"
    if extra:
        headers.update(extra)
    return headers


class TLSFloorAdapter(HTTPAdapter):
    """HTTPS adapter whose SSL context refuses anything below ``minimum``."""

    def __init__(self, minimum: ssl.TLSVersion = ssl.TLSVersion.TLSv1_2, **kwargs: Any):
        self.minimum = minimum
        super().__init__(**kwargs)

    def init_poolmanager(self, *args: Any, **kwargs: Any) -> None:
        context = ssl.create_default_context()
        context.minimum_version = self.minimum
        kwargs["ssl_context"] = context
        super().init_poolmanager(*args, **kwargs)


def resolve_tls_version(name: str) -> ssl.TLSVersion:
    try:
        return _TLS_VERSIONS[name]
    except KeyError:
        raise ValueError(
            f"Unsupported minimum TLS version {name!r}; expected one of {sorted(_TLS_VERSIONS)}"
        ) from None


@contextmanager
def tls_floor(
    session: requests.Session,
    minimum: ssl.TLSVersion = ssl.TLSVersion.TLSv1_2,
    adapter: TLSFloorAdapter | None = None,
) -> Iterator[requests.Session]:
    """Enforce a minimum TLS version on ``session`` for the duration of a call.

    Only requests' stock ``HTTPAdapter`` is swapped out; an adapter mounted by
    the caller keeps handling the call unchanged. Passing a long-lived
    ``adapter`` keeps its connection pool across calls. The previously mounted
    HTTPS adapter is restored on exit, including when the wrapped call raises.
    """
    adapters = getattr(session, "adapters", None)
    if adapters is None:  # test doubles without adapter support
        yield session
        return
    previous = adapters.get("https://")
    if previous is not None and type(previous) is not HTTPAdapter:
        yield session
        return
    floor = adapter or TLSFloorAdapter(minimum)
    session.mount("https://", floor)
    try:
        yield session
    finally:
        if adapter is None:
            floor.close()
        if previous is not None:
            session.mount("https://", previous)
        else:
            adapters.pop("https://", None)


def failure_from_exception(exc: BaseException, target: str = "") -> TransportFailure:
    """Map an exception raised by the HTTP stack onto a failure variant."""
    response = getattr(exc, "response", None)
    if response is not None and getattr(response, "status_code", None) is not None:
        return failure_from_response(response, target=target, message=str(exc))
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return NetworkFailure(message=str(exc) or exc.__class__.__name__, target=target)
    return UnknownFailure(
        message=str(exc) or exc.__class__.__name__, target=target
    )


def failure_from_response(
    response: Any, *, target: str = "", message: str | None = None
) -> HttpFailure:
    status = getattr(response, "status_code", None)
    reason = getattr(response, "reason", None)
    try:
        body = response.text
    except Exception:  # noqa: BLE001
        body = None
    headers = getattr(response, "headers", None) or {}
    return HttpFailure(
        message=message or f"HTTP {status}",
        target=target or str(getattr(response, "url", "") or ""),
        status=status,
        reason=reason,
        body=body,
        headers=headers,
    )


__all__ = [
    "DEFAULT_ACCEPT",
    "DEFAULT_API_HOST",
    "DEFAULT_TIMEOUT",
    "HTTP_ERROR_STATUS",
    "Request",
    "TLSFloorAdapter",
    "build_headers",
    "build_url",
    "failure_from_exception",
    "failure_from_response",
    "graphql_url",
    "resolve_tls_version",
    "rest_base_url",
    "tls_floor",
]
