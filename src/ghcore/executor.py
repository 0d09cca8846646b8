"""Request executor for the GitHub GraphQL and REST transports.

Every call goes through :meth:`RequestExecutor._perform`, which issues one
HTTP request with a scoped TLS floor, retries rate-limited responses, and
turns every failure into a classified :class:`~ghcore.errors.GitHubAPIError`.
GraphQL calls additionally inspect 200 responses for an ``errors`` array.
"""

from __future__ import annotations

import json
import time
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, NoReturn
from urllib.parse import urlencode

import requests
from requests.utils import parse_header_links

from . import __version__, telemetry
from .config import ClientConfig
from .errors import (
    UNSPECIFIED_ERROR_ID,
    ErrorKind,
    ErrorRecord,
    GraphQLAPIError,
    HttpFailure,
    TransportError,
    TransportFailure,
    UnknownFailure,
    classify_failure,
    find_request_id,
    redact,
)
from .logging import StructuredLogger, get_logger
from .observability import get_tracer
from .retry import RetryConfig, TransientResponseError, is_transient_response, run_with_retries
from .transport import (
    HTTP_ERROR_STATUS,
    Request,
    TLSFloorAdapter,
    build_headers,
    build_url,
    failure_from_exception,
    failure_from_response,
    graphql_url,
    resolve_tls_version,
    tls_floor,
)

if TYPE_CHECKING:
    from .version_check import VersionCheckContext

NOT_FOUND_TYPE = "NOT_FOUND"
_JSON_CONTENT_TYPE = "application/json; charset=utf-8"


def api_error_record(
    payload: Any, headers: Mapping[str, Any] | None = None, target: str = ""
) -> ErrorRecord | None:
    """Build a record for a 200 response whose body carries GraphQL ``errors``.

    Returns None when the payload has no (or an empty) ``errors`` array.
    """
    if not isinstance(payload, Mapping):
        return None
    errors = payload.get("errors")
    if not isinstance(errors, list) or not errors:
        return None
    first = errors[0] if isinstance(errors[0], Mapping) else {"message": str(errors[0])}

    error_type = first.get("type")
    if error_type is None:
        kind, error_id = ErrorKind.UNSPECIFIED, UNSPECIFIED_ERROR_ID
    elif error_type == NOT_FOUND_TYPE:
        kind, error_id = ErrorKind.NOT_FOUND, NOT_FOUND_TYPE
    else:
        kind, error_id = ErrorKind.INVALID_OPERATION, str(error_type)

    messages = [str(first.get("message") or "GraphQL request returned errors")]
    correlation_id = find_request_id(headers)
    if correlation_id:
        messages.append(f"RequestId: {correlation_id}")
    return ErrorRecord(
        messages=tuple(redact(m) for m in messages),
        kind=kind,
        correlation_id=correlation_id,
        target=target,
        error_id=error_id,
    )


class RequestExecutor:
    """Issue GitHub API calls and normalise their failures."""

    def __init__(
        self,
        *,
        config: ClientConfig | None = None,
        token: str | None = None,
        session: requests.Session | None = None,
        version_checker: VersionCheckContext | None = None,
        logger: StructuredLogger | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self._token = token
        self._session = session or requests.Session()
        self.version_checker = version_checker
        self.logger = logger or get_logger()
        self.retry_config = retry_config or RetryConfig(
            attempts=self.config.retry_attempts, base_sleep=self.config.retry_base_sleep
        )
        self._min_tls = resolve_tls_version(self.config.min_tls_version)
        self._tls_adapter = TLSFloorAdapter(self._min_tls)
        self.user_agent = f"{self.config.user_agent}/{__version__}"

    # ---- request assembly ---------------------------------------------
    def headers(
        self,
        accept: str | Sequence[str] | None = None,
        extra: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        return build_headers(
            user_agent=self.user_agent, token=self._token, accept=accept, extra=extra
        )

    def graphql_request(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        description: str | None = None,
    ) -> Request:
        return Request(
            method="POST",
            url=graphql_url(self.config.api_host),
            body={"query": query, "variables": dict(variables or {})},
            headers=self.headers(),
            timeout=self.config.timeout_seconds,
            description=description,
        )

    def rest_request(
        self,
        method: str,
        uri_fragment: str,
        *,
        body: Any = None,
        accept: str | Sequence[str] | None = None,
        params: Mapping[str, Any] | None = None,
        extra_headers: Mapping[str, str] | None = None,
        description: str | None = None,
    ) -> Request:
        url = build_url(self.config.api_host, uri_fragment)
        if params:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}{urlencode(params, doseq=True)}"
        return Request(
            method=method,
            url=url,
            body=body,
            headers=self.headers(accept=accept, extra=extra_headers),
            timeout=self.config.timeout_seconds,
            description=description,
        )

    # ---- GraphQL ------------------------------------------------------
    def execute(
        self,
        request: Request,
        *,
        event_name: str | None = None,
        event_properties: Mapping[str, Any] | None = None,
    ) -> Any:
        """Run a GraphQL request and return the parsed body unchanged.

        Raises TransportError for network/HTTP failures and GraphQLAPIError
        when a successful response carries an ``errors`` array.
        """
        payload, _ = self._perform(
            request,
            graphql=True,
            event_name=event_name,
            event_properties=event_properties,
        )
        return payload

    def graphql(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        description: str | None = None,
        event_name: str | None = None,
        event_properties: Mapping[str, Any] | None = None,
    ) -> Any:
        request = self.graphql_request(query, variables, description=description)
        return self.execute(
            request, event_name=event_name, event_properties=event_properties
        )

    # ---- REST ---------------------------------------------------------
    def invoke(
        self,
        method: str,
        uri_fragment: str,
        *,
        body: Any = None,
        accept: str | Sequence[str] | None = None,
        params: Mapping[str, Any] | None = None,
        extra_headers: Mapping[str, str] | None = None,
        description: str | None = None,
        event_name: str | None = None,
        event_properties: Mapping[str, Any] | None = None,
    ) -> Any:
        request = self.rest_request(
            method,
            uri_fragment,
            body=body,
            accept=accept,
            params=params,
            extra_headers=extra_headers,
            description=description,
        )
        payload, _ = self._perform(
            request,
            graphql=False,
            event_name=event_name,
            event_properties=event_properties,
        )
        return payload

    def invoke_paged(
        self,
        uri_fragment: str,
        *,
        accept: str | Sequence[str] | None = None,
        params: Mapping[str, Any] | None = None,
        description: str | None = None,
        event_name: str | None = None,
        event_properties: Mapping[str, Any] | None = None,
    ) -> list[Any]:
        """GET every page of a list endpoint by following ``Link: rel="next"``."""
        request: Request | None = self.rest_request(
            "GET", uri_fragment, accept=accept, params=params, description=description
        )
        results: list[Any] = []
        while request is not None:
            payload, response = self._perform(
                request,
                graphql=False,
                event_name=event_name,
                event_properties=event_properties,
            )
            if isinstance(payload, list):
                results.extend(payload)
            elif payload is not None:
                results.append(payload)
            next_url = _next_page_url(response)
            request = (
                Request(
                    method="GET",
                    url=next_url,
                    headers=request.headers,
                    timeout=request.timeout,
                    description=request.description,
                )
                if next_url
                else None
            )
        return results

    def close(self) -> None:
        self._tls_adapter.close()

    # ---- internals ----------------------------------------------------
    def _perform(
        self,
        request: Request,
        *,
        graphql: bool,
        event_name: str | None,
        event_properties: Mapping[str, Any] | None,
    ) -> tuple[Any, Any]:
        if self.version_checker is not None:
            self.version_checker.check_if_due()

        start = time.monotonic()
        succeeded = False
        with get_tracer().start_as_current_span("ghcore.request") as span:
            span.set_attribute("http.method", request.method)
            span.set_attribute("http.url", request.url)
            try:
                response = self._send(request)
                span.set_attribute("http.status_code", int(response.status_code))
                payload = self._decode(response, request, strict=graphql)
                if graphql:
                    record = api_error_record(payload, response.headers, request.url)
                    if record is not None:
                        self.logger.log_error_record(record)
                        raise GraphQLAPIError(record, response_text=response.text)
                succeeded = True
                return payload, response
            finally:
                span.set_attribute("ghcore.succeeded", succeeded)
                duration = time.monotonic() - start
                self.logger.log_performance(
                    request.description or f"{request.method} {request.url}",
                    duration * 1000,
                )
                self._emit_usage(event_name, event_properties, duration, succeeded)

    def _send(self, request: Request) -> Any:
        data: bytes | None = None
        headers = dict(request.headers)
        if request.body is not None:
            data = json.dumps(request.body).encode("utf-8")
            headers.setdefault("Content-Type", _JSON_CONTENT_TYPE)

        def _run() -> Any:
            with tls_floor(self._session, self._min_tls, self._tls_adapter) as session:
                response = session.request(
                    request.method,
                    request.url,
                    data=data,
                    headers=headers,
                    timeout=request.timeout,
                )
            if is_transient_response(response):
                raise TransientResponseError(response)
            return response

        try:
            response = run_with_retries(_run, cfg=self.retry_config)
        except TransientResponseError as exc:
            self._fail(failure_from_response(exc.response, target=request.url), request, exc)
        except requests.RequestException as exc:
            self._fail(failure_from_exception(exc, request.url), request, exc)
        except Exception as exc:  # noqa: BLE001
            self._fail(
                UnknownFailure(message=str(exc) or exc.__class__.__name__, target=request.url),
                request,
                exc,
            )
        if response.status_code >= HTTP_ERROR_STATUS:
            self._fail(failure_from_response(response, target=request.url), request)
        return response

    def _decode(self, response: Any, request: Request, *, strict: bool) -> Any:
        text = response.text
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError as exc:
            if not strict:
                return text
            self._fail(
                HttpFailure(
                    message="response body is not valid JSON",
                    target=request.url,
                    body=text,
                    headers=response.headers,
                ),
                request,
                exc,
            )

    def _fail(
        self,
        failure: TransportFailure,
        request: Request,
        cause: BaseException | None = None,
    ) -> NoReturn:
        record = classify_failure(failure, request.description)
        self.logger.log_error_record(record, method=request.method)
        body = failure.body if isinstance(failure, HttpFailure) else None
        error = TransportError(
            record, response_text=body if isinstance(body, str) else None
        )
        raise error from cause

    def _emit_usage(
        self,
        event_name: str | None,
        properties: Mapping[str, Any] | None,
        duration: float,
        succeeded: bool,
    ) -> None:
        if not event_name:
            return
        try:
            telemetry.emit_event(
                self.config,
                event_name,
                duration_seconds=duration,
                properties=properties,
                succeeded=succeeded,
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.debug(
                "telemetry emission failed", event=event_name, error=str(exc)
            )


def _next_page_url(response: Any) -> str | None:
    headers = getattr(response, "headers", None) or {}
    link_header = headers.get("Link") or headers.get("link")
    if not link_header:
        return None
    for link in parse_header_links(link_header):
        if link.get("rel") == "next" and link.get("url"):
            return str(link["url"])
    return None


__all__ = ["RequestExecutor", "api_error_record"]
