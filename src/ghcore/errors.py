"""Error taxonomy, classification & redaction.

Every failure the request executor observes is first expressed as one of three
transport failure variants (built by :mod:`ghcore.transport`) and then
normalized into an :class:`ErrorRecord` by :func:`classify_failure`. The record
travels on a :class:`GitHubAPIError` subclass so callers can distinguish a
transport failure from an API-level (200-with-errors) failure by type, by
``record.kind`` or by ``record.error_id``.

Public API:
- classify_failure(failure, description=None) -> ErrorRecord
- find_request_id(headers) -> str | None
- redact(text) -> str
"""
from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

REQUEST_ID_HEADER = "X-GitHub-Request-Id"
UNSPECIFIED_ERROR_ID = "UnspecifiedError"

# Simple token patterns; can be expanded (e.g., GitHub token, private key markers)
_SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"ghp_[A-Za-z0-9]{20,40}"),  # GitHub classic tokens
    re.compile(r"gh[ousr]_[A-Za-z0-9]{20,40}"),  # OAuth / app / refresh tokens
    re.compile(r"github_pat_\w{20,}"),  # GitHub fine-grained tokens
    re.compile(r"(?i)(authorization:\s*(?:token|bearer)\s+)\S+"),
]

_REDACTION_PLACEHOLDER = "<redacted>"


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    INVALID_OPERATION = "InvalidOperation"
    UNSPECIFIED = "Unspecified"


@dataclass(frozen=True)
class NetworkFailure:
    """DNS, connection or timeout failure; no HTTP response was received."""

    message: str
    target: str = ""


@dataclass(frozen=True)
class HttpFailure:
    """Failure carrying an HTTP response (status, body and headers)."""

    message: str
    target: str = ""
    status: int | None = None
    reason: str | None = None
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class UnknownFailure:
    """Any exception shape the transport layer does not recognise."""

    message: str
    target: str = ""


TransportFailure = Union[NetworkFailure, HttpFailure, UnknownFailure]


@dataclass(frozen=True)
class ErrorRecord:
    messages: tuple[str, ...]
    kind: ErrorKind = ErrorKind.UNSPECIFIED
    correlation_id: str | None = None
    target: str = ""
    error_id: str = UNSPECIFIED_ERROR_ID
    status: int | None = None

    @property
    def message(self) -> str:
        return "\n".join(self.messages)

    def as_log_fields(self) -> dict[str, Any]:
        return {
            "error_kind": self.kind.value,
            "error_id": self.error_id,
            "request_id": self.correlation_id,
            "target": self.target,
            "status": self.status,
        }


class GitHubAPIError(RuntimeError):
    """Raised when the GitHub REST/GraphQL API returns an error."""

    def __init__(
        self,
        record: ErrorRecord,
        *,
        response_text: str | None = None,
    ):
        super().__init__(record.message)
        self.record = record
        self.status = record.status
        self.response_text = response_text

    @property
    def kind(self) -> ErrorKind:
        return self.record.kind

    @property
    def error_id(self) -> str:
        return self.record.error_id

    @property
    def correlation_id(self) -> str | None:
        return self.record.correlation_id


class TransportError(GitHubAPIError):
    """The HTTP call itself failed (network error or non-success status)."""


class GraphQLAPIError(GitHubAPIError):
    """The call succeeded at the HTTP level but the body carries ``errors``."""


def redact(text: str) -> str:
    """Redact sensitive tokens in arbitrary text.

    Authorization header values keep their scheme prefix so log lines remain
    readable (``Authorization: token <redacted>``).
    """
    if not text:
        return text
    redacted = text
    for pat in _SENSITIVE_PATTERNS:
        if pat.groups:
            redacted = pat.sub(lambda m: m.group(1) + _REDACTION_PLACEHOLDER, redacted)
        else:
            redacted = pat.sub(_REDACTION_PLACEHOLDER, redacted)
    return redacted


def find_request_id(headers: Mapping[str, Any] | None) -> str | None:
    """Return the request correlation id from response headers, if any.

    An exact (case-sensitive) key match wins; otherwise the headers are scanned
    case-insensitively so plain dicts and lower-cased header maps both work.
    """
    if not headers:
        return None
    value = headers.get(REQUEST_ID_HEADER)
    if value is None:
        wanted = REQUEST_ID_HEADER.lower()
        for key, candidate in headers.items():
            if isinstance(key, str) and key.lower() == wanted:
                value = candidate
                break
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    text = str(value).strip() if value is not None else ""
    return text or None


def _render_details(details: list[Any]) -> str:
    lines: list[str] = []
    for entry in details:
        if isinstance(entry, Mapping):
            lines.append(", ".join(f"{k}: {v}" for k, v in entry.items()))
        else:
            lines.append(str(entry))
    return "\n".join(lines)


def _body_text(body: Any) -> str | None:
    if body is None:
        return None
    if isinstance(body, bytes):
        try:
            return body.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(body, str):
        return body
    return None


def _body_fragments(body: Any) -> list[str]:
    if isinstance(body, Mapping):
        content: Any = body
    else:
        text = _body_text(body)
        if text is None or not text.strip():
            return []
        try:
            content = json.loads(text)
        except ValueError:
            return [text.strip()]
    if not isinstance(content, Mapping):
        return [str(content)]

    fragments: list[str] = []
    message = content.get("message")
    if message:
        fragments.append(str(message))
        doc_url = content.get("documentation_url")
        if doc_url:
            fragments.append(f"More info: {doc_url}")
    details = content.get("details")
    if isinstance(details, list) and details:
        fragments.append("Details:")
        fragments.append(_render_details(details))
    return fragments


def _summary(failure: TransportFailure, description: str | None) -> str:
    subject = description or (f"Request to {failure.target}" if failure.target else "Request")
    if isinstance(failure, HttpFailure) and failure.status is not None:
        status_line = f"{failure.status} {failure.reason}" if failure.reason else str(failure.status)
        return f"{subject} failed with HTTP {status_line}"
    detail = failure.message.strip().splitlines()[0] if failure.message.strip() else ""
    if isinstance(failure, NetworkFailure):
        return f"{subject} failed: network error{': ' + detail if detail else ''}"
    return f"{subject} failed{': ' + detail if detail else ''}"


def _classify(failure: TransportFailure, description: str | None) -> ErrorRecord:
    messages = [_summary(failure, description)]
    status: int | None = None
    correlation_id: str | None = None
    if isinstance(failure, HttpFailure):
        status = failure.status
        messages.extend(_body_fragments(failure.body))
        correlation_id = find_request_id(failure.headers)
        if correlation_id:
            messages.append(f"RequestId: {correlation_id}")
    return ErrorRecord(
        messages=tuple(redact(m) for m in messages),
        correlation_id=correlation_id,
        target=failure.target,
        status=status,
    )


def classify_failure(
    failure: TransportFailure, description: str | None = None
) -> ErrorRecord:
    """Normalize a transport failure into an :class:`ErrorRecord`.

    Never raises: anything unexpected while inspecting the failure degrades to
    a single-line record so the original failure is not masked.
    """
    try:
        return _classify(failure, description)
    except Exception as exc:  # noqa: BLE001
        target = getattr(failure, "target", "") or ""
        text = str(getattr(failure, "message", "") or exc) or "Request failed"
        return ErrorRecord(messages=(redact(text),), target=str(target))


__all__ = [
    "REQUEST_ID_HEADER",
    "UNSPECIFIED_ERROR_ID",
    "ErrorKind",
    "ErrorRecord",
    "NetworkFailure",
    "HttpFailure",
    "UnknownFailure",
    "TransportFailure",
    "GitHubAPIError",
    "TransportError",
    "GraphQLAPIError",
    "classify_failure",
    "find_request_id",
    "redact",
]
