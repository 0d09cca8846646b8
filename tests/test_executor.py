from __future__ import annotations

import json
from typing import Any

import pytest
import requests

from ghcore import telemetry
from ghcore.config import ClientConfig
from ghcore.errors import ErrorKind, GitHubAPIError, GraphQLAPIError, TransportError
from ghcore.executor import RequestExecutor, api_error_record
from ghcore.retry import RetryConfig

QUERY = "query { viewer { login } }"


class _CountingChecker:
    def __init__(self) -> None:
        self.calls = 0

    def check_if_due(self, force: bool = False) -> None:
        self.calls += 1


def _executor(session: Any, **kwargs: Any) -> RequestExecutor:
    kwargs.setdefault("retry_config", RetryConfig(attempts=1, base_sleep=0.0))
    return RequestExecutor(config=ClientConfig(), token="tkn", session=session, **kwargs)


def test_graphql_success_returns_body_unchanged(response_cls, session_cls):
    payload = {"data": {"viewer": {"login": "octocat", "repos": [1, 2, {"x": None}]}}}
    session = session_cls([response_cls(200, payload)])

    result = _executor(session).graphql(QUERY, {"first": 5}, description="Get viewer")

    assert result == payload
    method, url, kwargs = session.request_log[0]
    assert method == "POST"
    assert url == "https://api.github.com/graphql"
    assert json.loads(kwargs["data"].decode("utf-8")) == {"query": QUERY, "variables": {"first": 5}}
    assert kwargs["headers"]["Authorization"] == "token tkn"
    assert kwargs["headers"]["User-Agent"].startswith("ghcore/")
    assert kwargs["timeout"] == 30.0


def test_graphql_not_found_error(response_cls, session_cls):
    session = session_cls(
        [
            response_cls(
                200,
                {"data": None, "errors": [{"type": "NOT_FOUND", "message": "Could not resolve to a Repository"}]},
                headers={"x-github-request-id": "F00D:1"},
            )
        ]
    )

    with pytest.raises(GraphQLAPIError) as excinfo:
        _executor(session).graphql(QUERY)

    err = excinfo.value
    assert err.kind is ErrorKind.NOT_FOUND
    assert "Could not resolve to a Repository" in str(err)
    assert err.correlation_id == "F00D:1"
    assert str(err).endswith("RequestId: F00D:1")


def test_graphql_error_without_type_is_unspecified(response_cls, session_cls):
    session = session_cls([response_cls(200, {"errors": [{"message": "m"}]})])

    with pytest.raises(GraphQLAPIError) as excinfo:
        _executor(session).graphql(QUERY)

    assert excinfo.value.kind is ErrorKind.UNSPECIFIED
    assert excinfo.value.error_id == "UnspecifiedError"
    assert "m" in excinfo.value.record.messages


def test_graphql_error_with_other_type_is_invalid_operation(response_cls, session_cls):
    session = session_cls([response_cls(200, {"errors": [{"type": "FORBIDDEN", "message": "nope"}]})])

    with pytest.raises(GraphQLAPIError) as excinfo:
        _executor(session).graphql(QUERY)

    assert excinfo.value.kind is ErrorKind.INVALID_OPERATION
    assert excinfo.value.error_id == "FORBIDDEN"


def test_empty_errors_array_is_success():
    assert api_error_record({"data": {}, "errors": []}) is None
    assert api_error_record(["not", "a", "mapping"]) is None


def test_http_failure_raises_transport_error(response_cls, session_cls):
    session = session_cls(
        [
            response_cls(
                502,
                {"message": "Server Error"},
                headers={"X-GitHub-Request-Id": "AB:CD"},
                reason="Bad Gateway",
            )
        ]
    )

    with pytest.raises(TransportError) as excinfo:
        _executor(session).graphql(QUERY, description="Get viewer")

    err = excinfo.value
    assert not isinstance(err, GraphQLAPIError)
    assert err.status == 502
    assert err.kind is ErrorKind.UNSPECIFIED
    assert err.record.messages[0] == "Get viewer failed with HTTP 502 Bad Gateway"
    assert "Server Error" in err.record.messages
    assert err.record.messages[-1] == "RequestId: AB:CD"
    assert err.response_text == json.dumps({"message": "Server Error"})


def test_network_failure_raises_transport_error(session_cls):
    session = session_cls([requests.ConnectionError("connection refused")])

    with pytest.raises(TransportError) as excinfo:
        _executor(session).graphql(QUERY)

    assert excinfo.value.correlation_id is None
    assert "network error" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, requests.ConnectionError)


def test_unrecognised_exception_still_classified(session_cls):
    session = session_cls([KeyError("adapter exploded")])

    with pytest.raises(GitHubAPIError) as excinfo:
        _executor(session).graphql(QUERY)

    assert "adapter exploded" in str(excinfo.value)


def test_invalid_json_on_graphql_success_is_transport_error(response_cls, session_cls):
    session = session_cls([response_cls(200, "<html>maintenance</html>")])

    with pytest.raises(TransportError) as excinfo:
        _executor(session).graphql(QUERY)

    assert "<html>maintenance</html>" in excinfo.value.record.messages


def test_version_checker_consulted_on_every_call(response_cls, session_cls):
    checker = _CountingChecker()
    session = session_cls([response_cls(200, {"data": {}}), response_cls(200, {"data": {}})])
    executor = _executor(session, version_checker=checker)

    executor.graphql(QUERY)
    executor.graphql(QUERY)

    assert checker.calls == 2


def test_rate_limited_response_is_retried(monkeypatch, response_cls, session_cls):
    sleeps: list[float] = []
    monkeypatch.setattr("ghcore.retry.time.sleep", sleeps.append)
    session = session_cls(
        [
            response_cls(429, {"message": "secondary rate limit"}, headers={"Retry-After": "3"}),
            response_cls(200, {"data": {"ok": True}}),
        ]
    )

    result = _executor(session, retry_config=RetryConfig(attempts=3, base_sleep=0.0)).graphql(QUERY)

    assert result == {"data": {"ok": True}}
    assert sleeps == [3.0]
    assert len(session.request_log) == 2


def test_rate_limit_exhaustion_raises_transport_error(monkeypatch, response_cls, session_cls):
    monkeypatch.setattr("ghcore.retry.time.sleep", lambda _s: None)
    session = session_cls(
        [
            response_cls(403, {"message": "API rate limit exceeded"}),
            response_cls(403, {"message": "API rate limit exceeded"}),
        ]
    )

    with pytest.raises(TransportError) as excinfo:
        _executor(session, retry_config=RetryConfig(attempts=2, base_sleep=0.0)).graphql(QUERY)

    assert excinfo.value.status == 403
    assert "API rate limit exceeded" in excinfo.value.record.messages


def test_usage_event_emitted_with_duration(monkeypatch, tmp_path, response_cls, session_cls):
    store = tmp_path / "events.jsonl"
    monkeypatch.setenv("GHCORE_TELEMETRY", "1")
    monkeypatch.setenv("GHCORE_TELEMETRY_PATH", str(store))
    session = session_cls([response_cls(200, {"data": {}})])

    _executor(session).graphql(QUERY, event_name="Get-Viewer", event_properties={"first": 5})

    event = json.loads(store.read_text(encoding="utf-8").splitlines()[0])
    assert event["event"] == "Get-Viewer"
    assert event["succeeded"] is True
    assert event["properties"] == {"first": 5}
    assert event["duration_ms"] >= 0


def test_telemetry_failure_does_not_mask_result(monkeypatch, response_cls, session_cls):
    def broken_emit(*args: Any, **kwargs: Any) -> bool:
        raise OSError("disk full")

    monkeypatch.setattr(telemetry, "emit_event", broken_emit)
    session = session_cls([response_cls(200, {"data": {"v": 1}})])

    assert _executor(session).graphql(QUERY, event_name="Get-Viewer") == {"data": {"v": 1}}


def test_telemetry_failure_does_not_mask_error(monkeypatch, response_cls, session_cls):
    def broken_emit(*args: Any, **kwargs: Any) -> bool:
        raise OSError("disk full")

    monkeypatch.setattr(telemetry, "emit_event", broken_emit)
    session = session_cls([response_cls(200, {"errors": [{"type": "NOT_FOUND", "message": "gone"}]})])

    with pytest.raises(GraphQLAPIError) as excinfo:
        _executor(session).graphql(QUERY, event_name="Get-Viewer")
    assert excinfo.value.kind is ErrorKind.NOT_FOUND


def test_tls_floor_restored_after_failed_call(response_cls):
    session = requests.Session()
    original = session.adapters["https://"]

    def failing_request(*args: Any, **kwargs: Any) -> Any:
        raise requests.ConnectionError("offline")

    session.request = failing_request  # type: ignore[method-assign]

    with pytest.raises(TransportError):
        _executor(session).graphql(QUERY)

    assert session.adapters["https://"] is original


class _CountingAdapter(requests.adapters.BaseAdapter):
    def __init__(self) -> None:
        super().__init__()
        self.sent: list[str] = []

    def send(self, request: Any, **kwargs: Any) -> requests.Response:
        self.sent.append(request.url)
        response = requests.Response()
        response.status_code = 200
        response._content = json.dumps({"data": {"viewer": {"login": "octocat"}}}).encode("utf-8")
        response.encoding = "utf-8"
        response.url = request.url
        response.request = request
        return response

    def close(self) -> None:
        pass


def test_caller_mounted_adapter_handles_the_call():
    session = requests.Session()
    adapter = _CountingAdapter()
    session.mount("https://", adapter)

    result = _executor(session).graphql(QUERY)

    assert result == {"data": {"viewer": {"login": "octocat"}}}
    assert adapter.sent == ["https://api.github.com/graphql"]
    assert session.adapters["https://"] is adapter


def test_tls_floor_adapter_reused_across_calls(response_cls):
    session = requests.Session()
    seen: list[Any] = []

    def capture(*args: Any, **kwargs: Any) -> Any:
        seen.append(session.adapters["https://"])
        return response_cls(200, {"data": {}})

    session.request = capture  # type: ignore[method-assign]
    executor = _executor(session)

    executor.graphql(QUERY)
    executor.graphql(QUERY)

    assert len(seen) == 2
    assert seen[0] is seen[1]
    assert type(seen[0]).__name__ == "TLSFloorAdapter"
