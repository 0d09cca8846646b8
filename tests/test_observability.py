from typing import Any

from opentelemetry import trace

from ghcore import observability
from ghcore.observability import configure_telemetry, get_tracer


def test_configure_telemetry_sets_tracer_provider(monkeypatch):
    installed: list[Any] = []
    monkeypatch.setattr(trace, "set_tracer_provider", installed.append)
    monkeypatch.setitem(observability._telemetry_configured, "configured", False)

    assert configure_telemetry(service_name="ghcore-test", exporter="console") is True
    assert configure_telemetry(service_name="ghcore-test") is True

    assert len(installed) == 1
    provider = installed[0]
    try:
        tracer = provider.get_tracer("ghcore-test")
        with tracer.start_as_current_span("demo") as span:
            assert span.is_recording()
        assert provider.resource.attributes["service.name"] == "ghcore-test"
    finally:
        provider.shutdown()


def test_get_tracer_records_spans():
    with get_tracer().start_as_current_span("ghcore.request") as span:
        span.set_attribute("http.method", "POST")
