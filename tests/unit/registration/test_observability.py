import pytest
from opentelemetry.sdk.trace import TracerProvider

from registration.observability import RegistrationMetrics, tracing


@pytest.mark.unit
def test_metrics_are_isolated_per_instance() -> None:
    first = RegistrationMetrics(service_name="one")
    second = RegistrationMetrics(service_name="one")

    first.record_outcome("Succeeded")
    first.record_delivery("queue", "signups", success=True)

    assert first.sample("registration_workflow_outcomes_total", {"status": "Succeeded"}) == 1.0
    assert second.sample("registration_workflow_outcomes_total", {"status": "Succeeded"}) == 0.0

    exposition = first.export().decode("utf-8")
    assert "registration_workflow_outcomes_total" in exposition
    assert 'target="signups"' in exposition


@pytest.mark.unit
def test_tracing_stays_off_unless_enabled(monkeypatch) -> None:
    monkeypatch.delenv("OTEL_TRACING_ENABLED", raising=False)
    monkeypatch.setattr(tracing, "_instrumented", False)

    assert tracing.init_tracing() is False
    assert tracing.init_tracing(enabled=False) is False


@pytest.mark.unit
def test_tracing_installs_provider_once(monkeypatch) -> None:
    installed = []
    monkeypatch.setattr(tracing, "_instrumented", False)
    monkeypatch.setattr(tracing.trace, "set_tracer_provider", installed.append)
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    monkeypatch.delenv("OTEL_CONSOLE_EXPORT", raising=False)

    assert tracing.init_tracing(service_name="registration-test", enabled=True) is True
    assert tracing.init_tracing(service_name="registration-test", enabled=True) is False

    [provider] = installed
    assert isinstance(provider, TracerProvider)
    assert provider.resource.attributes["service.name"] == "registration-test"
