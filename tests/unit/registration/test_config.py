from pathlib import Path

import pytest

from registration.config import (
    ConfigurationError,
    Environment,
    ServiceConfig,
    ValidationError,
    create_service_config,
    get_environment,
)
from registration.messaging.routing import BusTarget, QueueTarget


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.mark.unit
def test_defaults_without_files(tmp_path: Path) -> None:
    config = ServiceConfig(config_path=tmp_path)

    assert config.workflow.company_bus == "company"
    assert config.workflow.local_bus == "registration"
    assert config.workflow.archive_failure_policy == "degrade"
    assert config.routing.max_hops == 5
    assert config.routing.rules == []
    assert config.queue.max_receive_count == 3
    assert config.queue.visibility_timeout == 30.0
    assert config.monitoring.service_name == "registration-service"


@pytest.mark.unit
def test_layers_merge_base_environment_and_service(config_dir: Path) -> None:
    _write(
        config_dir / "base.yaml",
        "workflow:\n  store_timeout: 5\n  publish_timeout: 5\nqueue:\n  max_receive_count: 3\n",
    )
    _write(config_dir / "production.yaml", "workflow:\n  store_timeout: 2\n")
    _write(
        config_dir / "services" / "registration-service.yaml",
        "queue:\n  max_receive_count: 7\n",
    )

    config = ServiceConfig(environment="production", config_path=config_dir)

    assert config.environment is Environment.PRODUCTION
    assert config.workflow.store_timeout == 2.0
    assert config.workflow.publish_timeout == 5.0
    assert config.queue.max_receive_count == 7
    assert config.get("workflow.store_timeout") == 2
    assert config.get("workflow.missing", "fallback") == "fallback"


@pytest.mark.unit
def test_environment_variables_are_expanded(config_dir: Path, monkeypatch) -> None:
    monkeypatch.setenv("ARCHIVE_POLICY", "fail")
    monkeypatch.delenv("QUEUE_NAME", raising=False)
    _write(
        config_dir / "base.yaml",
        "workflow:\n  archive_failure_policy: ${ARCHIVE_POLICY}\n"
        "queue:\n  name: ${QUEUE_NAME:-signups}\n"
        "monitoring:\n  tracing_enabled: ${TRACING:-false}\n",
    )

    config = ServiceConfig(config_path=config_dir)

    assert config.workflow.archive_failure_policy == "fail"
    assert config.queue.name == "signups"
    assert config.monitoring.tracing_enabled is False


@pytest.mark.unit
def test_routing_rules_from_configuration(config_dir: Path) -> None:
    _write(
        config_dir / "base.yaml",
        """
routing:
  max_hops: 3
  rules:
    - name: company-to-local
      listen_bus: company
      targets:
        - bus: registration
    - name: local-to-queue
      listen_bus: registration
      source: CustomerCreated
      detail_type: Customer.RegistrationService
      targets:
        - queue: customer-registrations
""",
    )

    routing = ServiceConfig(config_path=config_dir).routing

    assert routing.max_hops == 3
    assert [rule.name for rule in routing.rules] == ["company-to-local", "local-to-queue"]
    assert routing.rules[0].targets == (BusTarget("registration"),)
    assert routing.rules[1].targets == (QueueTarget("customer-registrations"),)


@pytest.mark.parametrize(
    "overrides",
    [
        {"workflow": {"archive_failure_policy": "retry"}},
        {"workflow": {"store_timeout": 0}},
        {"workflow": {"company_bus": "same", "local_bus": "same"}},
        {"queue": {"max_receive_count": 0}},
        {"routing": {"max_hops": 0}},
        {"routing": {"rules": [{"name": "r", "listen_bus": "company", "targets": []}]}},
        {"logging": {"level": "LOUD"}},
    ],
)
@pytest.mark.unit
def test_invalid_sections_are_rejected(overrides) -> None:
    with pytest.raises(ValidationError):
        ServiceConfig.from_dict(overrides).validate()


@pytest.mark.unit
def test_duplicate_rule_names_are_rejected() -> None:
    rule = {"name": "r", "listen_bus": "company", "targets": [{"queue": "q"}]}

    with pytest.raises(ValidationError):
        ServiceConfig.from_dict({"routing": {"rules": [rule, rule]}}).routing


@pytest.mark.unit
def test_broken_yaml_is_a_configuration_error(config_dir: Path) -> None:
    _write(config_dir / "base.yaml", "workflow: [unclosed\n")

    with pytest.raises(ConfigurationError):
        ServiceConfig(config_path=config_dir)


@pytest.mark.unit
def test_environment_from_service_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SERVICE_ENV", "staging")
    assert get_environment() is Environment.STAGING
    assert create_service_config(config_path=tmp_path).environment is Environment.STAGING

    monkeypatch.setenv("SERVICE_ENV", "moon")
    assert get_environment() is Environment.DEVELOPMENT
