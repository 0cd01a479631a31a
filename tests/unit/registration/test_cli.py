"""
Tests for the registration-service command line.
"""

import json
import logging
from pathlib import Path

import pytest
from click.testing import CliRunner
from rich.console import Console

from registration import cli as cli_module
from registration.cli import cli


@pytest.fixture
def runner(monkeypatch) -> CliRunner:
    monkeypatch.setattr(cli_module, "console", Console(width=200))
    yield CliRunner()
    logger = logging.getLogger("registration")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def payload_file(tmp_path: Path, full_body: bytes) -> Path:
    path = tmp_path / "customer.json"
    path.write_bytes(full_body)
    return path


def _invoke(runner: CliRunner, config_dir: Path, *args: str):
    return runner.invoke(
        cli,
        ["--config-dir", str(config_dir), "--environment", "testing", "--log-level", "OFF", *args],
    )


@pytest.mark.unit
def test_register_prints_outcome_table(runner, config_dir: Path, payload_file: Path) -> None:
    result = _invoke(runner, config_dir, "register", str(payload_file))

    assert result.exit_code == 0, result.output
    assert "Outcome: Succeeded" in result.output
    assert "SaveRecord" in result.output
    assert "Queue customer-registrations: 1 ready" in result.output


@pytest.mark.unit
def test_register_json_output(runner, config_dir: Path, payload_file: Path) -> None:
    result = _invoke(
        runner,
        config_dir,
        "register",
        str(payload_file),
        "--output",
        "json",
        "--execution-id",
        "exec-cli",
        "--archive-policy",
        "fail",
    )

    assert result.exit_code == 0, result.output
    summary = json.loads(result.output)
    assert summary["status"] == "Succeeded"
    assert summary["executionId"] == "exec-cli"
    assert [step["name"] for step in summary["steps"]] == [
        "Register",
        "SaveRecord",
        "ArchiveObject",
        "PublishEvent",
    ]


@pytest.mark.unit
def test_register_rejects_payload_without_id(runner, config_dir: Path, tmp_path: Path) -> None:
    payload = tmp_path / "bad.json"
    payload.write_text('{"name": "Acme"}', encoding="utf-8")

    result = _invoke(runner, config_dir, "register", str(payload))

    assert result.exit_code == 1
    assert "Invalid registration payload" in result.output


@pytest.mark.unit
def test_routes_lists_configured_rules(runner, config_dir: Path) -> None:
    (config_dir / "base.yaml").write_text("routing:\n  max_hops: 4\n", encoding="utf-8")

    result = _invoke(runner, config_dir, "routes")

    assert result.exit_code == 0, result.output
    assert "customer-created-to-local-bus" in result.output
    assert "queue:customer-registrations" in result.output
    assert "Max hops: 4" in result.output


@pytest.mark.unit
def test_invalid_configuration_is_reported(runner, config_dir: Path) -> None:
    (config_dir / "base.yaml").write_text(
        "workflow:\n  archive_failure_policy: sometimes\n", encoding="utf-8"
    )

    result = _invoke(runner, config_dir, "routes")

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
