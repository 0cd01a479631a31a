"""
Configuration for the registration service.

Configuration is read from layered YAML files and merged in order:

- ``config/base.yaml``
- ``config/<environment>.yaml``
- ``config/services/<service>.yaml``

String values may reference environment variables with ``${VAR:-default}``.
Each top-level section is exposed as a typed, validated dataclass.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import yaml

from .messaging.queue import DEFAULT_MAX_RECEIVE_COUNT, DEFAULT_VISIBILITY_TIMEOUT
from .messaging.routing import DEFAULT_MAX_HOPS, RoutingRule

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SERVICE_NAME = "registration-service"


class Environment(Enum):
    """Supported environment types."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class ConfigurationError(Exception):
    """Base configuration error."""


class ValidationError(ConfigurationError):
    """Configuration validation error."""


@dataclass
class BaseConfigSection(ABC):
    """Base class for configuration sections."""

    @classmethod
    @abstractmethod
    def from_dict(cls: type[T], data: dict[str, Any]) -> T:  # type: ignore[misc]
        """Create instance from dictionary."""

    def validate(self) -> None:
        """Validate configuration section."""


@dataclass
class LoggingConfigSection(BaseConfigSection):
    """Logging configuration section."""

    level: str = "INFO"
    json: bool = True
    include_trace: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LoggingConfigSection":
        return cls(
            level=str(data.get("level", "INFO")),
            json=_as_bool(data.get("json", True)),
            include_trace=_as_bool(data.get("include_trace", True)),
        )

    def validate(self) -> None:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "OFF"]
        if self.level.upper() not in valid_levels:
            raise ValidationError(f"Invalid log level: {self.level}")


@dataclass
class MonitoringConfigSection(BaseConfigSection):
    """Monitoring configuration section."""

    metrics_enabled: bool = True
    tracing_enabled: bool = False
    service_name: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MonitoringConfigSection":
        return cls(
            metrics_enabled=_as_bool(data.get("metrics_enabled", True)),
            tracing_enabled=_as_bool(data.get("tracing_enabled", False)),
            service_name=data.get("service_name", ""),
        )


@dataclass
class WorkflowConfigSection(BaseConfigSection):
    """Registration workflow configuration section."""

    company_bus: str = "company"
    local_bus: str = "registration"
    store_timeout: float = 5.0
    archive_timeout: float = 5.0
    publish_timeout: float = 5.0
    archive_failure_policy: str = "degrade"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowConfigSection":
        return cls(
            company_bus=data.get("company_bus", "company"),
            local_bus=data.get("local_bus", "registration"),
            store_timeout=float(data.get("store_timeout", 5.0)),
            archive_timeout=float(data.get("archive_timeout", 5.0)),
            publish_timeout=float(data.get("publish_timeout", 5.0)),
            archive_failure_policy=str(data.get("archive_failure_policy", "degrade")).lower(),
        )

    def validate(self) -> None:
        if not self.company_bus:
            raise ValidationError("Company bus name is required")
        if not self.local_bus:
            raise ValidationError("Local bus name is required")
        if self.company_bus == self.local_bus:
            raise ValidationError("Company bus and local bus must be different")
        for name in ("store_timeout", "archive_timeout", "publish_timeout"):
            if getattr(self, name) <= 0:
                raise ValidationError(f"{name} must be positive")
        if self.archive_failure_policy not in ("degrade", "fail"):
            raise ValidationError(
                f"Invalid archive failure policy: {self.archive_failure_policy}"
            )


@dataclass
class RoutingConfigSection(BaseConfigSection):
    """Event routing configuration section.

    ``rules`` is empty when the configuration does not list any; the service
    then installs the default company bus -> local bus -> queue chain.
    """

    max_hops: int = DEFAULT_MAX_HOPS
    rules: list[RoutingRule] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RoutingConfigSection":
        try:
            rules = [RoutingRule.from_dict(rule) for rule in data.get("rules") or []]
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid routing rule: {e}") from e

        return cls(max_hops=int(data.get("max_hops", DEFAULT_MAX_HOPS)), rules=rules)

    def validate(self) -> None:
        if self.max_hops < 1:
            raise ValidationError("max_hops must be at least 1")
        names = [rule.name for rule in self.rules]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ValidationError(f"Duplicate routing rule names: {sorted(duplicates)}")


@dataclass
class QueueConfigSection(BaseConfigSection):
    """Queue-with-DLQ configuration section."""

    name: str = "customer-registrations"
    max_receive_count: int = DEFAULT_MAX_RECEIVE_COUNT
    visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueueConfigSection":
        return cls(
            name=data.get("name", "customer-registrations"),
            max_receive_count=int(data.get("max_receive_count", DEFAULT_MAX_RECEIVE_COUNT)),
            visibility_timeout=float(
                data.get("visibility_timeout", DEFAULT_VISIBILITY_TIMEOUT)
            ),
        )

    def validate(self) -> None:
        if not self.name:
            raise ValidationError("Queue name is required")
        if self.max_receive_count < 1:
            raise ValidationError("max_receive_count must be at least 1")
        if self.visibility_timeout <= 0:
            raise ValidationError("visibility_timeout must be positive")


class ServiceConfig:
    """Service configuration with environment layering and validation."""

    def __init__(
        self,
        service_name: str = DEFAULT_SERVICE_NAME,
        environment: str | Environment = Environment.DEVELOPMENT,
        config_path: Path | None = None,
        overrides: dict[str, Any] | None = None,
        load_files: bool = True,
    ):
        self.service_name = service_name
        self.environment = (
            Environment(environment) if isinstance(environment, str) else environment
        )
        self.config_path = Path(config_path) if config_path else Path("config")
        self._overrides = overrides or {}
        self._load_files = load_files

        self._raw_config: dict[str, Any] = {}
        self._logging: LoggingConfigSection | None = None
        self._monitoring: MonitoringConfigSection | None = None
        self._workflow: WorkflowConfigSection | None = None
        self._routing: RoutingConfigSection | None = None
        self._queue: QueueConfigSection | None = None

        self._load_configuration()

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], service_name: str = DEFAULT_SERVICE_NAME
    ) -> "ServiceConfig":
        """Build a configuration from an in-memory mapping, ignoring files on disk."""
        return cls(service_name, overrides=data, load_files=False)

    def _load_configuration(self) -> None:
        base_config = self._load_yaml_if_present(self.config_path / "base.yaml")
        env_config = self._load_yaml_if_present(
            self.config_path / f"{self.environment.value}.yaml"
        )
        service_config = self._load_yaml_if_present(
            self.config_path / "services" / f"{self.service_name}.yaml"
        )

        # service > environment > base; explicit overrides win
        merged = self._merge_configs(base_config, env_config, service_config, self._overrides)
        self._raw_config = self._expand_env_vars(merged)

    def _load_yaml_if_present(self, path: Path) -> dict[str, Any]:
        if not self._load_files or not path.is_file():
            return {}
        return self._load_yaml_file(path)

    def _load_yaml_file(self, path: Path) -> dict[str, Any]:
        """Load YAML configuration file."""
        try:
            with open(path, encoding="utf-8") as file:
                data = yaml.safe_load(file) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Error parsing YAML file {path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Error reading file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Top level of {path} must be a mapping")
        logger.debug("Loaded configuration file %s", path)
        return data

    def _merge_configs(self, *configs: dict[str, Any]) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for config in configs:
            if config:
                result = self._deep_merge(result, config)
        return result

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _expand_env_vars(self, obj: Any) -> Any:
        """Recursively expand environment variables in configuration."""
        if isinstance(obj, dict):
            return {key: self._expand_env_vars(value) for key, value in obj.items()}
        if isinstance(obj, list):
            return [self._expand_env_vars(item) for item in obj]
        if isinstance(obj, str):
            return self._expand_env_var_string(obj)
        return obj

    def _expand_env_var_string(self, value: str) -> str:
        """Expand ``${VAR}`` and ``${VAR:-default}`` references."""
        pattern = r"\$\{([^}]+)\}"

        def replace_var(match: re.Match[str]) -> str:
            var_expr = match.group(1)
            if ":-" in var_expr:
                var_name, default_value = var_expr.split(":-", 1)
                return os.environ.get(var_name, default_value)
            return os.environ.get(var_expr, "")

        return re.sub(pattern, replace_var, value)

    @property
    def logging(self) -> LoggingConfigSection:
        """Get logging configuration."""
        if not self._logging:
            self._logging = LoggingConfigSection.from_dict(self._raw_config.get("logging", {}))
            self._logging.validate()
        return self._logging

    @property
    def monitoring(self) -> MonitoringConfigSection:
        """Get monitoring configuration."""
        if not self._monitoring:
            monitoring_config = dict(self._raw_config.get("monitoring", {}))
            monitoring_config.setdefault("service_name", self.service_name)
            self._monitoring = MonitoringConfigSection.from_dict(monitoring_config)
            self._monitoring.validate()
        return self._monitoring

    @property
    def workflow(self) -> WorkflowConfigSection:
        """Get workflow configuration."""
        if not self._workflow:
            self._workflow = WorkflowConfigSection.from_dict(self._raw_config.get("workflow", {}))
            self._workflow.validate()
        return self._workflow

    @property
    def routing(self) -> RoutingConfigSection:
        """Get routing configuration."""
        if not self._routing:
            self._routing = RoutingConfigSection.from_dict(self._raw_config.get("routing", {}))
            self._routing.validate()
        return self._routing

    @property
    def queue(self) -> QueueConfigSection:
        """Get queue configuration."""
        if not self._queue:
            self._queue = QueueConfigSection.from_dict(self._raw_config.get("queue", {}))
            self._queue.validate()
        return self._queue

    def validate(self) -> None:
        """Load and validate every section."""
        for section in (self.logging, self.monitoring, self.workflow, self.routing, self.queue):
            section.validate()

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dotted key."""
        value: Any = self._raw_config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def get_environment() -> Environment:
    """Get current environment from the ``SERVICE_ENV`` variable."""
    env_name = os.environ.get("SERVICE_ENV", "development").lower()
    try:
        return Environment(env_name)
    except ValueError:
        logger.warning("Invalid environment %s, defaulting to development", env_name)
        return Environment.DEVELOPMENT


def create_service_config(
    service_name: str = DEFAULT_SERVICE_NAME,
    environment: str | Environment | None = None,
    config_path: Path | None = None,
) -> ServiceConfig:
    """Create a service configuration instance."""
    if environment is None:
        environment = get_environment()

    return ServiceConfig(service_name, environment, config_path)
