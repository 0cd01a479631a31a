"""
Logging setup for the registration service.

Modules log through ``logging.getLogger(__name__)``. ``setup_logging``
configures the ``registration`` logger hierarchy with JSON or plain output,
service name, OpenTelemetry trace context and the correlation id of the
workflow execution currently running in this task.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Iterator

from opentelemetry import trace

ROOT_LOGGER_NAME = "registration"

DEFAULT_LOG_FORMAT = (
    "%(asctime)s - %(levelname)s - [%(service_name)s] - [%(correlation_id)s] - "
    "[%(name)s] - %(message)s"
)

TRACE_LOG_FORMAT = (
    "%(asctime)s - %(levelname)s - [%(service_name)s] - [%(trace_id)s:%(span_id)s] - "
    "[%(correlation_id)s] - [%(name)s] - %(message)s"
)

LOG_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}

DEFAULT_LOG_LEVEL = "INFO"
LOG_OFF_LEVEL = "OFF"

_current_correlation_id: ContextVar[str | None] = ContextVar(
    "registration_correlation_id", default=None
)

_STANDARD_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
    "asctime",
    "exc_info",
    "exc_text",
    "stack_info",
    "service_name",
    "trace_id",
    "span_id",
    "correlation_id",
}


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[None]:
    """Tag every record logged in this context with ``correlation_id``."""
    token = _current_correlation_id.set(correlation_id)
    try:
        yield
    finally:
        _current_correlation_id.reset(token)


def current_correlation_id() -> str | None:
    return _current_correlation_id.get()


class ServiceNameFilter(logging.Filter):
    """Filter to inject service name into log records."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name  # type: ignore[attr-defined]
        return True


class TraceContextFilter(logging.Filter):
    """Filter to inject trace context into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            record.trace_id = format(span_context.trace_id, "032x")  # type: ignore[attr-defined]
            record.span_id = format(span_context.span_id, "016x")  # type: ignore[attr-defined]
        else:
            record.trace_id = "0" * 32  # type: ignore[attr-defined]
            record.span_id = "0" * 16  # type: ignore[attr-defined]
        return True


class CorrelationFilter(logging.Filter):
    """Filter to inject the active workflow execution id into log records."""

    def __init__(self, default: str = "-") -> None:
        super().__init__()
        self.default = default

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = current_correlation_id() or self.default  # type: ignore[attr-defined]
        return True


class UnifiedJSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, include_trace: bool = True, include_correlation: bool = True):
        super().__init__()
        self.include_trace = include_trace
        self.include_correlation = include_correlation

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service_name", "unknown"),
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if self.include_trace:
            trace_id = getattr(record, "trace_id", None)
            span_id = getattr(record, "span_id", None)
            if trace_id and span_id:
                log_entry["trace_id"] = trace_id
                log_entry["span_id"] = span_id

        if self.include_correlation:
            correlation_id = getattr(record, "correlation_id", None)
            if correlation_id:
                log_entry["correlation_id"] = correlation_id

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        # Fields passed through ``extra=``
        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_KEYS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def setup_logging(
    service_name: str = "registration-service",
    log_level: str = DEFAULT_LOG_LEVEL,
    enable_json: bool = True,
    enable_trace: bool = True,
    enable_correlation: bool = True,
    stream: Any = None,
) -> logging.Logger:
    """
    Configure the ``registration`` logger hierarchy.

    Args:
        service_name: Name of the service for context
        log_level: Logging level name, or ``OFF``
        enable_json: Whether to use JSON format
        enable_trace: Whether to include trace context
        enable_correlation: Whether to include the workflow correlation id
        stream: Output stream, stdout by default

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = False

    level_name = log_level.upper()
    if level_name == LOG_OFF_LEVEL:
        logger.setLevel(logging.CRITICAL + 1)
    else:
        logger.setLevel(LOG_LEVELS.get(level_name, logging.INFO))

    handler = logging.StreamHandler(stream or sys.stdout)
    if enable_json:
        handler.setFormatter(
            UnifiedJSONFormatter(include_trace=enable_trace, include_correlation=enable_correlation)
        )
    else:
        handler.setFormatter(
            logging.Formatter(TRACE_LOG_FORMAT if enable_trace else DEFAULT_LOG_FORMAT)
        )

    handler.addFilter(ServiceNameFilter(service_name))
    handler.addFilter(TraceContextFilter())
    handler.addFilter(CorrelationFilter())
    logger.addHandler(handler)

    return logger
