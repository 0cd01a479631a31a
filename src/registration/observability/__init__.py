"""Metrics and tracing for the registration service."""

from .metrics import RegistrationMetrics
from .tracing import get_tracer, init_tracing

__all__ = ["RegistrationMetrics", "get_tracer", "init_tracing"]
