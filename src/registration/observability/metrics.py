"""
Prometheus metrics for the registration workflow and event distribution.

Metrics are registered on a per-instance ``CollectorRegistry`` so several
service instances (and tests) can live in one process without clashing on
metric names.
"""

import logging

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)

STEP_DURATION_BUCKETS = [0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]


class RegistrationMetrics:
    """Counters and histograms for workflow runs, routing and dead-lettering."""

    def __init__(self, service_name: str = "registration-service", registry: CollectorRegistry | None = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.workflow_outcomes = Counter(
            "registration_workflow_outcomes_total",
            "Workflow executions by terminal outcome",
            ["service", "status"],
            registry=self.registry,
        )
        self.step_duration = Histogram(
            "registration_step_duration_seconds",
            "Workflow step duration in seconds",
            ["service", "step"],
            buckets=STEP_DURATION_BUCKETS,
            registry=self.registry,
        )
        self.step_failures = Counter(
            "registration_step_failures_total",
            "Workflow step failures by error type",
            ["service", "step", "error_type"],
            registry=self.registry,
        )
        self.deliveries = Counter(
            "registration_routing_deliveries_total",
            "Routed deliveries by target and result",
            ["service", "target_kind", "target", "result"],
            registry=self.registry,
        )
        self.dead_letters = Counter(
            "registration_dead_letter_moves_total",
            "Messages moved to a dead-letter queue",
            ["service", "queue"],
            registry=self.registry,
        )

    def record_outcome(self, status: str) -> None:
        self.workflow_outcomes.labels(service=self.service_name, status=status).inc()

    def observe_step(self, step: str, duration: float) -> None:
        self.step_duration.labels(service=self.service_name, step=step).observe(duration)

    def record_step_failure(self, step: str, error_type: str) -> None:
        self.step_failures.labels(
            service=self.service_name, step=step, error_type=error_type
        ).inc()

    def record_delivery(self, target_kind: str, target: str, success: bool) -> None:
        self.deliveries.labels(
            service=self.service_name,
            target_kind=target_kind,
            target=target,
            result="success" if success else "failure",
        ).inc()

    def record_dead_letter(self, queue: str) -> None:
        self.dead_letters.labels(service=self.service_name, queue=queue).inc()

    def sample(self, name: str, labels: dict[str, str]) -> float:
        """Current value of one sample, 0.0 when it has not been recorded."""
        value = self.registry.get_sample_value(name, {"service": self.service_name, **labels})
        return value or 0.0

    def export(self) -> bytes:
        """Prometheus text exposition of this instance's metrics."""
        return generate_latest(self.registry)
