"""
Terminal outcome of one registration workflow run.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..errors import RegistrationError
from ..models import CustomerRecord, DomainEvent
from .steps import StepName, WorkflowStep


class OutcomeStatus(Enum):
    """Workflow outcome status."""

    SUCCEEDED = "Succeeded"
    PARTIALLY_SUCCEEDED = "PartiallySucceeded"
    FAILED = "Failed"


@dataclass(frozen=True)
class WorkflowOutcome:
    """Result of ``WorkflowOrchestrator.execute``.

    ``failed_step`` and ``reason`` name the first step that failed. When more
    than one step failed (archive degraded, then publish failed) every failure
    is kept in ``failures`` in step order.
    """

    status: OutcomeStatus
    execution_id: str
    failed_step: StepName | None = None
    reason: RegistrationError | None = None
    failures: tuple[RegistrationError, ...] = ()
    steps: tuple[WorkflowStep, ...] = ()
    record: CustomerRecord | None = None
    archive_key: str | None = None
    event: DomainEvent | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    def step(self, name: StepName) -> WorkflowStep:
        for step in self.steps:
            if step.name is name:
                return step
        raise KeyError(name)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready summary for whatever invoked the workflow."""
        data: dict[str, Any] = {
            "status": self.status.value,
            "executionId": self.execution_id,
            "steps": [step.to_dict() for step in self.steps],
        }
        if self.failed_step is not None:
            data["failedStep"] = self.failed_step.value
        if self.reason is not None:
            data["error"] = {"type": self.reason.error_type, "message": self.reason.message}
        if len(self.failures) > 1:
            data["failures"] = [failure.to_dict() for failure in self.failures]
        if self.archive_key is not None:
            data["archiveKey"] = self.archive_key
        if self.event is not None:
            data["correlationId"] = self.event.correlation_id
        return data
