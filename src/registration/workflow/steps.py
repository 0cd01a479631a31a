"""
Workflow steps and the per-invocation context.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import ArchiveFailure, PersistenceFailure, PublishFailure, RegistrationError
from ..models import RegistrationRequest, format_timestamp


class StepName(Enum):
    """The fixed registration step chain, in execution order."""

    REGISTER = "Register"
    SAVE_RECORD = "SaveRecord"
    ARCHIVE_OBJECT = "ArchiveObject"
    PUBLISH_EVENT = "PublishEvent"


class StepStatus(Enum):
    """Workflow step execution status."""

    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# Failure type reported for each step, whatever the adapter raised.
STEP_FAILURE_TYPES: dict[StepName, type[RegistrationError]] = {
    StepName.REGISTER: RegistrationError,
    StepName.SAVE_RECORD: PersistenceFailure,
    StepName.ARCHIVE_OBJECT: ArchiveFailure,
    StepName.PUBLISH_EVENT: PublishFailure,
}


@dataclass
class WorkflowStep:
    """Execution record of one step in one workflow run."""

    name: StepName
    order: int = 0
    status: StepStatus = StepStatus.PENDING

    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: RegistrationError | None = None

    def start(self, now: datetime) -> None:
        self.status = StepStatus.EXECUTING
        self.started_at = now

    def complete(self, now: datetime) -> None:
        self.status = StepStatus.COMPLETED
        self.completed_at = now

    def fail(self, error: RegistrationError, now: datetime) -> None:
        self.status = StepStatus.FAILED
        self.completed_at = now
        self.error = error

    def skip(self) -> None:
        self.status = StepStatus.SKIPPED

    def snapshot(self) -> "WorkflowStep":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name.value,
            "status": self.status.value,
            "startedAt": format_timestamp(self.started_at) if self.started_at else None,
            "completedAt": format_timestamp(self.completed_at) if self.completed_at else None,
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


@dataclass(frozen=True)
class WorkflowContext:
    """Input carried from step to step.

    Step results are never merged in: every step sees the original request,
    the raw body and the time the Register step was entered.
    """

    execution_id: str
    request: RegistrationRequest
    raw_body: bytes
    entered_at: datetime

    @property
    def entered_timestamp(self) -> str:
        return format_timestamp(self.entered_at)

    @property
    def archive_key(self) -> str:
        return self.entered_timestamp
