"""Registration workflow: step chain, outcomes and the orchestrator."""

from .orchestrator import ArchiveFailurePolicy, WorkflowOrchestrator
from .outcome import OutcomeStatus, WorkflowOutcome
from .steps import STEP_FAILURE_TYPES, StepName, StepStatus, WorkflowContext, WorkflowStep

__all__ = [
    "ArchiveFailurePolicy",
    "OutcomeStatus",
    "STEP_FAILURE_TYPES",
    "StepName",
    "StepStatus",
    "WorkflowContext",
    "WorkflowOrchestrator",
    "WorkflowOutcome",
    "WorkflowStep",
]
