"""
Customer Registration Service

Runs the registration saga (Register -> SaveRecord -> ArchiveObject ->
PublishEvent) and distributes the resulting event across named buses into a
queue with dead-lettering.
"""

__version__ = "1.0.0"

from .bootstrap import ServiceTopology, build_topology
from .config import ServiceConfig, create_service_config
from .errors import (
    ArchiveFailure,
    PersistenceFailure,
    PublishFailure,
    QueueCapacityExceeded,
    RegistrationError,
    RoutingDeliveryFailure,
    WorkflowCancelled,
)
from .models import CustomerRecord, DomainEvent, EventMetadata, RegistrationRequest
from .workflow import OutcomeStatus, StepName, WorkflowOrchestrator, WorkflowOutcome

__all__ = [
    "ArchiveFailure",
    "CustomerRecord",
    "DomainEvent",
    "EventMetadata",
    "OutcomeStatus",
    "PersistenceFailure",
    "PublishFailure",
    "QueueCapacityExceeded",
    "RegistrationError",
    "RegistrationRequest",
    "RoutingDeliveryFailure",
    "ServiceConfig",
    "ServiceTopology",
    "StepName",
    "WorkflowCancelled",
    "WorkflowOrchestrator",
    "WorkflowOutcome",
    "build_topology",
    "create_service_config",
]
