"""
Error taxonomy for the registration workflow and event distribution layer.

Every failure that can surface from a workflow step or a routed delivery is an
instance of ``RegistrationError``. Adapters may raise these directly; the
orchestrator converts anything else raised by an adapter into the failure type
owned by the step that made the call.
"""

from typing import Any


class RegistrationError(Exception):
    """Base class for registration service errors."""

    def __init__(self, message: str, *, step: str | None = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.step = step
        self.context = context

    @property
    def error_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a JSON-ready dictionary."""
        data: dict[str, Any] = {"type": self.error_type, "message": self.message}
        if self.step:
            data["step"] = self.step
        if self.context:
            data["context"] = {key: str(value) for key, value in self.context.items()}
        return data


class PersistenceFailure(RegistrationError):
    """Record store unreachable or the write was rejected. Fatal to the workflow."""


class ArchiveFailure(RegistrationError):
    """Object archive unreachable or the write was rejected."""


class PublishFailure(RegistrationError):
    """Event bus unreachable or the publish was rejected."""


class RoutingDeliveryFailure(RegistrationError):
    """A single fan-out target could not be delivered to."""

    def __init__(self, message: str, *, target: str | None = None, **context: Any):
        super().__init__(message, **context)
        self.target = target


class QueueCapacityExceeded(RegistrationError):
    """A message exhausted its receive attempts and was moved to the dead-letter queue."""

    def __init__(self, message: str, *, queue: str, receive_count: int, **context: Any):
        super().__init__(message, **context)
        self.queue = queue
        self.receive_count = receive_count


class WorkflowCancelled(RegistrationError):
    """The caller cancelled the workflow before the named step started."""

