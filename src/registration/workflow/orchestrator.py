"""
Registration Workflow Orchestrator

Runs the fixed step chain Register -> SaveRecord -> ArchiveObject ->
PublishEvent for one registration request and reports a terminal outcome.

Steps run strictly one after another. There is no compensation: side effects
of completed steps are kept when a later step fails, and nothing is retried
here. Re-running the whole workflow is safe because the record write is an
upsert, the archive write overwrites and every publish carries a fresh
correlation id.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from opentelemetry.trace import Status, StatusCode

from ..config import WorkflowConfigSection
from ..errors import RegistrationError, WorkflowCancelled
from ..logging import correlation_scope
from ..messaging.bus import EventBus
from ..models import ArchivedPayload, CustomerRecord, DomainEvent, RegistrationRequest, utc_now
from ..observability.tracing import get_tracer
from ..stores import ObjectArchive, RecordStore
from .outcome import OutcomeStatus, WorkflowOutcome
from .steps import STEP_FAILURE_TYPES, StepName, StepStatus, WorkflowContext, WorkflowStep

if TYPE_CHECKING:
    from ..observability.metrics import RegistrationMetrics

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class ArchiveFailurePolicy(Enum):
    """What an ArchiveObject failure does to the rest of the workflow."""

    DEGRADE = "degrade"  # keep going, report PartiallySucceeded
    FAIL = "fail"  # stop, report Failed


class WorkflowOrchestrator:
    """Executes registration workflows against the given adapters.

    One orchestrator serves any number of concurrent ``execute`` calls; all
    run state is local to the call.
    """

    def __init__(
        self,
        record_store: RecordStore,
        object_archive: ObjectArchive,
        event_bus: EventBus,
        config: WorkflowConfigSection | None = None,
        clock: Clock | None = None,
        metrics: "RegistrationMetrics | None" = None,
    ):
        self.record_store = record_store
        self.object_archive = object_archive
        self.event_bus = event_bus
        self.config = config or WorkflowConfigSection()
        self.config.validate()
        self.archive_failure_policy = ArchiveFailurePolicy(self.config.archive_failure_policy)
        self.metrics = metrics
        self._clock = clock or utc_now
        self._tracer = get_tracer()

    async def execute(
        self,
        request: RegistrationRequest,
        *,
        raw_body: bytes | None = None,
        execution_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> WorkflowOutcome:
        """
        Run the step chain once for ``request``.

        Args:
            request: Validated registration payload
            raw_body: Exact bytes to archive and publish; defaults to the
                body the request was parsed from
            execution_id: Identifier of this invocation, used as the event's
                causation id; generated when omitted
            cancel_event: Checked before each step; once set, no further
                step starts

        Returns:
            The terminal outcome. Step failures are reported, never raised.

        Raises:
            asyncio.CancelledError: the calling task was cancelled. An
                external call already in flight is allowed to finish first.
        """
        execution_id = execution_id or str(uuid.uuid4())
        body = raw_body if raw_body is not None else request.raw_body

        with correlation_scope(execution_id), self._tracer.start_as_current_span(
            "registration.workflow",
            attributes={
                "registration.execution_id": execution_id,
                "registration.customer_id": request.id,
            },
        ) as span:
            logger.info(
                "Starting registration workflow for customer %s",
                request.id,
                extra={"execution_id": execution_id},
            )
            outcome = await self._run(request, body, execution_id, cancel_event)

            span.set_attribute("registration.outcome", outcome.status.value)
            if outcome.failed:
                span.set_status(Status(StatusCode.ERROR, str(outcome.reason)))

            self._log_outcome(outcome, request)

        if self.metrics:
            self.metrics.record_outcome(outcome.status.value)
        return outcome

    async def _run(
        self,
        request: RegistrationRequest,
        body: bytes,
        execution_id: str,
        cancel_event: asyncio.Event | None,
    ) -> WorkflowOutcome:
        steps = [WorkflowStep(name=name, order=index) for index, name in enumerate(StepName)]
        by_name = {step.name: step for step in steps}
        failures: list[RegistrationError] = []
        results: dict[str, Any] = {"execution_id": execution_id}

        def finish(status: OutcomeStatus) -> WorkflowOutcome:
            for step in steps:
                if step.status is StepStatus.PENDING:
                    step.skip()
            failed = [step for step in steps if step.status is StepStatus.FAILED]
            return WorkflowOutcome(
                status=status,
                failed_step=failed[0].name if failed else None,
                reason=failures[0] if failures else None,
                failures=tuple(failures),
                steps=tuple(step.snapshot() for step in steps),
                **results,
            )

        # Register: no I/O, fixes the entered time used for keys and timestamps.
        register = by_name[StepName.REGISTER]
        if self._cancelled(register, cancel_event, failures):
            return finish(OutcomeStatus.FAILED)
        register.start(self._clock())
        if not request.id:
            self._fail(register, RegistrationError("Registration id must be non-empty"), failures)
            return finish(OutcomeStatus.FAILED)
        context = WorkflowContext(
            execution_id=execution_id,
            request=request,
            raw_body=body,
            entered_at=register.started_at,
        )
        register.complete(self._clock())

        # SaveRecord: fatal on failure.
        save = by_name[StepName.SAVE_RECORD]
        if self._cancelled(save, cancel_event, failures):
            return finish(OutcomeStatus.FAILED)
        save.start(self._clock())
        record = CustomerRecord.from_request(context.request, created_at=save.started_at)
        if not await self._call(
            save,
            lambda: self.record_store.put(
                record.partition_key, record.sort_key, record.store_attributes()
            ),
            self.config.store_timeout,
            failures,
        ):
            return finish(OutcomeStatus.FAILED)
        results["record"] = record

        # ArchiveObject: fatal or degraded, depending on policy.
        archive = by_name[StepName.ARCHIVE_OBJECT]
        if self._cancelled(archive, cancel_event, failures):
            return finish(OutcomeStatus.FAILED)
        archive.start(self._clock())
        payload = ArchivedPayload(key=context.archive_key, body=context.raw_body)
        archived = await self._call(
            archive,
            lambda: self.object_archive.put(payload.key, payload.body),
            self.config.archive_timeout,
            failures,
        )
        if archived:
            results["archive_key"] = payload.key
        elif self.archive_failure_policy is ArchiveFailurePolicy.FAIL:
            return finish(OutcomeStatus.FAILED)

        # PublishEvent: failure is surfaced, earlier side effects stay.
        publish = by_name[StepName.PUBLISH_EVENT]
        if self._cancelled(publish, cancel_event, failures):
            return finish(OutcomeStatus.FAILED)
        publish.start(self._clock())

        async def publish_event() -> None:
            event = DomainEvent.customer_created(
                context.raw_body,
                causation_id=context.execution_id,
                timestamp=context.entered_timestamp,
            )
            results["event"] = event
            # Completes on acceptance; fan-out continues without the step.
            await self.event_bus.publish(self.config.company_bus, event)

        await self._call(publish, publish_event, self.config.publish_timeout, failures)

        if failures:
            return finish(OutcomeStatus.PARTIALLY_SUCCEEDED)
        return finish(OutcomeStatus.SUCCEEDED)

    def _cancelled(
        self,
        step: WorkflowStep,
        cancel_event: asyncio.Event | None,
        failures: list[RegistrationError],
    ) -> bool:
        if cancel_event is None or not cancel_event.is_set():
            return False
        self._fail(
            step,
            WorkflowCancelled(f"Workflow cancelled before {step.name.value}"),
            failures,
        )
        return True

    async def _call(
        self,
        step: WorkflowStep,
        call: Callable[[], Awaitable[Any]],
        timeout: float,
        failures: list[RegistrationError],
    ) -> bool:
        """Run one step's external call; returns False when the step failed."""
        started = time.perf_counter()
        with self._tracer.start_as_current_span(
            f"registration.step.{step.name.value}",
            attributes={"registration.step": step.name.value},
        ) as span:
            try:
                await _run_to_completion(call(), timeout)
            except asyncio.CancelledError:
                logger.warning(
                    "Workflow task cancelled after %s had completed its external call",
                    step.name.value,
                )
                raise
            except Exception as e:
                error = self._as_step_failure(step.name, e, timeout)
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, error.message))
                self._fail(step, error, failures)
                return False
            finally:
                if self.metrics:
                    self.metrics.observe_step(step.name.value, time.perf_counter() - started)

        step.complete(self._clock())
        logger.debug("Step %s completed", step.name.value)
        return True

    def _as_step_failure(
        self, step: StepName, error: Exception, timeout: float
    ) -> RegistrationError:
        failure_type = STEP_FAILURE_TYPES[step]
        if isinstance(error, failure_type):
            return error

        if isinstance(error, asyncio.TimeoutError):
            failure = failure_type(f"{step.value} timed out after {timeout}s", step=step.value)
        else:
            failure = failure_type(f"{step.value} failed: {error}", step=step.value)
        failure.__cause__ = error
        return failure

    def _fail(
        self,
        step: WorkflowStep,
        error: RegistrationError,
        failures: list[RegistrationError],
    ) -> None:
        error.step = step.name.value
        step.fail(error, self._clock())
        failures.append(error)

        if self.metrics:
            self.metrics.record_step_failure(step.name.value, error.error_type)
        logger.warning(
            "Step %s failed with %s: %s",
            step.name.value,
            error.error_type,
            error.message,
            extra={"step": step.name.value, "error_type": error.error_type},
        )

    def _log_outcome(self, outcome: WorkflowOutcome, request: RegistrationRequest) -> None:
        if outcome.succeeded:
            logger.info("Registration workflow for customer %s succeeded", request.id)
            return

        log = logger.error if outcome.failed else logger.warning
        log(
            "Registration workflow for customer %s finished %s at %s: %s",
            request.id,
            outcome.status.value,
            outcome.failed_step.value if outcome.failed_step else "-",
            outcome.reason,
            extra={"outcome": outcome.status.value},
        )


async def _run_to_completion(awaitable: Awaitable[Any], timeout: float) -> Any:
    """Await an external call with a timeout, without letting cancellation abort it.

    If the calling task is cancelled while the call is in flight, the call
    keeps running until it finishes or times out, and the cancellation is
    re-raised afterwards.
    """
    task = asyncio.ensure_future(asyncio.wait_for(awaitable, timeout))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        if not task.done():
            await asyncio.wait([task])
        if not task.cancelled():
            # Mark the result as retrieved; the cancellation wins.
            task.exception()
        raise
