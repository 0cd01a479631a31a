"""
Service wiring.

Builds the in-process topology described by a ``ServiceConfig``: the company
and local buses, the router and its rules, the queue with its dead-letter
queue, the stores and the workflow orchestrator.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .config import ServiceConfig
from .logging import setup_logging
from .messaging.bus import InMemoryEventBus
from .messaging.queue import QueueWithDLQ
from .messaging.routing import EventRouter, default_routing_rules
from .models import RegistrationRequest
from .observability.metrics import RegistrationMetrics
from .observability.tracing import init_tracing
from .stores import InMemoryObjectArchive, InMemoryRecordStore
from .workflow.orchestrator import WorkflowOrchestrator
from .workflow.outcome import WorkflowOutcome

logger = logging.getLogger(__name__)


@dataclass
class ServiceTopology:
    """Everything one registration service process runs with."""

    config: ServiceConfig
    event_bus: InMemoryEventBus
    router: EventRouter
    queue: QueueWithDLQ
    record_store: InMemoryRecordStore
    object_archive: InMemoryObjectArchive
    orchestrator: WorkflowOrchestrator
    metrics: RegistrationMetrics | None = None

    async def register(self, request: RegistrationRequest, **options: Any) -> WorkflowOutcome:
        """Run one workflow and wait until its event has finished fanning out."""
        outcome = await self.orchestrator.execute(request, **options)
        await self.event_bus.drain()
        return outcome


def build_topology(
    config: ServiceConfig,
    clock: Callable[[], datetime] | None = None,
    queue_clock: Callable[[], float] | None = None,
) -> ServiceTopology:
    """Wire the service from configuration.

    Rules listed under ``routing.rules`` are used as given; without any, the
    default company bus -> local bus -> queue chain is installed.
    """
    workflow = config.workflow
    routing = config.routing
    queue_config = config.queue

    metrics = (
        RegistrationMetrics(service_name=config.service_name)
        if config.monitoring.metrics_enabled
        else None
    )

    queue_kwargs = {"clock": queue_clock} if queue_clock else {}
    queue = QueueWithDLQ(
        queue_config.name,
        max_receive_count=queue_config.max_receive_count,
        visibility_timeout=queue_config.visibility_timeout,
        metrics=metrics,
        **queue_kwargs,
    )

    router = EventRouter(queues={queue.name: queue}, max_hops=routing.max_hops, metrics=metrics)
    rules = routing.rules or default_routing_rules(
        workflow.company_bus, workflow.local_bus, queue.name
    )

    bus_names = {workflow.company_bus, workflow.local_bus}
    for rule in rules:
        bus_names.add(rule.listen_bus)
        bus_names.update(target.name for target in rule.targets if target.kind == "bus")

    event_bus = InMemoryEventBus(bus_names, router=router)
    for rule in rules:
        event_bus.subscribe(rule.listen_bus, rule)

    record_store = InMemoryRecordStore()
    object_archive = InMemoryObjectArchive()
    orchestrator = WorkflowOrchestrator(
        record_store,
        object_archive,
        event_bus,
        config=workflow,
        clock=clock,
        metrics=metrics,
    )

    logger.info(
        "Built registration topology with %d routing rule(s) across buses %s",
        len(rules),
        ", ".join(sorted(bus_names)),
    )
    return ServiceTopology(
        config=config,
        event_bus=event_bus,
        router=router,
        queue=queue,
        record_store=record_store,
        object_archive=object_archive,
        orchestrator=orchestrator,
        metrics=metrics,
    )


def configure_observability(config: ServiceConfig, stream: Any = None) -> None:
    """Apply the logging and tracing sections of the configuration."""
    setup_logging(
        service_name=config.service_name,
        log_level=config.logging.level,
        enable_json=config.logging.json,
        enable_trace=config.logging.include_trace,
        stream=stream,
    )
    if config.monitoring.tracing_enabled:
        init_tracing(service_name=config.service_name, enabled=True)
