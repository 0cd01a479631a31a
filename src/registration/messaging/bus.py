"""
Named event buses.

Defines the event bus port used by the workflow's PublishEvent step and an
in-memory implementation that hands every accepted event to an ``EventRouter``
for fan-out. ``publish`` returns as soon as the bus has accepted the event;
routing runs in a background task tracked by the bus, so a slow or failing
delivery never delays or fails the publish itself.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..errors import PublishFailure
from ..models import DomainEvent
from .routing import DeliveryResult, EventRouter, RoutingRule, flatten_results

logger = logging.getLogger(__name__)


@dataclass
class PublishReceipt:
    """Accepted publish and, once routing has finished, the deliveries it produced."""

    bus_name: str
    event: DomainEvent
    deliveries: list[DeliveryResult] = field(default_factory=list)
    routing: "asyncio.Task[list[DeliveryResult]] | None" = field(
        default=None, repr=False, compare=False
    )

    @property
    def routed(self) -> bool:
        return self.routing is None or self.routing.done()

    @property
    def failed_deliveries(self) -> list[DeliveryResult]:
        return [result for result in flatten_results(self.deliveries) if not result.success]

    async def delivered(self) -> list[DeliveryResult]:
        """Wait for this publish's fan-out to finish and return its results.

        Cancelling the waiter does not cancel the fan-out.
        """
        if self.routing is not None:
            await asyncio.shield(self.routing)
        return self.deliveries


class EventBus(ABC):
    """Abstract named-bus publish interface."""

    @abstractmethod
    async def publish(self, bus_id: str, event: DomainEvent) -> PublishReceipt:
        """Publish an event on a bus.

        Returns once the bus has accepted the event; routing to the bus's
        subscribers is not part of the call.

        Raises:
            PublishFailure: the bus is unknown, unreachable or rejected the event
        """
        raise NotImplementedError

    @abstractmethod
    def subscribe(self, bus_id: str, rule: RoutingRule) -> None:
        """Register a routing rule on a bus (configuration time)."""
        raise NotImplementedError


class InMemoryEventBus(EventBus):
    """In-memory set of named buses routed through one ``EventRouter``."""

    def __init__(self, bus_names: Iterable[str], router: EventRouter | None = None):
        self._bus_names = set(bus_names)
        self.router = router or EventRouter()
        self.router.bind_bus(self)
        self._published: dict[str, list[DomainEvent]] = defaultdict(list)
        self._unavailable: set[str] = set()
        self._routing_tasks: set[asyncio.Task] = set()

    @property
    def bus_names(self) -> set[str]:
        return set(self._bus_names)

    @property
    def pending_routes(self) -> int:
        """Fan-outs started by ``publish`` that have not finished yet."""
        return len(self._routing_tasks)

    def set_available(self, bus_name: str, available: bool) -> None:
        """Simulate a bus outage (used by local runs and tests)."""
        if available:
            self._unavailable.discard(bus_name)
        else:
            self._unavailable.add(bus_name)

    def subscribe(self, bus_id: str, rule: RoutingRule) -> None:
        if bus_id not in self._bus_names:
            raise ValueError(f"Unknown event bus: {bus_id}")
        self.router.subscribe(bus_id, rule)

    async def publish(self, bus_id: str, event: DomainEvent) -> PublishReceipt:
        self._accept(bus_id, event)

        receipt = PublishReceipt(bus_name=bus_id, event=event)
        routing_task = asyncio.create_task(
            self._route(receipt), name=f"route:{bus_id}:{event.correlation_id}"
        )
        receipt.routing = routing_task
        self._routing_tasks.add(routing_task)
        routing_task.add_done_callback(self._routing_tasks.discard)
        return receipt

    async def forward(self, bus_id: str, event: DomainEvent, hops: int = 0) -> list[DeliveryResult]:
        """Accept an event on ``bus_id`` and route it; used for every later hop."""
        self._accept(bus_id, event)
        return await self.router.route(bus_id, event, hops=hops)

    async def drain(self) -> None:
        """Wait until every fan-out started so far, including later hops, has finished."""
        while self._routing_tasks:
            await asyncio.gather(*list(self._routing_tasks), return_exceptions=True)

    def published(self, bus_id: str) -> list[DomainEvent]:
        """Events accepted on a bus so far."""
        return list(self._published.get(bus_id, []))

    async def _route(self, receipt: PublishReceipt) -> list[DeliveryResult]:
        try:
            receipt.deliveries = await self.router.route(receipt.bus_name, receipt.event)
        except Exception:
            logger.exception(
                "Routing of event %s from %s failed",
                receipt.event.correlation_id,
                receipt.bus_name,
                extra={"bus": receipt.bus_name},
            )
            raise

        failed = receipt.failed_deliveries
        if failed:
            logger.warning(
                "Event %s accepted on %s with %d failed deliveries",
                receipt.event.correlation_id,
                receipt.bus_name,
                len(failed),
                extra={"bus": receipt.bus_name},
            )
        return receipt.deliveries

    def _accept(self, bus_id: str, event: DomainEvent) -> None:
        if bus_id not in self._bus_names:
            raise PublishFailure(f"Unknown event bus: {bus_id}", bus=bus_id)
        if bus_id in self._unavailable:
            raise PublishFailure(f"Event bus {bus_id} is unavailable", bus=bus_id)

        self._published[bus_id].append(event)
        logger.debug(
            "Accepted %s/%s on %s",
            event.source,
            event.detail_type,
            bus_id,
            extra={"bus": bus_id},
        )
