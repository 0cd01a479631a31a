"""
Event Routing and Fan-out

Provides the rule table that decides where a published domain event goes
next. Rules are plain data matched by exact string comparison on the bus the
event arrived on, its source and its detail type. Every matching rule
contributes its targets and all targets are delivered concurrently; a failed
delivery is reported in the results and never stops the others.
"""

import asyncio
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from ..errors import PublishFailure, RoutingDeliveryFailure
from ..models import CUSTOMER_CREATED_SOURCE, REGISTRATION_DETAIL_TYPE, DomainEvent
from .queue import MessageQueue

if TYPE_CHECKING:
    from ..observability.metrics import RegistrationMetrics
    from .bus import InMemoryEventBus

logger = logging.getLogger(__name__)

DEFAULT_MAX_HOPS = 5


@dataclass(frozen=True)
class BusTarget:
    """Re-publish the event unchanged onto another bus."""

    bus_name: str

    kind = "bus"

    @property
    def name(self) -> str:
        return self.bus_name


@dataclass(frozen=True)
class QueueTarget:
    """Enqueue the event as a new queue message."""

    queue_name: str

    kind = "queue"

    @property
    def name(self) -> str:
        return self.queue_name


RouteTarget = Union[BusTarget, QueueTarget]


@dataclass(frozen=True)
class RoutingRule:
    """Static routing rule: events on ``listen_bus`` with a matching dispatch key."""

    name: str
    listen_bus: str
    match_source: str
    match_detail_type: str
    targets: tuple[RouteTarget, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        if not self.targets:
            raise ValueError(f"Routing rule {self.name} has no targets")
        # Lists from configuration are stored as tuples.
        object.__setattr__(self, "targets", tuple(self.targets))

    def matches(self, bus_id: str, event: DomainEvent) -> bool:
        return (
            self.listen_bus == bus_id
            and self.match_source == event.source
            and self.match_detail_type == event.detail_type
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RoutingRule":
        """Create a rule from its configuration mapping."""
        targets: list[RouteTarget] = []
        for target in data.get("targets", []):
            if "bus" in target:
                targets.append(BusTarget(target["bus"]))
            elif "queue" in target:
                targets.append(QueueTarget(target["queue"]))
            else:
                raise ValueError(f"Unknown routing target {target!r} in rule {data.get('name')}")

        return cls(
            name=data["name"],
            listen_bus=data["listen_bus"],
            match_source=data.get("source", CUSTOMER_CREATED_SOURCE),
            match_detail_type=data.get("detail_type", REGISTRATION_DETAIL_TYPE),
            targets=tuple(targets),
            description=data.get("description", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "listen_bus": self.listen_bus,
            "source": self.match_source,
            "detail_type": self.match_detail_type,
            "targets": [{target.kind: target.name} for target in self.targets],
            "description": self.description,
        }


@dataclass
class DeliveryResult:
    """Outcome of delivering one event to one matched target."""

    rule_name: str
    target: RouteTarget
    success: bool
    error: RoutingDeliveryFailure | None = None
    message_id: str | None = None
    downstream: list["DeliveryResult"] = field(default_factory=list)

    def walk(self) -> Iterator["DeliveryResult"]:
        """This result followed by every downstream hop, depth first."""
        yield self
        for result in self.downstream:
            yield from result.walk()


def flatten_results(results: Iterable[DeliveryResult]) -> list[DeliveryResult]:
    return [hop for result in results for hop in result.walk()]


class EventRouter:
    """Rule-table router with concurrent, multi-hop fan-out."""

    def __init__(
        self,
        rules: Iterable[RoutingRule] = (),
        queues: Mapping[str, MessageQueue] | None = None,
        max_hops: int = DEFAULT_MAX_HOPS,
        metrics: "RegistrationMetrics | None" = None,
    ):
        self._rules: tuple[RoutingRule, ...] = tuple(rules)
        self._queues: dict[str, MessageQueue] = dict(queues or {})
        self._bus: "InMemoryEventBus | None" = None
        self.max_hops = max_hops
        self.metrics = metrics

    @property
    def rules(self) -> tuple[RoutingRule, ...]:
        return self._rules

    def bind_bus(self, bus: "InMemoryEventBus") -> None:
        """Attach the bus used to deliver bus targets."""
        self._bus = bus

    def subscribe(self, bus_id: str, rule: RoutingRule) -> None:
        """Register a rule for ``bus_id``. Configuration time only."""
        if rule.listen_bus != bus_id:
            raise ValueError(
                f"Rule {rule.name} listens on {rule.listen_bus}, not {bus_id}"
            )
        if any(existing.name == rule.name for existing in self._rules):
            raise ValueError(f"Routing rule {rule.name} is already registered")

        # Swap in a new tuple so a route in progress keeps its snapshot.
        self._rules = self._rules + (rule,)
        logger.info("Added routing rule %s on bus %s", rule.name, bus_id)

    def match(self, bus_id: str, event: DomainEvent) -> list[RoutingRule]:
        return [rule for rule in self._rules if rule.matches(bus_id, event)]

    async def route(self, bus_id: str, event: DomainEvent, hops: int = 0) -> list[DeliveryResult]:
        """
        Deliver an event that arrived on ``bus_id`` to every matched target.

        Args:
            bus_id: Bus the event was published on
            event: Event to route, forwarded unchanged
            hops: Bus-to-bus forwards already taken by this event

        Returns:
            One result per matched target, in rule order
        """
        deliveries = [
            (rule, target) for rule in self.match(bus_id, event) for target in rule.targets
        ]
        if not deliveries:
            logger.debug(
                "No routing rules matched %s/%s on %s", event.source, event.detail_type, bus_id
            )
            return []

        results = await asyncio.gather(
            *(self._deliver(rule, target, event, hops) for rule, target in deliveries)
        )
        return list(results)

    async def _deliver(
        self, rule: RoutingRule, target: RouteTarget, event: DomainEvent, hops: int
    ) -> DeliveryResult:
        try:
            if isinstance(target, BusTarget):
                result = await self._deliver_to_bus(rule, target, event, hops)
            else:
                result = await self._deliver_to_queue(rule, target, event)
        except RoutingDeliveryFailure as e:
            result = DeliveryResult(rule_name=rule.name, target=target, success=False, error=e)
        except Exception as e:
            failure = RoutingDeliveryFailure(
                f"Delivery to {target.kind} {target.name} failed: {e}", target=target.name
            )
            failure.__cause__ = e
            result = DeliveryResult(
                rule_name=rule.name, target=target, success=False, error=failure
            )

        if not result.success:
            logger.warning(
                "Routing rule %s could not deliver %s to %s %s: %s",
                rule.name,
                event.correlation_id,
                target.kind,
                target.name,
                result.error,
                extra={"rule": rule.name, "target": target.name},
            )
        if self.metrics:
            self.metrics.record_delivery(target.kind, target.name, result.success)
        return result

    async def _deliver_to_bus(
        self, rule: RoutingRule, target: BusTarget, event: DomainEvent, hops: int
    ) -> DeliveryResult:
        if self._bus is None:
            raise RoutingDeliveryFailure(
                "Router is not bound to an event bus", target=target.bus_name
            )
        if hops + 1 > self.max_hops:
            raise RoutingDeliveryFailure(
                f"Hop limit {self.max_hops} reached forwarding to {target.bus_name}",
                target=target.bus_name,
            )

        try:
            downstream = await self._bus.forward(target.bus_name, event, hops=hops + 1)
        except PublishFailure as e:
            raise RoutingDeliveryFailure(str(e), target=target.bus_name) from e

        return DeliveryResult(
            rule_name=rule.name, target=target, success=True, downstream=downstream
        )

    async def _deliver_to_queue(
        self, rule: RoutingRule, target: QueueTarget, event: DomainEvent
    ) -> DeliveryResult:
        queue = self._queues.get(target.queue_name)
        if queue is None:
            raise RoutingDeliveryFailure(
                f"Unknown queue {target.queue_name}", target=target.queue_name
            )

        message = await queue.enqueue(event)
        return DeliveryResult(
            rule_name=rule.name, target=target, success=True, message_id=message.message_id
        )


def default_routing_rules(company_bus: str, local_bus: str, queue: str) -> list[RoutingRule]:
    """Rules of the reference topology: company bus -> local bus -> queue."""
    return [
        RoutingRule(
            name="customer-created-to-local-bus",
            listen_bus=company_bus,
            match_source=CUSTOMER_CREATED_SOURCE,
            match_detail_type=REGISTRATION_DETAIL_TYPE,
            targets=(BusTarget(local_bus),),
            description="Forward registration events to the service's local bus",
        ),
        RoutingRule(
            name="customer-created-to-queue",
            listen_bus=local_bus,
            match_source=CUSTOMER_CREATED_SOURCE,
            match_detail_type=REGISTRATION_DETAIL_TYPE,
            targets=(QueueTarget(queue),),
            description="Queue registration events for downstream consumers",
        ),
    ]
