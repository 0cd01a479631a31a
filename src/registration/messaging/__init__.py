"""
Event distribution: named buses, rule-based routing and queues with dead-lettering.
"""

from .bus import EventBus, InMemoryEventBus, PublishReceipt
from .queue import MessageQueue, MessageState, QueueMessage, QueueStats, QueueWithDLQ
from .routing import (
    BusTarget,
    DeliveryResult,
    EventRouter,
    QueueTarget,
    RouteTarget,
    RoutingRule,
    default_routing_rules,
    flatten_results,
)

__all__ = [
    "BusTarget",
    "DeliveryResult",
    "EventBus",
    "EventRouter",
    "InMemoryEventBus",
    "MessageQueue",
    "MessageState",
    "PublishReceipt",
    "QueueMessage",
    "QueueStats",
    "QueueTarget",
    "QueueWithDLQ",
    "RouteTarget",
    "RoutingRule",
    "default_routing_rules",
    "flatten_results",
]
