"""
Queue with Dead Letter Queue

Provides an in-process message queue with acknowledgements, a visibility
window for in-flight messages and a bounded receive count after which a
message is moved to a paired dead-letter queue.

A message is always in exactly one place after it has been enqueued: the
ready list, the in-flight set, or the dead-letter queue. Acknowledged
messages are removed altogether. Transitions of one message are serialised
by a lock scoped to that message id.
"""

import asyncio
import itertools
import logging
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING

from ..errors import QueueCapacityExceeded
from ..models import DomainEvent

if TYPE_CHECKING:
    from ..observability.metrics import RegistrationMetrics

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECEIVE_COUNT = 3
DEFAULT_VISIBILITY_TIMEOUT = 30.0


class MessageState(Enum):
    """Where a queued message currently lives."""

    READY = "ready"
    IN_FLIGHT = "in_flight"
    DEAD_LETTERED = "dead_lettered"


@dataclass
class QueueMessage:
    """Domain event wrapped for queue delivery."""

    event: DomainEvent
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    receive_count: int = 0
    enqueued_at: float = field(default_factory=time.time)
    sequence: int = 0
    state: MessageState = MessageState.READY
    source_queue: str | None = None
    dead_letter_reason: QueueCapacityExceeded | None = None

    def snapshot(self) -> "QueueMessage":
        """Copy handed to consumers so they cannot mutate queue state."""
        return replace(self)


@dataclass
class QueueStats:
    """Point-in-time queue counters."""

    name: str
    ready: int = 0
    in_flight: int = 0
    dead_lettered: int = 0
    enqueued_total: int = 0
    acknowledged_total: int = 0


class MessageQueue:
    """Best-effort FIFO queue with ack/nack and a visibility window.

    Used on its own as the dead-letter queue; ``QueueWithDLQ`` adds the
    receive-count threshold and the move to a paired dead-letter queue.
    """

    def __init__(
        self,
        name: str,
        visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        if visibility_timeout <= 0:
            raise ValueError("visibility_timeout must be positive")

        self.name = name
        self.visibility_timeout = visibility_timeout
        self._clock = clock

        self._messages: dict[str, QueueMessage] = {}
        self._ready: deque[str] = deque()
        self._in_flight: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._sequence = itertools.count()

        self._enqueued_total = 0
        self._acknowledged_total = 0

    async def enqueue(self, message: QueueMessage | DomainEvent) -> QueueMessage:
        """Add a message (or wrap an event) at the tail with a receive count of 0."""
        if isinstance(message, DomainEvent):
            message = QueueMessage(event=message)

        message = replace(
            message,
            receive_count=0,
            sequence=next(self._sequence),
            state=MessageState.READY,
            source_queue=self.name,
        )
        self._messages[message.message_id] = message
        self._ready.append(message.message_id)
        self._enqueued_total += 1

        logger.debug("Enqueued message %s on %s", message.message_id, self.name)
        return message.snapshot()

    async def dequeue(self) -> QueueMessage | None:
        """Deliver the next ready message, or ``None`` when nothing is ready."""
        await self._reclaim_expired()

        while self._ready:
            message_id = self._ready.popleft()
            lock = self._lock_for(message_id)
            if lock is None:
                continue
            async with lock:
                message = self._messages.get(message_id)
                if message is None or message.state is not MessageState.READY:
                    continue

                message.receive_count += 1
                if await self._exceeds_receive_limit(message):
                    continue

                message.state = MessageState.IN_FLIGHT
                self._in_flight[message_id] = self._clock() + self.visibility_timeout
                return message.snapshot()

        return None

    async def ack(self, message_id: str) -> bool:
        """Remove an in-flight message. Returns False if it is not in flight."""
        lock = self._lock_for(message_id)
        if lock is None:
            return False
        async with lock:
            message = self._messages.get(message_id)
            if message is None or message.state is not MessageState.IN_FLIGHT:
                return False

            del self._in_flight[message_id]
            del self._messages[message_id]
            self._acknowledged_total += 1

        self._locks.pop(message_id, None)
        logger.debug("Acknowledged message %s on %s", message_id, self.name)
        return True

    async def nack(self, message_id: str) -> bool:
        """Make an in-flight message deliverable again. Returns False if it is not in flight."""
        lock = self._lock_for(message_id)
        if lock is None:
            return False
        async with lock:
            message = self._messages.get(message_id)
            if message is None or message.state is not MessageState.IN_FLIGHT:
                return False

            self._release(message)

        logger.debug(
            "Message %s on %s returned after %d receive(s)",
            message_id,
            self.name,
            message.receive_count,
        )
        return True

    def get_message(self, message_id: str) -> QueueMessage | None:
        message = self._messages.get(message_id)
        return message.snapshot() if message is not None else None

    def messages(self) -> list[QueueMessage]:
        """Messages currently held (ready or in flight) in enqueue order."""
        held = sorted(self._messages.values(), key=lambda message: message.sequence)
        return [message.snapshot() for message in held]

    def stats(self) -> QueueStats:
        ready = sum(
            1 for message in self._messages.values() if message.state is MessageState.READY
        )
        return QueueStats(
            name=self.name,
            ready=ready,
            in_flight=len(self._in_flight),
            enqueued_total=self._enqueued_total,
            acknowledged_total=self._acknowledged_total,
        )

    def __len__(self) -> int:
        return len(self._messages)

    def _lock_for(self, message_id: str) -> asyncio.Lock | None:
        """Lock of a held message; ``None`` for ids the queue does not hold.

        Entries are dropped when the message leaves the queue.
        """
        if message_id not in self._messages:
            return None
        return self._locks.setdefault(message_id, asyncio.Lock())

    def _release(self, message: QueueMessage) -> None:
        """Return an in-flight message to the tail of the ready list."""
        message.state = MessageState.READY
        self._in_flight.pop(message.message_id, None)
        self._ready.append(message.message_id)

    async def _reclaim_expired(self) -> None:
        """Treat in-flight messages past their visibility window as failed deliveries."""
        now = self._clock()
        expired = [message_id for message_id, deadline in self._in_flight.items() if deadline <= now]
        for message_id in expired:
            lock = self._lock_for(message_id)
            if lock is None:
                continue
            async with lock:
                message = self._messages.get(message_id)
                deadline = self._in_flight.get(message_id)
                if message is None or deadline is None or deadline > now:
                    continue
                self._release(message)
                logger.info(
                    "Visibility timeout expired for message %s on %s", message_id, self.name
                )

    async def _exceeds_receive_limit(self, message: QueueMessage) -> bool:
        """Hook for dead-letter handling; a plain queue never gives up on a message."""
        return False

    async def _accept_dead_letter(self, message: QueueMessage) -> None:
        """Insert a moved message, keeping dead letters in original enqueue order."""
        message.state = MessageState.READY
        self._messages[message.message_id] = message

        index = len(self._ready)
        while index > 0:
            previous = self._messages.get(self._ready[index - 1])
            if previous is None or previous.sequence <= message.sequence:
                break
            index -= 1
        self._ready.insert(index, message.message_id)
        self._enqueued_total += 1


class QueueWithDLQ(MessageQueue):
    """Primary queue paired with a dead-letter queue and a receive-count threshold.

    ``dequeue`` counts every delivery it makes. When the next delivery of a
    message would take its receive count above ``max_receive_count``, the
    message is moved to the dead-letter queue instead of being delivered, so
    a message that is never acknowledged is delivered ``max_receive_count``
    times and dead-lettered on the following attempt.
    """

    def __init__(
        self,
        name: str,
        max_receive_count: int = DEFAULT_MAX_RECEIVE_COUNT,
        visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT,
        dead_letter_queue: MessageQueue | None = None,
        clock: Callable[[], float] = time.monotonic,
        metrics: "RegistrationMetrics | None" = None,
    ):
        if max_receive_count < 1:
            raise ValueError("max_receive_count must be at least 1")

        super().__init__(name, visibility_timeout=visibility_timeout, clock=clock)
        self.max_receive_count = max_receive_count
        self.dead_letter_queue = dead_letter_queue or MessageQueue(
            f"{name}-dlq", visibility_timeout=visibility_timeout, clock=clock
        )
        self.metrics = metrics
        self._dead_lettered_total = 0

    def stats(self) -> QueueStats:
        stats = super().stats()
        stats.dead_lettered = self._dead_lettered_total
        return stats

    def locate(self, message_id: str) -> MessageState | None:
        """Where a message lives now; ``None`` once it has been acknowledged."""
        message = self._messages.get(message_id)
        if message is not None:
            return message.state
        if self.dead_letter_queue.get_message(message_id) is not None:
            return MessageState.DEAD_LETTERED
        return None

    async def _exceeds_receive_limit(self, message: QueueMessage) -> bool:
        """Move the message to the dead-letter queue once its count passes the limit.

        Called with the message lock held and the receive count already
        incremented, so the compare and the move happen as one transition.
        """
        if message.receive_count <= self.max_receive_count:
            return False

        reason = QueueCapacityExceeded(
            f"Message {message.message_id} exceeded {self.max_receive_count} receives on {self.name}",
            queue=self.name,
            receive_count=message.receive_count,
        )
        del self._messages[message.message_id]
        self._in_flight.pop(message.message_id, None)
        self._locks.pop(message.message_id, None)

        message.dead_letter_reason = reason
        await self.dead_letter_queue._accept_dead_letter(message)
        self._dead_lettered_total += 1

        if self.metrics:
            self.metrics.record_dead_letter(self.name)

        logger.warning(
            "Moved message %s from %s to %s after %d receive(s)",
            message.message_id,
            self.name,
            self.dead_letter_queue.name,
            message.receive_count - 1,
            extra={"queue": self.name, "message_id": message.message_id},
        )
        return True
