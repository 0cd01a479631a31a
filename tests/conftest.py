"""
Shared pytest fixtures for the registration service tests.
"""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from registration.config import ServiceConfig
from registration.messaging.bus import InMemoryEventBus
from registration.messaging.queue import QueueWithDLQ
from registration.messaging.routing import EventRouter, default_routing_rules
from registration.models import DomainEvent, RegistrationRequest
from registration.observability.metrics import RegistrationMetrics
from registration.stores import InMemoryObjectArchive, InMemoryRecordStore

FIXED_NOW = datetime(2024, 5, 1, 12, 30, 45, 123000, tzinfo=timezone.utc)
FIXED_TIMESTAMP = "2024-05-01T12:30:45.123Z"

FULL_PAYLOAD = {
    "id": "c1",
    "name": "Acme",
    "companyIdentificationNumber": "123",
    "companyIdentificationType": "EIN",
    "companyPostalCode": "94105",
}


class ManualClock:
    """Monotonic clock the test moves forward by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def fixed_timestamp() -> str:
    return FIXED_TIMESTAMP


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def full_payload() -> dict[str, str]:
    return dict(FULL_PAYLOAD)


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def full_body() -> bytes:
    return json.dumps(FULL_PAYLOAD).encode("utf-8")


@pytest.fixture
def full_request(full_body: bytes) -> RegistrationRequest:
    return RegistrationRequest.from_json(full_body)


@pytest.fixture
def minimal_request() -> RegistrationRequest:
    return RegistrationRequest.from_json(b'{"id": "c2"}')


@pytest.fixture
def registration_event(full_body: bytes) -> DomainEvent:
    return DomainEvent.customer_created(
        full_body, causation_id="exec-1", timestamp=FIXED_TIMESTAMP
    )


@pytest.fixture
def metrics() -> RegistrationMetrics:
    return RegistrationMetrics(service_name="registration-test")


@pytest.fixture
def record_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def object_archive() -> InMemoryObjectArchive:
    return InMemoryObjectArchive()


@pytest.fixture
def queue(manual_clock: ManualClock, metrics: RegistrationMetrics) -> QueueWithDLQ:
    return QueueWithDLQ(
        "customer-registrations",
        max_receive_count=3,
        visibility_timeout=30.0,
        clock=manual_clock,
        metrics=metrics,
    )


@pytest.fixture
def routed_bus(queue: QueueWithDLQ, metrics: RegistrationMetrics) -> InMemoryEventBus:
    """Company bus -> registration bus -> queue, as deployed."""
    router = EventRouter(queues={queue.name: queue}, metrics=metrics)
    bus = InMemoryEventBus({"company", "registration"}, router=router)
    for rule in default_routing_rules("company", "registration", queue.name):
        bus.subscribe(rule.listen_bus, rule)
    return bus


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "config"
    (directory / "services").mkdir(parents=True)
    return directory


@pytest.fixture
def service_config() -> ServiceConfig:
    return ServiceConfig.from_dict({"logging": {"level": "OFF"}})
