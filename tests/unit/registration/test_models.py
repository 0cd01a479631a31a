import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from registration.models import (
    CUSTOMER_CREATED_SOURCE,
    CUSTOMER_SORT_KEY,
    REGISTRATION_DETAIL_TYPE,
    CustomerRecord,
    DomainEvent,
    JSONEventSerializer,
    RegistrationRequest,
    format_timestamp,
)


@pytest.mark.unit
def test_format_timestamp_uses_utc_milliseconds(fixed_now: datetime, fixed_timestamp: str) -> None:
    assert format_timestamp(fixed_now) == fixed_timestamp

    offset = fixed_now.astimezone(timezone(timedelta(hours=2)))
    assert format_timestamp(offset) == fixed_timestamp

    naive = datetime(2024, 1, 2, 3, 4, 5)
    assert format_timestamp(naive) == "2024-01-02T03:04:05.000Z"


@pytest.mark.unit
def test_request_accepts_wire_names_and_keeps_raw_body(full_body: bytes, full_payload) -> None:
    request = RegistrationRequest.from_json(full_body)

    assert request.id == "c1"
    assert request.company_identification_number == "123"
    assert request.company_postal_code == "94105"
    assert request.is_full
    assert request.raw_body == full_body
    assert request.to_wire() == full_payload


@pytest.mark.unit
def test_minimal_request_only_needs_id() -> None:
    request = RegistrationRequest.from_json('{"id": "c2", "unexpected": true}')

    assert request.id == "c2"
    assert not request.is_full
    assert request.to_wire() == {"id": "c2"}


@pytest.mark.unit
def test_request_without_id_is_rejected() -> None:
    with pytest.raises(ValidationError):
        RegistrationRequest.from_json(b'{"name": "Acme"}')


@pytest.mark.unit
def test_request_is_immutable(full_request: RegistrationRequest) -> None:
    with pytest.raises(ValidationError):
        full_request.name = "Other"  # type: ignore[misc]


@pytest.mark.unit
def test_request_built_in_code_serialises_its_fields() -> None:
    request = RegistrationRequest(id="c3", name="Beta")

    assert json.loads(request.raw_body) == {"id": "c3", "name": "Beta"}


@pytest.mark.unit
def test_customer_record_item_layout(
    full_request: RegistrationRequest, full_payload, fixed_now: datetime, fixed_timestamp: str
) -> None:
    record = CustomerRecord.from_request(full_request, created_at=fixed_now)

    assert record.partition_key == "c1"
    assert record.sort_key == CUSTOMER_SORT_KEY
    assert record.to_item() == {
        "pk": "c1",
        "sk": "Customer",
        **full_payload,
        "createdAt": fixed_timestamp,
    }


@pytest.mark.unit
def test_customer_created_event(full_body: bytes, full_payload, fixed_timestamp: str) -> None:
    event = DomainEvent.customer_created(
        full_body, causation_id="exec-1", timestamp=fixed_timestamp
    )

    assert event.source == CUSTOMER_CREATED_SOURCE
    assert event.detail_type == REGISTRATION_DETAIL_TYPE
    assert event.dispatch_key == (CUSTOMER_CREATED_SOURCE, REGISTRATION_DETAIL_TYPE)
    assert event.data == full_payload
    assert event.metadata.causation_id == "exec-1"
    assert event.metadata.timestamp == fixed_timestamp
    uuid.UUID(event.correlation_id)


@pytest.mark.unit
def test_every_event_gets_a_fresh_correlation_id(full_body: bytes, fixed_timestamp: str) -> None:
    first = DomainEvent.customer_created(full_body, causation_id="e", timestamp=fixed_timestamp)
    second = DomainEvent.customer_created(full_body, causation_id="e", timestamp=fixed_timestamp)

    assert first.correlation_id != second.correlation_id


@pytest.mark.unit
def test_event_wire_format(registration_event: DomainEvent, fixed_timestamp: str) -> None:
    serializer = JSONEventSerializer()
    payload = json.loads(serializer.serialize(registration_event))

    assert payload["source"] == "CustomerCreated"
    assert payload["detailType"] == "Customer.RegistrationService"
    assert payload["metadata"] == {
        "correlationId": registration_event.correlation_id,
        "causationId": "exec-1",
        "timestamp": fixed_timestamp,
    }
    assert serializer.deserialize(serializer.serialize(registration_event)) == registration_event
