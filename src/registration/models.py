"""
Registration Data Model

Defines the inbound registration payload, the persisted customer record, the
archived raw payload and the domain event announced after a registration.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

CUSTOMER_SORT_KEY = "Customer"
CUSTOMER_CREATED_SOURCE = "CustomerCreated"
REGISTRATION_DETAIL_TYPE = "Customer.RegistrationService"

FULL_REQUEST_FIELDS = (
    "name",
    "company_identification_number",
    "company_identification_type",
    "company_postal_code",
)


def format_timestamp(moment: datetime) -> str:
    """Render a timestamp as ISO-8601 UTC with millisecond precision."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RegistrationRequest(BaseModel):
    """Inbound registration payload, already validated upstream."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    name: str | None = None
    company_identification_number: str | None = Field(
        default=None, alias="companyIdentificationNumber"
    )
    company_identification_type: str | None = Field(
        default=None, alias="companyIdentificationType"
    )
    company_postal_code: str | None = Field(default=None, alias="companyPostalCode")

    _raw_body: bytes | None = PrivateAttr(default=None)

    @classmethod
    def from_json(cls, body: bytes | str) -> "RegistrationRequest":
        """Parse a raw request body, keeping the exact bytes for archiving."""
        raw = body.encode("utf-8") if isinstance(body, str) else bytes(body)
        request = cls.model_validate_json(raw)
        request._raw_body = raw
        return request

    @property
    def is_full(self) -> bool:
        """True when every field of the full registration variant is present."""
        return all(getattr(self, name) is not None for name in FULL_REQUEST_FIELDS)

    @property
    def raw_body(self) -> bytes:
        """The body as received, or a canonical serialisation when built in code."""
        if self._raw_body is not None:
            return self._raw_body
        return self.to_json_bytes()

    def to_wire(self) -> dict[str, str]:
        """Request fields under their wire names, omitting absent ones."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


@dataclass(frozen=True)
class CustomerRecord:
    """Persisted customer row keyed by (partition_key, sort_key)."""

    partition_key: str
    created_at: str
    attributes: dict[str, str] = field(default_factory=dict)
    sort_key: str = CUSTOMER_SORT_KEY

    @classmethod
    def from_request(cls, request: RegistrationRequest, created_at: datetime) -> "CustomerRecord":
        return cls(
            partition_key=request.id,
            created_at=format_timestamp(created_at),
            attributes=request.to_wire(),
        )

    def store_attributes(self) -> dict[str, str]:
        """Attributes written next to the key, including ``createdAt``."""
        return {**self.attributes, "createdAt": self.created_at}

    def to_item(self) -> dict[str, str]:
        """Flat item layout as stored: ``pk``, ``sk`` and every attribute."""
        return {"pk": self.partition_key, "sk": self.sort_key, **self.store_attributes()}


@dataclass(frozen=True)
class ArchivedPayload:
    """Raw request body archived under the workflow's entered time."""

    key: str
    body: bytes


@dataclass(frozen=True)
class EventMetadata:
    """Tracing metadata attached to every published domain event."""

    causation_id: str
    timestamp: str
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, str]:
        return {
            "correlationId": self.correlation_id,
            "causationId": self.causation_id,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class DomainEvent:
    """Fact published on the company bus after a customer registers."""

    metadata: EventMetadata
    data: Any
    source: str = CUSTOMER_CREATED_SOURCE
    detail_type: str = REGISTRATION_DETAIL_TYPE

    @classmethod
    def customer_created(
        cls, payload: bytes, *, causation_id: str, timestamp: str
    ) -> "DomainEvent":
        """Build the registration event with a fresh correlation id."""
        return cls(
            metadata=EventMetadata(causation_id=causation_id, timestamp=timestamp),
            data=json.loads(payload.decode("utf-8")),
        )

    @property
    def correlation_id(self) -> str:
        return self.metadata.correlation_id

    @property
    def dispatch_key(self) -> tuple[str, str]:
        return (self.source, self.detail_type)

    def to_dict(self) -> dict[str, Any]:
        """Convert event to its wire dictionary."""
        return {
            "source": self.source,
            "detailType": self.detail_type,
            "metadata": self.metadata.to_dict(),
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DomainEvent":
        """Create event from its wire dictionary."""
        metadata = data.get("metadata", {})
        return cls(
            metadata=EventMetadata(
                correlation_id=metadata.get("correlationId", str(uuid.uuid4())),
                causation_id=metadata["causationId"],
                timestamp=metadata["timestamp"],
            ),
            data=data.get("data"),
            source=data["source"],
            detail_type=data["detailType"],
        )


class JSONEventSerializer:
    """JSON-based domain event serializer."""

    def serialize(self, event: DomainEvent) -> bytes:
        return json.dumps(event.to_dict()).encode("utf-8")

    def deserialize(self, data: bytes) -> DomainEvent:
        return DomainEvent.from_dict(json.loads(data.decode("utf-8")))
