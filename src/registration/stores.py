"""
Storage ports for the registration workflow.

Defines the narrow interfaces the orchestrator uses to reach durable record
storage and object storage, together with in-memory implementations for
local runs and testing.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from .errors import ArchiveFailure, PersistenceFailure

logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """Key/value durable store keyed by (partition_key, sort_key)."""

    @abstractmethod
    async def put(self, partition_key: str, sort_key: str, attributes: dict[str, str]) -> None:
        """Insert or overwrite the item at the given key.

        Raises:
            PersistenceFailure: the store is unreachable or rejected the write
        """
        raise NotImplementedError


class ObjectArchive(ABC):
    """Blob store for raw payload copies."""

    @abstractmethod
    async def put(self, key: str, body: bytes) -> None:
        """Write ``body`` under ``key``, overwriting any previous object.

        Raises:
            ArchiveFailure: the archive is unreachable or rejected the write
        """
        raise NotImplementedError


class InMemoryRecordStore(RecordStore):
    """In-memory record store with last-writer-wins upserts."""

    def __init__(self, table_name: str = "CustomerTable"):
        self.table_name = table_name
        self._items: dict[tuple[str, str], dict[str, str]] = {}
        self._lock = asyncio.Lock()
        self.available = True

    async def put(self, partition_key: str, sort_key: str, attributes: dict[str, str]) -> None:
        if not self.available:
            raise PersistenceFailure(
                f"Table {self.table_name} is unavailable", table=self.table_name
            )
        if not partition_key or not sort_key:
            raise PersistenceFailure(
                "Partition key and sort key must be non-empty", table=self.table_name
            )

        item = {"pk": partition_key, "sk": sort_key, **attributes}
        async with self._lock:
            replaced = (partition_key, sort_key) in self._items
            self._items[(partition_key, sort_key)] = item

        logger.debug(
            "%s item %s/%s in %s",
            "Replaced" if replaced else "Inserted",
            partition_key,
            sort_key,
            self.table_name,
        )

    async def get(self, partition_key: str, sort_key: str) -> dict[str, str] | None:
        async with self._lock:
            item = self._items.get((partition_key, sort_key))
            return dict(item) if item is not None else None

    async def items(self) -> list[dict[str, str]]:
        async with self._lock:
            return [dict(item) for item in self._items.values()]

    def __len__(self) -> int:
        return len(self._items)


class InMemoryObjectArchive(ObjectArchive):
    """In-memory object archive; a repeated key overwrites the earlier object."""

    def __init__(self, bucket_name: str = "identity-verification"):
        self.bucket_name = bucket_name
        self._objects: dict[str, bytes] = {}
        self.available = True

    async def put(self, key: str, body: bytes) -> None:
        if not self.available:
            raise ArchiveFailure(
                f"Bucket {self.bucket_name} is unavailable", bucket=self.bucket_name
            )
        if not key:
            raise ArchiveFailure("Object key must be non-empty", bucket=self.bucket_name)

        if key in self._objects:
            logger.info("Overwriting archived object %s in %s", key, self.bucket_name)
        self._objects[key] = bytes(body)

    def get(self, key: str) -> bytes | None:
        return self._objects.get(key)

    def keys(self) -> list[str]:
        return list(self._objects)
