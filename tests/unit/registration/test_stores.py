import asyncio

import pytest

from registration.errors import ArchiveFailure, PersistenceFailure
from registration.stores import InMemoryObjectArchive, InMemoryRecordStore


@pytest.mark.unit
@pytest.mark.asyncio
async def test_record_store_upserts_on_same_key(record_store: InMemoryRecordStore) -> None:
    await record_store.put("c1", "Customer", {"id": "c1", "createdAt": "t1"})
    await record_store.put("c1", "Customer", {"id": "c1", "createdAt": "t2"})

    assert len(record_store) == 1
    assert await record_store.get("c1", "Customer") == {
        "pk": "c1",
        "sk": "Customer",
        "id": "c1",
        "createdAt": "t2",
    }


@pytest.mark.unit
@pytest.mark.asyncio
async def test_record_store_keeps_distinct_sort_keys(record_store: InMemoryRecordStore) -> None:
    await record_store.put("c1", "Customer", {"id": "c1"})
    await record_store.put("c1", "Address", {"id": "c1"})

    assert len(record_store) == 2
    assert {item["sk"] for item in await record_store.items()} == {"Customer", "Address"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_record_store_concurrent_writers_leave_one_item(
    record_store: InMemoryRecordStore,
) -> None:
    await asyncio.gather(
        *(record_store.put("c1", "Customer", {"createdAt": str(n)}) for n in range(20))
    )

    assert len(record_store) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_record_store_failures(record_store: InMemoryRecordStore) -> None:
    with pytest.raises(PersistenceFailure):
        await record_store.put("", "Customer", {})

    record_store.available = False
    with pytest.raises(PersistenceFailure) as exc_info:
        await record_store.put("c1", "Customer", {})
    assert exc_info.value.context["table"] == "CustomerTable"
    assert len(record_store) == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_object_archive_overwrites(object_archive: InMemoryObjectArchive) -> None:
    await object_archive.put("2024-05-01T12:30:45.123Z", b"first")
    await object_archive.put("2024-05-01T12:30:45.123Z", b"second")

    assert object_archive.keys() == ["2024-05-01T12:30:45.123Z"]
    assert object_archive.get("2024-05-01T12:30:45.123Z") == b"second"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_object_archive_failures(object_archive: InMemoryObjectArchive) -> None:
    with pytest.raises(ArchiveFailure):
        await object_archive.put("", b"body")

    object_archive.available = False
    with pytest.raises(ArchiveFailure):
        await object_archive.put("key", b"body")
    assert object_archive.get("key") is None
