import asyncio
import json
from pathlib import Path

import pytest

from receipt_tracker.errors import StorageWriteError
from receipt_tracker.models import ReceiptData
from receipt_tracker.storage.base import LOCAL_OWNER
from receipt_tracker.storage.local import STORAGE_KEY, LocalReceiptStorage, MonotonicIdGenerator


@pytest.fixture
def data_file(tmp_path: Path) -> Path:
    return tmp_path / "receipts.json"


@pytest.fixture
def storage(data_file: Path) -> LocalReceiptStorage:
    return LocalReceiptStorage(
        data_path=str(data_file),
        id_generator=MonotonicIdGenerator(clock=lambda: 1700000000.0),
    )


def test_id_generator_never_repeats_within_same_millisecond() -> None:
    generator = MonotonicIdGenerator(clock=lambda: 1.0)
    ids = [generator.next_id() for _ in range(5)]
    assert ids == [1000, 1001, 1002, 1003, 1004]


@pytest.mark.anyio
async def test_save_then_reload_round_trip(storage: LocalReceiptStorage, data_file: Path) -> None:
    receipt = ReceiptData(
        transaction_name="Whole Foods",
        total_amount=42.1,
        transaction_date="2024-03-02",
        category="Groceries",
    )
    saved = await storage.append(LOCAL_OWNER, receipt)

    reloaded = LocalReceiptStorage(data_path=str(data_file))
    receipts = await reloaded.load(LOCAL_OWNER)

    assert len(receipts) == 1
    assert receipts[0].id == saved.id
    assert receipts[0].model_dump(exclude={"id"}) == receipt.model_dump()

    raw = json.loads(data_file.read_text(encoding="utf-8"))
    assert raw[STORAGE_KEY][0] == {
        "id": saved.id,
        "transaction_name": "Whole Foods",
        "total_amount": 42.1,
        "transaction_date": "2024-03-02",
        "category": "Groceries",
    }


@pytest.mark.anyio
async def test_rapid_saves_get_distinct_ids_newest_first(storage: LocalReceiptStorage) -> None:
    first = await storage.append(LOCAL_OWNER, ReceiptData(transaction_name="A"))
    second = await storage.append(LOCAL_OWNER, ReceiptData(transaction_name="B"))

    assert first.id != second.id
    assert [r.transaction_name for r in await storage.load(LOCAL_OWNER)] == ["B", "A"]


@pytest.mark.anyio
async def test_reload_continues_ids_past_stored_ones(storage: LocalReceiptStorage, data_file: Path) -> None:
    saved = await storage.append(LOCAL_OWNER, ReceiptData(transaction_name="A"))

    reloaded = LocalReceiptStorage(
        data_path=str(data_file),
        id_generator=MonotonicIdGenerator(clock=lambda: 1.0),
    )
    again = await reloaded.append(LOCAL_OWNER, ReceiptData(transaction_name="B"))
    assert again.id == saved.id + 1


@pytest.mark.anyio
async def test_delete_removes_only_matching_receipt(storage: LocalReceiptStorage) -> None:
    keep = await storage.append(LOCAL_OWNER, ReceiptData(transaction_name="keep"))
    drop = await storage.append(LOCAL_OWNER, ReceiptData(transaction_name="drop"))

    assert await storage.delete(LOCAL_OWNER, drop.id) is True
    assert [r.id for r in await storage.load(LOCAL_OWNER)] == [keep.id]


@pytest.mark.anyio
async def test_delete_unknown_id_is_noop(storage: LocalReceiptStorage, data_file: Path) -> None:
    await storage.append(LOCAL_OWNER, ReceiptData(transaction_name="only"))
    before = data_file.read_text(encoding="utf-8")

    assert await storage.delete(LOCAL_OWNER, 12345) is False
    assert data_file.read_text(encoding="utf-8") == before
    assert len(await storage.load(LOCAL_OWNER)) == 1


@pytest.mark.anyio
async def test_delete_accepts_string_id_from_url(storage: LocalReceiptStorage) -> None:
    saved = await storage.append(LOCAL_OWNER, ReceiptData(transaction_name="x"))
    assert await storage.delete(LOCAL_OWNER, str(saved.id)) is True
    assert await storage.load(LOCAL_OWNER) == []


@pytest.mark.anyio
async def test_corrupt_file_loads_as_empty(data_file: Path) -> None:
    data_file.write_text("{not json", encoding="utf-8")

    storage = LocalReceiptStorage(data_path=str(data_file))

    assert storage.load_error is not None
    assert await storage.load_or_empty(LOCAL_OWNER) == []


@pytest.mark.anyio
async def test_write_failure_keeps_previous_state(tmp_path: Path) -> None:
    storage = LocalReceiptStorage(data_path=str(tmp_path / "missing" / "receipts.json"))

    with pytest.raises(StorageWriteError):
        await storage.append(LOCAL_OWNER, ReceiptData(transaction_name="lost"))

    assert await storage.load(LOCAL_OWNER) == []


@pytest.mark.anyio
async def test_watch_pushes_new_snapshot_after_append(storage: LocalReceiptStorage) -> None:
    snapshots = storage.watch(LOCAL_OWNER)
    assert await snapshots.__anext__() == []

    pending = asyncio.ensure_future(snapshots.__anext__())
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    saved = await storage.append(LOCAL_OWNER, ReceiptData(transaction_name="pushed"))

    snapshot = await asyncio.wait_for(pending, timeout=1.0)
    assert [r.id for r in snapshot] == [saved.id]
    await snapshots.aclose()


@pytest.mark.anyio
async def test_watch_delivers_change_made_between_snapshots(storage: LocalReceiptStorage) -> None:
    snapshots = storage.watch(LOCAL_OWNER)
    assert await snapshots.__anext__() == []

    # Nobody is waiting on the stream while this save commits
    saved = await storage.append(LOCAL_OWNER, ReceiptData(transaction_name="between"))

    snapshot = await asyncio.wait_for(snapshots.__anext__(), timeout=1.0)
    assert [r.id for r in snapshot] == [saved.id]
    await snapshots.aclose()
