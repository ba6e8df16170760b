import asyncio
import json
import os
import time
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from receipt_tracker.errors import StorageReadError, StorageWriteError
from receipt_tracker.logger import get_logger
from receipt_tracker.models import ReceiptData, SavedReceipt

from .base import Owner, ReceiptStorage

logger = get_logger(__name__)

STORAGE_KEY = "savedReceipts"


class MonotonicIdGenerator:
    """Millisecond timestamps, bumped so two ids are never equal."""

    def __init__(self, clock: Callable[[], float] = time.time, last_id: int = 0):
        self.clock = clock
        self.last_id = last_id

    def observe(self, existing_id: int) -> None:
        self.last_id = max(self.last_id, existing_id)

    def next_id(self) -> int:
        candidate = int(self.clock() * 1000)
        if candidate <= self.last_id:
            candidate = self.last_id + 1
        self.last_id = candidate
        return candidate


class LocalReceiptStorage(ReceiptStorage):
    """Whole collection serialized as one JSON array under STORAGE_KEY."""

    def __init__(
        self,
        data_path: str = "receipts.json",
        id_generator: MonotonicIdGenerator | None = None,
    ):
        self.data_path = data_path
        self.id_generator = id_generator or MonotonicIdGenerator()
        self.receipts: list[SavedReceipt] = []
        self.version = 0
        self.load_error: StorageReadError | None = None
        self._lock = asyncio.Lock()
        self._changed = asyncio.Condition()
        self.read()

    def read(self) -> None:
        """Deserialize the stored blob; failures leave an empty collection."""
        self.receipts = []
        self.load_error = None
        if not os.path.exists(self.data_path):
            return
        try:
            with open(self.data_path, encoding="utf-8") as handle:
                raw = json.load(handle)
            entries = raw.get(STORAGE_KEY, []) if isinstance(raw, dict) else None
            if not isinstance(entries, list):
                raise ValueError(f"'{STORAGE_KEY}' is not a list")
            self.receipts = [SavedReceipt.model_validate(entry) for entry in entries]
        except (OSError, ValueError, PydanticValidationError) as exc:
            self.receipts = []
            self.load_error = StorageReadError(f"Failed to read {self.data_path}: {exc}")
            logger.error("[STORAGE] %s", self.load_error)
            return

        for receipt in self.receipts:
            if isinstance(receipt.id, int):
                self.id_generator.observe(receipt.id)
        logger.info("[STORAGE] Loaded %s receipts from %s.", len(self.receipts), self.data_path)

    def _write(self, receipts: list[SavedReceipt]) -> None:
        payload: dict[str, Any] = {STORAGE_KEY: [receipt.model_dump() for receipt in receipts]}
        tmp_path = f"{self.data_path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
        os.replace(tmp_path, self.data_path)

    async def _commit(self, receipts: list[SavedReceipt]) -> None:
        try:
            await asyncio.to_thread(self._write, receipts)
        except OSError as exc:
            raise StorageWriteError(f"Failed to write {self.data_path}: {exc}") from exc
        async with self._changed:
            self.receipts = receipts
            self.version += 1
            self._changed.notify_all()

    async def load(self, owner: Owner) -> list[SavedReceipt]:
        return list(self.receipts)

    async def append(self, owner: Owner, receipt: ReceiptData) -> SavedReceipt:
        async with self._lock:
            saved = SavedReceipt(id=self.id_generator.next_id(), **receipt.model_dump())
            await self._commit([saved, *self.receipts])
        logger.info("[STORAGE] Saved receipt %s.", saved.id)
        return saved

    async def delete(self, owner: Owner, receipt_id: int | str) -> bool:
        async with self._lock:
            remaining = [r for r in self.receipts if str(r.id) != str(receipt_id)]
            if len(remaining) == len(self.receipts):
                logger.debug("[STORAGE] Receipt %s not found; nothing to delete.", receipt_id)
                return False
            await self._commit(remaining)
        logger.info("[STORAGE] Deleted receipt %s.", receipt_id)
        return True

    async def watch(self, owner: Owner):
        """Yield the current set, then again after every commit since the last yield."""
        while True:
            async with self._changed:
                seen = self.version
                snapshot = list(self.receipts)
            yield snapshot
            async with self._changed:
                await self._changed.wait_for(lambda: self.version != seen)
