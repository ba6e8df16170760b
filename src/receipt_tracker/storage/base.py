import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass

from receipt_tracker.errors import StorageReadError
from receipt_tracker.logger import get_logger
from receipt_tracker.models import ReceiptData, SavedReceipt

logger = get_logger(__name__)


@dataclass(frozen=True)
class Owner:
    """Who the collection belongs to. Local storage ignores it."""

    user_id: str
    id_token: str | None = None
    email: str | None = None


LOCAL_OWNER = Owner(user_id="local")


class ReceiptStorage(ABC):
    poll_interval: float = 2.0

    @abstractmethod
    async def load(self, owner: Owner) -> list[SavedReceipt]:
        """Return the owner's saved receipts, newest first. Raises StorageReadError."""

    @abstractmethod
    async def append(self, owner: Owner, receipt: ReceiptData) -> SavedReceipt:
        """Persist one receipt under a fresh id. Raises StorageWriteError."""

    @abstractmethod
    async def delete(self, owner: Owner, receipt_id: int | str) -> bool:
        """Remove one receipt; unknown ids are a no-op returning False."""

    async def aclose(self) -> None:
        return None

    async def load_or_empty(self, owner: Owner) -> list[SavedReceipt]:
        try:
            return await self.load(owner)
        except StorageReadError as exc:
            logger.error("[STORAGE] Load failed, showing empty collection: %s", exc)
            return []

    async def watch(self, owner: Owner) -> AsyncIterator[list[SavedReceipt]]:
        """Yield the collection now and again whenever it changes."""
        last: list[SavedReceipt] | None = None
        while True:
            snapshot = await self.load_or_empty(owner)
            if snapshot != last:
                last = snapshot
                yield snapshot
            await asyncio.sleep(self.poll_interval)
