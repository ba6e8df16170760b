import asyncio
import uuid
from collections.abc import Callable
from time import monotonic
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from receipt_tracker.errors import StorageReadError, StorageWriteError
from receipt_tracker.logger import get_logger
from receipt_tracker.models import ReceiptData, SavedReceipt

from .base import Owner, ReceiptStorage

logger = get_logger(__name__)

FIRESTORE_URL = "https://firestore.googleapis.com/v1"
RECORD_FIELDS = ("transaction_name", "total_amount", "transaction_date", "category")


def encode_value(value: Any) -> dict[str, Any]:
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    return {"stringValue": str(value)}


def decode_value(value: dict[str, Any]) -> Any:
    if "stringValue" in value:
        return value["stringValue"]
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "booleanValue" in value:
        return value["booleanValue"]
    if "timestampValue" in value:
        return value["timestampValue"]
    return None


def document_id(name: str) -> str:
    return name.rsplit("/", 1)[-1]


def document_to_receipt(document: dict[str, Any]) -> SavedReceipt:
    fields = document.get("fields", {})
    values = {key: decode_value(fields[key]) for key in RECORD_FIELDS if key in fields}
    return SavedReceipt(id=document_id(document["name"]), **values)


class RemoteReceiptStorage(ReceiptStorage):
    """Account-scoped receipts in a Cloud Firestore collection (REST API).

    Each document holds the record fields plus ``userId`` and a server-side
    ``createdAt`` timestamp. Writes are confirmed by re-querying until the
    change shows up, bounded by ``write_ack_timeout``.
    """

    def __init__(
        self,
        project_id: str,
        collection: str = "receipts",
        client: httpx.AsyncClient | None = None,
        base_url: str = FIRESTORE_URL,
        write_ack_timeout: float = 10.0,
        poll_interval: float = 2.0,
        key_factory: Callable[[], str] | None = None,
    ):
        self.project_id = project_id
        self.collection = collection
        self.base_url = base_url.rstrip("/")
        self.write_ack_timeout = write_ack_timeout
        self.poll_interval = poll_interval
        self.key_factory = key_factory or (lambda: uuid.uuid4().hex)
        self._client = client
        self._client_lock = asyncio.Lock()

    @property
    def database_path(self) -> str:
        return f"projects/{self.project_id}/databases/(default)"

    @property
    def documents_path(self) -> str:
        return f"{self.database_path}/documents"

    def document_name(self, receipt_id: int | str) -> str:
        return f"{self.documents_path}/{self.collection}/{receipt_id}"

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client
        async with self._client_lock:
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient(timeout=30.0)
                self._client = client
            return client

    @staticmethod
    def _headers(owner: Owner) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if owner.id_token:
            headers["Authorization"] = f"Bearer {owner.id_token}"
        return headers

    def _owner_query(self, owner: Owner) -> dict[str, Any]:
        return {
            "structuredQuery": {
                "from": [{"collectionId": self.collection}],
                "where": {
                    "fieldFilter": {
                        "field": {"fieldPath": "userId"},
                        "op": "EQUAL",
                        "value": {"stringValue": owner.user_id},
                    }
                },
                "orderBy": [
                    {"field": {"fieldPath": "createdAt"}, "direction": "DESCENDING"}
                ],
            }
        }

    async def load(self, owner: Owner) -> list[SavedReceipt]:
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/{self.documents_path}:runQuery",
                headers=self._headers(owner),
                json=self._owner_query(owner),
            )
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise StorageReadError(f"Failed to query receipts for {owner.user_id}: {exc}") from exc

        receipts: list[SavedReceipt] = []
        for row in rows if isinstance(rows, list) else []:
            document = row.get("document") if isinstance(row, dict) else None
            if not document:
                continue
            try:
                receipts.append(document_to_receipt(document))
            except (AttributeError, KeyError, TypeError, ValueError, PydanticValidationError) as exc:
                logger.warning(
                    "[STORAGE] Skipping unreadable document %s: %s",
                    document.get("name", "<unnamed>") if isinstance(document, dict) else "<invalid>",
                    exc,
                )
        return receipts

    async def append(self, owner: Owner, receipt: ReceiptData) -> SavedReceipt:
        key = self.key_factory()
        fields = {name: encode_value(value) for name, value in receipt.model_dump().items()}
        fields["userId"] = encode_value(owner.user_id)
        body = {
            "writes": [
                {
                    "update": {"name": self.document_name(key), "fields": fields},
                    "currentDocument": {"exists": False},
                    "updateTransforms": [
                        {"fieldPath": "createdAt", "setToServerValue": "REQUEST_TIME"}
                    ],
                }
            ]
        }
        await self._write(owner, "append", key, f"{self.base_url}/{self.documents_path}:commit", body)
        await self._await_reflection(owner, key, present=True)
        logger.info("[STORAGE] Saved receipt %s for %s.", key, owner.user_id)
        return SavedReceipt(id=key, **receipt.model_dump())

    async def delete(self, owner: Owner, receipt_id: int | str) -> bool:
        current = await self.load(owner)
        if not any(str(receipt.id) == str(receipt_id) for receipt in current):
            logger.debug("[STORAGE] Receipt %s not found; nothing to delete.", receipt_id)
            return False

        client = await self._get_client()
        try:
            response = await client.delete(
                f"{self.base_url}/{self.document_name(receipt_id)}",
                headers=self._headers(owner),
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("[STORAGE] Delete of %s failed: %s", receipt_id, exc)
            raise StorageWriteError(f"Failed to delete receipt {receipt_id}: {exc}") from exc

        await self._await_reflection(owner, str(receipt_id), present=False)
        logger.info("[STORAGE] Deleted receipt %s for %s.", receipt_id, owner.user_id)
        return True

    async def _write(self, owner: Owner, action: str, key: str, url: str, body: dict[str, Any]) -> None:
        client = await self._get_client()
        try:
            response = await client.post(url, headers=self._headers(owner), json=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("[STORAGE] %s of %s failed: %s", action.capitalize(), key, exc)
            raise StorageWriteError(f"Failed to {action} receipt {key}: {exc}") from exc

    async def _await_reflection(self, owner: Owner, key: str, *, present: bool) -> None:
        """Poll snapshots until ``key`` is (or is no longer) in the collection."""
        deadline = monotonic() + self.write_ack_timeout
        while True:
            try:
                snapshot = await self.load(owner)
            except StorageReadError as exc:
                logger.warning("[STORAGE] Snapshot refresh failed while confirming %s: %s", key, exc)
            else:
                if any(str(receipt.id) == key for receipt in snapshot) == present:
                    return
            if monotonic() >= deadline:
                raise StorageWriteError(
                    f"Change to receipt {key} not confirmed within {self.write_ack_timeout:.1f}s",
                    user_message="Your change has not been confirmed by the server yet. Please refresh.",
                )
            await asyncio.sleep(min(self.poll_interval, max(0.0, deadline - monotonic())))
