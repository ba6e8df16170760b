import asyncio
from collections.abc import Callable
from datetime import datetime

from receipt_tracker.domain.export import CsvExport, export_csv
from receipt_tracker.domain.history import build_history, search_receipts
from receipt_tracker.domain.validation import validate_extracted, validate_manual
from receipt_tracker.errors import ExtractionError, ReceiptTrackerError
from receipt_tracker.extraction.client import ReceiptExtractor
from receipt_tracker.logger import get_logger
from receipt_tracker.models import HistoryView, Period, ReceiptData, SavedReceipt
from receipt_tracker.services.scans import ScanTracker
from receipt_tracker.storage.base import Owner, ReceiptStorage

logger = get_logger(__name__)


class ReceiptService:
    """Glue between the extraction client, save rules, storage and history."""

    def __init__(
        self,
        storage: ReceiptStorage,
        extractor: ReceiptExtractor | None,
        tracker: ScanTracker | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.storage = storage
        self.extractor = extractor
        self.tracker = tracker or ScanTracker()
        self.clock = clock

    async def analyze(self, client_id: str, image: bytes | str, mime_type: str) -> ReceiptData | None:
        """Extract and validate a receipt; None when a newer upload superseded it."""
        if not self.extractor:
            raise ExtractionError(
                "OPENAI_API_KEY not configured",
                user_message="Receipt analysis is not configured.",
            )

        attempt = self.tracker.begin(client_id, image)
        logger.info("[SCAN] Attempt %s started (%s, %s bytes).", attempt.attempt_id, mime_type, len(image))
        try:
            receipt = await asyncio.to_thread(self.extractor.extract, image, mime_type)
        except ReceiptTrackerError:
            if not self.tracker.finish(attempt):
                return None
            raise

        if not self.tracker.finish(attempt):
            return None
        validate_extracted(receipt, self.clock())
        logger.info("[SCAN] Attempt %s extracted '%s'.", attempt.attempt_id, receipt.transaction_name or "N/A")
        return receipt

    def cancel_scan(self, client_id: str) -> None:
        self.tracker.reset(client_id)

    async def save_scanned(self, owner: Owner, receipt: ReceiptData) -> SavedReceipt:
        validate_extracted(receipt, self.clock())
        return await self.storage.append(owner, receipt)

    async def save_manual(self, owner: Owner, receipt: ReceiptData) -> SavedReceipt:
        validate_manual(receipt, self.clock())
        return await self.storage.append(owner, receipt)

    async def delete(self, owner: Owner, receipt_id: int | str) -> bool:
        return await self.storage.delete(owner, receipt_id)

    async def list_receipts(self, owner: Owner) -> list[SavedReceipt]:
        return await self.storage.load_or_empty(owner)

    async def history(self, owner: Owner, period: Period, term: str | None = None) -> HistoryView:
        receipts = await self.storage.load_or_empty(owner)
        return build_history(search_receipts(receipts, term), period, self.clock())

    async def export(self, owner: Owner, period: Period, term: str | None = None) -> CsvExport:
        view = await self.history(owner, period, term)
        csv_export = export_csv(view)
        logger.info("[EXPORT] %s rows exported as %s.", len(csv_export.content.splitlines()) - 1, csv_export.filename)
        return csv_export
