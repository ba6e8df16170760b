from typing import Literal

from pydantic import BaseModel

from receipt_tracker.models import ReceiptData, SavedReceipt


class AnalyzeBase64Request(BaseModel):
    mime_type: str
    data: str  # base64 payload without the data: prefix


class AnalyzeResponse(BaseModel):
    status: Literal["applied", "discarded"]
    receipt: ReceiptData | None = None


class SaveReceiptRequest(BaseModel):
    receipt: ReceiptData
    source: Literal["scan", "manual"] = "scan"


class DeleteReceiptResponse(BaseModel):
    status: str
    deleted: bool


class ReceiptListResponse(BaseModel):
    receipts: list[SavedReceipt]
