import json
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import APIRouter, Depends, File, Response, UploadFile
from fastapi.responses import StreamingResponse

from receipt_tracker.api.dependencies import (
    get_client_id,
    get_owner,
    get_receipt_service,
    http_error,
)
from receipt_tracker.api.schemas import (
    AnalyzeBase64Request,
    AnalyzeResponse,
    DeleteReceiptResponse,
    ReceiptListResponse,
    SaveReceiptRequest,
)
from receipt_tracker.core import settings
from receipt_tracker.errors import ReceiptTrackerError
from receipt_tracker.logger import get_logger
from receipt_tracker.models import HistoryView, Period, SavedReceipt
from receipt_tracker.services.receipts import ReceiptService
from receipt_tracker.storage.base import Owner

logger = get_logger(__name__)

router = APIRouter(prefix="/api")


async def _analyze(
    service: ReceiptService,
    client_id: str,
    image: bytes | str,
    mime_type: str,
) -> AnalyzeResponse:
    try:
        receipt = await service.analyze(client_id, image, mime_type)
    except ReceiptTrackerError as exc:
        raise http_error(exc) from exc
    if receipt is None:
        return AnalyzeResponse(status="discarded")
    return AnalyzeResponse(status="applied", receipt=receipt)


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze_upload(
    file: Annotated[UploadFile, File()],
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
    client_id: Annotated[str, Depends(get_client_id)],
    _owner: Annotated[Owner, Depends(get_owner)],
) -> AnalyzeResponse:
    image = await file.read()
    return await _analyze(service, client_id, image, file.content_type or "application/octet-stream")


@router.post("/analyze-base64", response_model=AnalyzeResponse)
async def analyze_base64(
    req: AnalyzeBase64Request,
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
    client_id: Annotated[str, Depends(get_client_id)],
    _owner: Annotated[Owner, Depends(get_owner)],
) -> AnalyzeResponse:
    return await _analyze(service, client_id, req.data, req.mime_type)


@router.get("/receipts", response_model=ReceiptListResponse)
async def list_receipts(
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
    owner: Annotated[Owner, Depends(get_owner)],
) -> ReceiptListResponse:
    return ReceiptListResponse(receipts=await service.list_receipts(owner))


@router.post("/receipts", response_model=SavedReceipt, status_code=201)
async def save_receipt(
    req: SaveReceiptRequest,
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
    owner: Annotated[Owner, Depends(get_owner)],
) -> SavedReceipt:
    try:
        if req.source == "manual":
            return await service.save_manual(owner, req.receipt)
        return await service.save_scanned(owner, req.receipt)
    except ReceiptTrackerError as exc:
        logger.warning("[STORAGE] Save rejected: %s", exc)
        raise http_error(exc) from exc


@router.delete("/receipts/{receipt_id}", response_model=DeleteReceiptResponse)
async def delete_receipt(
    receipt_id: str,
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
    owner: Annotated[Owner, Depends(get_owner)],
) -> DeleteReceiptResponse:
    try:
        deleted = await service.delete(owner, receipt_id)
    except ReceiptTrackerError as exc:
        raise http_error(exc) from exc
    return DeleteReceiptResponse(status="deleted" if deleted else "not_found", deleted=deleted)


@router.get("/history", response_model=HistoryView)
async def get_history(
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
    owner: Annotated[Owner, Depends(get_owner)],
    period: str | None = None,
    q: str | None = None,
) -> HistoryView:
    return await service.history(owner, Period.parse(period), q)


@router.get("/export")
async def export_history(
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
    owner: Annotated[Owner, Depends(get_owner)],
    period: str | None = None,
    q: str | None = None,
) -> Response:
    csv_export = await service.export(owner, Period.parse(period), q)
    return Response(
        content=csv_export.content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{csv_export.filename}"'},
    )


@router.get("/receipts/stream")
async def stream_receipts(
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
    owner: Annotated[Owner, Depends(get_owner)],
) -> StreamingResponse:
    async def generate() -> AsyncGenerator[str, None]:
        async for snapshot in service.storage.watch(owner):
            payload = {"receipts": [receipt.model_dump() for receipt in snapshot]}
            yield f"data: {json.dumps(payload)}\n\n"

    return StreamingResponse(generate(), media_type="text/event-stream", headers=settings.SSE_HEADERS)
