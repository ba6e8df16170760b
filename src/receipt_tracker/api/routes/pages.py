import math
import os
from typing import Annotated, Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.datastructures import FormData, UploadFile

from receipt_tracker.api.dependencies import (
    auth_required,
    clear_session_owner,
    get_client_id,
    get_identity_optional,
    get_receipt_service,
    session_owner,
    store_session_owner,
)
from receipt_tracker.domain.categories import category_style
from receipt_tracker.errors import AuthError, ReceiptTrackerError, ValidationError
from receipt_tracker.integration.identity import IdentityClient
from receipt_tracker.logger import get_logger
from receipt_tracker.models import Category, Period, ReceiptData
from receipt_tracker.services.receipts import ReceiptService
from receipt_tracker.storage.base import Owner

logger = get_logger(__name__)

router = APIRouter()

templates_dir = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "..", "..", "web", "templates")
)
templates = Jinja2Templates(directory=templates_dir)
templates.env.globals["category_style"] = category_style

NOTICES = {
    "saved": "Transaction saved.",
    "deleted": "Transaction deleted.",
    "missing": "That transaction no longer exists.",
}


def _form_text(form: FormData, key: str) -> str | None:
    value = form.get(key)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def receipt_from_form(form: FormData) -> ReceiptData:
    raw_amount = _form_text(form, "total_amount")
    amount = None
    if raw_amount is not None:
        try:
            amount = float(raw_amount.replace(",", ""))
        except ValueError as exc:
            raise ValidationError(
                f"total_amount={raw_amount!r}",
                user_message="Amount must be a number.",
            ) from exc
        if not math.isfinite(amount):
            raise ValidationError(
                f"total_amount={raw_amount!r}",
                user_message="Amount must be a number.",
            )
        if amount < 0:
            raise ValidationError(
                f"total_amount={raw_amount!r}",
                user_message="Amount cannot be negative.",
            )
    return ReceiptData(
        transaction_name=_form_text(form, "transaction_name"),
        total_amount=amount,
        transaction_date=_form_text(form, "transaction_date"),
        category=_form_text(form, "category"),
    )


def _home_url(period: Period, notice: str | None = None) -> str:
    params = {"period": period.value}
    if notice:
        params["notice"] = notice
    return f"/?{urlencode(params)}"


async def _render_index(
    request: Request,
    service: ReceiptService,
    owner: Owner,
    *,
    period: Period,
    term: str | None = None,
    scan_result: ReceiptData | None = None,
    error: str | None = None,
    manual_error: str | None = None,
    manual_values: ReceiptData | None = None,
    notice: str | None = None,
    status_code: int = 200,
) -> HTMLResponse:
    history = await service.history(owner, period, term)
    context: dict[str, Any] = {
        "request": request,
        "history": history,
        "periods": list(Period),
        "categories": Category.values(),
        "search_term": term or "",
        "scan_result": scan_result,
        "error": error,
        "manual_error": manual_error,
        "manual_values": manual_values,
        "notice": notice,
        "owner": owner if auth_required(request) else None,
        "has_receipts": bool(await service.list_receipts(owner)),
    }
    return templates.TemplateResponse(request, "index.html", context, status_code=status_code)


@router.get("/", response_class=HTMLResponse)
async def index(
    request: Request,
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
    period: str | None = None,
    q: str | None = None,
    notice: str | None = None,
) -> Response:
    owner = session_owner(request)
    if owner is None:
        return RedirectResponse(url="/login", status_code=303)
    return await _render_index(
        request,
        service,
        owner,
        period=Period.parse(period),
        term=q,
        notice=NOTICES.get(notice or ""),
    )


@router.post("/scan", response_class=HTMLResponse)
async def scan_receipt(
    request: Request,
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
    client_id: Annotated[str, Depends(get_client_id)],
) -> Response:
    owner = session_owner(request)
    if owner is None:
        return RedirectResponse(url="/login", status_code=303)

    form = await request.form()
    period = Period.parse(_form_text(form, "period"))
    upload = form.get("file")
    if not isinstance(upload, UploadFile) or not upload.filename:
        return await _render_index(
            request, service, owner, period=period, error="Choose a receipt image to analyze.", status_code=400
        )

    image = await upload.read()
    try:
        receipt = await service.analyze(client_id, image, upload.content_type or "application/octet-stream")
    except ReceiptTrackerError as exc:
        logger.warning("[SCAN] Scan failed: %s", exc)
        return await _render_index(request, service, owner, period=period, error=exc.user_message)

    if receipt is None:
        # A newer upload from this session owns the view now
        return RedirectResponse(url=_home_url(period), status_code=303)
    return await _render_index(request, service, owner, period=period, scan_result=receipt)


@router.post("/scan/reset")
async def reset_scan(
    request: Request,
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
    client_id: Annotated[str, Depends(get_client_id)],
) -> Response:
    form = await request.form()
    service.cancel_scan(client_id)
    return RedirectResponse(url=_home_url(Period.parse(_form_text(form, "period"))), status_code=303)


@router.post("/receipts", response_class=HTMLResponse)
async def save_scanned_receipt(
    request: Request,
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
    client_id: Annotated[str, Depends(get_client_id)],
) -> Response:
    owner = session_owner(request)
    if owner is None:
        return RedirectResponse(url="/login", status_code=303)

    form = await request.form()
    period = Period.parse(_form_text(form, "period"))
    receipt: ReceiptData | None = None
    try:
        receipt = receipt_from_form(form)
        await service.save_scanned(owner, receipt)
    except ReceiptTrackerError as exc:
        logger.warning("[STORAGE] Save failed: %s", exc)
        return await _render_index(
            request, service, owner, period=period, scan_result=receipt, error=exc.user_message
        )

    service.cancel_scan(client_id)
    return RedirectResponse(url=_home_url(period, "saved"), status_code=303)


@router.post("/receipts/manual", response_class=HTMLResponse)
async def save_manual_receipt(
    request: Request,
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
) -> Response:
    owner = session_owner(request)
    if owner is None:
        return RedirectResponse(url="/login", status_code=303)

    form = await request.form()
    period = Period.parse(_form_text(form, "period"))
    receipt: ReceiptData | None = None
    try:
        receipt = receipt_from_form(form)
        await service.save_manual(owner, receipt)
    except ReceiptTrackerError as exc:
        logger.warning("[STORAGE] Manual entry rejected: %s", exc)
        return await _render_index(
            request,
            service,
            owner,
            period=period,
            manual_error=exc.user_message,
            manual_values=receipt,
        )

    return RedirectResponse(url=_home_url(period, "saved"), status_code=303)


@router.post("/receipts/{receipt_id}/delete", response_class=HTMLResponse)
async def delete_receipt(
    receipt_id: str,
    request: Request,
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
) -> Response:
    owner = session_owner(request)
    if owner is None:
        return RedirectResponse(url="/login", status_code=303)

    form = await request.form()
    period = Period.parse(_form_text(form, "period"))
    try:
        deleted = await service.delete(owner, receipt_id)
    except ReceiptTrackerError as exc:
        logger.warning("[STORAGE] Delete failed: %s", exc)
        return await _render_index(request, service, owner, period=period, error=exc.user_message)

    return RedirectResponse(url=_home_url(period, "deleted" if deleted else "missing"), status_code=303)


@router.get("/export")
async def export_csv(
    request: Request,
    service: Annotated[ReceiptService, Depends(get_receipt_service)],
    period: str | None = None,
    q: str | None = None,
) -> Response:
    owner = session_owner(request)
    if owner is None:
        return RedirectResponse(url="/login", status_code=303)

    csv_export = await service.export(owner, Period.parse(period), q)
    return Response(
        content=csv_export.content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{csv_export.filename}"'},
    )


@router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request) -> Response:
    if not auth_required(request):
        return RedirectResponse(url="/", status_code=303)
    return templates.TemplateResponse(request, "login.html", {"request": request, "error": None, "email": ""})


@router.post("/login", response_class=HTMLResponse)
async def login(
    request: Request,
    identity: Annotated[IdentityClient | None, Depends(get_identity_optional)],
) -> Response:
    if not auth_required(request):
        return RedirectResponse(url="/", status_code=303)

    form = await request.form()
    email = _form_text(form, "email") or ""
    password = form.get("password")
    try:
        if identity is None:
            raise AuthError("identity client missing", user_message="Sign-in is not configured.")
        owner = await identity.sign_in(email, password if isinstance(password, str) else "")
    except AuthError as exc:
        return templates.TemplateResponse(
            request,
            "login.html",
            {"request": request, "error": exc.user_message, "email": email},
            status_code=401,
        )

    store_session_owner(request, owner)
    return RedirectResponse(url="/", status_code=303)


@router.post("/logout")
async def logout(request: Request) -> Response:
    clear_session_owner(request)
    return RedirectResponse(url="/login" if auth_required(request) else "/", status_code=303)
