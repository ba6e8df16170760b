import uuid

from fastapi import HTTPException, Request

from receipt_tracker.errors import (
    AuthError,
    ExtractionError,
    ReceiptTrackerError,
    ScanInProgressError,
    StorageReadError,
    StorageWriteError,
    ValidationError,
)
from receipt_tracker.integration.identity import IdentityClient
from receipt_tracker.services.receipts import ReceiptService
from receipt_tracker.storage.base import LOCAL_OWNER, Owner

SESSION_CLIENT_KEY = "client_id"
SESSION_USER_KEY = "user"

_ERROR_STATUS: dict[type[ReceiptTrackerError], int] = {
    ValidationError: 422,
    ExtractionError: 502,
    StorageReadError: 503,
    StorageWriteError: 503,
    AuthError: 401,
    ScanInProgressError: 409,
}


def http_error(exc: ReceiptTrackerError) -> HTTPException:
    for error_type, status_code in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.user_message)
    return HTTPException(status_code=500, detail=exc.user_message)


def get_receipt_service(request: Request) -> ReceiptService:
    service = getattr(request.app.state, "receipt_service", None)
    if not service:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return service


def get_identity_optional(request: Request) -> IdentityClient | None:
    return getattr(request.app.state, "identity", None)


def auth_required(request: Request) -> bool:
    return bool(getattr(request.app.state, "auth_required", False))


def get_client_id(request: Request) -> str:
    client_id = request.session.get(SESSION_CLIENT_KEY)
    if not client_id:
        client_id = uuid.uuid4().hex
        request.session[SESSION_CLIENT_KEY] = client_id
    return client_id


def session_owner(request: Request) -> Owner | None:
    if not auth_required(request):
        return LOCAL_OWNER
    user = request.session.get(SESSION_USER_KEY)
    if not isinstance(user, dict) or not user.get("user_id"):
        return None
    return Owner(user_id=user["user_id"], id_token=user.get("id_token"), email=user.get("email"))


def store_session_owner(request: Request, owner: Owner) -> None:
    request.session[SESSION_USER_KEY] = {
        "user_id": owner.user_id,
        "id_token": owner.id_token,
        "email": owner.email,
    }


def clear_session_owner(request: Request) -> None:
    request.session.pop(SESSION_USER_KEY, None)


def get_owner(request: Request) -> Owner:
    owner = session_owner(request)
    if owner is None:
        raise HTTPException(status_code=401, detail="Sign in to access your transactions.")
    return owner
