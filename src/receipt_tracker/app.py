import os
import secrets
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from starlette.middleware.sessions import SessionMiddleware

from receipt_tracker.api.routes import pages, receipts
from receipt_tracker.core import settings
from receipt_tracker.extraction.client import ReceiptExtractor
from receipt_tracker.integration.identity import IdentityClient
from receipt_tracker.logger import get_logger, setup_logging
from receipt_tracker.services.receipts import ReceiptService
from receipt_tracker.services.scans import ScanTracker
from receipt_tracker.storage.base import ReceiptStorage
from receipt_tracker.storage.local import LocalReceiptStorage
from receipt_tracker.storage.remote import RemoteReceiptStorage

logger = get_logger(__name__)


def build_storage() -> tuple[ReceiptStorage, IdentityClient | None]:
    backend = settings.get_storage_backend()
    project_id = os.getenv("FIREBASE_PROJECT_ID")
    if backend == settings.STORAGE_REMOTE:
        if project_id and os.getenv("FIREBASE_API_KEY"):
            storage = RemoteReceiptStorage(
                project_id=project_id,
                collection=os.getenv("RECEIPTS_COLLECTION") or settings.DEFAULT_RECEIPTS_COLLECTION,
                write_ack_timeout=settings.WRITE_ACK_TIMEOUT,
                poll_interval=settings.SNAPSHOT_POLL_INTERVAL,
            )
            logger.info("Remote storage enabled: project=%s, collection=%s", project_id, storage.collection)
            return storage, IdentityClient()
        logger.warning(
            "STORAGE_BACKEND=remote but FIREBASE_PROJECT_ID or FIREBASE_API_KEY not set. "
            "Falling back to local storage."
        )

    data_path = os.path.join(settings.DATA_DIR, settings.STORAGE_FILENAME)
    logger.info("Local storage enabled: %s", data_path)
    return LocalReceiptStorage(data_path=data_path), None


def build_extractor() -> ReceiptExtractor | None:
    if not os.getenv("OPENAI_API_KEY"):
        logger.warning("OPENAI_API_KEY not set. Receipt analysis will be disabled.")
        return None
    extractor = ReceiptExtractor()
    logger.info(
        "Receipt extraction enabled: model=%s, base_url=%s",
        extractor.model,
        os.getenv("OPENAI_BASE_URL") or "default",
    )
    return extractor


def _session_secret() -> str:
    secret = os.getenv("SESSION_SECRET")
    if secret:
        return secret
    logger.warning("SESSION_SECRET not set. Sessions will not survive a restart.")
    return secrets.token_urlsafe(32)


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        storage, identity = build_storage()
        service = ReceiptService(
            storage=storage,
            extractor=build_extractor(),
            tracker=ScanTracker(),
        )

        app.state.receipt_service = service
        app.state.identity = identity
        app.state.auth_required = identity is not None

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")
        await storage.aclose()
        if identity:
            await identity.aclose()

    app = FastAPI(title="Receipt Tracker", lifespan=lifespan)
    app.add_middleware(SessionMiddleware, secret_key=_session_secret(), same_site="lax")

    static_dir = os.path.join(os.path.dirname(__file__), "web/static")
    if not os.path.exists(static_dir):
        os.makedirs(static_dir)
    app.mount("/static", StaticFiles(directory=static_dir), name="static")

    app.include_router(receipts.router)
    app.include_router(pages.router)

    return app


app = create_app()
