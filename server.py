# server.py
# FastAPI app for marketplace discovery + product traceability.
#   uvicorn server:app --host 0.0.0.0 --port 8000

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from agrimarket.app_config import AppConfig, load_config
from agrimarket.errors import MarketplaceError
from agrimarket.fastapi.search_api import router as search_router
from agrimarket.fastapi.traceability_api import router as traceability_router
from agrimarket.models.farmer.crop_models import FERTILIZATION_COLLECTION, PESTS_DISEASES_COLLECTION
from agrimarket.mongo import close_mongo, init_mongo
from agrimarket.services.discovery.search_service import ListingSearchService
from agrimarket.services.store.document_store import DocumentStore, MongoDocumentStore
from agrimarket.services.traceability.traceability_services import TraceabilityService

logger = logging.getLogger(__name__)

# --- error code -> HTTP status ---
STATUS_BY_CODE = {
    "invalid-argument": 400,
    "unauthenticated": 401,
    "permission-denied": 403,
    "not-found": 404,
    "internal": 500,
    "deadline-exceeded": 504,
}
CODE_BY_STATUS = {status: code for code, status in STATUS_BY_CODE.items()}


def _wire_services(app: FastAPI, store: DocumentStore, config: AppConfig) -> None:
    app.state.store = store
    app.state.search_service = ListingSearchService(store, timeout_s=config.request_timeout_s)
    app.state.traceability_service = TraceabilityService(
        store,
        recent_orders_limit=config.recent_orders_limit,
        timeout_s=config.request_timeout_s,
    )


def create_app(config: Optional[AppConfig] = None, store: Optional[DocumentStore] = None) -> FastAPI:
    config = config or load_config()

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if store is None:
            db = init_mongo(config)
            if db is None:
                raise RuntimeError("No document store: Mongo is disabled and none was injected")
            owned = MongoDocumentStore(db, max_workers=config.store_max_workers)
            try:
                owned.ensure_indexes([PESTS_DISEASES_COLLECTION, FERTILIZATION_COLLECTION])
            except PyMongoError as e:
                # serving still works without indexes, only slower
                logger.warning("Index creation failed: %s", e)
            _wire_services(app, owned, config)
        yield
        if owned is not None:
            owned.close()
            close_mongo()

    app = FastAPI(title="Agri Marketplace Discovery API", version="1.0.0", lifespan=lifespan)
    app.state.config = config
    if store is not None:
        _wire_services(app, store, config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MarketplaceError)
    async def _marketplace_error(request: Request, exc: MarketplaceError):
        status = STATUS_BY_CODE.get(exc.code, 500)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content={"ok": False, "code": exc.code, "detail": exc.message})

    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException):
        code = CODE_BY_STATUS.get(exc.status_code, "internal")
        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "code": code, "detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"ok": False, "code": "invalid-argument", "detail": "Invalid request body."},
        )

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"ok": False, "code": "internal", "detail": "Internal error."})

    app.include_router(search_router)
    app.include_router(traceability_router)

    # --- diagnostics ---
    @app.get("/_health")
    def _health():
        return {"ok": True, "service": "agri-marketplace-discovery", "ts": int(datetime.now(timezone.utc).timestamp())}

    return app


app = create_app()
