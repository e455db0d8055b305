"""
LabelDesk Backend — FastAPI Application Factory
=================================================

What:  Creates and configures the FastAPI application instance.
Why:   An app factory lets tests build the same app with overridden
       dependencies; the lifespan owns every process-wide client.
How:   create_app() registers middleware, exception handlers and routes;
       the lifespan builds the process-wide blob store and cache store.
Who:   uvicorn (`uvicorn labeldesk.main:app`).

Lifecycle:
    Startup:
    1. Configure logging
    2. Validate configuration (logged, not fatal: /health keeps answering)
    3. Build the blob store and cache store (app.state)
    4. Start the memory cache sweep job when the memory cache is in use

    Shutdown:
    1. Cancel the sweep job
    2. Close the blob store and cache store clients
    3. Dispose the database engine
"""

import asyncio
import contextlib
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from labeldesk import __version__
from labeldesk.config import settings
from labeldesk.database import dispose_engine
from labeldesk.exceptions import (
    AuthenticationError,
    DatabaseError,
    LabelDeskError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
)
from labeldesk.middleware.logging import RequestLoggingMiddleware
from labeldesk.middleware.request_id import RequestIDMiddleware, request_id_var
from labeldesk.routes import files, health, labels
from labeldesk.services.blob_store import build_blob_store
from labeldesk.services.cache_store import MemoryCacheStore, build_cache_store

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once, before anything else logs.

    Format: 2024-01-15T12:00:00 [INFO] labeldesk.services.label_service: ...
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Per-operation chatter from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("LabelDesk Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    blob_store = build_blob_store(settings)
    cache_store = build_cache_store(settings)
    app.state.blob_store = blob_store
    app.state.cache_store = cache_store

    sweeper: Optional[asyncio.Task] = None
    if isinstance(cache_store, MemoryCacheStore):
        sweeper = asyncio.create_task(
            cache_store.run_sweeper(settings.cache_sweep_interval),
            name="cache-sweeper",
        )

    logger.info("Storage backend: %s", settings.storage_backend)
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("LabelDesk Backend shutting down...")

    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper

    await blob_store.close()
    await cache_store.close()
    await dispose_engine()

    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(error: str, message: str, details: Optional[dict] = None) -> dict:
    return {
        "error": error,
        "message": message,
        "details": details or None,
        "request_id": request_id_var.get(""),
    }


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map application exceptions to HTTP responses.

        ValidationError         → 400 (DuplicateNameError included)
        AuthenticationError     → 401
        NotFoundError           → 404
        VersionConflictError    → 409, with current_version / provided_version
        DatabaseError           → 500, generic message
        LabelDeskError (base)   → 500
        Exception (fallback)    → 500

    Internal context (SQL errors, paths, tracebacks) is logged, never returned.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(
            status_code=400,
            content=_error_body("validation_error", exc.message, exc.context),
        )

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        return JSONResponse(
            status_code=401,
            content=_error_body("unauthorized", exc.message),
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(
            status_code=404,
            content=_error_body("not_found", exc.message),
        )

    @app.exception_handler(VersionConflictError)
    async def handle_version_conflict(request: Request, exc: VersionConflictError):
        logger.info(
            "[%s] Version conflict: current=%s provided=%s",
            request_id_var.get(""),
            exc.current_version,
            exc.provided_version,
        )
        return JSONResponse(
            status_code=409,
            content=_error_body(
                "version_conflict",
                exc.message,
                {
                    "current_version": exc.current_version,
                    "provided_version": exc.provided_version,
                },
            ),
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        rid = request_id_var.get("")
        logger.error("[%s] Database error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(LabelDeskError)
    async def handle_application_error(request: Request, exc: LabelDeskError):
        rid = request_id_var.get("")
        logger.error("[%s] Unhandled application error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="LabelDesk API",
        description=(
            "Label lifecycle service: collision-free naming, optimistic "
            "concurrency on edits, and thumbnails with signed URLs."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (last added runs first) ────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    # ── Routes ────────────────────────────────────────────────────────────
    app.include_router(labels.router)
    app.include_router(files.router)
    app.include_router(health.router)

    return app


app = create_app()
