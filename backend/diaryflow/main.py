"""
DiaryFlow Backend — FastAPI Application Factory
=================================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   uvicorn (uvicorn diaryflow.main:app) and the API tests.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware:  Request ID → Logging → GZip → CORS         │
    │                                                          │
    │  Routes:                                                 │
    │   /api/drafts  /api/entries  /api/media                  │
    │   /api/weather /api/transcriptions  /health              │
    │                                                          │
    │  Exception Handlers:                                     │
    │   ValidationError→400  Auth→401  NotFound→404            │
    │   Conflict→409  Upload/Storage/Integrations→503  DB→500  │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging → config check (warn only) → media storage →
              schema creation for SQLite databases
    Shutdown: close event channels → dispose database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Tuple, Type

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from diaryflow import __version__
from diaryflow.config import settings
from diaryflow.database import create_schema, dispose_engine
from diaryflow.exceptions import (
    AuthenticationError,
    CircuitBreakerOpenError,
    ConflictError,
    DatabaseError,
    DiaryFlowError,
    NotFoundError,
    StorageConnectionError,
    TranscriptionServiceError,
    UploadBatchError,
    ValidationError,
    WeatherServiceError,
)
from diaryflow.middleware.logging import RequestLoggingMiddleware
from diaryflow.middleware.request_id import RequestIDMiddleware, request_id_var
from diaryflow.routes import drafts, entries, health, integrations, media
from diaryflow.services.entry_service import entry_service
from diaryflow.services.storage_service import object_storage

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the whole application. Called once at startup.

    Format: 2024-01-15T12:00:00 [INFO] diaryflow.services.draft_service: ...
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party libraries log every connection and query at INFO/DEBUG
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("DiaryFlow Backend %s starting up...", __version__)

    # Missing integration keys only disable weather/transcription; keep serving
    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.warning("%s", e)

    try:
        await object_storage.initialize()
    except StorageConnectionError as e:
        logger.error("Media storage unavailable: %s | Context: %s", e.message, e.context)

    if settings.database_url.startswith("sqlite"):
        await create_schema()
        logger.info("SQLite schema ready")

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("DiaryFlow Backend shutting down...")
    entry_service.events.close_all()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

# Most specific class first; the first isinstance match wins
ERROR_MAP: Tuple[Tuple[Type[DiaryFlowError], int, str], ...] = (
    (ValidationError, 400, "validation_error"),
    (AuthenticationError, 401, "authentication_error"),
    (NotFoundError, 404, "not_found"),
    (ConflictError, 409, "conflict"),
    (UploadBatchError, 503, "upload_batch_error"),
    (StorageConnectionError, 503, "storage_unavailable"),
    (TranscriptionServiceError, 503, "transcription_service_error"),
    (WeatherServiceError, 503, "weather_service_error"),
    (CircuitBreakerOpenError, 503, "service_unavailable"),
    (DatabaseError, 500, "server_error"),
)

# Errors whose context is safe and useful to show the client
PUBLIC_DETAILS = (ValidationError, NotFoundError, UploadBatchError, CircuitBreakerOpenError)


def classify_error(exc: DiaryFlowError) -> Tuple[int, str]:
    for error_type, status_code, code in ERROR_MAP:
        if isinstance(exc, error_type):
            return status_code, code
    return 500, "internal_server_error"


def error_body(request: Request, exc: DiaryFlowError, code: str) -> Dict:
    body = {
        "error": code,
        "message": exc.message,
        "details": exc.context if isinstance(exc, PUBLIC_DETAILS) else {},
        "request_id": request_id_var.get("") or getattr(request.state, "request_id", ""),
    }
    if exc.retryable and exc.retry_action:
        body["retry"] = {
            "action": exc.retry_action,
            "method": request.method,
            "path": request.url.path,
        }
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Maps the DiaryFlowError hierarchy onto HTTP responses.

    Security: handlers never put stack traces, paths or SQL in a response;
    server-side context is logged instead.
    """

    @app.exception_handler(DiaryFlowError)
    async def handle_diaryflow_error(request: Request, exc: DiaryFlowError):
        status_code, code = classify_error(exc)
        rid = request_id_var.get("")

        if status_code >= 500:
            logger.error("[%s] %s: %s | Context: %s", rid, code, exc.message, exc.context)
        elif status_code != 404:
            logger.warning("[%s] %s: %s", rid, code, exc.message)

        headers = {}
        if isinstance(exc, CircuitBreakerOpenError):
            headers["Retry-After"] = str(exc.recovery_time)

        return JSONResponse(
            status_code=status_code,
            content=error_body(request, exc, code),
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Catch-all: generic 500, full stack trace logged server-side only."""
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "details": {},
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="DiaryFlow API",
        description=(
            "Personal diary backend: entries with photos, video, voice recordings, "
            "location, weather, mood and tags."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Last added runs first: RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(drafts.router)
    app.include_router(entries.router)
    app.include_router(integrations.router)
    app.include_router(media.router)
    app.include_router(health.router)

    return app


app = create_app()
