"""
City enrichment FastAPI service: Wikipedia-backed content for city pages.

Entrypoint: uvicorn services.api.main:app --host 0.0.0.0 --port 8000
"""

import asyncio
import contextlib
import logging
import uuid
from contextlib import asynccontextmanager

import asyncpg
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from services.api.config import settings
from services.api.enrichment.extractor import FirecrawlExtractor
from services.api.enrichment.lock_sweep import periodic_lock_sweep
from services.api.enrichment.service import EnrichmentService
from services.api.enrichment.store import EnrichmentStore, apply_schema
from services.api.middleware.cors import setup_cors
from services.api.middleware.sentry import setup_sentry
from services.api.routers import enrichment, health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    setup_sentry()
    app.state.settings = settings

    db_pool = None
    if settings.database_url:
        try:
            db_pool = await asyncpg.create_pool(
                settings.database_url,
                min_size=2,
                max_size=10,
                command_timeout=30,
            )
            if settings.apply_schema_on_startup:
                await apply_schema(db_pool)
        except Exception as e:
            logger.warning("DB pool failed to connect: %s", e)
            db_pool = None

    app.state.db = db_pool

    service = None
    sweep_task = None
    if db_pool is not None:
        service = EnrichmentService(
            EnrichmentStore(db_pool),
            FirecrawlExtractor(
                api_key=settings.firecrawl_api_key,
                base_url=settings.firecrawl_base_url,
            ),
            fetch_timeout_s=settings.enrichment_fetch_timeout_s,
            lock_timeout_ms=settings.enrichment_lock_timeout_s * 1000,
            stale_after_ms=settings.enrichment_stale_after_days * 24 * 60 * 60 * 1000,
        )
        if settings.enrichment_lock_sweep_interval_s > 0:
            sweep_task = asyncio.create_task(
                periodic_lock_sweep(service, settings.enrichment_lock_sweep_interval_s),
                name="enrichment-lock-sweep",
            )

    app.state.enrichment = service

    yield

    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    if service is not None:
        # Let detached enrichments finish so their leases are released
        await service.drain()
    if db_pool:
        await db_pool.close()


app = FastAPI(
    title="City Enrichment API",
    version=settings.app_version,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url=None,
    lifespan=lifespan,
)

# -- Middleware (order matters: last added = outermost in Starlette) --

# Routers first (innermost)
app.include_router(health.router)
app.include_router(enrichment.router)

# CORS (needs to be outermost to handle preflight)
setup_cors(app)


# Request ID injection
@app.middleware("http")
async def request_envelope_middleware(request: Request, call_next) -> Response:
    request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# -- Exception Handlers --

def _error_response(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {"code": code, "message": message},
            "requestId": getattr(request.state, "request_id", str(uuid.uuid4())),
        },
    )


@app.exception_handler(404)
async def not_found_handler(request: Request, exc) -> JSONResponse:
    return _error_response(request, 404, "NOT_FOUND", "Resource not found.")


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(request, 422, "VALIDATION_ERROR", str(exc.errors()))


@app.exception_handler(422)
async def validation_error_handler(request: Request, exc) -> JSONResponse:
    return _error_response(
        request, 422, "VALIDATION_ERROR",
        str(exc.detail) if hasattr(exc, "detail") else "Validation error.",
    )


@app.exception_handler(503)
async def service_unavailable_handler(request: Request, exc) -> JSONResponse:
    return _error_response(
        request, 503, "SERVICE_UNAVAILABLE",
        str(exc.detail) if hasattr(exc, "detail") else "Service unavailable.",
    )


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc) -> JSONResponse:
    return _error_response(request, 500, "INTERNAL_ERROR", "An unexpected error occurred.")
