"""
Creator Studio Jobs
===================
Async generation job lifecycle: provider submission, pending job ledger,
webhook reconciliation, persisted polling and the reaper.
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from studio.api.envelope import error_envelope, studio_error_envelope
from studio.api.routes.generations import router as generations_router
from studio.api.routes.jobs import maintenance_router
from studio.api.routes.jobs import router as jobs_router
from studio.api.routes.notifications import router as notifications_router
from studio.api.routes.webhooks import router as webhooks_router
from studio.container import Container, build_container
from studio.core.config import get_settings
from studio.core.correlation import (
    bind_request_context,
    clear_request_context,
    get_correlation_id,
    get_request_id,
    new_correlation_id,
    new_request_id,
)
from studio.core.database import init_db
from studio.core.errors import (
    DuplicateTaskIdError,
    GatewayError,
    JobStateConflictError,
    NotFoundError,
    StoreError,
    StudioError,
)
from studio.core.logging import get_logger, setup_logging
from studio.schemas import HealthResponse

VERSION = "1.0.0"

logger = get_logger("main")

_start_time = time.time()


def create_app(container: Optional[Container] = None) -> FastAPI:
    """Build the app. A prebuilt container is used as-is and left open on shutdown."""
    settings = container.settings if container is not None else get_settings()
    owns_container = container is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # ── Startup ──
        setup_logging(debug=settings.app_debug)
        logger.info("app_starting", app=settings.app_name, env=settings.app_env)

        active = app.state.container if getattr(app.state, "container", None) else build_container(settings)
        app.state.container = active
        await init_db(active.engine, settings.app_env)
        logger.info("database_initialized")

        active.scheduler.start()
        logger.info("app_ready", port=settings.app_port)

        yield

        # ── Shutdown ──
        active.scheduler.stop()
        if owns_container:
            await active.aclose()
            app.state.container = None
        logger.info("app_shutdown")

    app = FastAPI(
        title=settings.app_name,
        description="Generation job lifecycle: submit, track, reconcile and reap provider jobs.",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.container = container

    # ── CORS Middleware ──

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Request Logging Middleware ──

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming requests with timing."""
        request_id = request.headers.get("x-request-id") or new_request_id()
        correlation_id = request.headers.get("x-correlation-id") or new_correlation_id()
        bind_request_context(request_id, correlation_id)
        start = time.time()
        response = None
        try:
            response = await call_next(request)
            return response
        finally:
            elapsed = round((time.time() - start) * 1000, 2)
            if response is not None:
                response.headers["x-request-id"] = request_id
                response.headers["x-correlation-id"] = correlation_id
                status_code = response.status_code
            else:
                status_code = 500

            if request.url.path not in ["/health", "/docs", "/redoc", "/openapi.json"]:
                logger.info(
                    "http_request",
                    method=request.method,
                    path=request.url.path,
                    status=status_code,
                    elapsed_ms=elapsed,
                    request_id=get_request_id(),
                    correlation_id=get_correlation_id(),
                )
            clear_request_context()

    # ── Exception Handlers ──

    def _studio_error(request: Request, exc: StudioError, status_code: int):
        log = logger.error if status_code >= 500 else logger.warning
        log("studio_error", path=request.url.path, code=exc.code, error=exc.message, status_code=status_code)
        return studio_error_envelope(exc, status_code=status_code, path=request.url.path)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _studio_error(request, exc, 404)

    @app.exception_handler(DuplicateTaskIdError)
    async def duplicate_handler(request: Request, exc: DuplicateTaskIdError):
        return _studio_error(request, exc, 409)

    @app.exception_handler(JobStateConflictError)
    async def conflict_handler(request: Request, exc: JobStateConflictError):
        return _studio_error(request, exc, 409)

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        return _studio_error(request, exc, 500)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        return _studio_error(request, exc, 502)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger.warning(
            "http_exception",
            path=request.url.path,
            status_code=exc.status_code,
            detail=str(exc.detail),
        )
        return error_envelope(
            code="http_error",
            message="Request failed",
            status_code=exc.status_code,
            details=exc.detail,
            meta={"path": request.url.path},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning("validation_error", path=request.url.path, errors=exc.errors())
        return error_envelope(
            code="validation_error",
            message="Validation failed",
            status_code=422,
            details=exc.errors(),
            meta={"path": request.url.path},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return error_envelope(
            code="internal_error",
            message="Internal server error",
            status_code=500,
            meta={"path": request.url.path},
        )

    # ── Register Routers ──

    app.include_router(webhooks_router)
    app.include_router(generations_router, prefix="/api/v1")
    app.include_router(jobs_router, prefix="/api/v1")
    app.include_router(notifications_router, prefix="/api/v1")
    app.include_router(maintenance_router, prefix="/api/v1")

    # ── Health Check ──

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check(request: Request):
        """Liveness summary with a database round trip."""
        database = "connected"
        active: Optional[Container] = request.app.state.container
        try:
            async with active.sessionmaker() as db:
                await db.execute(text("SELECT 1"))
        except Exception as exc:  # noqa: BLE001
            logger.warning("health_database_unreachable", error=str(exc))
            database = "disconnected"
        return HealthResponse(
            status="ok" if database == "connected" else "degraded",
            version=VERSION,
            database=database,
            uptime_seconds=round(time.time() - _start_time, 2),
        )

    return app
