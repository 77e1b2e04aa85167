"""ClipIt Upload Service - FastAPI Application Entry Point.

Provides:
- Chunked and single-request uploads with server-side finalization
- Expired artifact cleanup on an in-process scheduler
- Rate limiting, request ID tracking and error sanitization
"""

import shutil
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from clipit.config import (
    ALLOWED_HOSTS,
    CLEANUP_INTERVAL_SECONDS,
    CORS_ORIGINS,
    DEBUG,
    ENABLE_SCHEDULER,
    FFMPEG_BINARY,
    logger,
)
from clipit.core.maintenance.cleanup import CLEANUP_JOB_NAME, register_cleanup_job
from clipit.core.security.constants import ERROR_KIND_HEADER, REQUEST_ID_HEADER
from clipit.core.uploads.exceptions import UploadError
from clipit.dependencies import UploadServices, build_default_services
from clipit.middleware import (
    ErrorSanitizationMiddleware,
    RateLimitMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)
from clipit.routers import maintenance, tools, uploads
from clipit.version import __version__
from clipit.schemas import HealthResponse


# -----------------------------------------------------------------------------
# Application Lifespan
# -----------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("Starting ClipIt upload service v%s", __version__)
    services: UploadServices = app.state.services
    if app.state.enable_scheduler:
        services.scheduler.start(CLEANUP_JOB_NAME)
    yield
    await services.scheduler.shutdown()
    # Let in-flight chunk cleanups finish before the loop goes away
    await services.cleanup.drain()
    logger.info("Shutting down ClipIt upload service")


# -----------------------------------------------------------------------------
# Application Factory
# -----------------------------------------------------------------------------

def create_app(
    services: Optional[UploadServices] = None,
    enable_scheduler: bool = ENABLE_SCHEDULER,
    debug_mode: bool = DEBUG,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="ClipIt Upload Service",
        version=__version__,
        lifespan=lifespan,
        # Disable docs in production for security
        docs_url="/docs" if debug_mode else None,
        redoc_url="/redoc" if debug_mode else None,
        openapi_url="/openapi.json" if debug_mode else None,
    )

    services = services or build_default_services()
    register_cleanup_job(
        services.scheduler,
        services.records,
        services.blobs,
        interval_seconds=CLEANUP_INTERVAL_SECONDS,
    )
    app.state.services = services
    app.state.enable_scheduler = enable_scheduler

    # -------------------------------------------------------------------------
    # Middleware Stack (order matters - first added = last executed)
    # -------------------------------------------------------------------------

    # 1. Error sanitization (outermost - catches all errors)
    app.add_middleware(ErrorSanitizationMiddleware, debug=debug_mode)

    # 2. Request logging
    app.add_middleware(
        RequestLoggingMiddleware,
        exclude_paths={"/health", "/healthz", "/ready"},
    )

    # 3. Rate limiting
    app.add_middleware(
        RateLimitMiddleware,
        exclude_paths={"/health", "/healthz", "/ready"},
    )

    # 4. Request ID injection
    app.add_middleware(RequestIDMiddleware)

    # 5. Trusted hosts (prevents host header attacks)
    if ALLOWED_HOSTS and ALLOWED_HOSTS != ["*"]:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=ALLOWED_HOSTS,
        )

    # 6. CORS (innermost middleware for preflight handling)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER],
        expose_headers=[
            REQUEST_ID_HEADER,
            ERROR_KIND_HEADER,
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
        ],
        max_age=600,  # Cache preflight for 10 minutes
    )

    # -------------------------------------------------------------------------
    # Exception Handlers
    # -------------------------------------------------------------------------

    @app.exception_handler(UploadError)
    async def upload_error_handler(request: Request, exc: UploadError):
        """Render upload errors with their kind and failing stage."""
        if exc.status_code >= 500:
            logger.error("Upload error [%s] at %s: %s", exc.kind, exc.stage, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers={ERROR_KIND_HEADER: exc.kind},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors with clean messages."""
        errors = exc.errors()
        # Limit error details to prevent information leakage
        clean_errors = [
            {"field": ".".join(str(loc) for loc in err.get("loc", [])), "message": err.get("msg", "Invalid value")}
            for err in errors[:5]  # Limit to 5 errors
        ]
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "kind": "validation_error", "errors": clean_errors},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions with consistent format."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    # -------------------------------------------------------------------------
    # Health Check Endpoints
    # -------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    @app.get("/healthz", response_model=HealthResponse, include_in_schema=False)
    async def health_check() -> HealthResponse:
        """Health check endpoint for load balancers and orchestrators."""
        return HealthResponse(
            status="healthy",
            version=__version__,
            timestamp=datetime.now(timezone.utc),
        )

    @app.get("/ready", tags=["Health"])
    async def readiness_check():
        """Readiness check - the transcoder must be installed."""
        if shutil.which(FFMPEG_BINARY) is None:
            return JSONResponse(
                status_code=503,
                content={"status": "not ready", "ffmpeg": False},
                headers={ERROR_KIND_HEADER: "not_ready"},
            )
        return {"status": "ready", "ffmpeg": True}

    # -------------------------------------------------------------------------
    # Routers
    # -------------------------------------------------------------------------

    app.include_router(uploads.router)
    app.include_router(tools.router)
    app.include_router(maintenance.router)

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "clipit.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        limit_concurrency=100,
        limit_max_requests=10000,
    )
