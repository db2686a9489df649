"""
FastAPI application for the Framtt admin backend.

Provides:
1. Auth API for login and the current actor
2. Impersonation API for support sessions
3. Admin API for signing secret rotation
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from framtt_admin import __version__
from framtt_admin.api.routes import admin, auth, health, impersonation
from framtt_admin.config import Settings, get_settings
from framtt_admin.errors import AuthError
from framtt_admin.logging_config import (
    LogConfig,
    LogEventType,
    configure_logging,
    get_logger,
    set_correlation_id,
)
from framtt_admin.services.container import AppServices, build_services

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    services: AppServices = app.state.services

    # Startup
    logger.event(LogEventType.APP_START, "Starting Framtt admin API...")
    await services.audit.start()
    if services.secrets.rotation_due(services.settings.secret_rotation_days):
        logger.warning("Signing secret rotation is due")
    logger.info("Framtt admin API started")

    yield

    # Shutdown
    logger.event(LogEventType.APP_STOP, "Shutting down Framtt admin API...")
    await services.audit.stop()
    logger.info("Framtt admin API stopped")


def create_app(
    settings: Settings | None = None,
    services: AppServices | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if services is None:
        settings = settings or get_settings()
        configure_logging(LogConfig(level=settings.log_level, format=settings.log_format))
        services = build_services(settings)

    app = FastAPI(
        title="Framtt Admin",
        description="""
Session and impersonation core for the Framtt admin backend.

## API Surfaces

### Auth (`/api/v1/auth`)
Email/password login and the current actor.

### Impersonation (`/api/v1/impersonation`)
Superadmins and admins can act as a lower-privileged user for support.
Every session is time-limited and recorded in the audit log.

### Admin (`/api/v1/admin`)
Signing secret rotation (superadmin only).
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        correlation_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        set_correlation_id(correlation_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    # Register routes
    app.include_router(health.router, tags=["Health"])
    app.include_router(
        auth.router,
        prefix="/api/v1/auth",
        tags=["Auth"],
    )
    app.include_router(
        impersonation.router,
        prefix="/api/v1/impersonation",
        tags=["Impersonation"],
    )
    app.include_router(
        admin.router,
        prefix="/api/v1/admin",
        tags=["Admin"],
    )

    # Exception handlers
    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=headers,
        )

    return app
