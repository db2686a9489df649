"""Health check endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends

from framtt_admin import __version__
from framtt_admin.api.deps import get_services
from framtt_admin.services.container import AppServices

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness_check(
    services: Annotated[AppServices, Depends(get_services)],
):
    """Readiness check endpoint."""
    return {
        "status": "ready",
        "principals": len(services.principals),
        "audit_sink": type(services.audit).__name__,
    }


@router.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Framtt Admin",
        "version": __version__,
        "description": "Session and impersonation core for the Framtt admin backend",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }
