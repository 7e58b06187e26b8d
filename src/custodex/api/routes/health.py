"""Health check endpoints."""

from fastapi import APIRouter, Depends, Request

from custodex import __version__
from custodex.api.app import get_container
from custodex.container import ServiceContainer
from custodex.ledger.models import utcnow

router = APIRouter()


@router.get("/health")
async def health_check(request: Request, container: ServiceContainer = Depends(get_container)):
    """Basic health check: database connectivity and engine state."""
    database_ok = await container.database.ping()
    scheduler = request.app.state.scheduler

    return {
        "status": "ok" if database_ok else "degraded",
        "service": "custodex",
        "database": "connected" if database_ok else "error",
        "tasks": scheduler.status() if scheduler else {},
        "dry_run": container.settings.dry_run,
        "timestamp": utcnow().isoformat(),
    }


@router.get("/health/detailed")
async def detailed_health(container: ServiceContainer = Depends(get_container)):
    """Detailed health check with configuration info."""
    return {
        "status": "healthy",
        "service": "custodex",
        "version": __version__,
        "config": container.settings.get_safe_dict(),
    }
