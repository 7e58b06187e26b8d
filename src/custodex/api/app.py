"""FastAPI application factory."""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from custodex import __version__
from custodex.container import ServiceContainer
from custodex.errors import LimitExceededError, PersistenceError, ValidationError
from custodex.scheduler import Scheduler

logger = logging.getLogger(__name__)


def get_container(request: Request) -> ServiceContainer:
    """Dependency: the service container attached to the app."""
    return request.app.state.container


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "reason": str(exc), "field": exc.field},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or None
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "reason": first.get("msg", "Invalid body"), "field": field},
    )


async def limit_exceeded_handler(request: Request, exc: LimitExceededError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Daily limit exceeded", "remaining": str(exc.remaining)},
    )


async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error(f"Store error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"error": "Storage unavailable"})


def create_app(
    container: ServiceContainer,
    scheduler: Optional[Scheduler] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        container: Services shared with the engines
        scheduler: Engine scheduler, reported by the health endpoint
    """
    settings = container.settings

    app = FastAPI(
        title="Custodex API",
        description="Token custody backend: deposits, withdrawals and balances",
        version=__version__,
        debug=settings.debug,
    )
    app.state.container = container
    app.state.scheduler = scheduler

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(LimitExceededError, limit_exceeded_handler)
    app.add_exception_handler(PersistenceError, persistence_error_handler)

    # Register routes
    from custodex.api.routes import balances, deposits, health, withdrawals

    app.include_router(health.router, tags=["Health"])
    app.include_router(deposits.router, prefix="/api", tags=["Deposits"])
    app.include_router(withdrawals.router, prefix="/api", tags=["Withdrawals"])
    app.include_router(balances.router, prefix="/api", tags=["Balances"])

    return app
