from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from api.config.logging import get_logger, setup_logging
from api.config.settings import settings
from api.infra.database import close_database
from api.v1.core.exceptions import (
    RelayException,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    relay_exception_handler,
    validation_exception_handler,
)
from api.v1.core.registries import event_route_registry, job_registry
from api.v1.healthz import router as health_router
from api.v1.infra.jobs.registry_init import register_job_handlers
from api.v1.infra.jobs.routes import router as jobs_router
from api.v1.infra.outbox.routing import register_default_routes
from api.v1.infra.stats.routes import router as stats_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "Relay API starting",
        environment=settings.environment,
        auth_mode=settings.auth_mode,
        job_types=job_registry.list(),
    )
    yield
    await close_database()
    logger.info("Relay API stopped")


def _register_handlers() -> None:
    """Populate the event routes and job handlers.

    Outside development the registries are frozen afterwards and later
    ``create_app()`` calls leave them as they are.
    """
    if job_registry.is_frozen():
        return
    register_default_routes(event_route_registry)
    register_job_handlers(settings, job_registry)

    if settings.environment != "development":
        job_registry.freeze()
        event_route_registry.freeze()


def create_app() -> FastAPI:
    """Create and configure the relay's admin and health API."""
    setup_logging()
    _register_handlers()

    app = FastAPI(
        title=settings.app_name,
        description="Durable outbox relay: event outbox, job queue and workers",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    app.add_middleware(RequestContextMiddleware)
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST"],
            allow_headers=["X-Admin-Token", "X-Operator-ID", "X-Request-ID", "Content-Type"],
            expose_headers=["X-Request-ID"],
        )

    app.add_exception_handler(RelayException, relay_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Health stays unauthenticated; jobs and stats carry the admin dependency
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(stats_router, prefix="/v1")
    app.include_router(jobs_router, prefix="/v1")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers,
    )
