"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlmodel import SQLModel

from laneshare.api.routes import services
from laneshare.config import get_settings
from laneshare.connectors.registry import AdapterRegistry, build_default_registry
from laneshare.crypto import SecretCodec, get_codec
from laneshare.db.engine import get_engine
from laneshare.errors import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    ValidationFailure,
)
from laneshare.scheduler.jobs import build_scheduler
from laneshare.sync.connections import ConnectionService
from laneshare.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def create_app(
    engine=None,
    registry: Optional[AdapterRegistry] = None,
    codec: Optional[SecretCodec] = None,
    start_scheduler: Optional[bool] = None,
) -> FastAPI:
    """
    Build and return the FastAPI app.

    Every collaborator can be injected (tests pass an in-memory engine, a
    registry of fake adapters and a throwaway codec); anything omitted is
    built from settings.
    """
    settings = get_settings()
    engine = engine if engine is not None else get_engine()
    registry = registry if registry is not None else build_default_registry()
    codec = codec if codec is not None else get_codec()
    if start_scheduler is None:
        start_scheduler = settings.scheduler_enabled

    connection_service = ConnectionService(engine, registry, codec)
    orchestrator = SyncOrchestrator(engine, registry, codec)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent)
        SQLModel.metadata.create_all(engine)
        # Runs older than the startup cutoff were left behind by a process that stopped mid-sync
        startup_minutes = settings.startup_stale_run_minutes
        if startup_minutes is None:
            startup_minutes = settings.stale_run_minutes
        orchestrator.expire_stale_runs(timedelta(minutes=startup_minutes))

        scheduler = None
        if start_scheduler:
            scheduler = build_scheduler(orchestrator)
            scheduler.start()
            logger.info(
                "Scheduler started (stale run sweep every %d min)",
                settings.stale_sweep_interval_minutes,
            )
        yield
        if scheduler is not None:
            scheduler.shutdown(wait=False)

    app = FastAPI(
        title="LaneShare Connected Services API",
        description="External platform connections and asset sync",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.registry = registry
    app.state.connection_service = connection_service
    app.state.orchestrator = orchestrator

    app.include_router(
        services.router, prefix="/projects/{project_id}/services", tags=["services"]
    )
    _register_error_handlers(app)

    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationFailure)
    async def validation_failure_handler(request: Request, exc: ValidationFailure) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
        content = {"detail": str(exc)}
        if exc.run_id is not None:
            content["run_id"] = exc.run_id
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=content)

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error("Configuration error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Connected services are not configured on this server"},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # The default handler echoes the request body, which may hold secrets.
        errors = [
            {"loc": list(err.get("loc", [])), "msg": err.get("msg", "Invalid input")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": errors},
        )
