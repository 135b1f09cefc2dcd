"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.api.middleware import RequestLoggingMiddleware
from src.api.routers.health import router as health_router
from src.api.routers.sync_batches import router as sync_batches_router
from src.api.routers.workflow_batches import router as workflow_batches_router
from src.domains.batch.core.errors import (
    BatchNotFoundError,
    BatchStateError,
    BatchValidationError,
    EnumerationError,
    RootNotFoundError,
    TriggerError,
)
from src.domains.batch.services.factory import build_batch_services
from src.models.config import Config
from src.services.database import Database

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from src.models.batch_record import BatchKind
    from src.services.protocols import DirectoryProtocol, TriggerProtocol

logger = structlog.get_logger(__name__)

# Starlette resolves handlers along the exception MRO, so subclasses win.
_ERROR_STATUS: tuple[tuple[type[Exception], int], ...] = (
    (BatchValidationError, status.HTTP_400_BAD_REQUEST),
    (RootNotFoundError, status.HTTP_404_NOT_FOUND),
    (EnumerationError, status.HTTP_502_BAD_GATEWAY),
    (BatchNotFoundError, status.HTTP_404_NOT_FOUND),
    (BatchStateError, status.HTTP_409_CONFLICT),
    (TriggerError, status.HTTP_502_BAD_GATEWAY),
)


def _register_error_handlers(app: FastAPI) -> None:
    for exc_type, status_code in _ERROR_STATUS:

        def handler(
            request: Request, exc: Exception, _status_code: int = status_code
        ) -> JSONResponse:
            logger.info(
                "request_rejected",
                path=request.url.path,
                status=_status_code,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return JSONResponse(status_code=_status_code, content={"detail": str(exc)})

        app.add_exception_handler(exc_type, handler)


def create_app(
    config: Config | None = None,
    *,
    db: Database | None = None,
    directory: DirectoryProtocol | None = None,
    triggers: dict[BatchKind, TriggerProtocol] | None = None,
) -> FastAPI:
    """Build the API with its batch services.

    Collaborators default to the ones described by ``config``; tests pass
    fakes for the directory and triggers.
    """
    config = config or Config()  # type: ignore[call-arg]
    if db is None:
        db = Database(db_path=config.database_path)
    db.init_db()
    services = build_batch_services(config, db, directory=directory, triggers=triggers)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("api_started", port=config.api_port)
        yield
        for service in services.values():
            service.executor.shutdown(cancel_running=True, wait=True)
        db.close()
        logger.info("api_stopped")

    app = FastAPI(title="Batch Orchestrator", lifespan=lifespan)
    app.state.config = config
    app.state.db = db
    app.state.batch_services = services

    app.add_middleware(RequestLoggingMiddleware)
    _register_error_handlers(app)

    app.include_router(health_router, prefix="/api/v1/health", tags=["health"])
    app.include_router(workflow_batches_router, prefix="/api/v1", tags=["workflow-batches"])
    app.include_router(sync_batches_router, prefix="/api/v1", tags=["sync-batches"])
    return app
