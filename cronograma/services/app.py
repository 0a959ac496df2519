"""FastAPI application factory."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from .. import __version__
from ..config import Settings, settings as default_settings
from ..schedule.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    ScheduleError,
    ValidationError,
)
from ..schedule.models import Snapshot
from ..schedule.service import PersistenceGateway, PublishPipeline, SQLiteSlotBackend, SlotBackend
from ..schedule.service.seed import load_seed
from ..schedule.store import ScheduleStore
from .api import router

logger = logger.bind(module="services.app")

_STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConflictError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _error_body(exc: ScheduleError) -> dict:
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ValidationError) and exc.field:
        body["field"] = exc.field
    if isinstance(exc, ConflictError) and exc.conflicting_event is not None:
        body["conflicting_event"] = exc.conflicting_event.to_dict()
    if isinstance(exc, PermissionDeniedError):
        body["permission"] = exc.permission
    if isinstance(exc, PersistenceError):
        body["slot"] = exc.slot
        body["attempts"] = exc.attempts
    return body


async def schedule_error_handler(request: Request, exc: ScheduleError) -> JSONResponse:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content=_error_body(exc))


def create_app(
    settings: Optional[Settings] = None,
    backend: Optional[SlotBackend] = None,
    seed: Optional[Snapshot] = None,
    watch: bool = True,
) -> FastAPI:
    """Build the API application.

    Args:
        settings: Service settings, defaults to the environment
        backend: Slot storage, defaults to SQLite at ``settings.db_path``
        seed: Snapshot for empty slots, defaults to the YAML seed file
        watch: Poll the backend for changes made by other processes
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        slot_backend = backend or SQLiteSlotBackend(settings.db_path)
        store = ScheduleStore(
            conflict_policy=settings.conflict_policy,
            scope_markers=settings.scope_markers,
            strict=settings.strict_mutations,
        )
        gateway = PersistenceGateway(
            slot_backend,
            max_attempts=settings.max_save_attempts,
            retry_delay_ms=settings.retry_delay_ms,
            poll_interval_ms=settings.poll_interval_ms,
        )
        pipeline = PublishPipeline(store, gateway)
        await pipeline.connect(seed or load_seed(settings.seed_path), watch=watch)

        app.state.settings = settings
        app.state.pipeline = pipeline
        if not settings.admin_token:
            logger.warning("CRONOGRAMA_ADMIN_TOKEN is not set; draft endpoints are locked")
        logger.info(f"Cronograma API ready (v{__version__})")
        try:
            yield
        finally:
            await pipeline.close()
            await gateway.close()
            store.close()
            logger.info("Cronograma API stopped")

    app = FastAPI(
        title="Cronograma API",
        description="Draft/published training schedule service",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_exception_handler(ScheduleError, schedule_error_handler)
    app.include_router(router)
    return app
