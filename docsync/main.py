"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from docsync.api.health import router as health_router
from docsync.api.sync import outcome_response
from docsync.api.sync import router as sync_router
from docsync.config import Settings
from docsync.database import create_engine, init_schema
from docsync.exceptions import (
    AccessDeniedError,
    InternalServerError,
    NothingToCommitError,
    ProjectNotFoundError,
    RefUpdateRejectedError,
    RemoteAPIError,
    ValidationError,
)
from docsync.remote.github import github_remote_factory
from docsync.services.secret_service import EncryptedCredentialProvider
from docsync.storage.object_store import FilesystemObjectStore
from docsync.version import VERSION

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from docsync.remote.base import RemoteFactory
    from docsync.services.secret_service import CredentialProvider
    from docsync.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stdout,
        force=True,
    )
    for name, quiet_level in (
        ("uvicorn.access", logging.WARNING),
        ("httpx", logging.WARNING),
        ("sqlalchemy.engine", logging.INFO if debug else logging.WARNING),
    ):
        logging.getLogger(name).setLevel(quiet_level)


def _sqlite_path(database_url: str) -> Path | None:
    if not database_url.startswith("sqlite") or "///" not in database_url:
        return None
    return Path(database_url.split("///", 1)[1])


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Prepare the relational and object stores, then release the engine on shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting DocSync %s (debug=%s)", VERSION, settings.debug)

    db_path = _sqlite_path(settings.database_url)
    try:
        if db_path is not None:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        settings.object_store_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.critical("Cannot create data directories: %s", exc)
        raise

    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    try:
        await init_schema(engine)
    except Exception as exc:
        logger.critical("Database at %s is unusable: %s", settings.database_url, exc)
        await engine.dispose()
        raise

    try:
        yield
    finally:
        await engine.dispose()
        logger.info("DocSync stopped")


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    content: dict[str, Any] = {"error": message}
    content.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(status_code=status_code, content=content)


def _log_failure(level: int, request: Request, exc: BaseException, *, trace: bool = False) -> None:
    logger.log(
        level,
        "%s on %s %s: %s",
        type(exc).__name__,
        request.method,
        request.url.path,
        exc,
        exc_info=exc if trace else None,
    )


def _field_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    fields = []
    for err in exc.errors():
        loc = err.get("loc", ())
        fields.append(
            {
                "field": str(loc[-1]) if loc else "unknown",
                "message": err.get("msg", "Invalid value"),
            }
        )
    return fields


def _install_error_handlers(app: FastAPI) -> None:
    """Map domain and infrastructure failures onto ``{"error": ...}`` bodies."""

    @app.exception_handler(StarletteHTTPException)
    async def on_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        response = _error(exc.status_code, str(exc.detail))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def on_bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = _field_errors(exc)
        logger.warning("Rejected body for %s %s: %s", request.method, request.url.path, fields)
        return JSONResponse(status_code=400, content={"error": "Invalid request", "detail": fields})

    @app.exception_handler(ProjectNotFoundError)
    async def on_unknown_project(request: Request, exc: ProjectNotFoundError) -> JSONResponse:
        _log_failure(logging.INFO, request, exc)
        # Same body whether the project is missing or merely invisible to the caller.
        return _error(404, "Project not found or access denied")

    @app.exception_handler(AccessDeniedError)
    async def on_forbidden(request: Request, exc: AccessDeniedError) -> JSONResponse:
        _log_failure(logging.INFO, request, exc)
        return _error(403, str(exc))

    @app.exception_handler(NothingToCommitError)
    async def on_empty_push(request: Request, exc: NothingToCommitError) -> JSONResponse:
        _log_failure(logging.WARNING, request, exc)
        return _error(
            400,
            str(exc),
            operation_id=exc.operation_id,
            files_committed=0,
            outcomes=[outcome_response(o).model_dump() for o in exc.outcomes],
        )

    @app.exception_handler(ValidationError)
    async def on_invalid(request: Request, exc: ValidationError) -> JSONResponse:
        _log_failure(logging.WARNING, request, exc)
        return _error(400, str(exc), remote_status=exc.remote_status)

    @app.exception_handler(RefUpdateRejectedError)
    async def on_ref_race(request: Request, exc: RefUpdateRejectedError) -> JSONResponse:
        _log_failure(logging.WARNING, request, exc)
        return _error(409, exc.message, remote_status=exc.status_code)

    @app.exception_handler(RemoteAPIError)
    async def on_remote_failure(request: Request, exc: RemoteAPIError) -> JSONResponse:
        _log_failure(logging.ERROR, request, exc)
        return _error(502, exc.message, remote_status=exc.status_code)

    @app.exception_handler(InternalServerError)
    async def on_persistence_failure(request: Request, exc: InternalServerError) -> JSONResponse:
        _log_failure(logging.ERROR, request, exc, trace=True)
        return _error(500, "Internal server error")

    @app.exception_handler(ValueError)
    async def on_value_error(request: Request, exc: ValueError) -> JSONResponse:
        _log_failure(logging.ERROR, request, exc, trace=True)
        return _error(422, str(exc) or "Invalid value")

    @app.exception_handler(OSError)
    async def on_os_error(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        _log_failure(logging.ERROR, request, exc, trace=True)
        return _error(500, "Storage operation failed")

    @app.exception_handler(OperationalError)
    async def on_database_down(request: Request, exc: OperationalError) -> JSONResponse:
        _log_failure(logging.ERROR, request, exc, trace=True)
        return _error(503, "Database temporarily unavailable")


def create_app(
    settings: Settings | None = None,
    *,
    remote_factory: RemoteFactory | None = None,
    object_store: ObjectStore | None = None,
    credential_provider: CredentialProvider | None = None,
) -> FastAPI:
    """Build the DocSync application.

    Collaborators default to the GitHub remote, the filesystem object store and
    the encrypted credential provider; tests inject their own.
    """
    settings = settings or Settings()
    show_docs = settings.debug or settings.expose_docs

    app = FastAPI(
        title="DocSync",
        description="Markdown documents synchronized with a remote Git repository",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if show_docs else None,
        redoc_url="/redoc" if show_docs else None,
        openapi_url="/openapi.json" if show_docs else None,
    )
    app.state.settings = settings
    app.state.remote_factory = remote_factory or github_remote_factory(settings)
    app.state.object_store = object_store or FilesystemObjectStore(settings.object_store_dir)
    app.state.credential_provider = credential_provider or EncryptedCredentialProvider(
        settings.secret_key
    )

    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.include_router(health_router)
    app.include_router(sync_router)
    _install_error_handlers(app)
    return app


def cli_entry() -> None:
    """Serve the application with uvicorn using environment settings."""
    import uvicorn

    settings = Settings()
    uvicorn.run(
        "docsync.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
