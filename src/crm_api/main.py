"""FastAPI application factory.

Creates the FastAPI app with lifespan management, exception handlers,
and OpenAPI metadata.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from crm_api.core.background import task_runner
from crm_api.core.config import get_settings
from crm_api.core.database import dispose_engine, init_engine
from crm_api.core.logging import setup_logging
from crm_api.lib.importer.errors import ImportStateError


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle: init engine on startup, dispose on shutdown."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir, json_logs=settings.log_json)
    init_engine(settings.database_url, echo=False, schema=settings.database_schema)

    yield

    # Interrupted commits stay in "processing" until the stalled-import sweep
    await task_runner.shutdown()
    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="CRM API",
        description="Tenant contact imports: CSV upload, column mapping, validation and commit",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Register exception handlers
    @app.exception_handler(ImportStateError)
    async def import_state_error_handler(request: Request, exc: ImportStateError) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc)},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc)},
        )

    # Register middleware and routers
    from crm_api.api.router import create_router, setup_middleware

    setup_middleware(app, settings)
    app.include_router(create_router(settings))

    return app
