"""entity-history-engine service entry point.

Initializes the FastAPI application with:
- Structured logging
- The database holding tracked entities, change events and read statuses
- The Item resource under /api/v1
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from entity_history_engine import __version__
from entity_history_engine.api.router import register_exception_handlers, router
from entity_history_engine.database import close_database, create_schema, init_database
from entity_history_engine.observability import configure_logging, get_logger
from entity_history_engine.settings import Settings

logger = get_logger(__name__)

settings = Settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle.

    Configures logging and the database engine on startup, creating missing
    tables when enabled. Disposes the engine on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        None
    """
    configure_logging(settings.log_level, json_logs=settings.log_json)

    logger.info("Initializing database", service=settings.service_name, pool_size=settings.db_pool_size)
    init_database(
        database_url=settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
    )
    if settings.create_schema:
        await create_schema()

    app.state.settings = settings
    logger.info("Entity history engine startup complete", auto_commit=settings.auto_commit)

    yield

    logger.info("Shutting down entity history engine")
    await close_database()
    logger.info("Entity history engine shutdown complete")


def create_app() -> FastAPI:
    """Build the FastAPI application with routes and error handlers installed."""
    application = FastAPI(title=settings.service_name, version=__version__, lifespan=lifespan)
    application.state.settings = settings
    register_exception_handlers(application)
    application.include_router(router, prefix="/api/v1")
    return application


app: FastAPI = create_app()
