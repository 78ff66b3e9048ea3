import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from sqlalchemy.exc import OperationalError

from covidservice.app.config import get_settings
from covidservice.app.errors import StorageError
from covidservice.app.logging import configure_logging
from covidservice.app.routers import cases

logger = structlog.get_logger()


def _is_retryable_db_error(exc: Exception) -> bool:
    current: BaseException | None = exc
    while current is not None:
        if isinstance(current, (OperationalError, OSError, ConnectionError)):
            return True
        message = str(current).lower()
        if (
            "could not translate host name" in message
            or "connection refused" in message
            or "connection reset" in message
            or "timeout" in message
        ):
            return True
        current = current.__cause__ or current.__context__
    return False


async def _init_db():
    """Create tables, retrying while the database is still coming up."""
    from covidservice.app.store import get_store

    settings = get_settings()
    store = get_store()
    attempts = max(1, settings.db_startup_max_attempts)
    initial_backoff = max(1, settings.db_startup_initial_backoff_seconds)
    max_backoff = max(initial_backoff, settings.db_startup_max_backoff_seconds)

    for attempt in range(1, attempts + 1):
        try:
            await store.initialize()
            return
        except StorageError as exc:
            if attempt >= attempts or not _is_retryable_db_error(exc):
                raise
            backoff = min(initial_backoff * (2 ** (attempt - 1)), max_backoff)
            logger.warning(
                "Database unavailable during startup; retrying",
                attempt=attempt,
                max_attempts=attempts,
                retry_in_seconds=backoff,
                error=str(exc),
            )
            await asyncio.sleep(backoff)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from covidservice.app.database import dispose_engine

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    logger.info("Starting covidservice", env=settings.app_env, database=settings.storage_location)
    await _init_db()
    if settings.scrape_enabled:
        from covidservice.ingestion.scheduler import start_scheduler
        start_scheduler()
        logger.info("Import scheduler started")
    yield
    if settings.scrape_enabled:
        from covidservice.ingestion.scheduler import stop_scheduler
        stop_scheduler()
    await dispose_engine()
    logger.info("Shutting down covidservice")


app = FastAPI(
    title="COVID-19 statistics API",
    version="1.0.0",
    description="Daily COVID-19 cases and deaths per country",
    lifespan=lifespan,
)

app.include_router(cases.router, prefix="/api")


@app.get("/api/health")
async def health_check():
    return {"status": "ok"}
