"""Import scheduler: keeps the local store in step with the ECDC feed."""

from datetime import datetime

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from covidservice.app.config import get_settings
from covidservice.app.services.importer import ImportPolicy
from covidservice.app.store import get_store
from covidservice.ingestion.ecdc import import_from_ecdc

logger = structlog.get_logger()

scheduler = AsyncIOScheduler()


def import_policy(settings) -> ImportPolicy:
    return ImportPolicy.BACKFILL if settings.import_backfill else ImportPolicy.WATERMARK


async def run_ecdc_import():
    """Run one ECDC import against the process-wide store."""
    settings = get_settings()
    try:
        result = await import_from_ecdc(get_store(), settings.covid_ecdc_url, import_policy(settings))
        logger.info("ECDC import complete", imported=result.imported, skipped=result.skipped)
    except Exception as e:
        logger.error("ECDC import failed", error=str(e))


def start_scheduler():
    """Configure and start the import scheduler."""
    interval_hours = get_settings().scrape_interval_hours

    scheduler.add_job(
        run_ecdc_import,
        trigger=IntervalTrigger(hours=interval_hours),
        id="ecdc_import",
        name="ECDC Import",
        max_instances=1,
        next_run_time=datetime.now(),  # Run immediately on startup
    )

    scheduler.start()
    logger.info(
        "Scheduler started",
        jobs=len(scheduler.get_jobs()),
        interval_hours=interval_hours,
    )


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
