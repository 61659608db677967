"""
Background scheduler for storage maintenance.

Expired recommendation cache rows and browsing history past the retention
period are deleted on an interval. The recommendation service itself never
schedules anything; it only exposes the purge operations.
"""
import logging
from datetime import datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from storefront.core.config import settings
from storefront.repositories.behavior_log import SqlBehaviorLog
from storefront.services.recommendation_service import RecommendationService

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None


async def run_maintenance(
    service: RecommendationService,
    behavior_log: SqlBehaviorLog,
    retention_days: int,
) -> dict:
    """One maintenance pass. Each purge is attempted even if the other fails."""
    result = {"expired_cache_entries": 0, "old_history_entries": 0}

    try:
        result["expired_cache_entries"] = await service.purge_expired_cache()
    except Exception as e:
        logger.exception(f"Cache purge failed: {e}")

    try:
        cutoff = datetime.utcnow() - timedelta(days=retention_days)
        result["old_history_entries"] = await behavior_log.purge_older_than(cutoff)
    except Exception as e:
        logger.exception(f"Browsing history purge failed: {e}")

    logger.info(f"Maintenance job completed: {result}")
    return result


def start_scheduler(service: RecommendationService, behavior_log: SqlBehaviorLog):
    """
    Start the maintenance scheduler.
    Call this from the FastAPI startup event (needs the running event loop).
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return

    logger.info("Starting background scheduler")
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        run_maintenance,
        trigger=IntervalTrigger(minutes=settings.MAINTENANCE_INTERVAL_MINUTES),
        kwargs={
            "service": service,
            "behavior_log": behavior_log,
            "retention_days": settings.HISTORY_RETENTION_DAYS,
        },
        id="storage_maintenance",
        name="Purge expired recommendation cache and old browsing history",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )

    scheduler.start()
    logger.info(
        "Background scheduler started with maintenance job every %d minutes",
        settings.MAINTENANCE_INTERVAL_MINUTES,
    )


def stop_scheduler():
    """
    Stop the background scheduler.
    Call this from the FastAPI shutdown event.
    """
    global scheduler

    if scheduler is not None:
        logger.info("Stopping background scheduler")
        scheduler.shutdown(wait=False)
        scheduler = None
