"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from pricewatch.config import settings
from pricewatch.worker.tasks import task_runner

logger = logging.getLogger(__name__)


def setup_scheduler() -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Price alert checks run every settings.evaluator_interval_minutes
    - History compaction runs daily at settings.compaction_hour:compaction_minute (UTC)

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler(timezone="UTC")
    interval = max(1, int(settings.evaluator_interval_minutes))

    scheduler.add_job(
        task_runner.check_price_alerts,
        IntervalTrigger(minutes=interval),
        id="price_alert_check",
        name="Check price alerts",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=600,
        replace_existing=True,
    )

    scheduler.add_job(
        task_runner.compact_price_history,
        CronTrigger(hour=settings.compaction_hour, minute=settings.compaction_minute),
        id="history_compaction",
        name="Compact price history into daily summaries",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured: price alert check every %d minutes, "
        "history compaction daily at %02d:%02d UTC",
        interval,
        settings.compaction_hour,
        settings.compaction_minute,
    )

    return scheduler
