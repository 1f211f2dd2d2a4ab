"""Background tasks: alert evaluation cycles and history compaction."""

import logging
from typing import Optional

from pricewatch import metrics
from pricewatch.alerts.evaluator import AlertEvaluator, CycleSummary
from pricewatch.config import settings
from pricewatch.db.session import AsyncSessionLocal
from pricewatch.history.compactor import CompactionReport, HistoryCompactor
from pricewatch.notify.dispatch import NotificationDispatcher, create_dispatcher
from pricewatch.notify.gate import NotificationGate
from pricewatch.sources.base import PriceSource
from pricewatch.sources.http import HttpPriceSource

logger = logging.getLogger(__name__)


class TaskRunner:
    """
    Runner for background tasks.

    Owns the long-lived clients (price source, cooldown gate, dispatcher)
    shared by every scheduled run.
    """

    def __init__(self):
        self.price_source: PriceSource | None = None
        self.gate: NotificationGate | None = None
        self.dispatcher: NotificationDispatcher | None = None

    async def initialize(self):
        """Initialize task runner."""
        self.price_source = HttpPriceSource(settings.price_source_url)
        self.gate = NotificationGate(settings.redis_url, settings.cooldown_seconds)
        self.dispatcher = create_dispatcher(settings.notification_webhook_url)
        logger.info("Task runner initialized")

    async def close(self):
        """Clean up resources."""
        if self.price_source:
            await self.price_source.close()
        if self.gate:
            await self.gate.close()
        if self.dispatcher:
            await self.dispatcher.close()

    async def check_price_alerts(self) -> Optional[CycleSummary]:
        """Run one evaluator cycle over all active alerts (scheduled trigger)."""
        if self.price_source is None:
            await self.initialize()

        evaluator = AlertEvaluator(
            AsyncSessionLocal,
            self.price_source,
            self.gate,
            self.dispatcher,
        )
        try:
            summary = await evaluator.run_cycle()
        except Exception as e:
            logger.error(f"Price alert cycle failed: {e}", exc_info=True)
            metrics.record_scheduler_run("price_alerts", success=False)
            return None

        metrics.record_scheduler_run("price_alerts", success=True)
        return summary

    async def compact_price_history(self) -> Optional[CompactionReport]:
        """Compact raw observations past the retention window (scheduled trigger)."""
        try:
            report = await HistoryCompactor(AsyncSessionLocal).compact(settings.retention_days)
        except Exception as e:
            logger.error(f"History compaction failed: {e}", exc_info=True)
            metrics.record_scheduler_run("compaction", success=False)
            return None

        if report.conflicts:
            logger.warning(
                "Compaction left %d product-days for review: %s",
                len(report.conflicts),
                ", ".join(f"{pid}@{day.isoformat()}" for pid, day in report.conflicts),
            )
        metrics.record_scheduler_run("compaction", success=report.errors == 0)
        return report


task_runner = TaskRunner()
