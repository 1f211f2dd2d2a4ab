"""Scheduled compaction of raw price observations into daily summaries.

Raw observations older than the retention window are grouped per
product and calendar day, summarized into one ``PriceDailySummary`` and
then deleted. Each product-day is its own transaction: either the
summary is written and its raw rows are gone, or nothing changed and the
unit is picked up again on the next run.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricewatch import metrics
from pricewatch.config import settings
from pricewatch.db.models import PriceDailySummary, PriceObservation, utcnow
from pricewatch.errors import CompactionConflict
from pricewatch.history.buckets import ohlc

logger = logging.getLogger(__name__)


@dataclass
class CompactionReport:
    """Outcome of one compaction run."""

    products_scanned: int = 0
    units_compacted: int = 0
    rows_deleted: int = 0
    conflicts: List[Tuple[str, date]] = field(default_factory=list)
    errors: int = 0


class HistoryCompactor:
    """Rolls raw observations past retention into immutable daily summaries."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @staticmethod
    def cutoff_for(retention_days: int, now: datetime) -> datetime:
        """
        First instant that is still retained.

        Only whole days strictly before ``(now - retention_days).date()`` are
        eligible, so a day is never split between a summary and raw rows.
        """
        return datetime.combine((now - timedelta(days=retention_days)).date(), time.min)

    async def compact(
        self,
        retention_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> CompactionReport:
        """
        Compact every eligible product-day.

        Args:
            retention_days: Age in days at which raw rows become eligible
                (defaults to settings.retention_days)
            now: Reference time (defaults to current UTC time)

        Returns:
            CompactionReport with per-run counters and unresolved conflicts
        """
        retention_days = settings.retention_days if retention_days is None else retention_days
        cutoff = self.cutoff_for(retention_days, now or utcnow())
        report = CompactionReport()

        logger.info("Starting history compaction (cutoff: %s)", cutoff.isoformat())

        async with self.session_factory() as db:
            result = await db.execute(
                select(PriceObservation.product_id)
                .where(PriceObservation.recorded_at < cutoff)
                .distinct()
            )
            product_ids = [row[0] for row in result.all()]

        for product_id in product_ids:
            report.products_scanned += 1
            try:
                await self._compact_product(product_id, cutoff, report)
            except Exception as e:
                logger.error(f"Error compacting product {product_id}: {e}", exc_info=True)
                report.errors += 1

        logger.info(
            f"History compaction complete: {report.products_scanned} products, "
            f"{report.units_compacted} days compacted, {report.rows_deleted} rows deleted, "
            f"{len(report.conflicts)} conflicts, {report.errors} errors"
        )
        return report

    async def _compact_product(
        self, product_id: str, cutoff: datetime, report: CompactionReport
    ) -> None:
        async with self.session_factory() as db:
            result = await db.execute(
                select(PriceObservation)
                .where(PriceObservation.product_id == product_id)
                .where(PriceObservation.recorded_at < cutoff)
                .order_by(PriceObservation.recorded_at, PriceObservation.id)
            )
            observations = list(result.scalars().all())

        by_day: dict[date, List[PriceObservation]] = defaultdict(list)
        for observation in observations:
            by_day[observation.recorded_at.date()].append(observation)

        for day in sorted(by_day):
            try:
                deleted = await self._compact_unit(product_id, day, by_day[day])
            except CompactionConflict as e:
                logger.error(
                    "Compaction conflict, leaving raw rows in place for operator review: %s", e
                )
                metrics.record_compaction_unit("conflict")
                report.conflicts.append((product_id, day))
                continue
            except Exception as e:
                logger.error(
                    f"Failed to compact {product_id} on {day.isoformat()}: {e}", exc_info=True
                )
                metrics.record_compaction_unit("error")
                report.errors += 1
                continue

            metrics.record_compaction_unit("compacted")
            report.units_compacted += 1
            report.rows_deleted += deleted

    async def _compact_unit(
        self, product_id: str, day: date, observations: List[PriceObservation]
    ) -> int:
        """Write the summary for one product-day and delete its raw rows atomically."""
        summary_values = ohlc([o.price for o in observations])
        ids = [o.id for o in observations]

        async with self.session_factory() as db:
            existing = await db.execute(
                select(PriceDailySummary.id)
                .where(PriceDailySummary.product_id == product_id)
                .where(PriceDailySummary.date == day)
            )
            if existing.scalar_one_or_none() is not None:
                raise CompactionConflict(product_id, day)

            db.add(
                PriceDailySummary(
                    product_id=product_id,
                    date=day,
                    currency_id=observations[-1].currency_id,
                    **summary_values,
                )
            )
            try:
                await db.flush()
            except IntegrityError as e:
                # Another compactor wrote the same product-day first
                raise CompactionConflict(product_id, day) from e

            await db.execute(delete(PriceObservation).where(PriceObservation.id.in_(ids)))
            await db.commit()

        logger.debug(
            "Compacted %d observations for %s on %s", len(ids), product_id, day.isoformat()
        )
        return len(ids)
