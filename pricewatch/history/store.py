"""Durable price history: raw observations plus compacted daily summaries."""

import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pricewatch import metrics
from pricewatch.config import settings
from pricewatch.db.models import PriceDailySummary, PriceObservation, utcnow
from pricewatch.history.buckets import Granularity, PriceBucket, Segment, bucketize
from pricewatch.sources.base import to_price

logger = logging.getLogger(__name__)


class HistoryStore:
    """
    Reads and writes the price series of products.

    Recent samples live in ``price_observations``; anything older than the
    retention window is rolled into ``price_daily_summaries`` by the
    compactor. Writes are de-noised: a sample within ``epsilon`` of the
    last stored price is dropped.

    The store only adds and flushes; committing is up to the caller so an
    observation can share a transaction with the alert update it belongs to.
    """

    def __init__(self, db: AsyncSession, epsilon: Optional[Decimal] = None):
        self.db = db
        self.epsilon = settings.price_epsilon if epsilon is None else epsilon

    async def latest(self, product_id: str) -> Optional[PriceObservation]:
        """Most recent raw observation for a product."""
        result = await self.db.execute(
            select(PriceObservation)
            .where(PriceObservation.product_id == product_id)
            .order_by(PriceObservation.recorded_at.desc(), PriceObservation.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _latest_summary(self, product_id: str) -> Optional[PriceDailySummary]:
        result = await self.db.execute(
            select(PriceDailySummary)
            .where(PriceDailySummary.product_id == product_id)
            .order_by(PriceDailySummary.date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def record(
        self,
        product_id: str,
        price: Decimal,
        currency_id: Optional[str],
        source: str,
        recorded_at: Optional[datetime] = None,
    ) -> Optional[PriceObservation]:
        """
        Append a raw observation unless it is noise.

        Args:
            product_id: Product identifier
            price: Observed catalog price
            currency_id: Currency of the price
            source: Who produced the sample (evaluator, alert_upsert, ...)
            recorded_at: Sample time (defaults to now)

        Returns:
            The stored observation, or None if it was within epsilon of the
            last stored price
        """
        price = to_price(price)
        recorded_at = recorded_at or utcnow()
        latest = await self.latest(product_id)

        if latest is not None:
            last_price = latest.price
            # Keep the per-product series non-decreasing in time
            if recorded_at < latest.recorded_at:
                logger.debug(
                    "Clamping out-of-order observation for %s from %s to %s",
                    product_id, recorded_at, latest.recorded_at,
                )
                recorded_at = latest.recorded_at
        else:
            # Fully compacted products de-noise against the last summary close
            summary = await self._latest_summary(product_id)
            last_price = summary.close if summary is not None else None

        if last_price is not None and abs(price - last_price) < self.epsilon:
            metrics.record_observation(stored=False)
            return None

        observation = PriceObservation(
            product_id=product_id,
            price=price,
            currency_id=currency_id,
            source=source,
            recorded_at=recorded_at,
        )
        self.db.add(observation)
        await self.db.flush()
        metrics.record_observation(stored=True)
        return observation

    async def raw_series(
        self, product_id: str, start: datetime, end: datetime
    ) -> List[PriceObservation]:
        """Raw observations in ``[start, end]``, oldest first."""
        result = await self.db.execute(
            select(PriceObservation)
            .where(PriceObservation.product_id == product_id)
            .where(PriceObservation.recorded_at >= start)
            .where(PriceObservation.recorded_at <= end)
            .order_by(PriceObservation.recorded_at, PriceObservation.id)
        )
        return list(result.scalars().all())

    async def daily_summaries(
        self, product_id: str, start_date: date, end_date: date
    ) -> List[PriceDailySummary]:
        """Daily summaries with ``start_date <= date <= end_date``, oldest first."""
        result = await self.db.execute(
            select(PriceDailySummary)
            .where(PriceDailySummary.product_id == product_id)
            .where(PriceDailySummary.date >= start_date)
            .where(PriceDailySummary.date <= end_date)
            .order_by(PriceDailySummary.date)
        )
        return list(result.scalars().all())

    async def segments(self, product_id: str, start: datetime, end: datetime) -> List[Segment]:
        """Summaries and raw samples in range as one chronological segment list."""
        summaries = await self.daily_summaries(product_id, start.date(), end.date())
        raw = await self.raw_series(product_id, start, end)

        segments = [
            Segment(
                start=datetime.combine(s.date, time.min),
                open=s.open,
                close=s.close,
                min=s.min,
                max=s.max,
                avg=s.avg,
                sample_count=s.sample_count,
            )
            for s in summaries
        ]
        segments.extend(Segment.single(o.recorded_at, o.price) for o in raw)
        segments.sort(key=lambda s: s.start)
        return segments

    async def aggregated(
        self,
        product_id: str,
        start: datetime,
        end: datetime,
        granularity: Granularity | str = Granularity.DAY,
    ) -> List[PriceBucket]:
        """
        Bucketed OHLC series for a product.

        Days already compacted are read from their summaries; raw samples
        are bucketed on the fly with the same formula. A summary covers a
        whole day, so with hourly granularity it lands in its midnight bucket.

        Raises:
            ValueError: If granularity is not one of hour/day/week/month
        """
        granularity = Granularity(granularity)
        return bucketize(await self.segments(product_id, start, end), granularity)
