"""Product price history, statistics and forecast routes."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from pricewatch.api.deps import get_database
from pricewatch.config import settings
from pricewatch.db.models import utcnow
from pricewatch.errors import UnknownTrendPolicy
from pricewatch.history.buckets import Granularity
from pricewatch.history.store import HistoryStore
from pricewatch.stats.engine import StatisticsEngine, get_trend_policy

router = APIRouter(prefix="/api/products", tags=["products"])


class PriceBucketResponse(BaseModel):
    bucket_start: datetime
    open: Decimal
    close: Decimal
    min: Decimal
    max: Decimal
    avg: Decimal
    sample_count: int

    class Config:
        from_attributes = True


class PriceStatsResponse(BaseModel):
    product_id: str
    window_days: int
    current: Decimal | None
    min: Decimal | None
    max: Decimal | None
    avg: Decimal | None
    trend: str
    volatility_pct: float
    price_drop_count: int
    sample_count: int

    class Config:
        from_attributes = True


class ForecastResponse(BaseModel):
    product_id: str
    days_ahead: int
    prediction: Decimal | None
    confidence_pct: float
    trend_label: str | None
    daily_change: float | None
    method: str
    sample_count: int

    class Config:
        from_attributes = True


def _naive_utc(value: datetime) -> datetime:
    """Stored timestamps are naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@router.get("/{product_id}/history", response_model=List[PriceBucketResponse])
async def get_price_history(
    product_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    granularity: Granularity = Granularity.DAY,
    db: AsyncSession = Depends(get_database),
):
    """Aggregated OHLC price history; defaults to the last 30 days."""
    end = _naive_utc(end) if end else utcnow()
    start = _naive_utc(start) if start else end - timedelta(days=30)
    if start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")

    return await HistoryStore(db).aggregated(product_id, start, end, granularity)


@router.get("/{product_id}/stats", response_model=PriceStatsResponse)
async def get_price_stats(
    product_id: str,
    window_days: int | None = Query(None, ge=1, le=3650),
    trend_policy: str = "standard",
    db: AsyncSession = Depends(get_database),
):
    """Price statistics over a trailing window."""
    try:
        policy = get_trend_policy(trend_policy)
    except UnknownTrendPolicy as e:
        raise HTTPException(status_code=400, detail=str(e))

    return await StatisticsEngine(db).stats(
        product_id, window_days or settings.stats_window_days, policy
    )


@router.get("/{product_id}/forecast", response_model=ForecastResponse)
async def get_price_forecast(
    product_id: str,
    days_ahead: int = Query(7, ge=1, le=365),
    db: AsyncSession = Depends(get_database),
):
    """Linear price forecast."""
    return await StatisticsEngine(db).predict(product_id, days_ahead)
