"""Price statistics and short-term forecasting from stored history.

Works on the combined series of a product: compacted days contribute
their daily average, raw observations their own price, all in
chronological order.
"""

import logging
import statistics
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

import numpy as np
from sqlalchemy.ext.asyncio import AsyncSession

from pricewatch.config import settings
from pricewatch.db.models import utcnow
from pricewatch.errors import UnknownTrendPolicy
from pricewatch.history.store import HistoryStore

logger = logging.getLogger(__name__)

TREND_INCREASING = "increasing"
TREND_DECREASING = "decreasing"
TREND_STABLE = "stable"


@dataclass(frozen=True)
class TrendPolicy:
    """Deadband for calling a half-over-half move a trend."""

    name: str
    band: float

    def classify(self, first_avg: float, second_avg: float) -> str:
        if second_avg > first_avg * (1 + self.band):
            return TREND_INCREASING
        if second_avg < first_avg * (1 - self.band):
            return TREND_DECREASING
        return TREND_STABLE


STANDARD_TREND = TrendPolicy("standard", 0.05)
SENSITIVE_TREND = TrendPolicy("sensitive", 0.02)

TREND_POLICIES = {policy.name: policy for policy in (STANDARD_TREND, SENSITIVE_TREND)}


def get_trend_policy(name: str) -> TrendPolicy:
    """
    Look up a trend policy by name.

    Raises:
        UnknownTrendPolicy: If no policy has that name
    """
    try:
        return TREND_POLICIES[name]
    except KeyError:
        raise UnknownTrendPolicy(name) from None


@dataclass
class PriceStats:
    """Statistical summary of a product's price over a window."""

    product_id: str
    window_days: int
    current: Optional[Decimal]
    min: Optional[Decimal]
    max: Optional[Decimal]
    avg: Optional[Decimal]
    trend: str
    volatility_pct: float
    price_drop_count: int
    sample_count: int


@dataclass
class Forecast:
    """Linear extrapolation of a product's price."""

    product_id: str
    days_ahead: int
    prediction: Optional[Decimal]
    confidence_pct: float
    trend_label: Optional[str]
    daily_change: Optional[float]
    method: str
    sample_count: int


def classify_trend(prices: List[float], policy: TrendPolicy = STANDARD_TREND) -> str:
    """
    Compare the average of the second half of the series to the first.

    Both halves hold n // 2 samples; for an odd-length series the middle
    sample belongs to neither.
    """
    if len(prices) < 2:
        return TREND_STABLE
    half = len(prices) // 2
    first_avg = statistics.fmean(prices[:half])
    second_avg = statistics.fmean(prices[len(prices) - half:])
    return policy.classify(first_avg, second_avg)


def volatility_pct(prices: List[float]) -> float:
    """Population standard deviation as a percentage of the mean."""
    if not prices:
        return 0.0
    mean = statistics.fmean(prices)
    if mean == 0:
        return 0.0
    return round(statistics.pstdev(prices) / mean * 100, 2)


def count_drops(prices: List[float]) -> int:
    """Number of adjacent decreases in a chronological series."""
    return sum(1 for previous, current in zip(prices, prices[1:]) if current < previous)


def linear_fit(prices: List[float]) -> tuple[float, float, float]:
    """
    Ordinary least squares over sample index.

    Returns:
        (slope, intercept, r_squared); r_squared is 1.0 for a flat series
    """
    x = np.arange(len(prices), dtype=float)
    y = np.asarray(prices, dtype=float)
    slope, intercept = np.polyfit(x, y, 1)

    fitted = slope * x + intercept
    ss_res = float(np.sum((y - fitted) ** 2))
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    r_squared = 1.0 if ss_tot == 0 else 1.0 - ss_res / ss_tot
    return float(slope), float(intercept), r_squared


class StatisticsEngine:
    """Computes price statistics and forecasts for products."""

    def __init__(
        self,
        db: AsyncSession,
        lookback_days: Optional[int] = None,
        min_samples: Optional[int] = None,
    ):
        """
        Initialize the engine.

        Args:
            db: Database session
            lookback_days: History window used by predict()
            min_samples: Samples required before predict() extrapolates
        """
        self.history = HistoryStore(db)
        self.lookback_days = lookback_days or settings.forecast_lookback_days
        self.min_samples = min_samples or settings.forecast_min_samples

    async def _window(self, product_id: str, days: int, now: Optional[datetime]):
        end = now or utcnow()
        return await self.history.segments(product_id, end - timedelta(days=days), end)

    async def stats(
        self,
        product_id: str,
        window_days: int,
        policy: TrendPolicy = STANDARD_TREND,
        now: Optional[datetime] = None,
    ) -> PriceStats:
        """
        Summarize a product's prices over the last ``window_days``.

        Args:
            product_id: Product identifier
            window_days: Window length in days
            policy: Trend deadband policy (standard 5% unless asked otherwise)
            now: Reference time (defaults to current UTC time)

        Returns:
            PriceStats; an empty window yields None prices and a stable trend
        """
        segments = await self._window(product_id, window_days, now)
        if not segments:
            return PriceStats(
                product_id=product_id,
                window_days=window_days,
                current=None,
                min=None,
                max=None,
                avg=None,
                trend=TREND_STABLE,
                volatility_pct=0.0,
                price_drop_count=0,
                sample_count=0,
            )

        points = [float(s.avg) for s in segments]
        mean = Decimal(str(statistics.fmean(points))).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )

        return PriceStats(
            product_id=product_id,
            window_days=window_days,
            current=segments[-1].close,
            min=min(s.min for s in segments),
            max=max(s.max for s in segments),
            avg=mean,
            trend=classify_trend(points, policy),
            volatility_pct=volatility_pct(points),
            price_drop_count=count_drops(points),
            sample_count=len(points),
        )

    async def predict(
        self,
        product_id: str,
        days_ahead: int,
        now: Optional[datetime] = None,
    ) -> Forecast:
        """
        Extrapolate the price ``days_ahead`` samples past the last one.

        Fits a least-squares line over sample index (not wall-clock time) of
        the lookback window and reports R² as confidence.
        """
        segments = await self._window(product_id, self.lookback_days, now)
        prices = [float(s.avg) for s in segments]

        if len(prices) < self.min_samples:
            return Forecast(
                product_id=product_id,
                days_ahead=days_ahead,
                prediction=None,
                confidence_pct=0.0,
                trend_label=None,
                daily_change=None,
                method="insufficient_data",
                sample_count=len(prices),
            )

        slope, intercept, r_squared = linear_fit(prices)
        target_index = len(prices) - 1 + days_ahead
        predicted = max(0.0, slope * target_index + intercept)

        forecast = Forecast(
            product_id=product_id,
            days_ahead=days_ahead,
            prediction=Decimal(str(predicted)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
            confidence_pct=round(min(100.0, max(0.0, r_squared * 100)), 2),
            trend_label=TREND_INCREASING if slope > 0 else TREND_DECREASING,
            daily_change=round(slope, 4),
            method="linear_regression",
            sample_count=len(prices),
        )
        logger.debug(
            "Forecast for %s: %s in %d samples (R²=%.3f)",
            product_id, forecast.prediction, days_ahead, r_squared,
        )
        return forecast
