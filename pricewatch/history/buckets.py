"""OHLC bucketing shared by compaction and on-the-fly aggregation.

Both paths reduce a chronological run of samples to
``open/close/min/max/avg/sample_count`` with the same rules: open is the
first sample by time, close the last, min/max/avg over all samples.
Pre-aggregated segments (daily summaries) merge with raw samples by
weighting their average with their sample count.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, List

AVG_QUANTUM = Decimal("0.0001")


class Granularity(str, Enum):
    """Supported aggregation bucket sizes."""

    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass(frozen=True)
class Segment:
    """A pre-aggregated run of samples starting at ``start``.

    A single raw observation is a segment with identical OHLC values and
    ``sample_count == 1``.
    """

    start: datetime
    open: Decimal
    close: Decimal
    min: Decimal
    max: Decimal
    avg: Decimal
    sample_count: int

    @classmethod
    def single(cls, at: datetime, price: Decimal) -> "Segment":
        return cls(at, price, price, price, price, price, 1)


@dataclass(frozen=True)
class PriceBucket:
    """One aggregated bucket of a price series."""

    bucket_start: datetime
    open: Decimal
    close: Decimal
    min: Decimal
    max: Decimal
    avg: Decimal
    sample_count: int


def bucket_start(at: datetime, granularity: Granularity) -> datetime:
    """Truncate a timestamp to the start of its bucket."""
    if granularity is Granularity.HOUR:
        return at.replace(minute=0, second=0, microsecond=0)
    day = at.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity is Granularity.DAY:
        return day
    if granularity is Granularity.WEEK:
        return day - timedelta(days=day.weekday())
    if granularity is Granularity.MONTH:
        return day.replace(day=1)
    raise ValueError(f"Unknown granularity: {granularity!r}")


def ohlc(prices: List[Decimal]) -> dict:
    """
    Summarize chronologically ordered prices.

    Args:
        prices: Non-empty list of prices, oldest first

    Returns:
        Dict with open, close, min, max, avg (4 dp) and sample_count
    """
    if not prices:
        raise ValueError("Cannot summarize an empty price run")
    avg = (sum(prices, Decimal("0")) / len(prices)).quantize(AVG_QUANTUM, rounding=ROUND_HALF_UP)
    return {
        "open": prices[0],
        "close": prices[-1],
        "min": min(prices),
        "max": max(prices),
        "avg": avg,
        "sample_count": len(prices),
    }


def merge_segments(segments: List[Segment]) -> dict:
    """Merge chronologically ordered segments into one OHLC record."""
    if not segments:
        raise ValueError("Cannot merge an empty segment list")
    total = sum(s.sample_count for s in segments)
    weighted = sum((s.avg * s.sample_count for s in segments), Decimal("0"))
    return {
        "open": segments[0].open,
        "close": segments[-1].close,
        "min": min(s.min for s in segments),
        "max": max(s.max for s in segments),
        "avg": (weighted / total).quantize(AVG_QUANTUM, rounding=ROUND_HALF_UP),
        "sample_count": total,
    }


def bucketize(segments: Iterable[Segment], granularity: Granularity) -> List[PriceBucket]:
    """Group segments into buckets of the given granularity, oldest first."""
    groups: dict[datetime, List[Segment]] = {}
    for segment in sorted(segments, key=lambda s: s.start):
        groups.setdefault(bucket_start(segment.start, granularity), []).append(segment)

    return [
        PriceBucket(bucket_start=start, **merge_segments(members))
        for start, members in sorted(groups.items())
    ]
