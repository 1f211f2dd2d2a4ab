"""Tests for price history recording and aggregation."""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from pricewatch.db.models import PriceDailySummary
from pricewatch.history.buckets import Granularity
from pricewatch.history.store import HistoryStore

DAY = datetime(2026, 10, 13)  # a Tuesday


@pytest.mark.asyncio
async def test_record_drops_samples_within_epsilon(db_session):
    store = HistoryStore(db_session, epsilon=Decimal("0.05"))
    prices = ["10.00", "10.03", "10.10", "10.12", "9.90", "9.90"]

    stored = [
        await store.record("sku-1", Decimal(p), "EUR", "evaluator", DAY + timedelta(hours=i))
        for i, p in enumerate(prices)
    ]

    assert [s is not None for s in stored] == [True, False, True, False, True, False]
    series = await store.raw_series("sku-1", DAY, DAY + timedelta(days=1))
    assert [o.price for o in series] == [Decimal("10.00"), Decimal("10.10"), Decimal("9.90")]
    for previous, current in zip(series, series[1:]):
        assert abs(current.price - previous.price) >= Decimal("0.05")


@pytest.mark.asyncio
async def test_record_normalizes_to_cents(db_session):
    store = HistoryStore(db_session)

    observation = await store.record("sku-1", "19.999", None, "evaluator", DAY)

    assert observation.price == Decimal("20.00")


@pytest.mark.asyncio
async def test_out_of_order_sample_is_clamped(db_session):
    store = HistoryStore(db_session)
    await store.record("sku-1", Decimal("10.00"), None, "evaluator", DAY + timedelta(hours=5))

    late = await store.record("sku-1", Decimal("11.00"), None, "evaluator", DAY + timedelta(hours=1))

    assert late.recorded_at == DAY + timedelta(hours=5)
    latest = await store.latest("sku-1")
    assert latest.price == Decimal("11.00")


@pytest.mark.asyncio
async def test_compacted_product_denoises_against_summary_close(db_session):
    db_session.add(
        PriceDailySummary(
            product_id="sku-1",
            date=date(2026, 9, 1),
            open=Decimal("6.00"),
            close=Decimal("5.00"),
            min=Decimal("5.00"),
            max=Decimal("6.00"),
            avg=Decimal("5.5000"),
            sample_count=2,
        )
    )
    await db_session.flush()
    store = HistoryStore(db_session)

    assert await store.record("sku-1", Decimal("5.00"), None, "evaluator", DAY) is None
    assert await store.record("sku-1", Decimal("4.00"), None, "evaluator", DAY) is not None


@pytest.mark.asyncio
async def test_daily_aggregation(db_session):
    store = HistoryStore(db_session)
    for hour, price in ((10, "5.00"), (14, "4.50"), (20, "4.80")):
        await store.record("sku-1", Decimal(price), None, "evaluator", DAY + timedelta(hours=hour))
    await store.record("sku-1", Decimal("4.20"), None, "evaluator", DAY + timedelta(days=1, hours=9))

    buckets = await store.aggregated("sku-1", DAY, DAY + timedelta(days=2), "day")

    assert len(buckets) == 2
    first = buckets[0]
    assert first.bucket_start == DAY
    assert (first.open, first.close) == (Decimal("5.00"), Decimal("4.80"))
    assert (first.min, first.max) == (Decimal("4.50"), Decimal("5.00"))
    assert first.avg == Decimal("4.7667")
    assert first.sample_count == 3
    assert buckets[1].sample_count == 1


@pytest.mark.asyncio
async def test_weekly_aggregation_merges_summaries_and_raw_samples(db_session):
    db_session.add(
        PriceDailySummary(
            product_id="sku-1",
            date=date(2026, 10, 12),
            open=Decimal("5.00"),
            close=Decimal("5.00"),
            min=Decimal("5.00"),
            max=Decimal("5.00"),
            avg=Decimal("5.0000"),
            sample_count=2,
        )
    )
    await db_session.flush()
    store = HistoryStore(db_session)
    await store.record("sku-1", Decimal("4.00"), None, "evaluator", DAY + timedelta(hours=9))

    buckets = await store.aggregated(
        "sku-1", datetime(2026, 10, 12), datetime(2026, 10, 18, 23), Granularity.WEEK
    )

    assert len(buckets) == 1
    week = buckets[0]
    assert week.bucket_start == datetime(2026, 10, 12)
    assert (week.open, week.close) == (Decimal("5.00"), Decimal("4.00"))
    assert (week.min, week.max) == (Decimal("4.00"), Decimal("5.00"))
    assert week.avg == Decimal("4.6667")
    assert week.sample_count == 3


@pytest.mark.asyncio
async def test_unknown_granularity_is_rejected(db_session):
    with pytest.raises(ValueError):
        await HistoryStore(db_session).aggregated("sku-1", DAY, DAY, "fortnight")
