"""Tests for the alert evaluation cycle."""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from pricewatch.alerts.evaluator import AlertEvaluator, Outcome
from pricewatch.alerts.registry import AlertRegistry
from pricewatch.db.models import AlertOptions, PriceAlert, PriceObservation
from pricewatch.errors import ProductPriceUnavailable
from pricewatch.notify.dispatch import TriggerType
from pricewatch.sources.base import PriceQuote


async def _create_alert(session_factory, price_source, item, product, price, target, **options):
    price_source.set_price(product, price)
    async with session_factory() as db:
        alert = await AlertRegistry(db, price_source).upsert(
            item, product, "cust-1", Decimal(target), AlertOptions(**options)
        )
    return alert.id


async def _load(session_factory, alert_id) -> PriceAlert:
    async with session_factory() as db:
        return await db.get(PriceAlert, alert_id)


async def _observation_count(session_factory, product_id) -> int:
    async with session_factory() as db:
        result = await db.execute(
            select(func.count())
            .select_from(PriceObservation)
            .where(PriceObservation.product_id == product_id)
        )
        return result.scalar_one()


@pytest.fixture
def evaluator(session_factory, price_source, gate, dispatcher):
    return AlertEvaluator(
        session_factory, price_source, gate, dispatcher, batch_size=100, price_timeout=1.0
    )


@pytest.mark.asyncio
async def test_threshold_reached_notifies_once(evaluator, session_factory, price_source, dispatcher):
    alert_id = await _create_alert(session_factory, price_source, "item-1", "sku-1", "25.00", "20")
    price_source.set_price("sku-1", "18.00")

    summary = await evaluator.run_cycle()

    assert summary.processed == 1
    assert summary.triggered == 1
    assert summary.notified == 1
    assert summary.observations_recorded == 1

    assert len(dispatcher.sent) == 1
    descriptor = dispatcher.sent[0]
    assert descriptor.trigger is TriggerType.THRESHOLD_REACHED
    assert descriptor.old_price == Decimal("25.00")
    assert descriptor.new_price == Decimal("18.00")
    assert descriptor.savings == Decimal("7.00")
    assert descriptor.savings_pct == Decimal("28.00")

    alert = await _load(session_factory, alert_id)
    assert alert.current_price_snapshot == Decimal("18.00")
    assert alert.triggered_count == 1
    assert alert.last_triggered_at is not None
    assert alert.lowest_price_seen == Decimal("18.00")
    assert await _observation_count(session_factory, "sku-1") == 2


@pytest.mark.asyncio
async def test_unchanged_price_is_a_no_op(evaluator, session_factory, price_source, dispatcher):
    alert_id = await _create_alert(session_factory, price_source, "item-1", "sku-1", "25.00", "20")
    price_source.set_price("sku-1", "18.00")
    await evaluator.run_cycle()
    before = await _load(session_factory, alert_id)

    summary = await evaluator.run_cycle()

    after = await _load(session_factory, alert_id)
    assert summary.unchanged == 1
    assert summary.triggered == 0
    assert len(dispatcher.sent) == 1
    assert after.triggered_count == before.triggered_count
    assert after.updated_at == before.updated_at
    assert after.last_checked_at == before.last_checked_at
    assert await _observation_count(session_factory, "sku-1") == 2


@pytest.mark.asyncio
async def test_price_increase_updates_snapshot_without_notifying(
    evaluator, session_factory, price_source, dispatcher
):
    alert_id = await _create_alert(session_factory, price_source, "item-1", "sku-1", "25.00", "20")
    price_source.set_price("sku-1", "27.50")

    summary = await evaluator.run_cycle()

    alert = await _load(session_factory, alert_id)
    assert summary.triggered == 0
    assert dispatcher.sent == []
    assert alert.current_price_snapshot == Decimal("27.50")
    assert alert.last_checked_at is not None
    assert alert.lowest_price_seen == Decimal("25.00")


@pytest.mark.asyncio
async def test_any_drop_notifies_above_target(evaluator, session_factory, price_source, dispatcher):
    await _create_alert(
        session_factory, price_source, "item-1", "sku-1", "25.00", "10", notify_on_any_drop=True
    )
    price_source.set_price("sku-1", "23.00")

    await evaluator.run_cycle()

    assert [d.trigger for d in dispatcher.sent] == [TriggerType.ANY_DROP]


@pytest.mark.asyncio
async def test_threshold_wins_over_any_drop(evaluator, session_factory, price_source, dispatcher):
    await _create_alert(
        session_factory, price_source, "item-1", "sku-1", "25.00", "20", notify_on_any_drop=True
    )
    price_source.set_price("sku-1", "19.00")

    await evaluator.run_cycle()

    assert [d.trigger for d in dispatcher.sent] == [TriggerType.THRESHOLD_REACHED]


@pytest.mark.asyncio
async def test_cooldown_suppresses_second_notification(
    evaluator, session_factory, price_source, dispatcher, gate
):
    alert_id = await _create_alert(session_factory, price_source, "item-1", "sku-1", "25.00", "20")
    price_source.set_price("sku-1", "18.00")
    await evaluator.run_cycle()

    price_source.set_price("sku-1", "15.00")
    summary = await evaluator.run_cycle()

    alert = await _load(session_factory, alert_id)
    assert summary.triggered == 1
    assert summary.suppressed == 1
    assert len(dispatcher.sent) == 1
    assert alert.triggered_count == 1
    assert alert.current_price_snapshot == Decimal("15.00")

    mark = await gate.get_mark(alert_id)
    assert mark is not None
    assert mark.sent_at_price == Decimal("18.00")


@pytest.mark.asyncio
async def test_unavailable_price_skips_alert(evaluator, session_factory, price_source, dispatcher):
    alert_id = await _create_alert(session_factory, price_source, "item-1", "sku-1", "25.00", "20")
    price_source.set_error("sku-1", ProductPriceUnavailable("sku-1", "HTTP 503"))

    summary = await evaluator.run_cycle()

    alert = await _load(session_factory, alert_id)
    assert summary.unavailable == 1
    assert summary.errors == 0
    assert alert.current_price_snapshot == Decimal("25.00")
    assert alert.last_checked_at is None
    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_slow_price_source_times_out(session_factory, price_source, gate, dispatcher):
    alert_id = await _create_alert(session_factory, price_source, "item-1", "sku-1", "25.00", "20")

    class SlowSource:
        async def get_current_price(self, product_id):
            await asyncio.sleep(5)

    evaluator = AlertEvaluator(session_factory, SlowSource(), gate, dispatcher, price_timeout=0.05)

    outcome = await evaluator.evaluate_alert(alert_id)

    assert outcome is Outcome.UNAVAILABLE


@pytest.mark.asyncio
async def test_quotes_are_fetched_once_per_product_per_cycle(
    evaluator, session_factory, price_source
):
    for i in range(3):
        await _create_alert(session_factory, price_source, f"item-{i}", "sku-1", "25.00", "20")
    price_source.set_price("sku-1", "24.00")
    price_source.calls.clear()

    summary = await evaluator.run_cycle()

    assert summary.processed == 3
    assert price_source.calls == ["sku-1"]


@pytest.mark.asyncio
async def test_pagination_visits_every_alert_once(session_factory, price_source, gate, dispatcher):
    ids = [
        await _create_alert(session_factory, price_source, f"item-{i}", f"sku-{i}", "25.00", "20")
        for i in range(4)
    ]
    for i in range(4):
        price_source.set_price(f"sku-{i}", "18.00")

    evaluator = AlertEvaluator(session_factory, price_source, gate, dispatcher, batch_size=2)
    summary = await evaluator.run_cycle()

    assert summary.batches == 2
    assert summary.processed == 4
    assert sorted(d.alert_id for d in dispatcher.sent) == ids


@pytest.mark.asyncio
async def test_max_batches_bounds_the_cycle(session_factory, price_source, gate, dispatcher):
    for i in range(3):
        await _create_alert(session_factory, price_source, f"item-{i}", "sku-1", "25.00", "20")

    evaluator = AlertEvaluator(
        session_factory, price_source, gate, dispatcher, batch_size=1, max_batches=2
    )
    summary = await evaluator.run_cycle()

    assert summary.batches == 2
    assert summary.processed == 2


@pytest.mark.asyncio
async def test_inactive_alerts_are_not_evaluated(evaluator, session_factory, price_source, dispatcher):
    await _create_alert(session_factory, price_source, "item-1", "sku-1", "25.00", "20")
    async with session_factory() as db:
        await AlertRegistry(db, price_source).deactivate("item-1")
    price_source.set_price("sku-1", "18.00")

    summary = await evaluator.run_cycle()

    assert summary.processed == 0
    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_failing_alert_does_not_stop_the_batch(
    evaluator, session_factory, price_source, dispatcher
):
    await _create_alert(session_factory, price_source, "item-1", "sku-1", "25.00", "20")
    await _create_alert(session_factory, price_source, "item-2", "sku-2", "25.00", "20")
    price_source.set_error("sku-1", RuntimeError("boom"))
    price_source.set_price("sku-2", "18.00")

    summary = await evaluator.run_cycle()

    assert summary.errors == 1
    assert summary.notified == 1
    assert [d.product_id for d in dispatcher.sent] == ["sku-2"]


@pytest.mark.asyncio
async def test_failed_delivery_releases_cooldown_and_rolls_back(
    evaluator, session_factory, price_source, dispatcher, gate
):
    alert_id = await _create_alert(session_factory, price_source, "item-1", "sku-1", "25.00", "20")
    price_source.set_price("sku-1", "18.00")
    dispatcher.fail = True

    summary = await evaluator.run_cycle()

    alert = await _load(session_factory, alert_id)
    assert summary.errors == 1
    assert await gate.get_mark(alert_id) is None
    assert alert.current_price_snapshot == Decimal("25.00")
    assert alert.triggered_count == 0
    assert await _observation_count(session_factory, "sku-1") == 1

    dispatcher.fail = False
    summary = await evaluator.run_cycle()

    assert summary.notified == 1
    assert len(dispatcher.sent) == 1


@pytest.mark.asyncio
async def test_shipping_option_changes_compared_price(
    evaluator, session_factory, price_source, dispatcher
):
    alert_id = await _create_alert(
        session_factory, price_source, "item-1", "sku-1", "25.00", "20", include_shipping=True
    )
    price_source.prices["sku-1"] = PriceQuote(
        product_id="sku-1", price=Decimal("18.00"), shipping=Decimal("4.00")
    )

    await evaluator.run_cycle()

    alert = await _load(session_factory, alert_id)
    assert dispatcher.sent == []
    assert alert.current_price_snapshot == Decimal("22.00")


@pytest.mark.asyncio
async def test_overlapping_cycles_record_one_transition(
    evaluator, session_factory, price_source, dispatcher
):
    alert_id = await _create_alert(session_factory, price_source, "item-1", "sku-1", "25.00", "20")
    price_source.set_price("sku-1", "18.00")

    await asyncio.gather(evaluator.run_cycle(), evaluator.run_cycle())

    async with session_factory() as db:
        result = await db.execute(
            select(PriceObservation.price)
            .where(PriceObservation.product_id == "sku-1")
            .order_by(PriceObservation.id)
        )
        prices = list(result.scalars().all())
    assert prices == [Decimal("25.00"), Decimal("18.00")]

    assert len(dispatcher.sent) == 1
    alert = await _load(session_factory, alert_id)
    assert alert.current_price_snapshot == Decimal("18.00")
    assert alert.triggered_count == 1

    # The next cycle sees the settled snapshot and does nothing
    summary = await evaluator.run_cycle()
    assert summary.unchanged == 1
    assert len(dispatcher.sent) == 1
