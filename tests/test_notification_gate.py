"""Tests for the notification cooldown gate."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
import redis.asyncio as redis

from pricewatch.config import settings
from pricewatch.db.models import utcnow
from pricewatch.notify.gate import NotificationGate


async def _redis_available() -> bool:
    try:
        client = await redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        await client.aclose()
        return True
    except Exception:
        return False


@pytest.mark.asyncio
async def test_reserve_then_suppress(gate):
    assert await gate.try_reserve(1, Decimal("18.00")) is True
    assert await gate.try_reserve(1, Decimal("17.00")) is False
    assert await gate.try_reserve(2) is True


@pytest.mark.asyncio
async def test_concurrent_reservations_have_one_winner(gate):
    results = await asyncio.gather(*(gate.try_reserve(7, Decimal("9.99")) for _ in range(20)))

    assert results.count(True) == 1


@pytest.mark.asyncio
async def test_mark_carries_price_and_expiry(gate):
    assert await gate.get_mark(3) is None

    await gate.try_reserve(3, Decimal("12.50"))
    mark = await gate.get_mark(3)

    assert mark is not None
    assert mark.alert_id == 3
    assert mark.sent_at_price == Decimal("12.50")
    assert mark.expires_at > utcnow() + timedelta(seconds=3500)


@pytest.mark.asyncio
async def test_mark_expires_after_cooldown(gate, fake_redis):
    await gate.try_reserve(4)

    fake_redis.advance(3601)

    assert await gate.get_mark(4) is None
    assert await gate.try_reserve(4) is True


@pytest.mark.asyncio
async def test_release_allows_new_reservation(gate):
    await gate.try_reserve(5)

    assert await gate.release(5) is True
    assert await gate.release(5) is False
    assert await gate.try_reserve(5) is True


@pytest.mark.asyncio
async def test_real_redis_reservation_is_exclusive():
    if not await _redis_available():
        pytest.skip("Redis not available")

    gate = NotificationGate(redis_url=settings.redis_url, cooldown_seconds=30)
    alert_id = 987654321
    await gate.release(alert_id)
    try:
        results = await asyncio.gather(*(gate.try_reserve(alert_id) for _ in range(10)))
        assert results.count(True) == 1

        mark = await gate.get_mark(alert_id)
        assert mark is not None
    finally:
        await gate.release(alert_id)
        await gate.close()
