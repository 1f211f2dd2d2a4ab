"""Shared fixtures: SQLite database, Redis double, price source and dispatcher doubles."""

import asyncio
import time
from decimal import Decimal
from typing import Dict, List, Optional, Union

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pricewatch.db.models import Base
from pricewatch.errors import NotificationDeliveryError, ProductPriceUnavailable
from pricewatch.notify.dispatch import NotificationDescriptor, NotificationDispatcher
from pricewatch.notify.gate import NotificationGate
from pricewatch.sources.base import PriceQuote, PriceSource


class FakeRedis:
    """In-memory stand-in for the subset of redis.asyncio.Redis the gate uses."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._expires: Dict[str, float] = {}
        self._offset = 0.0

    def _now(self) -> float:
        return time.monotonic() + self._offset

    def advance(self, seconds: float):
        """Move the fake clock forward."""
        self._offset += seconds

    def _purge(self, key: str):
        expires = self._expires.get(key)
        if expires is not None and expires <= self._now():
            self._data.pop(key, None)
            self._expires.pop(key, None)

    async def set(self, key, value, nx=False, ex=None):
        # Yield first so concurrent callers interleave; check-and-set below is atomic
        await asyncio.sleep(0)
        self._purge(key)
        if nx and key in self._data:
            return None
        self._data[key] = value
        if ex is not None:
            self._expires[key] = self._now() + ex
        else:
            self._expires.pop(key, None)
        return True

    async def get(self, key):
        self._purge(key)
        return self._data.get(key)

    async def ttl(self, key):
        self._purge(key)
        if key not in self._data:
            return -2
        expires = self._expires.get(key)
        if expires is None:
            return -1
        return max(0, int(round(expires - self._now())))

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            self._purge(key)
            if key in self._data:
                del self._data[key]
                self._expires.pop(key, None)
                removed += 1
        return removed

    async def aclose(self):
        pass


class StaticPriceSource(PriceSource):
    """Price source answering from a dict; values may be exceptions to raise."""

    def __init__(self, prices: Optional[Dict[str, Union[PriceQuote, Exception]]] = None):
        self.prices: Dict[str, Union[PriceQuote, Exception]] = dict(prices or {})
        self.calls: List[str] = []

    def set_price(self, product_id: str, price, **kwargs):
        self.prices[product_id] = PriceQuote(
            product_id=product_id, price=Decimal(str(price)), currency_id="EUR", **kwargs
        )

    def set_error(self, product_id: str, error: Exception):
        self.prices[product_id] = error

    async def get_current_price(self, product_id: str) -> PriceQuote:
        self.calls.append(product_id)
        value = self.prices.get(product_id)
        if value is None:
            raise ProductPriceUnavailable(product_id, "unknown product")
        if isinstance(value, Exception):
            raise value
        return value


class RecordingDispatcher(NotificationDispatcher):
    """Keeps every descriptor it is asked to send."""

    def __init__(self):
        self.sent: List[NotificationDescriptor] = []
        self.fail = False

    async def send(self, descriptor: NotificationDescriptor) -> None:
        if self.fail:
            raise NotificationDeliveryError(f"delivery refused for alert {descriptor.alert_id}")
        self.sent.append(descriptor)


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pricewatch.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def gate(fake_redis):
    return NotificationGate(redis_url="redis://unused", cooldown_seconds=3600, redis_client=fake_redis)


@pytest.fixture
def price_source():
    return StaticPriceSource()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()
