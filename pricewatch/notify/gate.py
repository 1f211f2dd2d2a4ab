"""Redis-backed cooldown gate for price alert notifications."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import redis.asyncio as redis

from pricewatch.config import settings
from pricewatch.db.models import utcnow

logger = logging.getLogger(__name__)

COOLDOWN_KEY_PREFIX = "pricewatch:cooldown"


@dataclass(frozen=True)
class NotificationCooldownMark:
    """A live cooldown reservation for one alert."""

    alert_id: int
    sent_at_price: Optional[Decimal]
    expires_at: datetime


class NotificationGate:
    """
    Allows at most one notification per alert per cooldown window.

    The reservation is a single ``SET key value NX EX ttl``, so concurrent
    evaluators (threads, processes or hosts) sharing the same Redis cannot
    both win the same window. Marks expire on their own.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        cooldown_seconds: Optional[int] = None,
        redis_client: Optional[redis.Redis] = None,
    ):
        """
        Initialize the gate.

        Args:
            redis_url: Redis connection URL (defaults to settings)
            cooldown_seconds: Mark TTL (defaults to settings.cooldown_seconds)
            redis_client: Pre-built client to use instead of connecting
        """
        self.redis_url = redis_url or settings.redis_url
        self.cooldown_seconds = cooldown_seconds or settings.cooldown_seconds
        self._redis: Optional[redis.Redis] = redis_client

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @staticmethod
    def _key(alert_id: int) -> str:
        return f"{COOLDOWN_KEY_PREFIX}:{alert_id}"

    async def try_reserve(self, alert_id: int, price: Optional[Decimal] = None) -> bool:
        """
        Reserve the right to notify for ``alert_id``.

        Args:
            alert_id: Alert identifier
            price: Price the notification is about (stored on the mark)

        Returns:
            True if this caller created the mark, False if one is still live
        """
        redis_client = await self._get_redis()
        value = json.dumps({
            "alert_id": alert_id,
            "sent_at_price": str(price) if price is not None else None,
            "reserved_at": utcnow().isoformat(),
        })

        reserved = await redis_client.set(
            self._key(alert_id),
            value,
            nx=True,
            ex=self.cooldown_seconds,
        )
        if reserved:
            logger.debug(
                f"Reserved notification for alert {alert_id} "
                f"(cooldown: {self.cooldown_seconds}s)"
            )
            return True

        logger.debug(f"Alert {alert_id} is in cooldown; notification suppressed")
        return False

    async def get_mark(self, alert_id: int) -> Optional[NotificationCooldownMark]:
        """
        Get the live cooldown mark for an alert.

        Returns:
            The mark, or None if the alert is not in cooldown
        """
        redis_client = await self._get_redis()
        key = self._key(alert_id)
        value = await redis_client.get(key)
        ttl = await redis_client.ttl(key)
        if not value or ttl is None or ttl < 0:
            return None

        sent_at_price = None
        try:
            data = json.loads(value)
            if data.get("sent_at_price") is not None:
                sent_at_price = Decimal(data["sent_at_price"])
        except (json.JSONDecodeError, ArithmeticError, AttributeError) as e:
            logger.warning(f"Cooldown mark for alert {alert_id} has an invalid value: {e}")

        return NotificationCooldownMark(
            alert_id=alert_id,
            sent_at_price=sent_at_price,
            expires_at=utcnow() + timedelta(seconds=ttl),
        )

    async def release(self, alert_id: int) -> bool:
        """
        Drop a reservation whose notification could not be delivered.

        Returns:
            True if a mark was removed
        """
        redis_client = await self._get_redis()
        removed = await redis_client.delete(self._key(alert_id))
        if removed:
            logger.info(f"Released cooldown mark for alert {alert_id}")
        return bool(removed)
