"""Notification descriptors and the dispatchers that hand them off.

The evaluator only decides that a notification is due; delivery (email,
push, ...) belongs to whatever sits behind the dispatcher.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

import httpx

from pricewatch.config import settings
from pricewatch.errors import NotificationDeliveryError

logger = logging.getLogger(__name__)


class TriggerType(str, Enum):
    """Why an alert asked for a notification."""

    THRESHOLD_REACHED = "threshold_reached"
    ANY_DROP = "any_drop"


@dataclass(frozen=True)
class NotificationDescriptor:
    """Everything the delivery side needs to tell a customer about a price drop."""

    alert_id: int
    watched_item_id: str
    product_id: str
    customer_id: str
    trigger: TriggerType
    old_price: Decimal
    new_price: Decimal
    target_price: Decimal
    savings: Decimal
    savings_pct: Decimal
    currency_id: Optional[str] = None

    @classmethod
    def build(cls, alert, trigger: TriggerType, old_price: Decimal, new_price: Decimal):
        """Create a descriptor for ``alert`` moving from ``old_price`` to ``new_price``."""
        savings = old_price - new_price
        savings_pct = (
            (savings / old_price * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
            if old_price > 0
            else Decimal("0.00")
        )
        return cls(
            alert_id=alert.id,
            watched_item_id=alert.watched_item_id,
            product_id=alert.product_id,
            customer_id=alert.customer_id,
            trigger=trigger,
            old_price=old_price,
            new_price=new_price,
            target_price=alert.target_price,
            savings=savings,
            savings_pct=savings_pct,
            currency_id=alert.currency_id,
        )

    def to_payload(self) -> dict:
        """JSON-safe representation."""
        payload = asdict(self)
        payload["trigger"] = self.trigger.value
        for key in ("old_price", "new_price", "target_price", "savings", "savings_pct"):
            payload[key] = str(payload[key])
        return payload


class NotificationDispatcher(ABC):
    """Hands notification descriptors to the delivery system."""

    @abstractmethod
    async def send(self, descriptor: NotificationDescriptor) -> None:
        """
        Request delivery of one notification.

        Raises:
            NotificationDeliveryError: If the request was not accepted
        """
        pass

    async def close(self):
        """Release any held resources."""
        pass


class LogDispatcher(NotificationDispatcher):
    """Logs descriptors instead of delivering them (no webhook configured)."""

    async def send(self, descriptor: NotificationDescriptor) -> None:
        logger.info("Price alert notification requested", extra=descriptor.to_payload())


class WebhookDispatcher(NotificationDispatcher):
    """POSTs descriptors as JSON to the notification service webhook."""

    def __init__(
        self,
        webhook_url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout or settings.notification_timeout_seconds
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def send(self, descriptor: NotificationDescriptor) -> None:
        client = await self._get_client()
        try:
            response = await client.post(self.webhook_url, json=descriptor.to_payload())
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(
                f"Webhook request failed for alert {descriptor.alert_id}: {e}"
            ) from e

        if response.status_code not in (200, 201, 202, 204):
            raise NotificationDeliveryError(
                f"Webhook rejected alert {descriptor.alert_id}: HTTP {response.status_code}"
            )
        logger.debug("Dispatched notification for alert %s", descriptor.alert_id)


def create_dispatcher(webhook_url: Optional[str] = None) -> NotificationDispatcher:
    """Webhook dispatcher when a URL is configured, log dispatcher otherwise."""
    url = settings.notification_webhook_url if webhook_url is None else webhook_url
    if url:
        return WebhookDispatcher(url)
    logger.warning("No notification webhook configured; notifications will only be logged")
    return LogDispatcher()
