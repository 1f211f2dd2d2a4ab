"""Price alert registry: one target-price watch per wishlist item."""

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pricewatch.db.models import AlertOptions, PriceAlert
from pricewatch.errors import AlertNotFound, InvalidThreshold
from pricewatch.history.store import HistoryStore
from pricewatch.sources.base import PriceSource, to_price

logger = logging.getLogger(__name__)


class AlertRegistry:
    """
    Creates, updates and deactivates price alerts.

    The wishlist item owner calls ``upsert`` when a customer sets or edits
    a threshold and ``deactivate`` when the item goes away. History is never
    deleted here.
    """

    def __init__(
        self,
        db: AsyncSession,
        price_source: PriceSource,
        history: Optional[HistoryStore] = None,
    ):
        self.db = db
        self.price_source = price_source
        self.history = history or HistoryStore(db)

    async def get(self, alert_id: int) -> PriceAlert:
        """
        Get an alert by id.

        Raises:
            AlertNotFound: If no alert has that id
        """
        alert = await self.db.get(PriceAlert, alert_id)
        if alert is None:
            raise AlertNotFound("id", alert_id)
        return alert

    async def _find_by_watched_item(self, watched_item_id: str) -> Optional[PriceAlert]:
        result = await self.db.execute(
            select(PriceAlert).where(PriceAlert.watched_item_id == watched_item_id)
        )
        return result.scalar_one_or_none()

    async def get_by_watched_item(self, watched_item_id: str) -> PriceAlert:
        """
        Get the alert attached to a watched item.

        Raises:
            AlertNotFound: If the item has no alert
        """
        alert = await self._find_by_watched_item(watched_item_id)
        if alert is None:
            raise AlertNotFound("watched_item_id", watched_item_id)
        return alert

    async def upsert(
        self,
        watched_item_id: str,
        product_id: str,
        customer_id: str,
        target_price: Decimal,
        options: Optional[AlertOptions] = None,
    ) -> PriceAlert:
        """
        Create or update the alert of a watched item.

        The current price is fetched first; the target must be positive and
        strictly below it. An existing alert for the item is updated in
        place (and reactivated) instead of creating a second one. An initial
        observation is always offered to the history store.

        Args:
            watched_item_id: Wishlist item identifier
            product_id: Catalog product identifier
            customer_id: Owner of the wishlist item
            target_price: Price at or below which the customer wants to hear
            options: Evaluation options

        Returns:
            The stored alert

        Raises:
            InvalidThreshold: If the target is not positive or not below the current price
            ProductPriceUnavailable: If the current price cannot be fetched
        """
        options = options or AlertOptions()
        target_price = to_price(target_price)
        if target_price <= 0:
            raise InvalidThreshold("Target price must be greater than 0")

        quote = await self.price_source.get_current_price(product_id)
        current_price = quote.effective_price(options)

        if target_price >= current_price:
            raise InvalidThreshold(
                f"Target price {target_price} must be lower than the current price {current_price}"
            )

        # A concurrent create for the same item loses on the unique key; the
        # second attempt finds that row and updates it instead
        for attempt in range(2):
            alert = await self._find_by_watched_item(watched_item_id)
            created = alert is None
            if created:
                alert = PriceAlert(
                    watched_item_id=watched_item_id,
                    triggered_count=0,
                    lowest_price_seen=current_price,
                )
                self.db.add(alert)
            else:
                alert.lowest_price_seen = (
                    current_price
                    if alert.lowest_price_seen is None
                    else min(alert.lowest_price_seen, current_price)
                )

            alert.product_id = product_id
            alert.customer_id = customer_id
            alert.target_price = target_price
            alert.current_price_snapshot = current_price
            alert.currency_id = quote.currency_id
            alert.options = options
            alert.active = True

            try:
                await self.history.record(
                    product_id, quote.price, quote.currency_id, source="alert_upsert"
                )
                await self.db.commit()
                break
            except IntegrityError:
                await self.db.rollback()
                if not created or attempt > 0:
                    raise
                logger.warning(
                    f"Alert for item {watched_item_id} was created concurrently, updating it"
                )

        await self.db.refresh(alert)

        logger.info(
            "Price alert %s",
            "created" if created else "updated",
            extra={
                "alert_id": alert.id,
                "watched_item_id": watched_item_id,
                "product_id": product_id,
                "target_price": target_price,
                "current_price": current_price,
            },
        )
        return alert

    async def deactivate(self, watched_item_id: str) -> PriceAlert:
        """
        Stop evaluating the alert of a watched item. History is kept.

        Raises:
            AlertNotFound: If the item has no alert
        """
        alert = await self.get_by_watched_item(watched_item_id)
        if alert.active:
            alert.active = False
            await self.db.commit()
            await self.db.refresh(alert)
            logger.info(f"Deactivated price alert {alert.id} for item {watched_item_id}")
        return alert

    async def active_alert_ids(self, after_id: int, limit: int) -> List[int]:
        """One cursor page of active alert ids, ascending."""
        result = await self.db.execute(
            select(PriceAlert.id)
            .where(PriceAlert.active.is_(True))
            .where(PriceAlert.id > after_id)
            .order_by(PriceAlert.id)
            .limit(limit)
        )
        return [row[0] for row in result.all()]
