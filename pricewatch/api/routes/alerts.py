"""Price alert routes."""

import logging
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pricewatch.alerts.registry import AlertRegistry
from pricewatch.api.deps import get_database, get_price_source
from pricewatch.db.models import AlertOptions
from pricewatch.errors import AlertNotFound, InvalidThreshold, ProductPriceUnavailable
from pricewatch.sources.base import PriceSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


class AlertUpsert(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=64)
    customer_id: str = Field(..., min_length=1, max_length=64)
    target_price: Decimal
    notify_on_any_drop: bool = False
    include_shipping: bool = False
    consider_variants: bool = False


class AlertResponse(BaseModel):
    id: int
    watched_item_id: str
    product_id: str
    customer_id: str
    target_price: Decimal
    current_price_snapshot: Decimal
    currency_id: str | None
    active: bool
    notify_on_any_drop: bool
    include_shipping: bool
    consider_variants: bool
    triggered_count: int
    last_triggered_at: datetime | None
    last_checked_at: datetime | None
    lowest_price_seen: Decimal | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


@router.put("/watched-items/{watched_item_id}", response_model=AlertResponse)
async def upsert_alert(
    watched_item_id: str,
    alert_data: AlertUpsert,
    db: AsyncSession = Depends(get_database),
    price_source: PriceSource = Depends(get_price_source),
):
    """Create or update the price alert of a watched item."""
    registry = AlertRegistry(db, price_source)
    options = AlertOptions(
        notify_on_any_drop=alert_data.notify_on_any_drop,
        include_shipping=alert_data.include_shipping,
        consider_variants=alert_data.consider_variants,
    )
    try:
        return await registry.upsert(
            watched_item_id,
            alert_data.product_id,
            alert_data.customer_id,
            alert_data.target_price,
            options,
        )
    except InvalidThreshold as e:
        raise HTTPException(status_code=422, detail=e.reason)
    except ProductPriceUnavailable as e:
        logger.warning(f"Cannot set alert for {watched_item_id}: {e}")
        raise HTTPException(status_code=503, detail=str(e))


@router.delete("/watched-items/{watched_item_id}", response_model=AlertResponse)
async def deactivate_alert(
    watched_item_id: str,
    db: AsyncSession = Depends(get_database),
    price_source: PriceSource = Depends(get_price_source),
):
    """Deactivate the price alert of a watched item. History is kept."""
    try:
        return await AlertRegistry(db, price_source).deactivate(watched_item_id)
    except AlertNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert(
    alert_id: int,
    db: AsyncSession = Depends(get_database),
    price_source: PriceSource = Depends(get_price_source),
):
    """Get a price alert by id."""
    try:
        return await AlertRegistry(db, price_source).get(alert_id)
    except AlertNotFound:
        raise HTTPException(status_code=404, detail="Alert not found")
