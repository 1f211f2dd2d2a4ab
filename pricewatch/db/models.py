"""SQLAlchemy database models."""

from dataclasses import dataclass
from datetime import date as calendar_date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (all stored timestamps are UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


@dataclass(frozen=True)
class AlertOptions:
    """Per-alert evaluation options."""

    notify_on_any_drop: bool = False
    include_shipping: bool = False
    consider_variants: bool = False


class PriceAlert(Base):
    """Target-price watch on a single wishlist item."""

    __tablename__ = "price_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    watched_item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    target_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    current_price_snapshot: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency_id: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    notify_on_any_drop: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    include_shipping: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    consider_variants: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    triggered_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    lowest_price_seen: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        # One row per watched item; upsert reactivates it instead of inserting
        UniqueConstraint("watched_item_id", name="uq_price_alert_watched_item"),
        CheckConstraint("target_price > 0", name="ck_price_alert_target_positive"),
        Index("ix_price_alerts_active_id", "active", "id"),
    )

    @property
    def options(self) -> AlertOptions:
        return AlertOptions(
            notify_on_any_drop=self.notify_on_any_drop,
            include_shipping=self.include_shipping,
            consider_variants=self.consider_variants,
        )

    @options.setter
    def options(self, value: AlertOptions) -> None:
        self.notify_on_any_drop = value.notify_on_any_drop
        self.include_shipping = value.include_shipping
        self.consider_variants = value.consider_variants

    def __repr__(self) -> str:
        return (
            f"<PriceAlert(id={self.id}, item={self.watched_item_id}, "
            f"target={self.target_price}, snapshot={self.current_price_snapshot})>"
        )


class PriceObservation(Base):
    """Raw price sample (recent history, compacted after retention)."""

    __tablename__ = "price_observations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency_id: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    source: Mapped[str] = mapped_column(String(32), default="evaluator", nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_price_observations_product_recorded", "product_id", "recorded_at"),
    )


class PriceDailySummary(Base):
    """Compacted OHLC record for one product-day. Never updated once written."""

    __tablename__ = "price_daily_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    date: Mapped[calendar_date] = mapped_column(Date, nullable=False)
    open: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    close: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    min: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    max: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    avg: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False)
    currency_id: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("product_id", "date", name="uq_price_daily_summary_product_date"),
    )
