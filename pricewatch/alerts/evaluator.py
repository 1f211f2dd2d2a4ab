"""Batch evaluation of active price alerts.

Each cycle pages through active alerts with an id cursor and treats every
alert as an independent unit with its own session and transaction:

    Idle -> Fetching -> Evaluating -> Notifying (optional) -> Idle

A failure in one unit is logged and counted; it never stops the batch.
Re-running a unit against an unchanged price is a no-op, and the snapshot
move is a compare-and-set, so of two overlapping cycles only one records
a given price change.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Union

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricewatch import metrics
from pricewatch.alerts.registry import AlertRegistry
from pricewatch.config import settings
from pricewatch.db.models import PriceAlert, utcnow
from pricewatch.errors import ProductPriceUnavailable
from pricewatch.history.store import HistoryStore
from pricewatch.logging_config import get_logger
from pricewatch.notify.dispatch import NotificationDescriptor, NotificationDispatcher, TriggerType
from pricewatch.notify.gate import NotificationGate
from pricewatch.sources.base import PriceQuote, PriceSource

logger = logging.getLogger(__name__)


class EvaluatorState(str, Enum):
    """Per-alert evaluation state."""

    IDLE = "idle"
    FETCHING = "fetching"
    EVALUATING = "evaluating"
    NOTIFYING = "notifying"


class Outcome(str, Enum):
    """Result of evaluating one alert."""

    INACTIVE = "inactive"
    UNAVAILABLE = "unavailable"
    UNCHANGED = "unchanged"
    CHECKED = "checked"
    NOTIFIED = "notified"
    SUPPRESSED = "suppressed"


@dataclass
class CycleSummary:
    """Counters for one evaluator cycle."""

    batches: int = 0
    processed: int = 0
    unchanged: int = 0
    unavailable: int = 0
    observations_recorded: int = 0
    triggered: int = 0
    notified: int = 0
    suppressed: int = 0
    errors: int = 0


def decide_trigger(alert: PriceAlert, previous: Decimal, current: Decimal) -> Optional[TriggerType]:
    """Threshold-reached beats any-drop when both apply."""
    if current <= alert.target_price:
        return TriggerType.THRESHOLD_REACHED
    if alert.notify_on_any_drop and current < previous:
        return TriggerType.ANY_DROP
    return None


class AlertEvaluator:
    """Runs price check cycles over all active alerts."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        price_source: PriceSource,
        gate: NotificationGate,
        dispatcher: NotificationDispatcher,
        batch_size: Optional[int] = None,
        epsilon: Optional[Decimal] = None,
        price_timeout: Optional[float] = None,
        max_batches: Optional[int] = None,
    ):
        """
        Initialize the evaluator.

        Args:
            session_factory: Factory for per-unit database sessions
            price_source: Current price lookup
            gate: Cooldown gate shared by all evaluator instances
            dispatcher: Receives notification descriptors
            batch_size: Alerts per page (defaults to settings.batch_size)
            epsilon: Smallest material price change (defaults to settings.price_epsilon)
            price_timeout: Seconds to wait for one price lookup
            max_batches: Upper bound on pages per cycle
        """
        self.session_factory = session_factory
        self.price_source = price_source
        self.gate = gate
        self.dispatcher = dispatcher
        self.batch_size = batch_size or settings.batch_size
        self.epsilon = settings.price_epsilon if epsilon is None else epsilon
        self.price_timeout = price_timeout or settings.price_source_timeout_seconds
        self.max_batches = max_batches or settings.max_batches_per_cycle

    async def run_cycle(self, now: Optional[datetime] = None) -> CycleSummary:
        """
        Evaluate every active alert once.

        Paging continues while the previous page was full; a short page ends
        the cycle, and ``max_batches`` bounds it regardless.

        Args:
            now: Reference time for the cycle (defaults to current UTC time)

        Returns:
            CycleSummary with per-outcome counters
        """
        now = now or utcnow()
        summary = CycleSummary()
        quotes: Dict[str, Union[PriceQuote, ProductPriceUnavailable]] = {}
        cursor = 0
        start_time = time.monotonic()

        logger.info(f"Starting price alert cycle (batch size: {self.batch_size})")

        while summary.batches < self.max_batches:
            async with self.session_factory() as db:
                alert_ids = await AlertRegistry(db, self.price_source).active_alert_ids(
                    after_id=cursor, limit=self.batch_size
                )
            if not alert_ids:
                break

            summary.batches += 1
            cursor = alert_ids[-1]

            for alert_id in alert_ids:
                try:
                    outcome = await self.evaluate_alert(alert_id, now, quotes, summary)
                except Exception as e:
                    summary.errors += 1
                    metrics.record_alert_check("error")
                    logger.error(f"Failed to check price alert {alert_id}: {e}", exc_info=True)
                    continue

                summary.processed += 1
                metrics.record_alert_check(outcome.value)
                if outcome is Outcome.UNCHANGED:
                    summary.unchanged += 1
                elif outcome is Outcome.UNAVAILABLE:
                    summary.unavailable += 1
                elif outcome is Outcome.NOTIFIED:
                    summary.notified += 1
                elif outcome is Outcome.SUPPRESSED:
                    summary.suppressed += 1

            if len(alert_ids) < self.batch_size:
                break
        else:
            logger.warning(
                f"Price alert cycle stopped after {self.max_batches} batches "
                f"(cursor at alert {cursor})"
            )

        duration = time.monotonic() - start_time
        metrics.evaluator_cycle_duration_seconds.observe(duration)
        logger.info(
            f"Price alert cycle complete in {duration:.1f}s: "
            f"{summary.processed} processed, {summary.triggered} triggered, "
            f"{summary.notified} notified, {summary.suppressed} suppressed, "
            f"{summary.unavailable} unavailable, {summary.errors} errors"
        )
        return summary

    async def _fetch_quote(
        self,
        product_id: str,
        quotes: Dict[str, Union[PriceQuote, ProductPriceUnavailable]],
    ) -> PriceQuote:
        """Current quote for a product, looked up at most once per cycle."""
        cached = quotes.get(product_id)
        if cached is None:
            try:
                cached = await asyncio.wait_for(
                    self.price_source.get_current_price(product_id),
                    timeout=self.price_timeout,
                )
            except asyncio.TimeoutError:
                metrics.record_price_source_error("timeout")
                cached = ProductPriceUnavailable(product_id, "timeout")
            except ProductPriceUnavailable as e:
                metrics.record_price_source_error("unavailable")
                cached = e
            quotes[product_id] = cached

        if isinstance(cached, ProductPriceUnavailable):
            raise cached
        return cached

    async def evaluate_alert(
        self,
        alert_id: int,
        now: Optional[datetime] = None,
        quotes: Optional[Dict[str, Union[PriceQuote, ProductPriceUnavailable]]] = None,
        summary: Optional[CycleSummary] = None,
    ) -> Outcome:
        """
        Run one alert through fetch, evaluate and (maybe) notify.

        Everything the unit writes commits together. If delivery fails after
        the cooldown was reserved, the reservation is released and the unit
        rolls back so the next cycle retries it.
        """
        now = now or utcnow()
        quotes = {} if quotes is None else quotes
        summary = summary or CycleSummary()
        state = EvaluatorState.IDLE
        log = get_logger(__name__, alert_id=alert_id)

        async with self.session_factory() as db:
            alert = await db.get(PriceAlert, alert_id)
            if alert is None or not alert.active:
                return Outcome.INACTIVE
            log = log.bind(product_id=alert.product_id)

            state = EvaluatorState.FETCHING
            log.debug("Alert %s: %s", alert_id, state.value)
            try:
                quote = await self._fetch_quote(alert.product_id, quotes)
            except ProductPriceUnavailable as e:
                log.warning(f"Skipping alert {alert_id} this cycle: {e}")
                return Outcome.UNAVAILABLE

            state = EvaluatorState.EVALUATING
            log.debug("Alert %s: %s", alert_id, state.value)
            previous = alert.current_price_snapshot
            current = quote.effective_price(alert.options)

            if abs(current - previous) < self.epsilon:
                return Outcome.UNCHANGED

            # Compare-and-set on the snapshot; an overlapping unit that moved it first wins
            values = {"current_price_snapshot": current, "last_checked_at": now}
            if quote.currency_id:
                values["currency_id"] = quote.currency_id
            claimed = await db.execute(
                update(PriceAlert)
                .where(PriceAlert.id == alert_id)
                .where(PriceAlert.current_price_snapshot == previous)
                .values(**values)
            )
            if claimed.rowcount != 1:
                await db.rollback()
                log.debug("Alert %s already moved to %s by another cycle", alert_id, current)
                return Outcome.UNCHANGED

            observation = await HistoryStore(db, self.epsilon).record(
                alert.product_id,
                quote.price,
                quote.currency_id,
                source="evaluator",
                recorded_at=now,
            )
            if observation is not None:
                summary.observations_recorded += 1

            trigger = decide_trigger(alert, previous, current)
            if trigger is None:
                await db.commit()
                return Outcome.CHECKED

            summary.triggered += 1
            state = EvaluatorState.NOTIFYING
            log.debug("Alert %s: %s (%s)", alert_id, state.value, trigger.value)

            if not await self.gate.try_reserve(alert_id, current):
                metrics.record_notification(trigger.value, "suppressed")
                await db.commit()
                return Outcome.SUPPRESSED

            descriptor = NotificationDescriptor.build(alert, trigger, previous, current)
            try:
                await self.dispatcher.send(descriptor)
            except Exception:
                metrics.record_notification(trigger.value, "failed")
                await db.rollback()
                await self.gate.release(alert_id)
                raise

            metrics.record_notification(trigger.value, "sent")
            alert.triggered_count += 1
            alert.last_triggered_at = now
            alert.lowest_price_seen = (
                current if alert.lowest_price_seen is None
                else min(alert.lowest_price_seen, current)
            )
            await db.commit()

            log.info(
                "Price alert triggered",
                extra={"trigger": trigger, "old_price": previous, "new_price": current},
            )
            return Outcome.NOTIFIED
