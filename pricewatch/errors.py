"""Domain errors raised by the price monitoring components."""

from datetime import date


class PriceWatchError(Exception):
    """Base class for price monitoring errors."""


class InvalidThreshold(PriceWatchError):
    """Target price rejected at alert creation or update."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class AlertNotFound(PriceWatchError):
    """No alert matches the requested id or watched item."""

    def __init__(self, key: str, value):
        super().__init__(f"No price alert with {key}={value}")
        self.key = key
        self.value = value


class ProductPriceUnavailable(PriceWatchError):
    """The price source could not produce a price for a product."""

    def __init__(self, product_id: str, reason: str = "unavailable"):
        super().__init__(f"Price unavailable for product {product_id}: {reason}")
        self.product_id = product_id
        self.reason = reason


class CompactionConflict(PriceWatchError):
    """A daily summary already exists for the product-day being compacted."""

    def __init__(self, product_id: str, day: date):
        super().__init__(f"Daily summary already exists for {product_id} on {day.isoformat()}")
        self.product_id = product_id
        self.day = day


class NotificationDeliveryError(PriceWatchError):
    """The notification dispatcher refused or failed a delivery."""


class UnknownTrendPolicy(PriceWatchError, ValueError):
    """Requested trend policy name is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown trend policy: {name}")
        self.name = name
