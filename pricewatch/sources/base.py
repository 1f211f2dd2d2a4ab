"""Price source interface consumed by the alert components."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from pricewatch.db.models import AlertOptions

CENT = Decimal("0.01")


def to_price(value) -> Decimal:
    """
    Normalize a price value to a two-decimal Decimal.

    Raises:
        ValueError: If the value is not numeric
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a price: {value!r}")
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Not a price: {value!r}") from e
    if not price.is_finite():
        raise ValueError(f"Not a price: {value!r}")
    return price.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class PriceQuote:
    """Current catalog price of a product as reported by a price source."""

    product_id: str
    price: Decimal
    currency_id: Optional[str] = None
    shipping: Decimal = Decimal("0.00")
    lowest_variant_price: Optional[Decimal] = None

    def effective_price(self, options: AlertOptions) -> Decimal:
        """Price an alert compares against, after applying its options."""
        price = self.price
        if options.consider_variants and self.lowest_variant_price is not None:
            price = min(price, self.lowest_variant_price)
        if options.include_shipping:
            price += self.shipping
        return price


class PriceSource(ABC):
    """Abstract catalog price lookup."""

    @abstractmethod
    async def get_current_price(self, product_id: str) -> PriceQuote:
        """
        Fetch the current price of a product.

        Args:
            product_id: Catalog product identifier

        Returns:
            PriceQuote for the product

        Raises:
            ProductPriceUnavailable: If no price can be produced
        """
        pass

    async def close(self):
        """Release any held resources."""
        pass
