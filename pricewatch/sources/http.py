"""Catalog price lookup over HTTP.

Expects ``GET {base_url}/products/{product_id}/price`` to answer with
JSON like ``{"price": 18.99, "currency_id": "EUR", "shipping": 4.95,
"lowest_variant_price": 17.49}``; only ``price`` is required.
"""

import logging
from typing import Optional

import httpx

from pricewatch.config import settings
from pricewatch.errors import ProductPriceUnavailable
from pricewatch.sources.base import PriceQuote, PriceSource, to_price

logger = logging.getLogger(__name__)


class HttpPriceSource(PriceSource):
    """Fetches current product prices from the storefront catalog API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the price source.

        Args:
            base_url: Catalog API base URL (defaults to settings)
            timeout: Per-request timeout in seconds (defaults to settings)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or settings.price_source_url).rstrip("/")
        self.timeout = timeout or settings.price_source_timeout_seconds
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def get_current_price(self, product_id: str) -> PriceQuote:
        client = await self._get_client()
        url = f"{self.base_url}/products/{product_id}/price"

        try:
            response = await client.get(url)
        except httpx.TimeoutException as e:
            raise ProductPriceUnavailable(product_id, "timeout") from e
        except httpx.HTTPError as e:
            raise ProductPriceUnavailable(product_id, f"transport error: {e}") from e

        if response.status_code != 200:
            raise ProductPriceUnavailable(product_id, f"HTTP {response.status_code}")

        try:
            payload = response.json()
            price = payload.get("price")
            if price is None:
                raise ValueError("missing price")
            quote = PriceQuote(
                product_id=product_id,
                price=to_price(price),
                currency_id=payload.get("currency_id"),
                shipping=to_price(payload.get("shipping") or 0),
                lowest_variant_price=(
                    to_price(payload["lowest_variant_price"])
                    if payload.get("lowest_variant_price") is not None
                    else None
                ),
            )
        except (ValueError, AttributeError, TypeError) as e:
            raise ProductPriceUnavailable(product_id, f"malformed payload: {e}") from e

        if quote.price <= 0:
            raise ProductPriceUnavailable(product_id, f"non-positive price {quote.price}")

        logger.debug("Fetched price for %s: %s %s", product_id, quote.price, quote.currency_id)
        return quote
