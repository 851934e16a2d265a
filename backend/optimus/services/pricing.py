"""
Price resolution for holdings valuation.

A resolver answers ``resolve_value(asset, quantity)`` with a USD value or
None. None means "unresolved": expected for illiquid or unknown mints and
never treated as an error by the engine.
"""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, Mapping, Optional, Protocol

import httpx

from ..chains.base import WRAPPED_SOL_MINT
from ..strategy.models import Asset

logger = logging.getLogger(__name__)


class PriceResolver(Protocol):
    """Capability that values a quantity of an asset in USD."""

    async def resolve_value(self, asset: Asset, quantity: Decimal) -> Optional[Decimal]:
        ...


class StaticPriceResolver:
    """
    Resolver over a fixed unit-price table.

    Prices may be keyed by symbol or by mint; the mint wins when both
    are present.
    """

    def __init__(self, unit_prices: Mapping[str, object]) -> None:
        self.unit_prices: Dict[str, Decimal] = {
            key: Decimal(str(price)) for key, price in unit_prices.items()
        }

    async def resolve_value(self, asset: Asset, quantity: Decimal) -> Optional[Decimal]:
        price = self.unit_prices.get(asset.identifier)
        if price is None and asset.symbol:
            price = self.unit_prices.get(asset.symbol)
        if price is None:
            return None
        return price * quantity


class JupiterPriceResolver:
    """
    Resolver backed by the Jupiter price API.

    Any transport or payload problem yields None for that asset.
    """

    def __init__(
        self,
        base_url: str = "https://api.jup.ag/price/v2",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.client = client
        self._owns_client = client is None

    async def initialize(self) -> None:
        """Initialize the Jupiter HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": "Optimus-Portfolio-Analyzer/1.0.0"},
            )
            self._owns_client = True

    async def close(self) -> None:
        """Close the Jupiter HTTP client if this resolver created it."""
        if self.client is not None and self._owns_client:
            await self.client.aclose()
            self.client = None

    async def resolve_value(self, asset: Asset, quantity: Decimal) -> Optional[Decimal]:
        price = await self.get_unit_price(asset)
        if price is None:
            return None
        return price * quantity

    async def get_unit_price(self, asset: Asset) -> Optional[Decimal]:
        """
        Get the USD price of one unit of an asset.

        Args:
            asset: Asset to price (native SOL is priced via wrapped SOL)

        Returns:
            Unit price or None if Jupiter has no usable quote
        """
        if self.client is None:
            await self.initialize()

        mint = WRAPPED_SOL_MINT if asset.is_native else asset.identifier

        try:
            response = await self.client.get(self.base_url, params={"ids": mint})
            response.raise_for_status()
            entry = (response.json().get("data") or {}).get(mint)
            if not entry or entry.get("price") is None:
                logger.debug(f"No Jupiter price for {asset.key}")
                return None
            return Decimal(str(entry["price"]))
        except (httpx.HTTPError, ValueError, AttributeError, InvalidOperation) as e:
            logger.warning(
                f"Jupiter price lookup failed for {asset.key}: {e}",
                extra={"extra_data": {"mint": mint}},
            )
            return None
