"""
Market-data source adapters.

Each source exposes two independent fetches:

- ``fetch_opportunities()``: list of route/yield entries
  (``route``, ``apr``, ``liquidity``, ``risk``)
- ``fetch_trends()``: either a list of trend entries
  (``token``, ``trend``, ``confidence``) or a mapping
  ``{"trends": [...], "volatility": float}``

Adapters raise on failure; the signal aggregator turns failures and
timeouts into an unavailable source.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import httpx

logger = logging.getLogger(__name__)

TrendPayload = Union[List[Dict[str, Any]], Dict[str, Any]]


class MarketDataSource:
    """Base class for market-data adapters."""

    tag: str = "unknown"

    async def fetch_opportunities(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def fetch_trends(self) -> TrendPayload:
        raise NotImplementedError


class StaticMarketSource(MarketDataSource):
    """Source that replays a fixed snapshot."""

    def __init__(
        self,
        tag: str,
        opportunities: Sequence[Mapping[str, Any]] = (),
        trends: Sequence[Mapping[str, Any]] = (),
        volatility: Optional[float] = None,
    ) -> None:
        self.tag = tag
        self._opportunities = tuple(dict(o) for o in opportunities)
        self._trends = tuple(dict(t) for t in trends)
        self._volatility = volatility

    async def fetch_opportunities(self) -> List[Dict[str, Any]]:
        return [dict(o) for o in self._opportunities]

    async def fetch_trends(self) -> TrendPayload:
        trends = [dict(t) for t in self._trends]
        if self._volatility is None:
            return trends
        return {"trends": trends, "volatility": self._volatility}


class HttpMarketSource(MarketDataSource):
    """
    Source that reads JSON snapshots from ``<base_url>/opportunities`` and
    ``<base_url>/trends``.
    """

    def __init__(
        self,
        tag: str,
        base_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.tag = tag
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client
        self._owns_client = client is None

    async def initialize(self) -> None:
        """Initialize the HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": "Optimus-Portfolio-Analyzer/1.0.0"},
            )
            self._owns_client = True

    async def close(self) -> None:
        """Close the HTTP client if this source created it."""
        if self.client is not None and self._owns_client:
            await self.client.aclose()
            self.client = None

    async def fetch_opportunities(self) -> List[Dict[str, Any]]:
        body = await self._get_json("opportunities")
        if isinstance(body, dict):
            body = body.get("opportunities", [])
        if not isinstance(body, list):
            raise ValueError(f"{self.tag}: opportunities payload is not a list")
        return body

    async def fetch_trends(self) -> TrendPayload:
        body = await self._get_json("trends")
        if not isinstance(body, (list, dict)):
            raise ValueError(f"{self.tag}: trends payload is not a list or object")
        return body

    async def _get_json(self, path: str) -> Any:
        if self.client is None:
            await self.initialize()
        response = await self.client.get(f"{self.base_url}/{path}")
        response.raise_for_status()
        return response.json()


def reference_sources() -> List[MarketDataSource]:
    """Built-in Jupiter and Pyth snapshots used when no feeds are configured."""
    return [
        StaticMarketSource(
            tag="jupiter",
            opportunities=[
                {"route": "SOL-USDC", "apr": 12.5, "liquidity": 1_000_000, "risk": "low"},
                {"route": "JLP-USDC", "apr": 24.3, "liquidity": 500_000, "risk": "medium"},
            ],
        ),
        StaticMarketSource(
            tag="pyth",
            trends=[
                {"token": "SOL", "trend": "bullish", "confidence": 0.7},
                {"token": "USDC", "trend": "stable", "confidence": 0.9},
            ],
            volatility=0.45,
        ),
    ]


def build_market_sources(
    source_urls: Mapping[str, str],
    timeout: float = 5.0,
) -> List[MarketDataSource]:
    """
    Build adapters from a tag -> base URL mapping.

    Args:
        source_urls: Configured feeds; empty means the reference snapshots
        timeout: HTTP timeout per call

    Returns:
        Sources in configuration order
    """
    if not source_urls:
        logger.info("No market feeds configured, using reference snapshots")
        return reference_sources()
    return [HttpMarketSource(tag, url, timeout=timeout) for tag, url in source_urls.items()]
