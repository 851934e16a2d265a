"""
Shared fixtures and fakes for the portfolio analyzer tests.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from optimus.chains.base import JLP_MINT, USDC_MINT, USDT_MINT
from optimus.services.market_sources import MarketDataSource
from optimus.strategy.models import Asset, Holding, HoldingsSnapshot

# Any valid base58 public key works as a wallet address
WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
UNKNOWN_MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


class FakeHoldingsSource:
    """Holdings source returning a canned payload, or raising."""

    def __init__(self, payload: Any = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.payload = payload if payload is not None else {"native_balance": "0", "token_accounts": []}
        self.error = error
        self.delay = delay
        self.calls: List[str] = []

    async def fetch_holdings(self, wallet: str) -> Any:
        self.calls.append(wallet)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.payload


class SlowMarketSource(MarketDataSource):
    """Market source that sleeps before answering and records cancellation."""

    def __init__(self, tag: str, delay: float, trends: Optional[List[Dict[str, Any]]] = None):
        self.tag = tag
        self.delay = delay
        self.trends = trends or []
        self.cancelled = False

    async def fetch_opportunities(self) -> List[Dict[str, Any]]:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return []

    async def fetch_trends(self) -> List[Dict[str, Any]]:
        return list(self.trends)


class FailingMarketSource(MarketDataSource):
    """Market source whose fetches always raise."""

    def __init__(self, tag: str):
        self.tag = tag

    async def fetch_opportunities(self) -> List[Dict[str, Any]]:
        raise RuntimeError("feed offline")

    async def fetch_trends(self) -> List[Dict[str, Any]]:
        raise RuntimeError("feed offline")


def make_snapshot(*holdings: Holding, native_balance: Any = None) -> HoldingsSnapshot:
    """Snapshot from holdings; native balance defaults to the SOL holding quantity."""
    if native_balance is None:
        native_balance = next((h.quantity for h in holdings if h.asset.is_native), Decimal("0"))
    return HoldingsSnapshot(
        wallet=WALLET,
        holdings=holdings,
        native_balance=native_balance,
        captured_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def sol(quantity: Any, value: Any = None) -> Holding:
    return Holding(Asset.native(), Decimal(str(quantity)), None if value is None else Decimal(str(value)))


def token(identifier: str, quantity: Any, value: Any = None, symbol: Optional[str] = None) -> Holding:
    asset = Asset(identifier=identifier, symbol=symbol)
    return Holding(asset, Decimal(str(quantity)), None if value is None else Decimal(str(value)))


@pytest.fixture
def scenario_payload() -> Dict[str, Any]:
    """2 SOL, 4 JLP and 600 USDT."""
    return {
        "native_balance": "2",
        "token_accounts": [
            {"mint": JLP_MINT, "amount": "4000000", "decimals": 6},
            {"mint": USDT_MINT, "amount": "600000000", "decimals": 6},
        ],
    }


@pytest.fixture
def scenario_prices() -> Dict[str, Any]:
    """Unit prices: SOL at 100, JLP at 100, USDT and USDC at 1."""
    return {"SOL": 100, JLP_MINT: 100, USDT_MINT: 1, USDC_MINT: 1}
