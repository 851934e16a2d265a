"""
Portfolio analyzer.

Top-level orchestration of one wallet request:

1. Holdings snapshot and market signals are fetched concurrently
2. Risk metrics are computed from the snapshot
3. Advisory recommendations are derived from fixed threshold rules
4. Rebalance plans diff the current allocation against a strategy or
   custom target

The analyzer holds only collaborators and a frozen EngineConfig, so one
instance can serve concurrent requests.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..chains.base import HoldingsSource, asset_for_key
from ..chains.solana_client import SolanaHoldingsSource
from ..core.exceptions import SourceUnavailableError
from ..core.settings import Settings, get_settings
from ..services.market_sources import MarketDataSource, build_market_sources
from ..services.pricing import JupiterPriceResolver, PriceResolver
from .allocations import (
    DEFAULT_TARGET_TOLERANCE,
    STRATEGY_ALLOCATIONS,
    Strategy,
    bias_allocation,
    current_allocation,
    describe_strategy,
    resolve_strategy,
    validate_target,
)
from .holdings import HoldingsSnapshotBuilder, validate_wallet
from .models import (
    OTHER_BUCKET,
    Allocation,
    Asset,
    HoldingsSnapshot,
    MarketSignalSet,
    RebalancePlan,
    RiskMetrics,
)
from .rebalancer import DEFAULT_FEE_PER_TRADE, FeeModel, FlatFeeModel, TradePlanner
from .risk_metrics import LiquidityClassifier, RiskMetricsCalculator, VolatilityEstimator
from .signals import MarketSignalAggregator, SourceFilter

logger = logging.getLogger(__name__)

CUSTOM_STRATEGY_LABEL = "custom"


@dataclass(frozen=True)
class EngineConfig:
    """Read-only configuration shared by every request."""

    per_trade_fee: Decimal = DEFAULT_FEE_PER_TRADE
    rebalance_threshold: Decimal = Decimal("0")
    target_tolerance: Decimal = DEFAULT_TARGET_TOLERANCE
    min_native_balance_for_fees: Decimal = Decimal("1")
    suggestion_step: Decimal = Decimal("0.05")
    bullish_confidence_threshold: float = 0.6
    market_source_timeout: float = 5.0
    request_deadline: float = 15.0
    strategies: Mapping[Strategy, Allocation] = field(default_factory=lambda: STRATEGY_ALLOCATIONS, compare=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        return cls(
            per_trade_fee=settings.per_trade_fee_sol,
            rebalance_threshold=settings.rebalance_threshold,
            target_tolerance=settings.target_tolerance,
            min_native_balance_for_fees=settings.min_native_balance_for_fees,
            suggestion_step=settings.suggestion_step,
            bullish_confidence_threshold=settings.bullish_confidence_threshold,
            market_source_timeout=settings.market_source_timeout_seconds,
            request_deadline=settings.request_deadline_seconds,
        )


AdvisoryRule = Tuple[Callable[[HoldingsSnapshot, RiskMetrics, EngineConfig], bool], str]

# Evaluated in order; every matching rule contributes its message.
ADVISORY_RULES: Tuple[AdvisoryRule, ...] = (
    (
        lambda s, m, c: s.native_balance < c.min_native_balance_for_fees,
        "Consider increasing SOL balance for transaction fees",
    ),
    (
        lambda s, m, c: s.distinct_asset_count < 3,
        "Diversify portfolio with additional assets",
    ),
    (
        lambda s, m, c: m.concentration_risk > 0.7,
        "High concentration risk detected - consider diversifying into more token types",
    ),
    (
        lambda s, m, c: m.diversification_score < 0.5,
        "Portfolio diversification could be improved",
    ),
    (
        lambda s, m, c: m.native_asset_exposure > 0.7,
        "High SOL exposure - consider diversifying into other assets",
    ),
    (
        lambda s, m, c: not s.pricing_complete,
        "Some holdings could not be priced - value-based metrics exclude them",
    ),
)


def advise(snapshot: HoldingsSnapshot, metrics: RiskMetrics, config: EngineConfig) -> List[str]:
    """Advisory recommendations for a snapshot, in rule order."""
    return [message for rule, message in ADVISORY_RULES if rule(snapshot, metrics, config)]


def risk_level(metrics: RiskMetrics) -> str:
    if metrics.concentration_risk >= 0.7:
        return "HIGH"
    if metrics.concentration_risk >= 0.4:
        return "MEDIUM"
    return "LOW"


@dataclass(frozen=True)
class PortfolioAnalysis:
    """Full analysis of one wallet."""

    wallet: str
    holdings: HoldingsSnapshot
    risk_metrics: RiskMetrics
    market: MarketSignalSet
    recommendations: Tuple[str, ...]
    timestamp: datetime

    @property
    def risk_level(self) -> str:
        return risk_level(self.risk_metrics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallet": self.wallet,
            "timestamp": self.timestamp.isoformat(),
            "holdings": self.holdings.to_dict(),
            "risk_metrics": self.risk_metrics.to_dict(),
            "risk_level": self.risk_level,
            "market_insights": self.market.to_dict(),
            "recommendations": list(self.recommendations),
            "pricing_complete": self.holdings.pricing_complete,
        }


class PortfolioAnalyzer:
    """
    Request-scoped portfolio analysis over injected collaborators.

    Args:
        holdings_source: Raw wallet balances
        price_resolver: Values holdings in USD
        market_sources: Market-data adapters, in merge order
        config: Engine thresholds and strategy table
        fee_model: Per-trade fee estimator (flat fee from config by default)
        volatility_estimator: Optional volatility extension point
        liquidity_classifier: Optional liquidity extension point
    """

    def __init__(
        self,
        holdings_source: HoldingsSource,
        price_resolver: PriceResolver,
        market_sources: Sequence[MarketDataSource],
        config: Optional[EngineConfig] = None,
        fee_model: Optional[FeeModel] = None,
        volatility_estimator: Optional[VolatilityEstimator] = None,
        liquidity_classifier: Optional[LiquidityClassifier] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.holdings_source = holdings_source
        self.price_resolver = price_resolver
        self.market_sources = tuple(market_sources)

        self.snapshot_builder = HoldingsSnapshotBuilder(holdings_source, price_resolver)
        self.risk_calculator = RiskMetricsCalculator(volatility_estimator, liquidity_classifier)
        self.aggregator = MarketSignalAggregator(
            self.market_sources,
            source_timeout=self.config.market_source_timeout,
            suggestion_step=self.config.suggestion_step,
            confidence_threshold=self.config.bullish_confidence_threshold,
        )
        self.planner = TradePlanner(
            fee_model=fee_model or FlatFeeModel(self.config.per_trade_fee),
            rebalance_threshold=self.config.rebalance_threshold,
            target_tolerance=self.config.target_tolerance,
        )

    async def analyze(self, wallet: str) -> PortfolioAnalysis:
        """
        Analyze a wallet.

        Raises:
            InvalidWalletError: If the wallet address is malformed
            SourceUnavailableError: If holdings cannot be fetched in time
        """
        wallet = validate_wallet(wallet)
        snapshot, market = await self._snapshot_with_market(wallet)

        metrics = self.risk_calculator.calculate(snapshot)
        recommendations = advise(snapshot, metrics, self.config)

        analysis = PortfolioAnalysis(
            wallet=wallet,
            holdings=snapshot,
            risk_metrics=metrics,
            market=market,
            recommendations=tuple(recommendations),
            timestamp=datetime.now(timezone.utc),
        )

        logger.info(
            "Portfolio analysis complete",
            extra={
                "wallet": wallet,
                "extra_data": {
                    "risk_level": analysis.risk_level,
                    "recommendations": len(recommendations),
                    "market_partial": market.partial,
                },
            },
        )
        return analysis

    async def get_risk_metrics(self, wallet: str) -> RiskMetrics:
        wallet = validate_wallet(wallet)
        snapshot = await self._snapshot(wallet)
        return self.risk_calculator.calculate(snapshot)

    async def get_rebalance_plan(
        self,
        wallet: str,
        strategy: Optional[str] = None,
        target: Optional[Any] = None,
        apply_market_bias: bool = False,
    ) -> RebalancePlan:
        """
        Plan the trades moving a wallet toward a target allocation.

        Args:
            wallet: Wallet address
            strategy: Strategy name (unknown names fall back to moderate)
            target: Custom target allocation; takes precedence over strategy
            apply_market_bias: Tilt the target toward bullish suggestions

        Raises:
            InvalidWalletError: If the wallet address is malformed
            InvalidTargetError: If the custom target is invalid
            SourceUnavailableError: If holdings cannot be fetched in time
        """
        wallet = validate_wallet(wallet)
        if target is not None:
            target_allocation = validate_target(target, self.config.target_tolerance)
            label = CUSTOM_STRATEGY_LABEL
        else:
            resolved = resolve_strategy(strategy)
            target_allocation = self.config.strategies[resolved]
            label = resolved.value

        if apply_market_bias:
            snapshot, market = await self._snapshot_with_market(wallet)
            target_allocation = bias_allocation(target_allocation, market.suggested_allocations)
        else:
            snapshot = await self._snapshot(wallet)

        current = current_allocation(snapshot)
        if current.basis == "value":
            total = snapshot.total_value
            unit_prices = await self._unit_prices(snapshot, target_allocation)
            # Held positions that carry no value share still count toward concentration.
            extra_positions = sum(1 for h in snapshot.holdings if not h.priced or h.value_usd <= 0)
        else:
            total = sum((h.quantity for h in snapshot.holdings), Decimal("0"))
            unit_prices = {h.asset.key: Decimal("1") for h in snapshot.holdings}
            extra_positions = 0

        return self.planner.plan(
            current,
            target_allocation,
            total_value=total,
            unit_prices=unit_prices,
            extra_positions=extra_positions,
            strategy=label,
        )

    async def get_market_insights(self, source_filter: SourceFilter = None) -> MarketSignalSet:
        return await self.aggregator.collect(source_filter, deadline=self.config.request_deadline)

    def describe_strategy(self, name: Optional[str]) -> Dict[str, Any]:
        return describe_strategy(name, self.config.strategies)

    async def aclose(self) -> None:
        """Close collaborators that own network clients."""
        seen = set()
        for collaborator in (self.holdings_source, self.price_resolver, *self.market_sources):
            close = getattr(collaborator, "close", None)
            if close is None or id(collaborator) in seen:
                continue
            seen.add(id(collaborator))
            await close()

    async def _snapshot(self, wallet: str) -> HoldingsSnapshot:
        deadline = self.config.request_deadline
        try:
            return await asyncio.wait_for(self.snapshot_builder.build(wallet), timeout=deadline)
        except asyncio.TimeoutError as e:
            logger.error(
                f"Holdings fetch exceeded the {deadline}s request deadline",
                extra={"wallet": wallet},
            )
            raise SourceUnavailableError(
                "Holdings source did not respond before the request deadline",
                details={"wallet": wallet, "deadline_seconds": deadline},
            ) from e

    async def _snapshot_with_market(self, wallet: str) -> Tuple[HoldingsSnapshot, MarketSignalSet]:
        market_task = asyncio.create_task(
            self.aggregator.collect(deadline=self.config.request_deadline)
        )
        try:
            snapshot = await self._snapshot(wallet)
        except (Exception, asyncio.CancelledError):
            market_task.cancel()
            await asyncio.gather(market_task, return_exceptions=True)
            raise
        return snapshot, await market_task

    async def _unit_prices(self, snapshot: HoldingsSnapshot, target: Allocation) -> Dict[str, Decimal]:
        """Unit prices for held assets plus target-only assets that can be resolved."""
        prices = {
            h.asset.key: h.value_usd / h.quantity
            for h in snapshot.priced_holdings
            if h.quantity > 0 and h.value_usd > 0
        }

        lookups = []
        for entry in target.entries:
            if entry.asset in prices or entry.asset == OTHER_BUCKET:
                continue
            asset = asset_for_key(entry.asset)
            if asset is not None:
                lookups.append(asset)

        values = await asyncio.gather(*(self._unit_price(asset) for asset in lookups))
        for asset, value in zip(lookups, values):
            if value is not None and value > 0:
                prices[asset.key] = value
        return prices

    async def _unit_price(self, asset: Asset) -> Optional[Decimal]:
        try:
            value = await self.price_resolver.resolve_value(asset, Decimal("1"))
        except Exception as e:
            logger.warning(
                f"Unit price lookup failed for {asset.key}: {e}",
                extra={"extra_data": {"asset": asset.key}},
            )
            return None
        return None if value is None else Decimal(str(value))


def build_analyzer(settings: Optional[Settings] = None) -> PortfolioAnalyzer:
    """Analyzer wired to the Solana RPC, Jupiter prices and configured market feeds."""
    settings = settings or get_settings()
    return PortfolioAnalyzer(
        holdings_source=SolanaHoldingsSource(
            settings.solana_rpc_url, timeout=settings.http_timeout_seconds
        ),
        price_resolver=JupiterPriceResolver(
            settings.price_api_url, timeout=settings.http_timeout_seconds
        ),
        market_sources=build_market_sources(
            settings.market_source_urls, timeout=settings.market_source_timeout_seconds
        ),
        config=EngineConfig.from_settings(settings),
    )
