"""
Risk metrics calculator.

Pure, total functions of a HoldingsSnapshot: no I/O, no exceptions.
Missing data degrades to fixed defaults.

Volatility and liquidity are pluggable. The defaults are a constant 0.5
volatility and every holding liquid; inject estimators to replace them.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional, Protocol

from .models import Holding, HoldingsSnapshot, RiskMetrics

logger = logging.getLogger(__name__)

# (minimum asset count, value), checked top-down
CONCENTRATION_STEPS = ((5, 0.2), (3, 0.4), (2, 0.6))
DIVERSIFICATION_STEPS = ((10, 1.0), (5, 0.8), (3, 0.6), (2, 0.4))

DEFAULT_VOLATILITY = 0.5


def concentration_risk(asset_count: int) -> float:
    """
    Concentration risk for a number of distinct assets.

    0 -> 1.0, 1 -> 1.0, 2 -> 0.6, 3-4 -> 0.4, 5+ -> 0.2
    """
    if asset_count <= 0:
        return 1.0
    for threshold, risk in CONCENTRATION_STEPS:
        if asset_count >= threshold:
            return risk
    return 1.0


def diversification_score(asset_count: int) -> float:
    """
    Diversification score for a number of distinct assets.

    0 -> 0.0, 1 -> 0.2, 2 -> 0.4, 3-4 -> 0.6, 5-9 -> 0.8, 10+ -> 1.0
    """
    if asset_count <= 0:
        return 0.0
    for threshold, score in DIVERSIFICATION_STEPS:
        if asset_count >= threshold:
            return score
    return 0.2


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class VolatilityEstimator(Protocol):
    """Extension point for portfolio volatility estimation."""

    def estimate(self, snapshot: HoldingsSnapshot) -> float:
        ...


class LiquidityClassifier(Protocol):
    """Extension point deciding whether a holding counts as liquid."""

    def is_liquid(self, holding: Holding) -> bool:
        ...


class ConstantVolatilityEstimator:
    """Returns the same volatility for every portfolio."""

    def __init__(self, value: float = DEFAULT_VOLATILITY) -> None:
        self.value = value

    def estimate(self, snapshot: HoldingsSnapshot) -> float:
        return self.value


class AllLiquidClassifier:
    """Treats every holding as liquid."""

    def is_liquid(self, holding: Holding) -> bool:
        return True


class RiskMetricsCalculator:
    """Computes the risk vector for a holdings snapshot."""

    def __init__(
        self,
        volatility_estimator: Optional[VolatilityEstimator] = None,
        liquidity_classifier: Optional[LiquidityClassifier] = None,
    ) -> None:
        self.volatility_estimator = volatility_estimator or ConstantVolatilityEstimator()
        self.liquidity_classifier = liquidity_classifier or AllLiquidClassifier()

    def calculate(self, snapshot: HoldingsSnapshot) -> RiskMetrics:
        """
        Calculate risk metrics.

        Count-based metrics include unpriced holdings; value-weighted
        ratios only use priced ones.

        Args:
            snapshot: Wallet holdings

        Returns:
            RiskMetrics with every field in [0, 1]
        """
        count = snapshot.distinct_asset_count

        metrics = RiskMetrics(
            concentration_risk=concentration_risk(count),
            volatility_estimate=_clamp(float(self.volatility_estimator.estimate(snapshot))),
            diversification_score=diversification_score(count),
            native_asset_exposure=self._native_exposure(snapshot),
            liquid_assets_ratio=self._liquid_ratio(snapshot),
        )

        logger.debug(
            "Calculated risk metrics",
            extra={"wallet": snapshot.wallet, "extra_data": metrics.to_dict()},
        )
        return metrics

    @staticmethod
    def _native_exposure(snapshot: HoldingsSnapshot) -> float:
        total = snapshot.total_value
        if total <= 0:
            return 0.0
        return _clamp(float(snapshot.native_value / total))

    def _liquid_ratio(self, snapshot: HoldingsSnapshot) -> float:
        total = snapshot.total_value
        if total <= 0:
            return 1.0 if all(self.liquidity_classifier.is_liquid(h) for h in snapshot.holdings) else 0.0

        liquid_value = sum(
            (
                h.value_usd
                for h in snapshot.priced_holdings
                if self.liquidity_classifier.is_liquid(h)
            ),
            Decimal("0"),
        )
        return _clamp(float(liquid_value / total))
