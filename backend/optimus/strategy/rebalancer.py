"""
Allocation diff and trade planner.

Computes the per-asset share delta between a current and a target
allocation and converts it into ordered trades:

1. Sells before buys, so capital is freed before it is spent
2. Larger share deltas first
3. Asset key as the final tie-break

Risk reduction is estimated by recomputing concentration risk for the
projected post-trade allocation.
"""

from __future__ import annotations

import logging
from decimal import ROUND_DOWN, Decimal
from typing import Dict, List, Mapping, Optional, Protocol, Tuple

from .allocations import DEFAULT_TARGET_TOLERANCE, validate_target
from .models import OTHER_BUCKET, Allocation, RebalancePlan, Trade, TradeAction
from .risk_metrics import concentration_risk

logger = logging.getLogger(__name__)

EPSILON = Decimal("0.000000001")
AMOUNT_QUANTUM = Decimal("0.000000001")  # lamport precision
VALUE_QUANTUM = Decimal("0.000001")

DEFAULT_FEE_PER_TRADE = Decimal("0.0005")  # SOL


class FeeModel(Protocol):
    """Estimates the network/DEX fee of one trade, in SOL."""

    def estimate(self, action: TradeAction, asset: str, amount: Decimal, value: Decimal) -> Decimal:
        ...


class FlatFeeModel:
    """Same fee for every trade."""

    def __init__(self, fee_per_trade: Decimal = DEFAULT_FEE_PER_TRADE) -> None:
        if fee_per_trade < 0:
            raise ValueError("fee_per_trade cannot be negative")
        self.fee_per_trade = fee_per_trade

    def estimate(self, action: TradeAction, asset: str, amount: Decimal, value: Decimal) -> Decimal:
        return self.fee_per_trade


class TradePlanner:
    """Turns an allocation gap into a rebalance plan."""

    def __init__(
        self,
        fee_model: Optional[FeeModel] = None,
        rebalance_threshold: Decimal = Decimal("0"),
        target_tolerance: Decimal = DEFAULT_TARGET_TOLERANCE,
    ) -> None:
        self.fee_model = fee_model or FlatFeeModel()
        self.rebalance_threshold = rebalance_threshold
        self.target_tolerance = target_tolerance

    def plan(
        self,
        current: Allocation,
        target: Allocation,
        total_value: Decimal,
        unit_prices: Mapping[str, Decimal],
        extra_positions: int = 0,
        strategy: Optional[str] = None,
    ) -> RebalancePlan:
        """
        Build the rebalance plan.

        Args:
            current: Current allocation
            target: Target allocation (validated here)
            total_value: Portfolio value the shares refer to
            unit_prices: Price of one unit per asset key, same unit as
                ``total_value``
            extra_positions: Held positions absent from ``current``
                (unpriced holdings); they count toward concentration
                before and after the trades
            strategy: Label copied into the plan

        Returns:
            RebalancePlan; assets that need a trade but have no usable
            price are listed in ``skipped_assets``

        Raises:
            InvalidTargetError: If the target allocation is invalid
        """
        target = validate_target(target, self.target_tolerance)
        if target.is_empty:
            return RebalancePlan(current_allocation=current, target_allocation=target, strategy=strategy)

        legs, skipped = self._diff(current.as_mapping(), target.as_mapping())

        trades: List[Trade] = []
        executed: Dict[str, Decimal] = {}
        for asset, delta in legs:
            trade = self._to_trade(asset, delta, total_value, unit_prices.get(asset))
            if trade is None:
                skipped.append(asset)
                continue
            trades.append(trade)
            executed[asset] = executed.get(asset, Decimal("0")) + delta

        trades.sort(key=lambda t: (t.action is not TradeAction.SELL, -abs(t.delta), t.asset))

        plan = RebalancePlan(
            current_allocation=current,
            target_allocation=target,
            trades=tuple(trades),
            total_estimated_cost=sum((t.estimated_cost for t in trades), Decimal("0")),
            estimated_risk_reduction=self._risk_reduction(current.as_mapping(), executed, extra_positions),
            skipped_assets=tuple(dict.fromkeys(skipped)),
            strategy=strategy,
        )

        logger.info(
            f"Planned {len(plan.trades)} rebalancing trades",
            extra={
                "strategy": strategy,
                "extra_data": {
                    "total_estimated_cost": str(plan.total_estimated_cost),
                    "skipped_assets": list(plan.skipped_assets),
                },
            },
        )
        return plan

    def _diff(
        self,
        current: Mapping[str, Decimal],
        target: Mapping[str, Decimal],
    ) -> Tuple[List[Tuple[str, Decimal]], List[str]]:
        """
        Per-asset share deltas.

        When the target names the ``other`` bucket, every current asset not
        named elsewhere in the target belongs to it and the bucket delta is
        spread over those assets by current share.
        """
        pooled: List[str] = []
        if OTHER_BUCKET in target:
            pooled = [a for a in current if a not in target or a == OTHER_BUCKET]

        keys = list(target) + [a for a in current if a not in target and a not in pooled]

        legs: List[Tuple[str, Decimal]] = []
        skipped: List[str] = []
        for key in keys:
            if key == OTHER_BUCKET:
                bucket = sum((current[a] for a in pooled), Decimal("0"))
                delta = target[key] - bucket
                if not self._significant(delta):
                    continue
                if bucket <= 0:
                    skipped.append(OTHER_BUCKET)
                    continue
                legs.extend((a, delta * current[a] / bucket) for a in pooled)
                continue

            delta = target.get(key, Decimal("0")) - current.get(key, Decimal("0"))
            if self._significant(delta):
                legs.append((key, delta))

        return legs, skipped

    def _significant(self, delta: Decimal) -> bool:
        return abs(delta) > self.rebalance_threshold + EPSILON

    def _to_trade(
        self,
        asset: str,
        delta: Decimal,
        total_value: Decimal,
        unit_price: Optional[Decimal],
    ) -> Optional[Trade]:
        if unit_price is None or unit_price <= 0 or total_value <= 0:
            return None

        notional = abs(delta) * total_value
        amount = (notional / unit_price).quantize(AMOUNT_QUANTUM, rounding=ROUND_DOWN)
        if amount <= 0:
            return None

        action = TradeAction.BUY if delta > 0 else TradeAction.SELL
        return Trade(
            action=action,
            asset=asset,
            amount=amount,
            estimated_cost=self.fee_model.estimate(action, asset, amount, notional),
            delta=delta,
            value_usd=notional.quantize(VALUE_QUANTUM),
        )

    @staticmethod
    def _risk_reduction(
        current: Mapping[str, Decimal],
        executed: Mapping[str, Decimal],
        extra_positions: int,
    ) -> float:
        """Absolute drop in concentration risk, clamped to [0, 1]."""
        projected = dict(current)
        for asset, delta in executed.items():
            projected[asset] = projected.get(asset, Decimal("0")) + delta

        before = sum(1 for share in current.values() if share > EPSILON) + extra_positions
        after = sum(1 for share in projected.values() if share > EPSILON) + extra_positions

        reduction = concentration_risk(before) - concentration_risk(after)
        return max(0.0, min(1.0, reduction))
