"""
Target and current allocations.

Strategy presets map to fixed target allocations. Current allocations are
derived from holdings snapshots by value share, or by quantity share
when nothing could be priced.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence

from ..core.exceptions import InvalidTargetError
from .models import Allocation, AllocationEntry, HoldingsSnapshot, SuggestedAllocation

logger = logging.getLogger(__name__)

DEFAULT_TARGET_TOLERANCE = Decimal("0.000001")


class Strategy(str, Enum):
    """Named rebalancing strategies."""
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


DEFAULT_STRATEGY = Strategy.MODERATE

STRATEGY_DESCRIPTIONS: Mapping[Strategy, str] = MappingProxyType({
    Strategy.CONSERVATIVE: "Focus on stablecoins and blue-chip tokens",
    Strategy.MODERATE: "Balanced mix of growth and stability",
    Strategy.AGGRESSIVE: "Focus on growth tokens and yield farming",
})

STRATEGY_ALLOCATIONS: Mapping[Strategy, Allocation] = MappingProxyType({
    Strategy.CONSERVATIVE: Allocation((
        AllocationEntry("USDC", Decimal("0.50")),
        AllocationEntry("SOL", Decimal("0.30")),
        AllocationEntry("other", Decimal("0.20")),
    )),
    Strategy.MODERATE: Allocation((
        AllocationEntry("SOL", Decimal("0.35")),
        AllocationEntry("USDC", Decimal("0.25")),
        AllocationEntry("JLP", Decimal("0.20")),
        AllocationEntry("other", Decimal("0.20")),
    )),
    Strategy.AGGRESSIVE: Allocation((
        AllocationEntry("SOL", Decimal("0.30")),
        AllocationEntry("growth_tokens", Decimal("0.50")),
        AllocationEntry("yield_farming", Decimal("0.20")),
    )),
})


def resolve_strategy(name: Optional[str]) -> Strategy:
    """
    Map a strategy name to a Strategy.

    Unknown or empty names fall back to the moderate strategy.
    """
    if isinstance(name, Strategy):
        return name
    if name:
        try:
            return Strategy(name.strip().lower())
        except ValueError:
            logger.info(
                f"Unknown strategy '{name}', falling back to {DEFAULT_STRATEGY.value}",
                extra={"strategy": name},
            )
    return DEFAULT_STRATEGY


def strategy_allocation(
    name: Optional[str],
    table: Mapping[Strategy, Allocation] = STRATEGY_ALLOCATIONS,
) -> Allocation:
    """Target allocation for a strategy name (moderate when unknown)."""
    return table[resolve_strategy(name)]


def describe_strategy(
    name: Optional[str],
    table: Mapping[Strategy, Allocation] = STRATEGY_ALLOCATIONS,
) -> Dict[str, Any]:
    """Strategy description with its allocation."""
    strategy = resolve_strategy(name)
    return {
        "strategy": strategy.value,
        "description": STRATEGY_DESCRIPTIONS[strategy],
        "allocations": table[strategy].to_list(),
    }


def validate_target(
    target: Any,
    tolerance: Decimal = DEFAULT_TARGET_TOLERANCE,
) -> Allocation:
    """
    Validate a caller-supplied target allocation.

    Accepts an Allocation, a mapping of asset -> fraction, or a sequence of
    entries. An empty target is valid and means "nothing to do".

    Raises:
        InvalidTargetError: On malformed entries, fractions outside [0, 1],
            duplicate assets, or a total that is not 1.0 within tolerance
    """
    try:
        if isinstance(target, Allocation):
            allocation = target
        elif isinstance(target, Mapping):
            allocation = Allocation.from_entries(target.items())
        else:
            allocation = Allocation.from_entries(target or [])
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise InvalidTargetError(
            "Target allocation entries are malformed",
            details={"reason": str(e)},
        ) from e

    if allocation.is_empty:
        return allocation

    seen = set()
    for entry in allocation.entries:
        if not entry.asset:
            raise InvalidTargetError("Target allocation entry has no asset")
        if entry.asset in seen:
            raise InvalidTargetError(
                f"Duplicate asset in target allocation: {entry.asset}",
                details={"asset": entry.asset},
            )
        seen.add(entry.asset)
        if not entry.percentage.is_finite() or not Decimal("0") <= entry.percentage <= Decimal("1"):
            raise InvalidTargetError(
                f"Target percentage for {entry.asset} must be within [0, 1]",
                details={"asset": entry.asset, "percentage": str(entry.percentage)},
            )

    total = allocation.total
    if abs(total - Decimal("1")) > tolerance:
        raise InvalidTargetError(
            f"Target allocation must sum to 1.0, got {total}",
            details={"total": str(total), "tolerance": str(tolerance)},
        )
    return allocation


def current_allocation(snapshot: HoldingsSnapshot) -> Allocation:
    """
    Current allocation of a wallet.

    Value shares over priced holdings. If no holding has a positive value,
    falls back to quantity shares over all holdings (basis "quantity").
    """
    total_value = snapshot.total_value
    if total_value > 0:
        shares = {
            h.asset.key: h.value_usd / total_value
            for h in snapshot.priced_holdings
            if h.value_usd > 0
        }
        return Allocation.from_mapping(shares, basis="value")

    total_quantity = sum((h.quantity for h in snapshot.holdings), Decimal("0"))
    if total_quantity <= 0:
        return Allocation(basis="value")

    logger.info(
        "No priced holdings, using quantity-share allocation",
        extra={"wallet": snapshot.wallet},
    )
    shares = {h.asset.key: h.quantity / total_quantity for h in snapshot.holdings}
    return Allocation.from_mapping(shares, basis="quantity")


def bias_allocation(
    target: Allocation,
    suggestions: Sequence[SuggestedAllocation],
) -> Allocation:
    """
    Tilt a target allocation toward suggested assets.

    Each suggested asset is raised once by its first suggested increase
    (capped at 1.0); every other entry is scaled down so the total stays
    1.0.
    """
    if target.is_empty or not suggestions:
        return target

    increases: Dict[str, Decimal] = {}
    for suggestion in suggestions:
        increases.setdefault(suggestion.asset, suggestion.suggested_increase)

    shares = target.as_mapping()
    for asset, increase in increases.items():
        shares[asset] = min(Decimal("1"), shares.get(asset, Decimal("0")) + increase)

    boosted_total = sum((shares[a] for a in increases), Decimal("0"))
    if boosted_total >= 1:
        # Boosted assets alone fill the portfolio; scale them to 1.0
        scaled = {a: shares[a] / boosted_total for a in increases}
        return Allocation.from_mapping(scaled)

    rest = {a: p for a, p in shares.items() if a not in increases}
    rest_total = sum(rest.values(), Decimal("0"))
    remaining = Decimal("1") - boosted_total
    result = {a: shares[a] for a in increases}
    if rest_total > 0:
        for asset, pct in rest.items():
            result[asset] = pct * remaining / rest_total
    else:
        result = {a: p / boosted_total for a, p in result.items()}
    return Allocation.from_mapping(result)

