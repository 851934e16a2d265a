"""
Portfolio domain models.

Request-scoped value objects shared by the holdings builder, risk
calculator, signal aggregator and trade planner. All of them are frozen;
every request builds fresh instances.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

NATIVE_SYMBOL = "SOL"
OTHER_BUCKET = "other"


def _as_decimal(value: Any) -> Decimal:
    """Coerce ints, floats and strings to Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class TradeAction(str, Enum):
    """Rebalancing trade direction."""
    BUY = "buy"
    SELL = "sell"


class SignalKind(str, Enum):
    """Kinds of market signal."""
    TREND = "trend"
    OPPORTUNITY = "opportunity"


class TrendDirection(str, Enum):
    """Price trend direction reported by trend feeds."""
    BULLISH = "bullish"
    BEARISH = "bearish"
    STABLE = "stable"


@dataclass(frozen=True)
class Asset:
    """
    A fungible holding identity.

    Attributes:
        identifier: Token mint address, or the native symbol for SOL
        symbol: Human symbol when the mint is known
        is_native: True for the chain's base currency
    """

    identifier: str
    symbol: Optional[str] = None
    is_native: bool = False

    @property
    def key(self) -> str:
        """Allocation key: the symbol when known, otherwise the mint."""
        return self.symbol or self.identifier

    @classmethod
    def native(cls) -> "Asset":
        return cls(identifier=NATIVE_SYMBOL, symbol=NATIVE_SYMBOL, is_native=True)


@dataclass(frozen=True)
class Holding:
    """Asset quantity with an optional resolved USD value."""

    asset: Asset
    quantity: Decimal
    value_usd: Optional[Decimal] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", _as_decimal(self.quantity))
        if self.value_usd is not None:
            object.__setattr__(self, "value_usd", _as_decimal(self.value_usd))
        if self.quantity < 0:
            raise ValueError(f"Holding quantity cannot be negative: {self.quantity}")

    @property
    def priced(self) -> bool:
        return self.value_usd is not None

    def with_value(self, value_usd: Optional[Decimal]) -> "Holding":
        return replace(self, value_usd=value_usd)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset": self.asset.key,
            "mint": None if self.asset.is_native else self.asset.identifier,
            "is_native": self.asset.is_native,
            "quantity": str(self.quantity),
            "value_usd": str(self.value_usd) if self.value_usd is not None else None,
            "priced": self.priced,
        }


@dataclass(frozen=True)
class HoldingsSnapshot:
    """
    All holdings of one wallet at a point in time.

    Holdings keep discovery order, with at most one entry per asset.
    Total value only counts priced holdings; unpriced ones are exposed
    separately so callers can flag incomplete pricing.
    """

    wallet: str
    holdings: Tuple[Holding, ...]
    native_balance: Decimal
    captured_at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "holdings", tuple(self.holdings))
        object.__setattr__(self, "native_balance", _as_decimal(self.native_balance))
        seen = set()
        for holding in self.holdings:
            if holding.asset.identifier in seen:
                raise ValueError(f"Duplicate holding for asset {holding.asset.identifier}")
            seen.add(holding.asset.identifier)

    @property
    def total_value(self) -> Decimal:
        return sum((h.value_usd for h in self.holdings if h.value_usd is not None), Decimal("0"))

    @property
    def priced_holdings(self) -> Tuple[Holding, ...]:
        return tuple(h for h in self.holdings if h.priced)

    @property
    def unpriced_holdings(self) -> Tuple[Holding, ...]:
        return tuple(h for h in self.holdings if not h.priced)

    @property
    def pricing_complete(self) -> bool:
        return all(h.priced for h in self.holdings)

    @property
    def distinct_asset_count(self) -> int:
        return len(self.holdings)

    @property
    def native_holding(self) -> Optional[Holding]:
        for holding in self.holdings:
            if holding.asset.is_native:
                return holding
        return None

    @property
    def native_value(self) -> Decimal:
        """USD value of the native balance, zero when unpriced or absent."""
        native = self.native_holding
        if native is None or native.value_usd is None:
            return Decimal("0")
        return native.value_usd

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallet": self.wallet,
            "native_balance": str(self.native_balance),
            "holdings": [h.to_dict() for h in self.holdings],
            "asset_count": self.distinct_asset_count,
            "total_value_usd": str(self.total_value),
            "pricing_complete": self.pricing_complete,
            "unpriced_assets": [h.asset.key for h in self.unpriced_holdings],
            "captured_at": self.captured_at.isoformat(),
        }


@dataclass(frozen=True)
class AllocationEntry:
    """Share of portfolio value held in one asset (fraction in [0, 1])."""

    asset: str
    percentage: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "percentage", _as_decimal(self.percentage))

    def to_dict(self) -> Dict[str, Any]:
        return {"asset": self.asset, "percentage": float(self.percentage)}


@dataclass(frozen=True)
class Allocation:
    """
    Ordered allocation, most significant entry first.

    ``basis`` is "value" when shares come from USD values and "quantity"
    for the fallback used when no holding could be priced.
    """

    entries: Tuple[AllocationEntry, ...] = ()
    basis: str = "value"

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", tuple(self.entries))

    @classmethod
    def from_mapping(cls, shares: Mapping[str, Any], basis: str = "value") -> "Allocation":
        """Build an allocation ordered by descending share, then asset key."""
        entries = [AllocationEntry(asset, pct) for asset, pct in shares.items()]
        entries.sort(key=lambda e: (-e.percentage, e.asset))
        return cls(entries=tuple(entries), basis=basis)

    @classmethod
    def from_entries(cls, entries: Iterable[Any]) -> "Allocation":
        """Accept AllocationEntry objects, (asset, pct) pairs or dicts."""
        parsed: List[AllocationEntry] = []
        for entry in entries:
            if isinstance(entry, AllocationEntry):
                parsed.append(entry)
            elif isinstance(entry, Mapping):
                asset = entry.get("asset", entry.get("token"))
                parsed.append(AllocationEntry(str(asset), entry["percentage"]))
            else:
                asset, pct = entry
                parsed.append(AllocationEntry(str(asset), pct))
        return cls(entries=tuple(parsed))

    @property
    def total(self) -> Decimal:
        return sum((e.percentage for e in self.entries), Decimal("0"))

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def as_mapping(self) -> Dict[str, Decimal]:
        return {e.asset: e.percentage for e in self.entries}

    def get(self, asset: str) -> Decimal:
        for entry in self.entries:
            if entry.asset == asset:
                return entry.percentage
        return Decimal("0")

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.entries]


@dataclass(frozen=True)
class RiskMetrics:
    """Risk vector for one wallet. All values lie in [0, 1]."""

    concentration_risk: float
    volatility_estimate: float
    diversification_score: float
    native_asset_exposure: float
    liquid_assets_ratio: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "concentration_risk": self.concentration_risk,
            "volatility_estimate": self.volatility_estimate,
            "diversification_score": self.diversification_score,
            "native_asset_exposure": self.native_asset_exposure,
            "liquid_assets_ratio": self.liquid_assets_ratio,
        }


@dataclass(frozen=True)
class Trade:
    """
    One rebalancing step.

    Attributes:
        action: Buy or sell
        asset: Allocation key of the traded asset
        amount: Asset units to trade (always positive)
        estimated_cost: Fee estimate in SOL
        delta: Signed share change this trade closes
        value_usd: USD notional (or quantity units on the quantity basis)
    """

    action: TradeAction
    asset: str
    amount: Decimal
    estimated_cost: Decimal
    delta: Decimal = Decimal("0")
    value_usd: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError(f"Trade amount must be positive: {self.amount}")
        if self.estimated_cost < 0:
            raise ValueError(f"Trade cost cannot be negative: {self.estimated_cost}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "asset": self.asset,
            "amount": str(self.amount),
            "estimated_cost": str(self.estimated_cost),
            "delta": float(self.delta),
            "value_usd": str(self.value_usd),
        }


@dataclass(frozen=True)
class RebalancePlan:
    """Ordered trades closing the gap between current and target allocation."""

    current_allocation: Allocation
    target_allocation: Allocation
    trades: Tuple[Trade, ...] = ()
    total_estimated_cost: Decimal = Decimal("0")
    estimated_risk_reduction: float = 0.0
    skipped_assets: Tuple[str, ...] = ()
    strategy: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "current_allocation": self.current_allocation.to_list(),
            "current_allocation_basis": self.current_allocation.basis,
            "target_allocation": self.target_allocation.to_list(),
            "trades": [t.to_dict() for t in self.trades],
            "total_estimated_cost": str(self.total_estimated_cost),
            "estimated_risk_reduction": self.estimated_risk_reduction,
            "skipped_assets": list(self.skipped_assets),
        }


@dataclass(frozen=True)
class MarketSignal:
    """
    Normalized market datum from one source.

    Trend signals carry ``direction`` and ``confidence``; opportunity
    signals carry ``apr``, ``liquidity`` and ``risk_tier``.
    """

    source: str
    subject: str
    kind: SignalKind
    direction: Optional[TrendDirection] = None
    confidence: Optional[float] = None
    apr: Optional[float] = None
    liquidity: Optional[Decimal] = None
    risk_tier: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.kind is SignalKind.TREND:
            return {
                "source": self.source,
                "asset": self.subject,
                "trend": self.direction.value if self.direction else None,
                "confidence": self.confidence,
            }
        return {
            "source": self.source,
            "route": self.subject,
            "apr": self.apr,
            "liquidity": str(self.liquidity) if self.liquidity is not None else None,
            "risk": self.risk_tier,
        }


@dataclass(frozen=True)
class SourceSignals:
    """Everything one market source contributed, plus its availability."""

    tag: str
    available: bool
    signals: Tuple[MarketSignal, ...] = ()
    volatility: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "available": self.available,
            "error": self.error,
            "volatility": self.volatility,
            "signals": [s.to_dict() for s in self.signals],
        }


@dataclass(frozen=True)
class SuggestedAllocation:
    """Incremental allocation increase derived from a bullish trend."""

    asset: str
    suggested_increase: Decimal
    source: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset": self.asset,
            "suggested_increase": float(self.suggested_increase),
            "source": self.source,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class MarketSignalSet:
    """Merged output of all market sources, in configured source order."""

    sources: Tuple[SourceSignals, ...] = ()
    suggested_allocations: Tuple[SuggestedAllocation, ...] = ()
    market_volatility: float = 0.5
    captured_at: Optional[datetime] = field(default=None, compare=False)

    @property
    def partial(self) -> bool:
        """True when at least one source failed to answer."""
        return any(not s.available for s in self.sources)

    @property
    def availability(self) -> Dict[str, bool]:
        return {s.tag: s.available for s in self.sources}

    def signals(self, kind: Optional[SignalKind] = None) -> List[MarketSignal]:
        return [
            signal
            for source in self.sources
            for signal in source.signals
            if kind is None or signal.kind is kind
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sources": {s.tag: s.to_dict() for s in self.sources},
            "opportunities": [s.to_dict() for s in self.signals(SignalKind.OPPORTUNITY)],
            "trends": [s.to_dict() for s in self.signals(SignalKind.TREND)],
            "market_volatility": self.market_volatility,
            "suggested_allocations": [s.to_dict() for s in self.suggested_allocations],
            "partial": self.partial,
            "captured_at": self.captured_at.isoformat() if self.captured_at else None,
        }
