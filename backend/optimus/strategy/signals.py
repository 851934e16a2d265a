"""
Market signal aggregation.

Fans out to every configured market-data source concurrently, each with
its own timeout, and merges the answers into a MarketSignalSet. A source
that errors, times out or misses the request deadline is marked
unavailable; aggregation itself never fails.
"""

from __future__ import annotations

import asyncio
import logging
import math
import statistics
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..services.market_sources import MarketDataSource
from .models import (
    MarketSignal,
    MarketSignalSet,
    SignalKind,
    SourceSignals,
    SuggestedAllocation,
    TrendDirection,
)

logger = logging.getLogger(__name__)

DEFAULT_MARKET_VOLATILITY = 0.5

SourceFilter = Union[None, str, Iterable[str]]


class RawOpportunity(BaseModel):
    """Opportunity entry as published by a feed."""

    route: str = Field(..., min_length=1)
    apr: Optional[float] = None
    liquidity: Optional[Decimal] = Field(default=None, ge=0)
    risk: Optional[str] = None


class RawTrend(BaseModel):
    """Trend entry as published by a feed."""

    token: str = Field(..., min_length=1)
    trend: TrendDirection
    confidence: float = Field(..., ge=0.0, le=1.0)

    @field_validator("trend", mode="before")
    @classmethod
    def lower_trend(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


def _normalize_opportunities(tag: str, entries: Any) -> List[MarketSignal]:
    if not isinstance(entries, (list, tuple)):
        raise ValueError(f"opportunities payload is {type(entries).__name__}, expected a list")
    signals = []
    for entry in entries:
        try:
            raw = RawOpportunity.model_validate(entry)
        except ValidationError:
            logger.warning(f"Dropping malformed opportunity from {tag}", extra={"source": tag})
            continue
        signals.append(
            MarketSignal(
                source=tag,
                subject=raw.route,
                kind=SignalKind.OPPORTUNITY,
                apr=raw.apr,
                liquidity=raw.liquidity,
                risk_tier=raw.risk,
            )
        )
    return signals


def _normalize_trends(tag: str, payload: Any) -> Tuple[List[MarketSignal], Optional[float]]:
    volatility = None
    entries = payload
    if isinstance(payload, dict):
        entries = payload.get("trends") or []
        raw_volatility = payload.get("volatility")
        if isinstance(raw_volatility, (int, float)) and not isinstance(raw_volatility, bool):
            if math.isfinite(raw_volatility):
                volatility = min(max(float(raw_volatility), 0.0), 1.0)
            else:
                logger.warning(f"Ignoring non-finite volatility from {tag}", extra={"source": tag})
    if entries is None:
        entries = []
    if not isinstance(entries, (list, tuple)):
        raise ValueError(f"trends payload is {type(entries).__name__}, expected a list")

    signals = []
    for entry in entries:
        if isinstance(entry, dict) and "token" not in entry and "asset" in entry:
            entry = {**entry, "token": entry["asset"]}
        try:
            raw = RawTrend.model_validate(entry)
        except ValidationError:
            logger.warning(f"Dropping malformed trend from {tag}", extra={"source": tag})
            continue
        signals.append(
            MarketSignal(
                source=tag,
                subject=raw.token,
                kind=SignalKind.TREND,
                direction=raw.trend,
                confidence=raw.confidence,
            )
        )
    return signals, volatility


def derive_suggestions(
    sources: Sequence[SourceSignals],
    step: Decimal,
    confidence_threshold: float,
) -> Tuple[SuggestedAllocation, ...]:
    """
    Suggest an allocation increase for every confident bullish trend.

    Order follows source order, then trend order within each source.
    """
    return tuple(
        SuggestedAllocation(
            asset=signal.subject,
            suggested_increase=step,
            source=source.tag,
            confidence=signal.confidence,
        )
        for source in sources
        for signal in source.signals
        if signal.kind is SignalKind.TREND
        and signal.direction is TrendDirection.BULLISH
        and signal.confidence is not None
        and signal.confidence > confidence_threshold
    )


class MarketSignalAggregator:
    """Concurrent, failure-tolerant merge of market-data sources."""

    def __init__(
        self,
        sources: Sequence[MarketDataSource],
        source_timeout: float = 5.0,
        suggestion_step: Decimal = Decimal("0.05"),
        confidence_threshold: float = 0.6,
    ) -> None:
        self.sources = tuple(sources)
        self.source_timeout = source_timeout
        self.suggestion_step = suggestion_step
        self.confidence_threshold = confidence_threshold

    def select_sources(self, source_filter: SourceFilter = None) -> List[MarketDataSource]:
        """Pick sources by tag; None or "all" selects every source."""
        if source_filter is None:
            return list(self.sources)
        if isinstance(source_filter, str):
            if source_filter.strip().lower() == "all":
                return list(self.sources)
            wanted = {source_filter.strip().lower()}
        else:
            wanted = {tag.strip().lower() for tag in source_filter}
        return [source for source in self.sources if source.tag.lower() in wanted]

    async def collect(
        self,
        source_filter: SourceFilter = None,
        deadline: Optional[float] = None,
    ) -> MarketSignalSet:
        """
        Fetch and merge signals from the selected sources.

        Args:
            source_filter: Tag, list of tags, "all" or None
            deadline: Seconds allowed for the whole fan-out; sources still
                running afterwards are cancelled and marked unavailable

        Returns:
            MarketSignalSet in configured source order
        """
        selected = self.select_sources(source_filter)
        tasks = [asyncio.create_task(self._fetch_source(source)) for source in selected]

        pending = set()
        if tasks:
            try:
                _, pending = await asyncio.wait(tasks, timeout=deadline)
            except asyncio.CancelledError:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        results: List[SourceSignals] = []
        for source, task in zip(selected, tasks):
            if task in pending or task.cancelled():
                logger.warning(
                    f"Market source {source.tag} missed the request deadline",
                    extra={"source": source.tag},
                )
                results.append(SourceSignals(tag=source.tag, available=False, error="deadline exceeded"))
            else:
                results.append(task.result())

        volatilities = [r.volatility for r in results if r.available and r.volatility is not None]
        signal_set = MarketSignalSet(
            sources=tuple(results),
            suggested_allocations=derive_suggestions(
                results, self.suggestion_step, self.confidence_threshold
            ),
            market_volatility=statistics.fmean(volatilities) if volatilities else DEFAULT_MARKET_VOLATILITY,
            captured_at=datetime.now(timezone.utc),
        )

        if signal_set.partial:
            logger.info(
                "Market data is partial",
                extra={"extra_data": {"availability": signal_set.availability}},
            )
        return signal_set

    async def _fetch_source(self, source: MarketDataSource) -> SourceSignals:
        started = time.monotonic()
        try:
            opportunities, trends = await asyncio.wait_for(
                asyncio.gather(source.fetch_opportunities(), source.fetch_trends()),
                timeout=self.source_timeout,
            )
            signals = _normalize_opportunities(source.tag, opportunities or [])
            trend_signals, volatility = _normalize_trends(source.tag, trends)
        except asyncio.TimeoutError:
            logger.warning(
                f"Market source {source.tag} timed out after {self.source_timeout}s",
                extra={"source": source.tag},
            )
            return SourceSignals(
                tag=source.tag,
                available=False,
                error=f"timed out after {self.source_timeout}s",
            )
        except Exception as e:
            logger.warning(
                f"Market source {source.tag} failed: {e}",
                extra={"source": source.tag, "extra_data": {"error_type": type(e).__name__}},
            )
            return SourceSignals(tag=source.tag, available=False, error=str(e) or type(e).__name__)

        signals.extend(trend_signals)

        logger.debug(
            f"Market source {source.tag} returned {len(signals)} signals",
            extra={
                "source": source.tag,
                "extra_data": {"latency_ms": round((time.monotonic() - started) * 1000, 1)},
            },
        )
        return SourceSignals(
            tag=source.tag,
            available=True,
            signals=tuple(signals),
            volatility=volatility,
        )
