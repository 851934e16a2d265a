"""
Portfolio analysis API endpoints.

Thin transport over PortfolioAnalyzer: request parsing here, status
mapping in the global exception handler.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from ..strategy.analyzer import PortfolioAnalyzer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Portfolio Analysis"])


class TargetEntry(BaseModel):
    """One asset share of a custom target."""
    asset: str = Field(..., min_length=1, description="Allocation key (symbol, mint or 'other')")
    percentage: float = Field(..., description="Fraction of portfolio value in [0, 1]")


class CustomRebalanceRequest(BaseModel):
    """Request model for rebalancing toward a custom target."""
    target: List[TargetEntry] = Field(default_factory=list, description="Target allocation")
    apply_market_bias: bool = Field(default=False, description="Tilt target toward bullish trends")

    class Config:
        """Pydantic configuration."""
        json_schema_extra = {
            "example": {
                "target": [
                    {"asset": "SOL", "percentage": 0.5},
                    {"asset": "USDC", "percentage": 0.5},
                ],
                "apply_market_bias": False,
            }
        }


def get_analyzer(request: Request) -> PortfolioAnalyzer:
    """Analyzer created at startup and stored on the application state."""
    return request.app.state.analyzer


@router.get("/portfolio/{address}")
async def analyze_portfolio(
    address: str,
    analyzer: PortfolioAnalyzer = Depends(get_analyzer),
) -> Dict[str, Any]:
    """Full analysis: holdings, risk metrics, market insights and recommendations."""
    analysis = await analyzer.analyze(address)
    return analysis.to_dict()


@router.get("/risk/{address}")
async def get_risk_metrics(
    address: str,
    analyzer: PortfolioAnalyzer = Depends(get_analyzer),
) -> Dict[str, Any]:
    metrics = await analyzer.get_risk_metrics(address)
    return {"wallet": address, "risk_metrics": metrics.to_dict()}


@router.get("/rebalance/{address}")
async def get_rebalance_plan(
    address: str,
    strategy: Optional[str] = Query(None, description="conservative, moderate or aggressive"),
    apply_market_bias: bool = Query(False, description="Tilt target toward bullish trends"),
    analyzer: PortfolioAnalyzer = Depends(get_analyzer),
) -> Dict[str, Any]:
    plan = await analyzer.get_rebalance_plan(
        address, strategy=strategy, apply_market_bias=apply_market_bias
    )
    return {"wallet": address, **plan.to_dict()}


@router.post("/rebalance/{address}")
async def get_custom_rebalance_plan(
    address: str,
    request: CustomRebalanceRequest,
    analyzer: PortfolioAnalyzer = Depends(get_analyzer),
) -> Dict[str, Any]:
    """Rebalance plan toward a caller-supplied target allocation."""
    plan = await analyzer.get_rebalance_plan(
        address,
        target=[entry.model_dump() for entry in request.target],
        apply_market_bias=request.apply_market_bias,
    )
    return {"wallet": address, **plan.to_dict()}


@router.get("/insights")
async def get_market_insights(
    protocol: Optional[str] = Query(None, description="Source tag or 'all'"),
    analyzer: PortfolioAnalyzer = Depends(get_analyzer),
) -> Dict[str, Any]:
    signal_set = await analyzer.get_market_insights(protocol)
    return signal_set.to_dict()


@router.get("/strategies/{strategy}")
async def describe_strategy(
    strategy: str,
    analyzer: PortfolioAnalyzer = Depends(get_analyzer),
) -> Dict[str, Any]:
    return analyzer.describe_strategy(strategy)
