"""
Tests for the risk metrics calculator.

Validates step functions, value-weighted ratios and unpriced handling.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import make_snapshot, sol, token, UNKNOWN_MINT
from optimus.chains.base import USDC_MINT
from optimus.strategy.models import Holding
from optimus.strategy.risk_metrics import (
    ConstantVolatilityEstimator,
    RiskMetricsCalculator,
    concentration_risk,
    diversification_score,
)


class TestStepFunctions:
    """Concentration and diversification breakpoints."""

    @pytest.mark.parametrize(
        "count, expected",
        [(0, 1.0), (1, 1.0), (2, 0.6), (3, 0.4), (4, 0.4), (5, 0.2), (9, 0.2), (10, 0.2), (11, 0.2)],
    )
    def test_concentration_breakpoints(self, count, expected):
        assert concentration_risk(count) == expected

    @pytest.mark.parametrize(
        "count, expected",
        [(0, 0.0), (1, 0.2), (2, 0.4), (3, 0.6), (4, 0.6), (5, 0.8), (9, 0.8), (10, 1.0), (11, 1.0)],
    )
    def test_diversification_breakpoints(self, count, expected):
        assert diversification_score(count) == expected

    def test_monotonic_and_bounded(self):
        """Concentration never rises and diversification never falls with more assets."""
        previous_risk, previous_score = concentration_risk(0), diversification_score(0)
        for count in range(1, 50):
            risk, score = concentration_risk(count), diversification_score(count)
            assert 0.0 <= risk <= 1.0
            assert 0.0 <= score <= 1.0
            assert risk <= previous_risk
            assert score >= previous_score
            previous_risk, previous_score = risk, score


class TestRiskMetricsCalculator:
    """Test suite for RiskMetricsCalculator."""

    @pytest.fixture
    def calculator(self):
        return RiskMetricsCalculator()

    def test_empty_wallet(self, calculator):
        metrics = calculator.calculate(make_snapshot())

        assert metrics.concentration_risk == 1.0
        assert metrics.diversification_score == 0.0
        assert metrics.native_asset_exposure == 0.0
        assert metrics.liquid_assets_ratio == 1.0
        assert metrics.volatility_estimate == 0.5

    def test_native_exposure_zero_when_nothing_priced(self, calculator):
        snapshot = make_snapshot(sol(5), token(UNKNOWN_MINT, 1000))

        metrics = calculator.calculate(snapshot)

        assert snapshot.total_value == Decimal("0")
        assert metrics.native_asset_exposure == 0.0
        assert metrics.concentration_risk == 0.6

    def test_native_exposure_is_value_share(self, calculator):
        snapshot = make_snapshot(sol(2, 300), token(USDC_MINT, 100, 100, symbol="USDC"))

        metrics = calculator.calculate(snapshot)

        assert metrics.native_asset_exposure == pytest.approx(0.75)

    def test_unpriced_holdings_count_but_do_not_weigh(self, calculator):
        """Unpriced holdings count toward concentration but not toward value ratios."""
        snapshot = make_snapshot(
            sol(1, 100),
            token(USDC_MINT, 100, 100, symbol="USDC"),
            token(UNKNOWN_MINT, 5_000_000),
        )

        metrics = calculator.calculate(snapshot)

        assert metrics.concentration_risk == 0.4
        assert metrics.diversification_score == 0.6
        assert metrics.native_asset_exposure == pytest.approx(0.5)

    def test_custom_estimators(self):
        class StablecoinsOnly:
            def is_liquid(self, holding: Holding) -> bool:
                return holding.asset.symbol == "USDC"

        calculator = RiskMetricsCalculator(
            volatility_estimator=ConstantVolatilityEstimator(1.7),
            liquidity_classifier=StablecoinsOnly(),
        )
        snapshot = make_snapshot(sol(1, 150), token(USDC_MINT, 50, 50, symbol="USDC"))

        metrics = calculator.calculate(snapshot)

        assert metrics.liquid_assets_ratio == pytest.approx(0.25)
        assert metrics.volatility_estimate == 1.0  # clamped

    def test_all_fields_in_unit_interval(self, calculator):
        snapshot = make_snapshot(
            sol(0.2, 20),
            *[token(f"Mint{i:040d}", 1, 10) for i in range(12)],
        )

        for value in calculator.calculate(snapshot).to_dict().values():
            assert 0.0 <= value <= 1.0
