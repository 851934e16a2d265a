"""
Tests for the portfolio API router and error mapping.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import WALLET, FakeHoldingsSource
from optimus.chains.base import USDC_MINT
from optimus.main import create_app
from optimus.services.market_sources import reference_sources
from optimus.services.pricing import StaticPriceResolver
from optimus.strategy.analyzer import PortfolioAnalyzer


def make_client(source: FakeHoldingsSource) -> TestClient:
    analyzer = PortfolioAnalyzer(
        holdings_source=source,
        price_resolver=StaticPriceResolver({"SOL": 100, USDC_MINT: 1}),
        market_sources=reference_sources(),
    )
    return TestClient(create_app(analyzer=analyzer), raise_server_exceptions=False)


class TestPortfolioApi:
    """Test suite for the portfolio endpoints."""

    @pytest.fixture
    def client(self):
        return make_client(FakeHoldingsSource({
            "native_balance": "4",
            "token_accounts": [{"mint": USDC_MINT, "amount": "600000000", "decimals": 6}],
        }))

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "OK"

    def test_analyze(self, client):
        response = client.get(f"/portfolio/{WALLET}")

        assert response.status_code == 200
        body = response.json()
        assert body["wallet"] == WALLET
        assert body["risk_level"] == "MEDIUM"
        assert body["holdings"]["total_value_usd"] == "1000"
        assert body["recommendations"][0] == "Diversify portfolio with additional assets"
        assert body["market_insights"]["partial"] is False

    def test_invalid_wallet_is_400(self, client):
        response = client.get("/portfolio/not-a-wallet")

        assert response.status_code == 400
        body = response.json()
        assert body["error"] is True
        assert body["error_code"] == "INVALID_WALLET"
        assert body["trace_id"]

    def test_risk(self, client):
        response = client.get(f"/risk/{WALLET}")

        assert response.status_code == 200
        assert response.json()["risk_metrics"]["concentration_risk"] == 0.6

    def test_rebalance_by_strategy(self, client):
        response = client.get(f"/rebalance/{WALLET}", params={"strategy": "conservative"})

        assert response.status_code == 200
        body = response.json()
        assert body["strategy"] == "conservative"
        assert [(t["action"], t["asset"]) for t in body["trades"]] == [("sell", "SOL"), ("sell", "USDC")]
        assert body["skipped_assets"] == ["other"]

    def test_rebalance_custom_target(self, client):
        response = client.post(
            f"/rebalance/{WALLET}",
            json={"target": [{"asset": "SOL", "percentage": 0.5}, {"asset": "USDC", "percentage": 0.5}]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["strategy"] == "custom"
        assert [(t["action"], t["asset"]) for t in body["trades"]] == [("sell", "USDC"), ("buy", "SOL")]
        assert body["total_estimated_cost"] == "0.0010"

    def test_invalid_target_is_400(self, client):
        response = client.post(
            f"/rebalance/{WALLET}",
            json={"target": [{"asset": "SOL", "percentage": 0.6}, {"asset": "USDC", "percentage": 0.6}]},
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_TARGET"

    def test_nan_percentage_is_400(self, client):
        response = client.post(
            f"/rebalance/{WALLET}",
            content='{"target": [{"asset": "SOL", "percentage": NaN}]}',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_TARGET"

    def test_insights(self, client):
        response = client.get("/insights", params={"protocol": "pyth"})

        assert response.status_code == 200
        body = response.json()
        assert list(body["sources"]) == ["pyth"]
        assert body["suggested_allocations"][0]["asset"] == "SOL"

    def test_strategy_description(self, client):
        response = client.get("/strategies/unknown")

        assert response.status_code == 200
        assert response.json()["strategy"] == "moderate"

    def test_source_unavailable_is_500(self):
        client = make_client(FakeHoldingsSource(error=ConnectionError("rpc down")))

        response = client.get(f"/portfolio/{WALLET}")

        assert response.status_code == 500
        assert response.json()["error_code"] == "SOURCE_UNAVAILABLE"
