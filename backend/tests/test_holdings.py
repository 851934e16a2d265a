"""
Tests for wallet validation, holdings normalization and snapshot building.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import WALLET, UNKNOWN_MINT, FakeHoldingsSource
from optimus.chains.base import RawHoldings, USDC_MINT
from optimus.core.exceptions import InvalidWalletError, SourceUnavailableError
from optimus.services.pricing import StaticPriceResolver
from optimus.strategy.holdings import HoldingsSnapshotBuilder, normalize_holdings, validate_wallet


class TestValidateWallet:
    """Wallet identifier validation."""

    def test_valid_wallet_is_stripped(self):
        assert validate_wallet(f"  {WALLET} ") == WALLET

    @pytest.mark.parametrize("wallet", ["", "   ", "not-a-wallet", "0x1234567890abcdef", "1" * 60])
    def test_invalid_wallets(self, wallet):
        with pytest.raises(InvalidWalletError) as exc_info:
            validate_wallet(wallet)
        assert exc_info.value.error_code == "INVALID_WALLET"
        assert exc_info.value.status_code == 400


class TestNormalizeHoldings:
    """Raw holdings to typed, deduplicated holdings."""

    def test_native_first_and_mints_merged(self):
        raw = RawHoldings(
            native_balance=Decimal("1.5"),
            token_accounts=[
                {"mint": USDC_MINT, "amount": "1000000", "decimals": 6},
                {"mint": UNKNOWN_MINT, "amount": "42", "decimals": 0},
                {"mint": USDC_MINT, "amount": "0", "decimals": 6, "ui_amount": "2.5"},
            ],
        )

        holdings = normalize_holdings(raw)

        assert [h.asset.key for h in holdings] == ["SOL", "USDC", UNKNOWN_MINT]
        assert holdings[0].asset.is_native
        assert holdings[1].quantity == Decimal("3.5")
        assert holdings[2].asset.symbol is None

    def test_malformed_and_empty_accounts_dropped(self):
        raw = RawHoldings(
            native_balance=Decimal("0"),
            token_accounts=[
                {"amount": "5", "decimals": 0},
                {"mint": USDC_MINT, "amount": "-1", "decimals": 6},
                {"mint": UNKNOWN_MINT, "amount": "abc"},
                {"mint": UNKNOWN_MINT, "amount": "0", "decimals": 9},
                {"mint": USDC_MINT, "amount": "7000000", "decimals": 6},
            ],
        )

        holdings = normalize_holdings(raw)

        assert len(holdings) == 1
        assert holdings[0].asset.key == "USDC"
        assert holdings[0].quantity == Decimal("7")

    def test_zero_native_balance_is_not_a_holding(self):
        assert normalize_holdings(RawHoldings(native_balance=Decimal("0"))) == []


class TestHoldingsSnapshotBuilder:
    """Test suite for HoldingsSnapshotBuilder."""

    @pytest.fixture
    def resolver(self):
        return StaticPriceResolver({"SOL": "100", USDC_MINT: "1"})

    @pytest.mark.asyncio
    async def test_build_values_holdings(self, resolver):
        source = FakeHoldingsSource({
            "native_balance": "2",
            "token_accounts": [
                {"mint": USDC_MINT, "amount": "50000000", "decimals": 6},
                {"mint": UNKNOWN_MINT, "amount": "1000", "decimals": 0},
            ],
        })

        snapshot = await HoldingsSnapshotBuilder(source, resolver).build(WALLET)

        assert source.calls == [WALLET]
        assert snapshot.wallet == WALLET
        assert snapshot.native_balance == Decimal("2")
        assert snapshot.total_value == Decimal("250")
        assert snapshot.distinct_asset_count == 3
        assert not snapshot.pricing_complete
        assert [h.asset.key for h in snapshot.unpriced_holdings] == [UNKNOWN_MINT]

    @pytest.mark.asyncio
    async def test_invalid_wallet_never_reaches_source(self, resolver):
        source = FakeHoldingsSource()

        with pytest.raises(InvalidWalletError):
            await HoldingsSnapshotBuilder(source, resolver).build("bad wallet")
        assert source.calls == []

    @pytest.mark.asyncio
    async def test_source_failure_is_source_unavailable(self, resolver):
        source = FakeHoldingsSource(error=ConnectionError("rpc down"))

        with pytest.raises(SourceUnavailableError) as exc_info:
            await HoldingsSnapshotBuilder(source, resolver).build(WALLET)
        assert exc_info.value.status_code == 500
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_malformed_payload_is_source_unavailable(self, resolver):
        source = FakeHoldingsSource({"native_balance": "-3", "token_accounts": []})

        with pytest.raises(SourceUnavailableError):
            await HoldingsSnapshotBuilder(source, resolver).build(WALLET)

    @pytest.mark.asyncio
    async def test_resolver_errors_leave_holding_unpriced(self):
        class BrokenResolver:
            async def resolve_value(self, asset, quantity):
                if asset.is_native:
                    raise RuntimeError("price feed down")
                return Decimal("-5")

        source = FakeHoldingsSource({
            "native_balance": "1",
            "token_accounts": [{"mint": USDC_MINT, "amount": "1", "decimals": 0}],
        })

        snapshot = await HoldingsSnapshotBuilder(source, BrokenResolver()).build(WALLET)

        assert snapshot.distinct_asset_count == 2
        assert snapshot.priced_holdings == ()
        assert snapshot.total_value == Decimal("0")
