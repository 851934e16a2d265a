"""
Holdings snapshot builder.

Turns raw account data for one wallet into a typed, deduplicated
HoldingsSnapshot and values each holding through the price resolver.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Union

from pydantic import ValidationError
from solders.pubkey import Pubkey

from ..chains.base import HoldingsSource, RawHoldings, RawTokenAccount, asset_for_mint
from ..core.exceptions import InvalidWalletError, OptimusError, SourceUnavailableError
from ..services.pricing import PriceResolver
from .models import Asset, Holding, HoldingsSnapshot

logger = logging.getLogger(__name__)


def validate_wallet(wallet: str) -> str:
    """
    Validate a base58 Solana wallet address.

    Args:
        wallet: Candidate address

    Returns:
        The stripped address

    Raises:
        InvalidWalletError: If the address is not a valid public key
    """
    if not isinstance(wallet, str) or not wallet.strip():
        raise InvalidWalletError(
            "Wallet address is required",
            details={"wallet": wallet if isinstance(wallet, str) else None},
        )

    wallet = wallet.strip()
    try:
        Pubkey.from_string(wallet)
    except Exception as e:
        raise InvalidWalletError(
            f"Invalid wallet address: {wallet}",
            details={"wallet": wallet, "reason": str(e)},
        ) from e
    return wallet


def normalize_holdings(raw: RawHoldings) -> List[Holding]:
    """
    Merge raw balances into one holding per asset, in discovery order.

    The native balance comes first. Token accounts sharing a mint are
    summed; malformed or empty accounts are dropped.
    """
    merged: Dict[str, Holding] = {}

    if raw.native_balance > 0:
        native = Asset.native()
        merged[native.identifier] = Holding(native, raw.native_balance)

    for index, entry in enumerate(raw.token_accounts):
        try:
            account = RawTokenAccount.model_validate(entry)
        except ValidationError as e:
            logger.warning(
                f"Dropping malformed token account #{index}",
                extra={"extra_data": {"errors": e.error_count(), "entry": str(entry)[:200]}},
            )
            continue

        quantity = account.quantity
        if quantity <= 0:
            continue

        existing = merged.get(account.mint)
        if existing is None:
            merged[account.mint] = Holding(asset_for_mint(account.mint), quantity)
        else:
            merged[account.mint] = Holding(existing.asset, existing.quantity + quantity)

    return list(merged.values())


class HoldingsSnapshotBuilder:
    """Builds holdings snapshots from a holdings source and a price resolver."""

    def __init__(self, source: HoldingsSource, price_resolver: PriceResolver) -> None:
        self.source = source
        self.price_resolver = price_resolver

    async def build(self, wallet: str, captured_at: Optional[datetime] = None) -> HoldingsSnapshot:
        """
        Build a valued snapshot for a wallet.

        Args:
            wallet: Wallet address
            captured_at: Snapshot timestamp (defaults to now, UTC)

        Returns:
            HoldingsSnapshot with values resolved where possible

        Raises:
            InvalidWalletError: If the wallet address is malformed
            SourceUnavailableError: If the holdings source fails
        """
        wallet = validate_wallet(wallet)
        raw = await self._fetch_raw(wallet)

        holdings = normalize_holdings(raw)
        valued = await self._resolve_values(holdings)

        snapshot = HoldingsSnapshot(
            wallet=wallet,
            holdings=tuple(valued),
            native_balance=raw.native_balance,
            captured_at=captured_at or datetime.now(timezone.utc),
        )

        logger.info(
            f"Built holdings snapshot with {snapshot.distinct_asset_count} assets",
            extra={
                "wallet": wallet,
                "extra_data": {
                    "total_value_usd": str(snapshot.total_value),
                    "unpriced": len(snapshot.unpriced_holdings),
                },
            },
        )
        return snapshot

    async def _fetch_raw(self, wallet: str) -> RawHoldings:
        try:
            raw: Union[RawHoldings, Mapping] = await self.source.fetch_holdings(wallet)
        except OptimusError:
            raise
        except Exception as e:
            logger.error(
                f"Holdings source failed: {e}",
                extra={"wallet": wallet, "extra_data": {"error_type": type(e).__name__}},
            )
            raise SourceUnavailableError(
                "Holdings source unavailable",
                details={"wallet": wallet, "reason": str(e)},
            ) from e

        if isinstance(raw, RawHoldings):
            return raw
        try:
            return RawHoldings.model_validate(raw)
        except ValidationError as e:
            raise SourceUnavailableError(
                "Holdings source returned malformed data",
                details={"wallet": wallet, "errors": e.error_count()},
            ) from e

    async def _resolve_values(self, holdings: List[Holding]) -> List[Holding]:
        values = await asyncio.gather(*(self._resolve_one(h) for h in holdings))
        return [h.with_value(v) for h, v in zip(holdings, values)]

    async def _resolve_one(self, holding: Holding) -> Optional[Decimal]:
        try:
            value = await self.price_resolver.resolve_value(holding.asset, holding.quantity)
        except Exception as e:
            logger.warning(
                f"Price resolution failed for {holding.asset.key}: {e}",
                extra={"extra_data": {"asset": holding.asset.key}},
            )
            return None

        if value is None:
            return None
        value = Decimal(str(value))
        if value < 0:
            logger.warning(f"Ignoring negative value for {holding.asset.key}")
            return None
        return value
