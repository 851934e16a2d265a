"""
Holdings-source boundary: raw account payloads and the token registry.

Raw data enters the engine here and is validated with pydantic before
it becomes typed holdings.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field, field_validator

from ..strategy.models import Asset

# Well-known SPL mints
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
JLP_MINT = "27G8MtK7VtTcCHkpASjSDdkWWYfoqT6ggEuKidVJidD4"
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"

KNOWN_TOKENS: Dict[str, str] = {
    USDC_MINT: "USDC",
    USDT_MINT: "USDT",
    JLP_MINT: "JLP",
    WRAPPED_SOL_MINT: "wSOL",
}

SYMBOL_TO_MINT: Dict[str, str] = {symbol: mint for mint, symbol in KNOWN_TOKENS.items()}


def asset_for_mint(mint: str) -> Asset:
    """Build the Asset for a token mint, labelled when the mint is known."""
    return Asset(identifier=mint, symbol=KNOWN_TOKENS.get(mint))


def asset_for_key(key: str) -> Optional[Asset]:
    """
    Map an allocation key back to an Asset.

    Returns None for keys that name no concrete asset (e.g. "other",
    "growth_tokens").
    """
    if key == Asset.native().key:
        return Asset.native()
    if key in SYMBOL_TO_MINT:
        return asset_for_mint(SYMBOL_TO_MINT[key])
    if key in KNOWN_TOKENS or _looks_like_mint(key):
        return asset_for_mint(key)
    return None


def _looks_like_mint(key: str) -> bool:
    return 32 <= len(key) <= 44 and key.isalnum()


class RawTokenAccount(BaseModel):
    """One token-account balance as reported by a holdings source."""

    mint: str = Field(..., min_length=1)
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    decimals: int = Field(default=0, ge=0, le=255)
    ui_amount: Optional[Decimal] = Field(default=None, ge=0)

    @field_validator("mint")
    @classmethod
    def strip_mint(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("mint must be a non-empty string")
        return v

    @property
    def quantity(self) -> Decimal:
        """Balance in whole token units."""
        if self.ui_amount is not None:
            return self.ui_amount
        return self.amount / (Decimal(10) ** self.decimals)


class RawHoldings(BaseModel):
    """
    Unnormalized wallet holdings.

    ``token_accounts`` stays loosely typed so the builder can validate
    entries one by one and drop malformed ones without failing the wallet.
    """

    native_balance: Decimal = Field(default=Decimal("0"), ge=0)
    token_accounts: List[Dict[str, Any]] = Field(default_factory=list)


class HoldingsSource(Protocol):
    """Capability that reads raw holdings for a wallet."""

    async def fetch_holdings(self, wallet: str) -> RawHoldings:
        ...
