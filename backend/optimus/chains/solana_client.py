"""
Solana JSON-RPC holdings source.

Reads the native SOL balance and SPL token accounts of a wallet.
"""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from ..core.exceptions import SourceUnavailableError
from .base import RawHoldings

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
LAMPORTS_PER_SOL = Decimal(1_000_000_000)


class SolanaHoldingsSource:
    """
    Holdings source backed by a Solana RPC endpoint.

    The HTTP client is created lazily and may be shared by concurrent
    requests. Pass ``client`` to inject a preconfigured one (tests use an
    ``httpx.MockTransport``).
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.client = client
        self._owns_client = client is None

    async def initialize(self) -> None:
        """Initialize the RPC HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=5.0),
                headers={"User-Agent": "Optimus-Portfolio-Analyzer/1.0.0"},
            )
            self._owns_client = True
            logger.debug("Solana RPC client initialized")

    async def close(self) -> None:
        """Close the RPC HTTP client if this source created it."""
        if self.client is not None and self._owns_client:
            await self.client.aclose()
            self.client = None

    async def fetch_holdings(self, wallet: str) -> RawHoldings:
        """
        Fetch native balance and token accounts for a wallet.

        Args:
            wallet: Base58 wallet address

        Returns:
            Raw holdings with the SOL balance in whole SOL

        Raises:
            SourceUnavailableError: If the RPC endpoint cannot be used
        """
        balance_result, accounts_result = await asyncio.gather(
            self._rpc("getBalance", [wallet, {"commitment": "confirmed"}]),
            self._rpc(
                "getTokenAccountsByOwner",
                [
                    wallet,
                    {"programId": TOKEN_PROGRAM_ID},
                    {"encoding": "jsonParsed", "commitment": "confirmed"},
                ],
            ),
        )

        try:
            lamports = Decimal(balance_result["value"])
            accounts = list(accounts_result["value"])
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise SourceUnavailableError(
                "Unexpected RPC response shape",
                details={"rpc_url": self.rpc_url, "wallet": wallet},
            ) from e

        token_accounts = [self._parse_token_account(account) for account in accounts]

        logger.debug(
            f"Fetched {len(token_accounts)} token accounts for {wallet[:8]}...",
            extra={"wallet": wallet},
        )

        return RawHoldings(
            native_balance=lamports / LAMPORTS_PER_SOL,
            token_accounts=token_accounts,
        )

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        """Issue one JSON-RPC call and return its ``result`` member."""
        if self.client is None:
            await self.initialize()

        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        try:
            response = await self.client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                f"Solana RPC {method} failed: {e}",
                extra={"extra_data": {"method": method, "rpc_url": self.rpc_url}},
            )
            raise SourceUnavailableError(
                f"Solana RPC {method} failed",
                details={"method": method, "reason": str(e)},
            ) from e

        if not isinstance(body, dict) or "error" in body or "result" not in body:
            error = body.get("error") if isinstance(body, dict) else body
            logger.error(
                f"Solana RPC {method} returned an error: {error}",
                extra={"extra_data": {"method": method}},
            )
            raise SourceUnavailableError(
                f"Solana RPC {method} returned an error",
                details={"method": method, "rpc_error": error},
            )

        return body["result"]

    @staticmethod
    def _parse_token_account(account: Any) -> Dict[str, Any]:
        """
        Flatten a jsonParsed token account into a raw entry.

        Entries of the wrong shape come back without a mint, so holdings
        normalization drops them instead of failing the wallet.
        """
        info: Any = account
        for key in ("account", "data", "parsed", "info"):
            info = info.get(key) if isinstance(info, dict) else None
        if not isinstance(info, dict):
            info = {}
        token_amount = info.get("tokenAmount")
        if not isinstance(token_amount, dict):
            token_amount = {}
        return {
            "mint": info.get("mint"),
            "amount": token_amount.get("amount"),
            "decimals": token_amount.get("decimals", 0),
            "ui_amount": token_amount.get("uiAmountString"),
        }
