"""Solana DEX aggregator integration.

Quotes and swap transactions come from the Raydium trade API, token
metadata from the Jupiter token API. Execution hands the serialized
transaction to a ``TransactionSigner`` (the MPC wallet).
API docs: https://docs.raydium.io/raydium/traders/trade-api
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from walletbot.clients.models import SwapQuote, TokenMetadata
from walletbot.clients.signer import TransactionSigner
from walletbot.errors import BackendError

logger = logging.getLogger(__name__)

NATIVE_SOL_MINT = "So11111111111111111111111111111111111111112"
TX_VERSION = "LEGACY"


@dataclass(frozen=True)
class KnownToken:
    """A token offered as a swap destination without typing its mint."""

    symbol: str
    name: str
    mint: str
    decimals: int


# Token mint addresses on Solana mainnet
SOLANA_TOKENS = {
    "SOL": KnownToken("SOL", "Solana", NATIVE_SOL_MINT, 9),
    "USDC": KnownToken("USDC", "USD Coin", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", 6),
    "BTC": KnownToken("BTC", "Bitcoin (Wrapped)", "6p6xgHyF7AeE6TZkSmFsko444wqoP15icUSqi2jfGiPN", 8),
}


def get_token_mint(symbol: str) -> str:
    """Mint address for a known token symbol.

    Raises:
        BackendError: If the symbol is not a known token
    """
    token = SOLANA_TOKENS.get(symbol.upper())
    if token is None:
        raise BackendError(f"Unknown token symbol: {symbol}")
    return token.mint


class DexAggregatorClient:
    """Quote, execute and describe swaps on Solana."""

    def __init__(
        self,
        swap_api_url: str,
        token_api_url: str,
        signer: Optional[TransactionSigner] = None,
        quote_slippage_bps: int = 50,
        execute_slippage_bps: int = 100,
        compute_unit_price: int = 100_000,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            swap_api_url: Raydium trade API host
            token_api_url: Jupiter token API root
            signer: Signs execution transactions; required for ``execute_swap``
            quote_slippage_bps: Slippage used for quotes shown to the user
            execute_slippage_bps: Slippage used when building the transaction
            compute_unit_price: Priority fee in micro-lamports
            timeout: Per-request timeout in seconds
            transport: Optional transport override (tests)
        """
        self.swap_api_url = swap_api_url.rstrip("/")
        self.token_api_url = token_api_url.rstrip("/")
        self.signer = signer
        self.quote_slippage_bps = quote_slippage_bps
        self.execute_slippage_bps = execute_slippage_bps
        self.compute_unit_price = compute_unit_price
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "Raydium"

    async def close(self) -> None:
        await self._client.aclose()

    def _json(self, response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            raise BackendError(f"{self.name} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise BackendError(f"{self.name} returned an unexpected payload")
        return data

    async def _compute(
        self, input_mint: str, output_mint: str, amount_raw: int, slippage_bps: int
    ) -> dict:
        """Ask the aggregator for a route; returns the full compute response."""
        try:
            response = await self._client.get(
                f"{self.swap_api_url}/compute/swap-base-in",
                params={
                    "inputMint": input_mint,
                    "outputMint": output_mint,
                    "amount": str(amount_raw),
                    "slippageBps": str(slippage_bps),
                    "txVersion": TX_VERSION,
                },
            )
        except httpx.HTTPError as e:
            raise BackendError(f"{self.name} unreachable: {e}") from e

        if response.status_code != 200:
            logger.warning(f"{self.name} API error: {response.status_code} - {response.text[:200]}")
            raise BackendError(f"{self.name} API error: {response.status_code}")

        data = self._json(response)
        if not data.get("success"):
            raise BackendError(data.get("msg") or f"{self.name} found no route")
        return data

    async def get_swap_quote(
        self, input_mint: str, output_mint: str, amount_raw: int
    ) -> SwapQuote:
        """Quote swapping ``amount_raw`` smallest units of ``input_mint``.

        Raises:
            BackendError: No route, unsupported pair or aggregator failure
        """
        if amount_raw <= 0:
            raise BackendError("Swap amount must be positive")

        data = await self._compute(input_mint, output_mint, amount_raw, self.quote_slippage_bps)
        route = data.get("data") or {}

        try:
            output_amount_raw = int(route["outputAmount"])
        except (KeyError, TypeError, ValueError) as e:
            raise BackendError(f"{self.name} quote missing output amount") from e
        if output_amount_raw <= 0:
            raise BackendError(f"{self.name} quoted no output")

        price_impact = route.get("priceImpactPct")
        try:
            impact = Decimal(str(price_impact)) if price_impact is not None else None
        except InvalidOperation:
            logger.warning(f"Ignoring unparseable price impact from {self.name}: {price_impact!r}")
            impact = None

        quote = SwapQuote(
            input_mint=input_mint,
            output_mint=output_mint,
            input_amount_raw=amount_raw,
            output_amount_raw=output_amount_raw,
            price_impact_pct=impact,
            route=route,
        )
        logger.info(
            f"Quote from {self.name}: {amount_raw} {input_mint[:6]}… -> "
            f"{output_amount_raw} {output_mint[:6]}…"
        )
        return quote

    async def execute_swap(self, input_mint: str, output_mint: str, amount_raw: int) -> str:
        """Build the swap transaction and have the signer sign and send it.

        Returns:
            On-chain transaction id

        Raises:
            BackendError: Route, transaction build or signing failed
        """
        if self.signer is None:
            raise BackendError("No transaction signer configured")

        owner = await self.signer.get_address()
        compute = await self._compute(
            input_mint, output_mint, amount_raw, self.execute_slippage_bps
        )

        try:
            response = await self._client.post(
                f"{self.swap_api_url}/transaction/swap-base-in",
                json={
                    "computeUnitPriceMicroLamports": str(self.compute_unit_price),
                    "swapResponse": compute,
                    "txVersion": TX_VERSION,
                    "wallet": owner,
                    "wrapSol": input_mint == NATIVE_SOL_MINT,
                    "unwrapSol": output_mint == NATIVE_SOL_MINT,
                },
            )
        except httpx.HTTPError as e:
            raise BackendError(f"{self.name} unreachable: {e}") from e

        if response.status_code != 200:
            raise BackendError(f"{self.name} API error: {response.status_code}")

        data = self._json(response)
        transactions = data.get("data") or []
        if not data.get("success") or not transactions:
            raise BackendError(
                f"Failed to get swap transaction: {data.get('msg') or 'Unknown error'}"
            )

        first = transactions[0] if isinstance(transactions, list) else None
        transaction = first.get("transaction") if isinstance(first, dict) else None
        if not transaction or not isinstance(transaction, str):
            raise BackendError(f"{self.name} returned a malformed swap transaction")

        logger.info("Swap transaction created successfully")
        tx_id = await self.signer.sign_and_send(transaction)
        logger.info(f"Swap executed: txid={tx_id}")
        return tx_id

    async def get_token_metadata(self, mint_address: str) -> TokenMetadata:
        """Symbol, name and decimals of a token mint.

        Raises:
            BackendError: If the metadata service has no usable record
        """
        logger.debug(f"Fetching metadata for token mint: {mint_address}")
        try:
            response = await self._client.get(f"{self.token_api_url}/token/{mint_address}")
        except httpx.HTTPError as e:
            raise BackendError(f"Token API unreachable: {e}") from e

        if response.status_code != 200:
            raise BackendError(f"Token API error: {response.status_code}")

        data = self._json(response)
        if not isinstance(data, dict) or data.get("decimals") is None:
            raise BackendError("Invalid response from token API")

        try:
            return TokenMetadata(
                symbol=data.get("symbol") or "UNKNOWN",
                name=data.get("name") or "Unknown Token",
                decimals=int(data["decimals"]),
            )
        except (TypeError, ValueError, PydanticValidationError) as e:
            raise BackendError(f"Invalid token metadata for {mint_address}: {e}") from e
