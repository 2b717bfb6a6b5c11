"""Terminal actions of the send and swap flows."""

import logging
from decimal import Decimal, InvalidOperation

from walletbot.clients.backend import WalletBackendClient
from walletbot.clients.dex import DexAggregatorClient, get_token_mint
from walletbot.clients.models import Withdrawal
from walletbot.errors import BackendError, StateError
from walletbot.identity import Identity
from walletbot.sessions import Session
from walletbot.units import format_amount, from_smallest_unit, to_smallest_unit

logger = logging.getLogger(__name__)

RATE_PLACES = Decimal("0.000001")


class SendExecutor:
    """Submits a withdrawal for the session's asset, amount and address."""

    def __init__(self, backend: WalletBackendClient, identity: Identity):
        self.backend = backend
        self.identity = identity

    async def execute(self, session: Session) -> Withdrawal:
        """Create the withdrawal.

        Raises:
            BackendError: No wallet selected or the backend refused
            StateError: The session is missing asset, amount or address
        """
        wallet_id = self.identity.wallet_id
        if not self.identity.is_authenticated() or not wallet_id:
            raise BackendError("No authenticated wallet available")
        if session.asset is None or not session.amount or not session.recipient_address:
            raise StateError("Send session is incomplete")

        withdrawal = await self.backend.create_withdrawal(
            wallet_id=wallet_id,
            asset_id=session.asset.asset_id,
            amount=session.amount,
            recipient_address=session.recipient_address,
        )
        logger.info(
            f"Withdrawal {withdrawal.id} ({withdrawal.status}): {session.amount} "
            f"{session.asset.symbol} to {session.recipient_address[:8]}…"
        )
        return withdrawal


class SwapExecutor:
    """Quotes and executes swaps through the DEX aggregator."""

    def __init__(self, dex: DexAggregatorClient):
        self.dex = dex

    async def quote(self, session: Session, amount: Decimal) -> Decimal:
        """Quote the swap and record amount, mint and expected output on the session.

        Returns:
            Rate as destination units per source unit, 6 decimal places

        Raises:
            BackendError: Unknown source token, no route or aggregator failure
            StateError: The session has no source asset or destination
        """
        if session.asset is None or session.target is None:
            raise StateError("Swap session is incomplete")

        from_mint = get_token_mint(session.asset.symbol)
        amount_raw = to_smallest_unit(amount, session.asset.decimals)
        quote = await self.dex.get_swap_quote(from_mint, session.target.mint, amount_raw)
        expected = from_smallest_unit(quote.output_amount_raw, session.target.decimals)

        try:
            rate = (Decimal(expected) / amount).quantize(RATE_PLACES)
        except (InvalidOperation, ZeroDivisionError) as e:
            raise BackendError(f"Cannot compute swap rate for {expected} / {amount}") from e

        session.amount = format_amount(amount)
        session.amount_raw = amount_raw
        session.from_mint = from_mint
        session.expected_output = expected
        session.rate = rate
        return rate

    async def execute(self, session: Session) -> str:
        """Execute the quoted swap with the stored smallest-unit amount.

        Returns:
            Transaction id

        Raises:
            BackendError: Route, transaction or signing failure
            StateError: The session was never quoted
        """
        if session.asset is None or session.target is None:
            raise StateError("Swap session is incomplete")
        if session.from_mint is None or session.amount_raw is None:
            raise StateError("Swap session has not been quoted")

        tx_id = await self.dex.execute_swap(
            session.from_mint, session.target.mint, session.amount_raw
        )
        logger.info(
            f"Swap {session.amount} {session.asset.symbol} -> {session.target.symbol}: {tx_id}"
        )
        return tx_id
