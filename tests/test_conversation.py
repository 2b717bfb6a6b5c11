"""Tests for the conversation state machine: menus, send and swap flows."""

import asyncio
from decimal import Decimal
from unittest.mock import ANY, AsyncMock, MagicMock

import httpx
import pytest

from conftest import CHAT_ID, WALLET_ID, make_balance
from walletbot.bot import keyboards
from walletbot.clients.dex import NATIVE_SOL_MINT, SOLANA_TOKENS, DexAggregatorClient
from walletbot.clients.models import (
    RiskAssessment,
    SwapQuote,
    TokenMetadata,
    WalletSummary,
    Withdrawal,
    Workspace,
)
from walletbot.clients.signer import TransactionSigner
from walletbot.conversation import ConversationStateMachine
from walletbot.errors import AuthStartError, BackendError
from walletbot.formatting import (
    AUTH_PENDING,
    FALLBACK,
    MAIN_MENU_PROMPT,
    NEED_WALLET,
    QUOTE_FAILED,
    RISK_CAUTION,
    SEND_FAILED,
    SWAP_FAILED,
)
from walletbot.sessions import AssetChoice, Step, TokenTarget

RECIPIENT = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
USDC_MINT = SOLANA_TOKENS["USDC"].mint
CUSTOM_MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


async def begin_send(machine, backend, available="125"):
    backend.get_wallet_overview.return_value = [make_balance("SOL", available, 9)]
    await machine.handle_text(CHAT_ID, keyboards.SEND)
    await machine.handle_callback(CHAT_ID, "asset:0")


async def begin_swap(machine, backend, target_key="swap_to:0"):
    backend.get_wallet_overview.return_value = [make_balance("SOL", "125", 9)]
    await machine.handle_text(CHAT_ID, keyboards.SWAP)
    await machine.handle_callback(CHAT_ID, "swap_from:0")
    await machine.handle_callback(CHAT_ID, target_key)


class TestDispatch:
    """Routing of text and callbacks with and without a session."""

    @pytest.mark.asyncio
    async def test_unrecognized_text_without_session_is_ignored(self, machine, responder):
        """Test that free text outside any flow produces no reply."""
        await machine.handle_text(CHAT_ID, "hello there")

        assert responder.messages == []
        assert machine.store.get(CHAT_ID) is None

    @pytest.mark.asyncio
    async def test_unknown_step_falls_back_to_menu(self, machine, responder):
        """Test that a session in an unrecognized step is dropped."""
        machine.store.start(CHAT_ID, "bogus_step")

        await machine.handle_text(CHAT_ID, "anything")

        assert machine.store.get(CHAT_ID) is None
        assert FALLBACK in responder.texts
        assert responder.last.text == MAIN_MENU_PROMPT

    @pytest.mark.asyncio
    async def test_text_at_selection_step_falls_back(self, machine, responder, backend, logged_in):
        """Test that typing while a button selection is expected resets the chat."""
        backend.get_wallet_overview.return_value = [make_balance("SOL", "125", 9)]
        await machine.handle_text(CHAT_ID, keyboards.SEND)
        assert machine.store.get(CHAT_ID).step == Step.SELECT_ASSET

        await machine.handle_text(CHAT_ID, "SOL")

        assert machine.store.get(CHAT_ID) is None
        assert FALLBACK in responder.texts

    @pytest.mark.asyncio
    async def test_menu_text_inside_flow_goes_to_step_handler(self, machine, responder, backend, logged_in):
        """Test that menu buttons are not interpreted while a session exists."""
        await begin_send(machine, backend)

        await machine.handle_text(CHAT_ID, keyboards.SWAP)

        session = machine.store.get(CHAT_ID)
        assert session.step == Step.ENTER_AMOUNT
        assert responder.last.text == "Please enter a valid amount greater than 0."

    @pytest.mark.asyncio
    async def test_unknown_callback_is_ignored(self, machine, responder):
        """Test that unknown payloads do nothing."""
        await machine.handle_callback(CHAT_ID, "mystery:1")

        assert responder.messages == []

    @pytest.mark.asyncio
    async def test_events_for_one_chat_are_serialized(self, machine, backend, logged_in):
        """Test that overlapping events for a chat never interleave."""
        events = []

        async def slow_overview(wallet_id, offset=0, limit=10):
            events.append("start")
            await asyncio.sleep(0.05)
            events.append("end")
            return [make_balance("SOL", "125", 9)]

        backend.get_wallet_overview.side_effect = slow_overview

        await asyncio.gather(
            machine.handle_text(CHAT_ID, keyboards.SEND),
            machine.handle_text(CHAT_ID + 1, keyboards.SEND),
            machine.handle_callback(CHAT_ID, "asset:0"),
        )

        # The callback waited for the first event, so the session advanced
        assert machine.store.get(CHAT_ID).step == Step.ENTER_AMOUNT
        assert machine.store.get(CHAT_ID + 1).step == Step.SELECT_ASSET

    @pytest.mark.asyncio
    async def test_start_clears_session(self, machine, responder, backend, logged_in):
        """Test that /start drops the in-flight session."""
        await begin_send(machine, backend)

        await machine.start(CHAT_ID, "Ada")

        assert machine.store.get(CHAT_ID) is None
        assert "Welcome back, Ada" in responder.last.text


class TestSendFlow:
    """Send: asset, amount, address, risk check, confirmation."""

    @pytest.mark.asyncio
    async def test_full_send_scenario(self, machine, responder, backend, risk, logged_in):
        """Test selecting SOL, sending 10 to an address and confirming."""
        await begin_send(machine, backend)
        session = machine.store.get(CHAT_ID)
        assert session.asset.symbol == "SOL"
        assert session.step == Step.ENTER_AMOUNT

        await machine.handle_text(CHAT_ID, "10")
        assert session.amount == "10"
        assert session.amount_raw == 10_000_000_000
        assert session.step == Step.ENTER_ADDRESS

        risk.check_address_risk.return_value = RiskAssessment(
            risk_score="12", risk_category="Low Risk"
        )
        await machine.handle_text(CHAT_ID, RECIPIENT)
        assert session.step == Step.CONFIRM_SEND
        assert "Low Risk" in responder.last.text

        backend.create_withdrawal.return_value = Withdrawal(id="wd-1", status="pending")
        await machine.handle_callback(CHAT_ID, "confirm_send")

        backend.create_withdrawal.assert_awaited_once_with(
            wallet_id=WALLET_ID,
            asset_id="asset-sol",
            amount="10",
            recipient_address=RECIPIENT,
        )
        assert machine.store.get(CHAT_ID) is None
        assert any("wd-1" in text for text in responder.texts)
        assert responder.last.text == MAIN_MENU_PROMPT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["0", "-1", "abc", "125.0000001", "NaN"])
    async def test_invalid_amounts_are_rejected(self, machine, responder, backend, logged_in, text):
        """Test that amounts outside (0, available] do not advance the flow."""
        await begin_send(machine, backend)

        await machine.handle_text(CHAT_ID, text)

        session = machine.store.get(CHAT_ID)
        assert session.step == Step.ENTER_AMOUNT
        assert session.amount is None

    @pytest.mark.asyncio
    async def test_full_balance_is_accepted(self, machine, backend, logged_in):
        """Test that exactly the available balance is a valid amount."""
        await begin_send(machine, backend)

        await machine.handle_text(CHAT_ID, "125")

        assert machine.store.get(CHAT_ID).step == Step.ENTER_ADDRESS

    @pytest.mark.asyncio
    async def test_insufficient_balance_message(self, machine, responder, backend, logged_in):
        """Test the re-prompt names the available balance."""
        await begin_send(machine, backend)

        await machine.handle_text(CHAT_ID, "200")

        assert responder.last.text == "Insufficient balance. You only have 125 SOL available."

    @pytest.mark.asyncio
    async def test_short_address_is_rejected(self, machine, responder, backend, risk, logged_in):
        """Test that addresses under 10 characters re-prompt."""
        await begin_send(machine, backend)
        await machine.handle_text(CHAT_ID, "1")

        await machine.handle_text(CHAT_ID, "abc")

        assert machine.store.get(CHAT_ID).step == Step.ENTER_ADDRESS
        assert responder.last.text == "Please enter a valid address."
        risk.check_address_risk.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_risk_check_failure_still_reaches_confirmation(
        self, machine, responder, backend, risk, logged_in
    ):
        """Test that a failing risk service only adds a caution notice."""
        risk.check_address_risk.side_effect = BackendError("risk service down")
        await begin_send(machine, backend)
        await machine.handle_text(CHAT_ID, "1")

        await machine.handle_text(CHAT_ID, RECIPIENT)

        session = machine.store.get(CHAT_ID)
        assert session.step == Step.CONFIRM_SEND
        assert session.risk is None
        assert RISK_CAUTION in responder.texts
        assert "Risk Assessment" not in responder.last.text
        assert responder.last.reply_markup is not None

    @pytest.mark.asyncio
    async def test_risk_evidence_is_sent_as_photo(
        self, machine, responder, backend, risk, logged_in
    ):
        """Test that an evidence image accompanies the score."""
        risk.check_address_risk.return_value = RiskAssessment(
            risk_score="61", risk_category="High Risk", evidence_image=b"png"
        )
        await begin_send(machine, backend)
        await machine.handle_text(CHAT_ID, "1")

        await machine.handle_text(CHAT_ID, RECIPIENT)

        assert responder.photos[-1].photo == b"png"
        assert "High Risk" in responder.photos[-1].caption
        # Loading message removed
        assert len(responder.deleted) == 1

    @pytest.mark.asyncio
    async def test_send_failure_clears_session(self, machine, responder, backend, risk, logged_in):
        """Test that a rejected withdrawal reports failure and resets the chat."""
        risk.check_address_risk.side_effect = BackendError("down")
        backend.create_withdrawal.side_effect = BackendError("insufficient funds", 400)
        await begin_send(machine, backend)
        await machine.handle_text(CHAT_ID, "1")
        await machine.handle_text(CHAT_ID, RECIPIENT)

        await machine.handle_callback(CHAT_ID, "confirm_send")

        assert SEND_FAILED in responder.texts
        assert machine.store.get(CHAT_ID) is None
        assert responder.last.text == MAIN_MENU_PROMPT

    @pytest.mark.asyncio
    async def test_unexpected_risk_error_propagates(self, machine, backend, risk, logged_in):
        """Test that only backend failures fall back to sending without a risk report."""
        risk.check_address_risk.side_effect = TypeError("bad payload handling")
        await begin_send(machine, backend)
        await machine.handle_text(CHAT_ID, "1")

        with pytest.raises(TypeError):
            await machine.handle_text(CHAT_ID, RECIPIENT)
        backend.create_withdrawal.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_send(self, machine, responder, backend, risk, logged_in):
        """Test that cancelling drops the session without a withdrawal."""
        risk.check_address_risk.side_effect = BackendError("down")
        await begin_send(machine, backend)
        await machine.handle_text(CHAT_ID, "1")
        await machine.handle_text(CHAT_ID, RECIPIENT)

        await machine.handle_callback(CHAT_ID, "cancel_send")

        backend.create_withdrawal.assert_not_awaited()
        assert machine.store.get(CHAT_ID) is None
        assert "Transaction cancelled." in responder.texts

    @pytest.mark.asyncio
    async def test_stale_confirmation_is_not_executed(self, machine, responder, backend, logged_in):
        """Test that confirm_send before the confirmation step falls back."""
        await begin_send(machine, backend)

        await machine.handle_callback(CHAT_ID, "confirm_send")

        backend.create_withdrawal.assert_not_awaited()
        assert machine.store.get(CHAT_ID) is None
        assert FALLBACK in responder.texts

    @pytest.mark.asyncio
    async def test_unresolved_asset_key_asks_to_retry(self, machine, responder, backend, logged_in):
        """Test that an unknown selection key keeps the session intact."""
        backend.get_wallet_overview.return_value = [make_balance("SOL", "125", 9)]
        await machine.handle_text(CHAT_ID, keyboards.SEND)

        await machine.handle_callback(CHAT_ID, "asset:7")

        assert machine.store.get(CHAT_ID).step == Step.SELECT_ASSET
        assert responder.last.text == "Selected asset not found. Please try again."

    @pytest.mark.asyncio
    async def test_asset_key_without_session(self, machine, responder):
        """Test that pressing an old asset button after a reset never crashes."""
        await machine.handle_callback(CHAT_ID, "asset:0")

        assert machine.store.get(CHAT_ID) is None
        assert responder.last.text == "Selected asset not found. Please try again."

    @pytest.mark.asyncio
    async def test_send_requires_authentication(self, machine, responder, backend):
        """Test that Send is refused before a wallet is connected."""
        await machine.handle_text(CHAT_ID, keyboards.SEND)

        assert responder.last.text == NEED_WALLET
        assert machine.store.get(CHAT_ID) is None
        backend.get_wallet_overview.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_requires_selected_wallet(self, machine, responder, identity):
        """Test that an authenticated chat without a wallet is told to pick one."""
        identity.set_access_token("session-token")

        await machine.handle_text(CHAT_ID, keyboards.SEND)

        assert "No wallet selected" in responder.last.text
        assert machine.store.get(CHAT_ID) is None

    @pytest.mark.asyncio
    async def test_overview_failure_returns_to_menu(self, machine, responder, backend, logged_in):
        """Test that a failing overview does not leave a session behind."""
        backend.get_wallet_overview.side_effect = BackendError("boom")

        await machine.handle_text(CHAT_ID, keyboards.SEND)

        assert machine.store.get(CHAT_ID) is None
        assert responder.last.text == MAIN_MENU_PROMPT

    @pytest.mark.asyncio
    async def test_new_menu_replaces_selection_cache(self, machine, backend, logged_in):
        """Test that rendering a new menu forgets the previous menu's keys."""
        backend.get_wallet_overview.return_value = [
            make_balance("SOL", "125", 9),
            make_balance("USDC", "50", 6),
        ]
        await machine.handle_text(CHAT_ID, keyboards.SEND)
        await machine.handle_callback(CHAT_ID, "asset:1")
        await machine.handle_callback(CHAT_ID, "cancel_send")
        await machine.handle_text(CHAT_ID, keyboards.SWAP)

        assert machine.store.selections.resolve(CHAT_ID, "asset:1") is None
        assert machine.store.selections.resolve(CHAT_ID, "swap_from:1").symbol == "USDC"


class TestSwapFlow:
    """Swap: source, destination, amount, quote, confirmation."""

    @pytest.mark.asyncio
    async def test_full_swap_scenario(self, machine, responder, backend, dex, logged_in):
        """Test swapping 2 SOL to USDC executes with the raw amount."""
        await begin_swap(machine, backend)
        session = machine.store.get(CHAT_ID)
        assert session.target.symbol == "USDC"
        assert session.step == Step.ENTER_SWAP_AMOUNT

        dex.get_swap_quote.return_value = SwapQuote(
            input_mint=NATIVE_SOL_MINT,
            output_mint=USDC_MINT,
            input_amount_raw=2_000_000_000,
            output_amount_raw=200_000_000,
        )
        await machine.handle_text(CHAT_ID, "2")

        dex.get_swap_quote.assert_awaited_once_with(NATIVE_SOL_MINT, USDC_MINT, 2_000_000_000)
        assert session.step == Step.CONFIRM_SWAP
        assert session.expected_output == "200"
        assert "~200 USDC" in responder.last.text
        assert "100.000000" in responder.last.text

        dex.execute_swap.return_value = "5VfYtx"
        await machine.handle_callback(CHAT_ID, "confirm_swap")

        dex.execute_swap.assert_awaited_once_with(NATIVE_SOL_MINT, USDC_MINT, 2_000_000_000)
        assert any("https://solscan.io/tx/5VfYtx" in text for text in responder.texts)
        assert machine.store.get(CHAT_ID) is None
        assert responder.last.text == MAIN_MENU_PROMPT

    @pytest.mark.asyncio
    async def test_destination_menu_excludes_source(self, machine, responder, backend, logged_in):
        """Test that SOL is not offered as a destination when swapping SOL."""
        backend.get_wallet_overview.return_value = [make_balance("SOL", "125", 9)]
        await machine.handle_text(CHAT_ID, keyboards.SWAP)

        await machine.handle_callback(CHAT_ID, "swap_from:0")

        buttons = [row[0] for row in responder.last.reply_markup.inline_keyboard]
        labels = [button.text for button in buttons]
        assert labels == ["USDC (USD Coin)", "BTC (Bitcoin (Wrapped))", "Enter custom token address"]
        assert buttons[-1].callback_data == "swap_to:custom"

    @pytest.mark.asyncio
    async def test_quote_failure_restarts_swap(self, machine, responder, backend, dex, logged_in):
        """Test that a failed quote shows one message and restarts at source selection."""
        await begin_swap(machine, backend)
        dex.get_swap_quote.side_effect = BackendError("no route")

        await machine.handle_text(CHAT_ID, "2")

        assert QUOTE_FAILED in responder.texts
        session = machine.store.get(CHAT_ID)
        assert session.step == Step.SELECT_SWAP_FROM
        assert session.target is None

    @pytest.mark.asyncio
    async def test_unknown_source_token_restarts_swap(self, machine, responder, backend, dex, logged_in):
        """Test that a source asset with no known mint is treated as a quote failure."""
        backend.get_wallet_overview.return_value = [make_balance("DOGE", "500", 8)]
        await machine.handle_text(CHAT_ID, keyboards.SWAP)
        await machine.handle_callback(CHAT_ID, "swap_from:0")
        await machine.handle_callback(CHAT_ID, "swap_to:0")

        await machine.handle_text(CHAT_ID, "5")

        dex.get_swap_quote.assert_not_awaited()
        assert QUOTE_FAILED in responder.texts
        assert machine.store.get(CHAT_ID).step == Step.SELECT_SWAP_FROM

    @pytest.mark.asyncio
    async def test_custom_mint_with_metadata(self, machine, responder, backend, dex, logged_in):
        """Test that a custom mint takes symbol and decimals from metadata."""
        dex.get_token_metadata.return_value = TokenMetadata(symbol="BONK", name="Bonk", decimals=5)
        await begin_swap(machine, backend, target_key="swap_to:custom")
        assert machine.store.get(CHAT_ID).step == Step.ENTER_SWAP_TO_ADDRESS

        await machine.handle_text(CHAT_ID, CUSTOM_MINT)

        session = machine.store.get(CHAT_ID)
        assert session.target == TokenTarget("BONK", "Bonk", CUSTOM_MINT, 5)
        assert session.step == Step.ENTER_SWAP_AMOUNT

    @pytest.mark.asyncio
    async def test_custom_mint_metadata_failure_defaults_to_nine_decimals(
        self, machine, backend, dex, logged_in
    ):
        """Test that unavailable metadata falls back to 9 decimals."""
        dex.get_token_metadata.side_effect = BackendError("not found")
        await begin_swap(machine, backend, target_key="swap_to:custom")

        await machine.handle_text(CHAT_ID, CUSTOM_MINT)

        session = machine.store.get(CHAT_ID)
        assert session.target.decimals == 9
        assert session.target.symbol == "Custom Token"
        assert session.step == Step.ENTER_SWAP_AMOUNT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mint", ["short", CUSTOM_MINT + "X"])
    async def test_custom_mint_length_is_validated(self, machine, responder, backend, dex, logged_in, mint):
        """Test that only 44-character mints are accepted."""
        await begin_swap(machine, backend, target_key="swap_to:custom")

        await machine.handle_text(CHAT_ID, mint)

        assert machine.store.get(CHAT_ID).step == Step.ENTER_SWAP_TO_ADDRESS
        dex.get_token_metadata.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_swap_execution_failure_clears_session(
        self, machine, responder, backend, dex, logged_in
    ):
        """Test that a failed execution reports failure and shows the menu."""
        await begin_swap(machine, backend)
        dex.get_swap_quote.return_value = SwapQuote(
            input_mint=NATIVE_SOL_MINT,
            output_mint=USDC_MINT,
            input_amount_raw=1_000_000_000,
            output_amount_raw=100_000_000,
        )
        await machine.handle_text(CHAT_ID, "1")
        dex.execute_swap.side_effect = BackendError("signer refused")

        await machine.handle_callback(CHAT_ID, "confirm_swap")

        assert SWAP_FAILED in responder.texts
        assert machine.store.get(CHAT_ID) is None
        assert responder.last.text == MAIN_MENU_PROMPT

    @pytest.mark.asyncio
    async def test_cancel_swap(self, machine, responder, backend, dex, logged_in):
        """Test that cancelling a swap never executes it."""
        await begin_swap(machine, backend)

        await machine.handle_callback(CHAT_ID, "cancel_swap")

        dex.execute_swap.assert_not_awaited()
        assert machine.store.get(CHAT_ID) is None
        assert "Swap cancelled." in responder.texts


class TestWalletMenus:
    """Connect, workspace/wallet selection, monitor and logout."""

    @pytest.mark.asyncio
    async def test_connect_wallet_runs_authentication(self, machine, responder, auth, visualizer):
        """Test that Connect Wallet shows a QR code and code and starts polling."""
        auth.start_authentication = AsyncMock(return_value=("req-1", "ABC123"))
        auth.begin_polling = MagicMock()

        await machine.handle_text(CHAT_ID, keyboards.CONNECT_WALLET)

        visualizer.render_scannable_code.assert_called_once_with(
            "sessionRequestId=req-1&verificationCode=ABC123"
        )
        assert responder.photos[0].photo == b"qr-png"
        assert "ABC123" in responder.last.text
        auth.begin_polling.assert_called_once_with(CHAT_ID, "req-1", ANY, ANY)

    @pytest.mark.asyncio
    async def test_authentication_completion_shows_workspaces(self, machine, responder, auth, backend):
        """Test that the completion callback leads to workspace selection."""
        auth.start_authentication = AsyncMock(return_value=("req-1", "ABC123"))
        auth.begin_polling = MagicMock()
        backend.get_workspaces.return_value = [Workspace(id="ws-1", name="Treasury")]
        await machine.handle_text(CHAT_ID, keyboards.CONNECT_WALLET)
        on_complete = auth.begin_polling.call_args.args[2]

        await on_complete("session-token")

        assert "✅ Wallet authenticated successfully!" in responder.texts
        assert responder.last.text == "Please select a workspace:"
        button = responder.last.reply_markup.inline_keyboard[0][0]
        assert button.callback_data == "ws:ws-1"

    @pytest.mark.asyncio
    async def test_authentication_start_failure(self, machine, responder, auth):
        """Test that a refused session request is reported."""
        auth.start_authentication = AsyncMock(side_effect=AuthStartError("down"))
        auth.begin_polling = MagicMock()

        await machine.authenticate(CHAT_ID)

        assert "error starting the authentication process" in responder.last.text
        auth.begin_polling.assert_not_called()

    @pytest.mark.asyncio
    async def test_connect_when_already_authenticated(self, machine, responder, logged_in):
        """Test that an authenticated chat is asked before reconnecting."""
        await machine.handle_text(CHAT_ID, keyboards.CONNECT_WALLET)

        payloads = [b.callback_data for b in responder.last.reply_markup.inline_keyboard[0]]
        assert payloads == ["new_wallet", "use_current"]

    @pytest.mark.asyncio
    async def test_workspace_then_wallet_selection(self, machine, responder, backend, identity):
        """Test that picking a workspace and wallet updates the identity."""
        identity.set_access_token("session-token")
        backend.get_workspace_wallets.return_value = [
            WalletSummary(id="w-9", name="Ops", wallet_type="mpc")
        ]

        await machine.handle_callback(CHAT_ID, "ws:ws-7")
        assert identity.workspace_id == "ws-7"
        assert responder.last.reply_markup.inline_keyboard[0][0].text == "Ops (mpc)"

        await machine.handle_callback(CHAT_ID, "wallet:w-9")
        assert identity.wallet_id == "w-9"
        assert "✅ Wallet connected successfully!" in responder.texts
        assert responder.last.text == MAIN_MENU_PROMPT

    @pytest.mark.asyncio
    async def test_empty_workspace(self, machine, responder, backend, logged_in):
        """Test that a workspace without wallets says so."""
        backend.get_workspace_wallets.return_value = []

        await machine.handle_callback(CHAT_ID, "ws:ws-1")

        assert "No wallets found" in responder.last.text

    @pytest.mark.asyncio
    async def test_monitor_wallet(self, machine, responder, backend, visualizer, logged_in):
        """Test that Monitor Wallet sends header, two charts and the asset list."""
        backend.get_wallet_overview.return_value = [
            make_balance("SOL", "2", 9, value_usd="300"),
            make_balance("USDC", "100", 6, value_usd="100"),
        ]

        await machine.handle_text(CHAT_ID, keyboards.MONITOR_WALLET)

        assert "$400.00" in responder.messages[0].text
        assert [p.photo for p in responder.photos] == [b"balance-png", b"allocation-png"]
        overview = responder.last.text
        assert overview.index("SOL") < overview.index("USDC")
        assert "75.00%" in overview
        points = machine.history.points(WALLET_ID)
        assert [p.total_usd for p in points] == [Decimal("400")]
        visualizer.render_allocation.assert_called_once_with(
            [("SOL", Decimal("300")), ("USDC", Decimal("100"))]
        )

    @pytest.mark.asyncio
    async def test_monitor_requires_authentication(self, machine, responder):
        """Test that Monitor Wallet is refused before login."""
        await machine.handle_text(CHAT_ID, keyboards.MONITOR_WALLET)

        assert responder.last.text == NEED_WALLET

    @pytest.mark.asyncio
    async def test_logout_clears_identity_and_polling(self, machine, responder, auth, backend, logged_in):
        """Test that Logout forgets credentials and stops the chat's poll."""
        auth.cancel_polling = MagicMock(return_value=False)

        await machine.handle_text(CHAT_ID, keyboards.LOGOUT)

        assert not logged_in.is_authenticated()
        assert logged_in.wallet_id is None
        auth.cancel_polling.assert_called_once_with(CHAT_ID)
        backend.clear_access_token.assert_called_once()
        assert responder.last.reply_markup.keyboard[0][0].text == keyboards.CONNECT_WALLET

    @pytest.mark.asyncio
    async def test_reset_clears_everything(self, machine, responder, backend, logged_in):
        """Test that /reset drops session and identity."""
        await begin_send(machine, backend)

        await machine.reset(CHAT_ID, "Ada")

        assert machine.store.get(CHAT_ID) is None
        assert not logged_in.is_authenticated()
        assert "Bot has been reset" in responder.texts[-2]

    @pytest.mark.asyncio
    async def test_asset_label_includes_network_and_balance(self, machine, responder, backend, logged_in):
        """Test the asset menu label format."""
        backend.get_wallet_overview.return_value = [make_balance("SOL", "125", 9)]

        await machine.handle_text(CHAT_ID, keyboards.SEND)

        button = responder.last.reply_markup.inline_keyboard[0][0]
        assert button.text == "SOL (Solana) (125)"
        assert button.callback_data == "asset:0"
        assert machine.store.selections.resolve(CHAT_ID, "asset:0") == AssetChoice(
            asset_id="asset-sol", symbol="SOL", available="125", decimals=9, network="Solana"
        )


def machine_with_dex(responder, auth, backend, risk, visualizer, settings, handler, signer=None):
    """State machine wired to a real DEX client answering from ``handler``."""
    dex = DexAggregatorClient(
        swap_api_url="https://swap.test",
        token_api_url="https://tokens.test",
        signer=signer,
        transport=httpx.MockTransport(handler),
    )
    return ConversationStateMachine(
        responder=responder,
        auth=auth,
        backend=backend,
        dex=dex,
        risk=risk,
        visualizer=visualizer,
        settings=settings,
    )


class TestAmountNormalization:
    """Amounts reach the backend as plain decimal strings."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["1e1", "1_0", "١٠", " 10 ", "10"])
    async def test_send_amount_is_normalized(self, machine, responder, backend, risk, logged_in, text):
        """Test that exponent, grouped and non-ASCII digit input is submitted as "10"."""
        await begin_send(machine, backend)
        risk.check_address_risk.side_effect = BackendError("down")
        backend.create_withdrawal.return_value = Withdrawal(id="wd-1")

        await machine.handle_text(CHAT_ID, text)
        await machine.handle_text(CHAT_ID, RECIPIENT)
        await machine.handle_callback(CHAT_ID, "confirm_send")

        backend.create_withdrawal.assert_awaited_once_with(
            wallet_id=WALLET_ID,
            asset_id="asset-sol",
            amount="10",
            recipient_address=RECIPIENT,
        )

    @pytest.mark.asyncio
    async def test_swap_amount_is_normalized(self, machine, responder, backend, dex, logged_in):
        """Test that a swap amount in exponent form is shown and stored plainly."""
        await begin_swap(machine, backend)
        dex.get_swap_quote.return_value = SwapQuote(
            input_mint=NATIVE_SOL_MINT,
            output_mint=USDC_MINT,
            input_amount_raw=10_000_000_000,
            output_amount_raw=1_000_000_000,
        )

        await machine.handle_text(CHAT_ID, "1E+1")

        session = machine.store.get(CHAT_ID)
        assert session.amount == "10"
        assert session.amount_raw == 10_000_000_000
        assert "E+" not in responder.last.text


class TestMarkupEscaping:
    """Backend-provided values are escaped in HTML messages."""

    @pytest.mark.asyncio
    async def test_asset_symbol_is_escaped(self, machine, responder, backend, logged_in):
        """Test that a symbol with markup characters is delivered escaped."""
        backend.get_wallet_overview.return_value = [make_balance("A<B", "5", 9)]
        await machine.handle_text(CHAT_ID, keyboards.SEND)
        await machine.handle_callback(CHAT_ID, "asset:0")

        assert "You selected A&lt;B." in responder.last.text

        await machine.handle_text(CHAT_ID, "200")

        assert responder.last.text == "Insufficient balance. You only have 5 A&lt;B available."

    @pytest.mark.asyncio
    async def test_swap_source_symbol_is_escaped(self, machine, responder, backend, logged_in):
        """Test the swap prompts with a markup-bearing source symbol."""
        backend.get_wallet_overview.return_value = [make_balance("X&Y", "5", 9)]
        await machine.handle_text(CHAT_ID, keyboards.SWAP)
        await machine.handle_callback(CHAT_ID, "swap_from:0")
        assert "You selected X&amp;Y to swap from." in responder.last.text

        await machine.handle_callback(CHAT_ID, "swap_to:0")

        assert "Please enter the amount of X&amp;Y you want to swap:" in responder.last.text


class TestMalformedCollaborators:
    """Unexpected payloads degrade the same way as unavailable services."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [{"decimals": "abc"}, {"decimals": -1}, {"symbol": 5, "decimals": 6}],
    )
    async def test_malformed_metadata_defaults_to_nine_decimals(
        self, responder, auth, backend, risk, visualizer, settings, logged_in, payload
    ):
        """Test that unusable token metadata falls back to a 9-decimal custom token."""
        machine = machine_with_dex(
            responder, auth, backend, risk, visualizer, settings,
            lambda request: httpx.Response(200, json=payload),
        )
        await begin_swap(machine, backend, target_key="swap_to:custom")

        await machine.handle_text(CHAT_ID, CUSTOM_MINT)
        await machine.dex.close()

        session = machine.store.get(CHAT_ID)
        assert session.step == Step.ENTER_SWAP_AMOUNT
        assert session.target == TokenTarget("Custom Token", "Unknown Token", CUSTOM_MINT, 9)
        loading = next(m for m in responder.messages if m.text == "Fetching token information...")
        assert (CHAT_ID, loading.message_id) in responder.deleted

    @pytest.mark.asyncio
    async def test_malformed_swap_transaction_reports_failure(
        self, responder, auth, backend, risk, visualizer, settings, logged_in
    ):
        """Test that a transaction response without a transaction fails the swap cleanly."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.startswith("/compute"):
                return httpx.Response(
                    200, json={"success": True, "data": {"outputAmount": "200000000"}}
                )
            return httpx.Response(200, json={"success": True, "data": [{"tx": "AAAA"}]})

        signer = AsyncMock(spec=TransactionSigner)
        signer.get_address.return_value = "Owner111"
        machine = machine_with_dex(
            responder, auth, backend, risk, visualizer, settings, handler, signer=signer
        )
        await begin_swap(machine, backend)
        await machine.handle_text(CHAT_ID, "2")
        assert machine.store.get(CHAT_ID).step == Step.CONFIRM_SWAP

        await machine.handle_callback(CHAT_ID, "confirm_swap")
        await machine.dex.close()

        signer.sign_and_send.assert_not_awaited()
        assert SWAP_FAILED in responder.texts
        assert machine.store.get(CHAT_ID) is None
        assert responder.last.text == MAIN_MENU_PROMPT


class TestChatHousekeeping:
    """Per-chat structures are released when a chat goes idle."""

    @pytest.mark.asyncio
    async def test_idle_chat_releases_its_lock(self, machine, backend, logged_in):
        """Test that the lock lives as long as the session does."""
        await machine.handle_text(CHAT_ID, "hello")
        assert len(machine.store.locks) == 0

        await begin_send(machine, backend)
        assert len(machine.store.locks) == 1

        await machine.handle_callback(CHAT_ID, "cancel_send")
        assert len(machine.store.locks) == 0

    @pytest.mark.asyncio
    async def test_start_mentions_pending_approval(self, machine, responder, auth):
        """Test that /start reminds the user of a running authentication."""
        auth.is_polling = MagicMock(return_value=True)

        await machine.start(CHAT_ID, "Ada")

        assert responder.last.text == AUTH_PENDING
        auth.is_polling.assert_called_once_with(CHAT_ID)

    @pytest.mark.asyncio
    async def test_logout_forgets_balance_history(self, machine, logged_in):
        """Test that the logged-out wallet's chart history is dropped."""
        machine.history.record(WALLET_ID, Decimal("5"))

        await machine.handle_text(CHAT_ID, keyboards.LOGOUT)

        assert machine.history.points(WALLET_ID) == []
