"""Conversation state machine.

Interprets free text and button payloads for each chat according to the
chat's current step, validates input, advances the session and dispatches
the terminal send/swap actions.

Dispatch rules:
- Every event for a chat runs under that chat's lock.
- With a session, free text goes to the current step's handler; menu
  buttons are not interpreted. Steps without a text handler fall back:
  notify, drop the session, show the menu.
- Without a session, text is matched against the menu; anything else is
  ignored.
- Callback payloads are routed by prefix; selection keys are resolved
  through the chat's selection cache.
"""

import asyncio
import logging
from decimal import Decimal
from html import escape
from typing import Awaitable, Callable, Optional

from walletbot.auth import AuthCoordinator
from walletbot.bot import keyboards
from walletbot.clients.backend import WalletBackendClient
from walletbot.clients.dex import SOLANA_TOKENS, DexAggregatorClient, KnownToken
from walletbot.clients.models import TokenMetadata, WalletAssetBalance
from walletbot.clients.risk import AddressRiskChecker
from walletbot.config import Settings
from walletbot.errors import (
    AuthStartError,
    BackendError,
    StateError,
    ValidationError,
    VisualizationError,
    WalletBotError,
)
from walletbot.executors import SendExecutor, SwapExecutor
from walletbot.formatting import (
    AUTH_PENDING,
    FALLBACK,
    MAIN_MENU_PROMPT,
    NEED_WALLET,
    QUOTE_FAILED,
    RISK_CAUTION,
    SEND_FAILED,
    STILL_PROCESSING,
    SWAP_FAILED,
    format_overview,
    format_risk_caption,
    format_send_confirmation,
    format_send_receipt,
    format_swap_confirmation,
    format_swap_receipt,
    format_verification,
    format_wallet_header,
    usd,
)
from walletbot.history import BalanceHistory
from walletbot.sessions import AssetChoice, Session, SessionStore, Step, TokenTarget
from walletbot.units import format_amount, parse_amount, to_smallest_unit
from walletbot.utils.locks import LockTimeoutError
from walletbot.visuals import Visualizer

logger = logging.getLogger(__name__)

MIN_ADDRESS_LENGTH = 10
MINT_ADDRESS_LENGTH = 44

StepHandler = Callable[[int, str, Session], Awaitable[None]]


class ConversationStateMachine:
    """Per-chat send/swap flows, menus and the authentication flow."""

    def __init__(
        self,
        responder,
        auth: AuthCoordinator,
        backend: WalletBackendClient,
        dex: DexAggregatorClient,
        risk: AddressRiskChecker,
        visualizer: Visualizer,
        settings: Settings,
        store: Optional[SessionStore] = None,
        history: Optional[BalanceHistory] = None,
    ):
        """Initialize the state machine.

        Args:
            responder: Chat delivery (``send_message``, ``send_photo``,
                ``delete_message``); must not raise on delivery failure
            auth: Authentication coordinator owning the identity
            backend: Wallet backend client
            dex: DEX aggregator for quotes, execution and token metadata
            risk: Address risk checker
            visualizer: Chart and QR renderer
            settings: Application settings
            store: Session store (created if omitted)
            history: Balance history (created if omitted)
        """
        self.responder = responder
        self.auth = auth
        self.backend = backend
        self.dex = dex
        self.risk = risk
        self.visualizer = visualizer
        self.settings = settings
        self.store = store or SessionStore(lock_timeout=settings.chat_lock_timeout)
        self.history = history or BalanceHistory(settings.balance_history_size)
        self.send_executor = SendExecutor(backend, auth.identity)
        self.swap_executor = SwapExecutor(dex)

        self._menu_handlers: dict[str, Callable[[int], Awaitable[None]]] = {
            keyboards.CONNECT_WALLET: self._on_connect_wallet,
            keyboards.MONITOR_WALLET: self._on_monitor_wallet,
            keyboards.SEND: self.start_send,
            keyboards.SWAP: self.start_swap,
            keyboards.MAIN_MENU: self.show_main_menu,
            keyboards.CHANGE_WALLET: self._on_change_wallet,
            keyboards.CHOOSE_WORKSPACE: self._on_change_wallet,
            keyboards.LOGOUT: self.logout,
        }
        self._step_handlers: dict[Step, StepHandler] = {
            Step.ENTER_AMOUNT: self._handle_amount,
            Step.ENTER_ADDRESS: self._handle_address,
            Step.ENTER_SWAP_TO_ADDRESS: self._handle_swap_to_address,
            Step.ENTER_SWAP_AMOUNT: self._handle_swap_amount,
        }

    # ======================
    # Entry points
    # ======================

    async def handle_text(self, chat_id: int, text: str) -> None:
        """Route a free-text message for a chat."""
        try:
            async with self.store.lock(chat_id, operation="handle_text"):
                session = self.store.get(chat_id)
                if session is not None:
                    await self._dispatch_step(chat_id, text, session)
                    return

                handler = self._menu_handlers.get(text.strip())
                if handler is None:
                    logger.debug(f"Ignoring unrecognized text in chat {chat_id}")
                    return
                await handler(chat_id)
        except LockTimeoutError:
            await self.responder.send_message(chat_id, STILL_PROCESSING)

    async def handle_callback(self, chat_id: int, data: str) -> None:
        """Route an inline button payload for a chat."""
        try:
            async with self.store.lock(chat_id, operation="handle_callback"):
                await self._dispatch_callback(chat_id, data)
        except LockTimeoutError:
            await self.responder.send_message(chat_id, STILL_PROCESSING)

    async def start(self, chat_id: int, first_name: Optional[str] = None) -> None:
        """``/start``: drop any in-flight session and show the menu."""
        name = escape(first_name or "there")
        try:
            async with self.store.lock(chat_id, operation="start"):
                self.store.clear(chat_id)
                if self.auth.is_authenticated():
                    await self.responder.send_message(
                        chat_id,
                        f"👋 Welcome back, {name}! Your wallet is connected. "
                        "What would you like to do? 🚀",
                        reply_markup=keyboards.wallet_actions_keyboard(),
                    )
                else:
                    await self.responder.send_message(
                        chat_id,
                        f"👋 Welcome to Crypto Wallet Bot built with MPC technology! {name} 🚀",
                        reply_markup=keyboards.connect_keyboard(),
                    )
                    if self.auth.is_polling(chat_id):
                        await self.responder.send_message(chat_id, AUTH_PENDING)
        except LockTimeoutError:
            await self.responder.send_message(chat_id, STILL_PROCESSING)

    async def authenticate(self, chat_id: int) -> None:
        """``/authenticate``: begin a new authentication handshake."""
        try:
            async with self.store.lock(chat_id, operation="authenticate"):
                await self.start_authentication_flow(chat_id)
        except LockTimeoutError:
            await self.responder.send_message(chat_id, STILL_PROCESSING)

    async def reset(self, chat_id: int, first_name: Optional[str] = None) -> None:
        """``/reset``: clear the session, stop polling and forget credentials."""
        try:
            async with self.store.lock(chat_id, operation="reset"):
                self._forget_identity(chat_id)
                await self.responder.send_message(
                    chat_id,
                    "Bot has been reset. All your data and session information has been cleared.",
                )
                await self.responder.send_message(
                    chat_id,
                    f"👋 Welcome to Crypto Wallet Monitor Bot! {escape(first_name or 'there')} 🚀",
                    reply_markup=keyboards.connect_keyboard(),
                )
        except LockTimeoutError:
            await self.responder.send_message(chat_id, STILL_PROCESSING)

    # ======================
    # Dispatch
    # ======================

    async def _dispatch_step(self, chat_id: int, text: str, session: Session) -> None:
        try:
            try:
                step = Step(session.step)
            except ValueError:
                raise StateError(f"Unknown step {session.step!r}") from None
            handler = self._step_handlers.get(step)
            if handler is None:
                raise StateError(f"No text handler for step {step.value}")
            await handler(chat_id, text.strip(), session)
        except StateError as e:
            logger.info(f"Chat {chat_id} fallback: {e}")
            await self._fallback(chat_id)

    async def _fallback(self, chat_id: int) -> None:
        await self.responder.send_message(chat_id, FALLBACK)
        self.store.clear(chat_id)
        await self.show_main_menu(chat_id)

    async def _dispatch_callback(self, chat_id: int, data: str) -> None:
        if data.startswith("ws:"):
            await self._on_workspace_selected(chat_id, data[len("ws:"):])
        elif data.startswith("wallet:"):
            await self._on_wallet_selected(chat_id, data[len("wallet:"):])
        elif data == "new_wallet":
            await self.start_authentication_flow(chat_id)
        elif data == "use_current":
            await self.show_main_menu(chat_id)
        elif data.startswith("asset:"):
            await self._on_asset_selected(chat_id, data)
        elif data.startswith("swap_from:"):
            await self._on_swap_from_selected(chat_id, data)
        elif data == "swap_to:custom":
            await self._on_swap_to_custom(chat_id)
        elif data.startswith("swap_to:"):
            await self._on_swap_to_selected(chat_id, data)
        elif data == "confirm_send":
            await self._confirm_send(chat_id)
        elif data == "cancel_send":
            self.store.clear(chat_id)
            await self.responder.send_message(chat_id, "Transaction cancelled.")
            await self.show_main_menu(chat_id)
        elif data == "confirm_swap":
            await self._confirm_swap(chat_id)
        elif data == "cancel_swap":
            self.store.clear(chat_id)
            await self.responder.send_message(chat_id, "Swap cancelled.")
            await self.show_main_menu(chat_id)
        else:
            logger.debug(f"Ignoring unknown callback payload in chat {chat_id}: {data!r}")

    def _session_at(self, chat_id: int, step: Step) -> Optional[Session]:
        session = self.store.get(chat_id)
        if session is None or session.step != step:
            return None
        return session

    async def _selection_expired(self, chat_id: int, what: str) -> None:
        await self.responder.send_message(chat_id, f"Selected {what} not found. Please try again.")

    # ======================
    # Menus
    # ======================

    async def show_main_menu(self, chat_id: int) -> None:
        await self.responder.send_message(
            chat_id, MAIN_MENU_PROMPT, reply_markup=keyboards.wallet_actions_keyboard()
        )

    async def _require_wallet(self, chat_id: int) -> bool:
        if not self.auth.is_authenticated():
            await self.responder.send_message(chat_id, NEED_WALLET)
            return False
        if not self.auth.get_current_wallet_id():
            await self.responder.send_message(
                chat_id,
                f"No wallet selected yet. Use {keyboards.CHANGE_WALLET} to pick one.",
            )
            return False
        return True

    async def _on_connect_wallet(self, chat_id: int) -> None:
        if self.auth.is_authenticated():
            await self.responder.send_message(
                chat_id,
                "You already have a connected wallet. Do you want to connect a different one?",
                reply_markup=keyboards.reconnect_keyboard(),
            )
        else:
            await self.start_authentication_flow(chat_id)

    async def _on_monitor_wallet(self, chat_id: int) -> None:
        if await self._require_wallet(chat_id):
            await self.show_wallet_data(chat_id)

    async def _on_change_wallet(self, chat_id: int) -> None:
        if not self.auth.is_authenticated():
            await self.responder.send_message(chat_id, NEED_WALLET)
            return
        await self.show_workspace_selection(chat_id)

    def _forget_identity(self, chat_id: int) -> None:
        wallet_id = self.auth.get_current_wallet_id()
        if wallet_id:
            self.history.forget(wallet_id)
        self.store.clear(chat_id)
        self.auth.cancel_polling(chat_id)
        self.auth.logout_and_clear()

    async def logout(self, chat_id: int) -> None:
        self._forget_identity(chat_id)
        await self.responder.send_message(
            chat_id,
            "You have been successfully logged out. Your authentication credentials have been cleared.",
        )
        await self.responder.send_message(
            chat_id,
            "You'll need to connect a wallet to continue using the full features of the bot.",
            reply_markup=keyboards.connect_keyboard(),
        )

    # ======================
    # Authentication and wallet selection
    # ======================

    async def start_authentication_flow(self, chat_id: int) -> None:
        """Open a session request, show its code and poll in the background."""
        self.auth.cancel_polling(chat_id)
        await self.responder.send_message(chat_id, "Starting wallet authentication process...")

        try:
            session_request_id, code = await self.auth.start_authentication()
        except AuthStartError as e:
            logger.error(f"Authentication error for chat {chat_id}: {e}")
            await self.responder.send_message(
                chat_id,
                "❌ Sorry, there was an error starting the authentication process. "
                "Please try again later.",
            )
            return

        payload = f"sessionRequestId={session_request_id}&verificationCode={code}"
        try:
            image = await asyncio.to_thread(self.visualizer.render_scannable_code, payload)
        except VisualizationError as e:
            logger.warning(f"Skipping QR code for chat {chat_id}: {e}")
        else:
            await self.responder.send_photo(
                chat_id, image, caption="Scan this QR code to authenticate your wallet"
            )

        await self.responder.send_message(
            chat_id, format_verification(code, self.settings.dashboard_url)
        )

        async def on_complete(token: str) -> None:
            await self.responder.send_message(chat_id, "✅ Wallet authenticated successfully!")
            await self.show_workspace_selection(chat_id)

        async def on_timeout() -> None:
            await self.responder.send_message(
                chat_id,
                f"⌛ The authentication request expired. Tap {keyboards.CONNECT_WALLET} to try again.",
                reply_markup=keyboards.connect_keyboard(),
            )

        self.auth.begin_polling(chat_id, session_request_id, on_complete, on_timeout)

    async def show_workspace_selection(self, chat_id: int) -> None:
        try:
            workspaces = await self.auth.get_workspaces()
        except BackendError as e:
            logger.error(f"Error fetching workspaces: {e}")
            await self.responder.send_message(
                chat_id, "❌ Error fetching workspaces. Please try again later."
            )
            return

        if not workspaces:
            await self.responder.send_message(
                chat_id, "No workspaces found for your account. Please create a workspace first."
            )
            return

        await self.responder.send_message(
            chat_id,
            "Please select a workspace:",
            reply_markup=keyboards.workspace_keyboard(workspaces),
        )

    async def _on_workspace_selected(self, chat_id: int, workspace_id: str) -> None:
        if not workspace_id:
            await self._selection_expired(chat_id, "workspace")
            return

        self.auth.set_current_workspace(workspace_id)
        try:
            wallets = await self.auth.get_workspace_wallets(workspace_id)
        except BackendError as e:
            logger.error(f"Error fetching wallets for workspace {workspace_id}: {e}")
            await self.responder.send_message(
                chat_id, "❌ Error fetching wallets. Please try again later."
            )
            return

        if not wallets:
            await self.responder.send_message(
                chat_id, "No wallets found in this workspace. Please create a wallet first."
            )
            return

        await self.responder.send_message(
            chat_id, "Please select a wallet:", reply_markup=keyboards.wallet_keyboard(wallets)
        )

    async def _on_wallet_selected(self, chat_id: int, wallet_id: str) -> None:
        if not wallet_id:
            await self._selection_expired(chat_id, "wallet")
            return

        self.auth.set_current_wallet_id(wallet_id)
        self.store.clear(chat_id)
        logger.info(f"Chat {chat_id} switched to wallet {wallet_id}")
        await self.responder.send_message(chat_id, "✅ Wallet connected successfully!")
        await self.show_main_menu(chat_id)

    # ======================
    # Monitor
    # ======================

    async def show_wallet_data(self, chat_id: int) -> None:
        """Overview, balance chart, allocation chart and the asset list."""
        wallet_id = self.auth.get_current_wallet_id()
        try:
            balances = await self.backend.get_wallet_overview(wallet_id)
        except BackendError as e:
            logger.error(f"Error showing wallet data: {e}")
            await self.responder.send_message(
                chat_id, "Sorry, there was an error fetching your wallet data."
            )
            return

        total = sum((b.value_usd for b in balances), Decimal("0"))
        self.history.record(wallet_id, total)
        await self.responder.send_message(chat_id, format_wallet_header(total))

        try:
            chart = await asyncio.to_thread(
                self.visualizer.render_balance_series, self.history.points(wallet_id)
            )
        except VisualizationError as e:
            logger.warning(f"Skipping balance chart: {e}")
        else:
            await self.responder.send_photo(
                chat_id, chart, caption=f"💰 Current Wallet Balance: {usd(total)} USD"
            )

        try:
            allocation = await asyncio.to_thread(
                self.visualizer.render_allocation,
                [(b.asset.symbol, b.value_usd) for b in balances],
            )
        except VisualizationError as e:
            logger.warning(f"Skipping allocation chart: {e}")
        else:
            await self.responder.send_photo(chat_id, allocation, caption="📊 Portfolio Allocation")

        await self.responder.send_message(
            chat_id,
            format_overview(balances, total),
            reply_markup=keyboards.back_to_menu_keyboard(),
        )

    # ======================
    # Flow starts
    # ======================

    async def _load_asset_choices(self, chat_id: int) -> Optional[list[AssetChoice]]:
        try:
            balances = await self.backend.get_wallet_overview(self.auth.get_current_wallet_id())
        except BackendError as e:
            logger.error(f"Error fetching assets for chat {chat_id}: {e}")
            balances = None

        if not balances:
            await self.responder.send_message(
                chat_id, "Sorry, there was an error fetching your assets. Please try again later."
            )
            await self.show_main_menu(chat_id)
            return None

        return [self._asset_choice(balance) for balance in balances]

    @staticmethod
    def _asset_choice(balance: WalletAssetBalance) -> AssetChoice:
        return AssetChoice(
            asset_id=balance.asset.id,
            symbol=balance.asset.symbol,
            available=balance.available_balance,
            decimals=balance.asset.decimals,
            network=balance.network_name,
        )

    async def start_send(self, chat_id: int) -> None:
        """Seed a send session and show the asset menu."""
        if not await self._require_wallet(chat_id):
            return
        choices = await self._load_asset_choices(chat_id)
        if choices is None:
            return

        self.store.start(chat_id, Step.SELECT_ASSET)
        keys = self.store.selections.replace(chat_id, "asset", choices)
        await self.responder.send_message(
            chat_id,
            "Please select the asset you want to send:",
            reply_markup=keyboards.asset_selection_keyboard(choices, keys),
        )

    async def start_swap(self, chat_id: int) -> None:
        """Seed a swap session and show the source asset menu."""
        if not await self._require_wallet(chat_id):
            return
        choices = await self._load_asset_choices(chat_id)
        if choices is None:
            return

        self.store.start(chat_id, Step.SELECT_SWAP_FROM)
        keys = self.store.selections.replace(chat_id, "swap_from", choices)
        await self.responder.send_message(
            chat_id,
            "Please select the asset you want to swap from:",
            reply_markup=keyboards.asset_selection_keyboard(choices, keys),
        )

    # ======================
    # Send flow
    # ======================

    async def _on_asset_selected(self, chat_id: int, key: str) -> None:
        session = self._session_at(chat_id, Step.SELECT_ASSET)
        choice = self.store.selections.resolve(chat_id, key) if session else None
        if not isinstance(choice, AssetChoice):
            await self._selection_expired(chat_id, "asset")
            return

        session.asset = choice
        session.step = Step.ENTER_AMOUNT
        symbol = escape(choice.symbol)
        await self.responder.send_message(
            chat_id,
            f"You selected {symbol}. Your available balance is "
            f"{escape(choice.available)} {symbol}.\n\nPlease enter the amount you want to send:",
        )

    async def _handle_amount(self, chat_id: int, text: str, session: Session) -> None:
        asset = session.asset
        try:
            amount = parse_amount(text, asset.available, asset.symbol)
        except ValidationError as e:
            await self.responder.send_message(chat_id, escape(str(e)))
            return

        session.amount = format_amount(amount)
        session.amount_raw = to_smallest_unit(amount, asset.decimals)
        session.step = Step.ENTER_ADDRESS
        await self.responder.send_message(
            chat_id,
            f"Amount: {session.amount} {escape(asset.symbol)}\n\n"
            "Please enter the recipient's address:",
        )

    async def _handle_address(self, chat_id: int, text: str, session: Session) -> None:
        if len(text) < MIN_ADDRESS_LENGTH:
            await self.responder.send_message(chat_id, "Please enter a valid address.")
            return

        loading_id = await self.responder.send_message(
            chat_id, "🔍 Performing risk check on address...\nThis may take a moment."
        )
        session.recipient_address = text
        session.risk = None
        try:
            session.risk = await self.risk.check_address_risk(text)
        except WalletBotError as e:
            logger.warning(f"Error performing risk check: {e}")
        await self.responder.delete_message(chat_id, loading_id)

        if session.risk is not None:
            caption = format_risk_caption(session.risk)
            if session.risk.evidence_image:
                await self.responder.send_photo(chat_id, session.risk.evidence_image, caption=caption)
            else:
                await self.responder.send_message(chat_id, caption)
        else:
            await self.responder.send_message(chat_id, RISK_CAUTION)

        session.step = Step.CONFIRM_SEND
        await self.responder.send_message(
            chat_id,
            format_send_confirmation(session),
            reply_markup=keyboards.confirm_keyboard("send"),
        )

    async def _confirm_send(self, chat_id: int) -> None:
        session = self._session_at(chat_id, Step.CONFIRM_SEND)
        if session is None:
            logger.info(f"Stale send confirmation in chat {chat_id}")
            await self._fallback(chat_id)
            return

        await self.responder.send_message(chat_id, "Processing your transaction...")
        try:
            withdrawal = await self.send_executor.execute(session)
        except WalletBotError as e:
            logger.error(f"Error executing send: {e}")
            await self.responder.send_message(chat_id, SEND_FAILED)
        else:
            await self.responder.send_message(chat_id, format_send_receipt(session, withdrawal))
        finally:
            self.store.clear(chat_id)
        await self.show_main_menu(chat_id)

    # ======================
    # Swap flow
    # ======================

    async def _on_swap_from_selected(self, chat_id: int, key: str) -> None:
        session = self._session_at(chat_id, Step.SELECT_SWAP_FROM)
        choice = self.store.selections.resolve(chat_id, key) if session else None
        if not isinstance(choice, AssetChoice):
            await self._selection_expired(chat_id, "asset")
            return

        session.asset = choice
        session.step = Step.SELECT_SWAP_TO
        targets = [
            token for token in SOLANA_TOKENS.values() if token.symbol != choice.symbol.upper()
        ]
        keys = self.store.selections.replace(chat_id, "swap_to", targets)
        await self.responder.send_message(
            chat_id,
            f"You selected {escape(choice.symbol)} to swap from. "
            "Please select the token you want to swap to:",
            reply_markup=keyboards.swap_target_keyboard(targets, keys),
        )

    async def _on_swap_to_custom(self, chat_id: int) -> None:
        session = self._session_at(chat_id, Step.SELECT_SWAP_TO)
        if session is None:
            await self._selection_expired(chat_id, "token")
            return

        session.step = Step.ENTER_SWAP_TO_ADDRESS
        await self.responder.send_message(
            chat_id, "Please enter the token mint address you want to swap to:"
        )

    async def _on_swap_to_selected(self, chat_id: int, key: str) -> None:
        session = self._session_at(chat_id, Step.SELECT_SWAP_TO)
        token = self.store.selections.resolve(chat_id, key) if session else None
        if not isinstance(token, KnownToken):
            await self._selection_expired(chat_id, "token")
            return

        session.target = TokenTarget(token.symbol, token.name, token.mint, token.decimals)
        session.step = Step.ENTER_SWAP_AMOUNT
        await self._prompt_swap_amount(chat_id, session, escape(token.symbol))

    async def _handle_swap_to_address(self, chat_id: int, text: str, session: Session) -> None:
        if len(text) != MINT_ADDRESS_LENGTH:
            await self.responder.send_message(
                chat_id,
                "Please enter a valid Solana token mint address (should be 44 characters).",
            )
            return

        loading_id = await self.responder.send_message(chat_id, "Fetching token information...")
        try:
            metadata = await self.dex.get_token_metadata(text)
            described = f"{escape(metadata.name)} ({escape(metadata.symbol)})"
        except BackendError as e:
            logger.warning(f"Error fetching token metadata for {text}: {e}")
            metadata = TokenMetadata.unknown().model_copy(update={"symbol": "Custom Token"})
            described = "a custom token"
        await self.responder.delete_message(chat_id, loading_id)

        session.target = TokenTarget(metadata.symbol, metadata.name, text, metadata.decimals)
        session.step = Step.ENTER_SWAP_AMOUNT
        await self._prompt_swap_amount(chat_id, session, described)

    async def _prompt_swap_amount(self, chat_id: int, session: Session, described: str) -> None:
        source = escape(session.asset.symbol)
        await self.responder.send_message(
            chat_id,
            f"You selected to swap from {source} to {described}.\n\n"
            f"Please enter the amount of {source} you want to swap:",
        )

    async def _handle_swap_amount(self, chat_id: int, text: str, session: Session) -> None:
        asset = session.asset
        try:
            amount = parse_amount(text, asset.available, asset.symbol)
        except ValidationError as e:
            await self.responder.send_message(chat_id, escape(str(e)))
            return

        loading_id = await self.responder.send_message(
            chat_id, "🔄 Getting swap quote...\nThis may take a moment."
        )
        try:
            await self.swap_executor.quote(session, amount)
        except WalletBotError as e:
            logger.error(f"Error getting swap quote: {e}")
            await self.responder.delete_message(chat_id, loading_id)
            await self.responder.send_message(chat_id, QUOTE_FAILED)
            self.store.clear(chat_id)
            await self.start_swap(chat_id)
            return

        await self.responder.delete_message(chat_id, loading_id)
        session.step = Step.CONFIRM_SWAP
        await self.responder.send_message(
            chat_id,
            format_swap_confirmation(session),
            reply_markup=keyboards.confirm_keyboard("swap"),
        )

    async def _confirm_swap(self, chat_id: int) -> None:
        session = self._session_at(chat_id, Step.CONFIRM_SWAP)
        if session is None:
            logger.info(f"Stale swap confirmation in chat {chat_id}")
            await self._fallback(chat_id)
            return

        await self.responder.send_message(chat_id, "Processing your swap...")
        try:
            tx_id = await self.swap_executor.execute(session)
        except WalletBotError as e:
            logger.error(f"Error executing swap: {e}")
            await self.responder.send_message(chat_id, SWAP_FAILED)
        else:
            await self.responder.send_message(
                chat_id, format_swap_receipt(session, tx_id, self.settings.explorer_tx_url)
            )
        finally:
            self.store.clear(chat_id)
        await self.show_main_menu(chat_id)
