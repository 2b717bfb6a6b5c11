"""Bot initialization and runner."""

import asyncio
import logging
from dataclasses import dataclass

from aiogram import Bot, Dispatcher

from walletbot.auth import AuthCoordinator
from walletbot.bot.handlers import setup_routers
from walletbot.clients.backend import WalletBackendClient
from walletbot.clients.dex import DexAggregatorClient
from walletbot.clients.risk import AddressRiskChecker
from walletbot.clients.signer import WalletBackendSigner
from walletbot.config import Settings, get_settings
from walletbot.conversation import ConversationStateMachine
from walletbot.identity import Identity
from walletbot.notifications.telegram import TelegramResponder
from walletbot.visuals import Visualizer

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived collaborators shared by every chat."""

    backend: WalletBackendClient
    dex: DexAggregatorClient
    risk: AddressRiskChecker
    auth: AuthCoordinator
    machine: ConversationStateMachine

    async def close(self) -> None:
        await self.auth.shutdown()
        await self.backend.close()
        await self.dex.close()
        await self.risk.close()


def build_services(bot: Bot, settings: Settings) -> Services:
    """Wire clients, identity and the state machine together."""
    identity = Identity()
    backend = WalletBackendClient(
        settings.api_base_url,
        api_key=settings.api_key or None,
        timeout=settings.request_timeout,
    )
    dex = DexAggregatorClient(
        swap_api_url=settings.swap_api_url,
        token_api_url=settings.token_api_url,
        signer=WalletBackendSigner(backend, identity),
        quote_slippage_bps=settings.swap_quote_slippage_bps,
        execute_slippage_bps=settings.swap_execute_slippage_bps,
        compute_unit_price=settings.swap_compute_unit_price,
        timeout=settings.request_timeout,
    )
    risk = AddressRiskChecker(
        settings.risk_api_url,
        api_key=settings.risk_api_key or None,
        timeout=settings.request_timeout,
    )
    auth = AuthCoordinator(backend, identity, settings)
    machine = ConversationStateMachine(
        responder=TelegramResponder(bot),
        auth=auth,
        backend=backend,
        dex=dex,
        risk=risk,
        visualizer=Visualizer(),
        settings=settings,
    )
    return Services(backend=backend, dex=dex, risk=risk, auth=auth, machine=machine)


def create_bot() -> tuple[Bot, Dispatcher, Services]:
    """Create bot, dispatcher and services."""
    settings = get_settings()

    if not settings.telegram_bot_token:
        raise ValueError("TELEGRAM_BOT_TOKEN is not set")

    # No default parse_mode - the responder sets it per message
    bot = Bot(token=settings.telegram_bot_token)
    services = build_services(bot, settings)

    # Handlers receive the state machine as the ``machine`` argument
    dp = Dispatcher(machine=services.machine)
    dp.include_router(setup_routers())

    return bot, dp, services


async def run_bot() -> None:
    """Run the bot in polling mode."""
    settings = get_settings()

    # Configure logging - reduce noise from libraries
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("matplotlib").setLevel(logging.WARNING)
    logging.getLogger("aiogram").setLevel(logging.INFO)

    logger.info("Starting wallet bot...")
    logger.info(f"Configuration: {settings.get_safe_dict()}")
    if not settings.risk_api_url:
        logger.warning("Address risk service not configured - sends proceed with a caution notice")

    bot, dp, services = create_bot()

    try:
        # Delete webhook if any and start polling
        await bot.delete_webhook(drop_pending_updates=True)
        logger.info("Starting polling...")
        await dp.start_polling(bot)
    finally:
        await services.close()
        await bot.session.close()
        logger.info("Wallet bot stopped")


def main() -> None:
    """Entry point for the bot."""
    asyncio.run(run_bot())


if __name__ == "__main__":
    main()
