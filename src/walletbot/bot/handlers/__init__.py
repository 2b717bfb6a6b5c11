"""Bot handlers module."""

from aiogram import Router

from walletbot.bot.handlers import conversation, start


def setup_routers() -> Router:
    """Create and configure all routers."""
    main_router = Router()

    # Commands first so they win over free-text routing
    main_router.include_router(start.router)
    main_router.include_router(conversation.router)

    return main_router
