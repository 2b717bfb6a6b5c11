"""Telegram keyboard builders."""

from aiogram.types import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    ReplyKeyboardMarkup,
)

from walletbot.clients.dex import KnownToken
from walletbot.clients.models import WalletSummary, Workspace
from walletbot.sessions import AssetChoice

# Menu button texts
CONNECT_WALLET = "💼 Connect Wallet"
MONITOR_WALLET = "📊 Monitor Wallet"
SEND = "💸 Send"
SWAP = "🔄 Swap"
MAIN_MENU = "🏠 Main Menu"
CHANGE_WALLET = "🔀 Change Wallet"
CHOOSE_WORKSPACE = "👥 Choose Workspace"
LOGOUT = "🔒 Logout"


def wallet_actions_keyboard() -> ReplyKeyboardMarkup:
    """Main menu for an authenticated chat."""
    keyboard = [
        [KeyboardButton(text=SEND), KeyboardButton(text=SWAP)],
        [
            KeyboardButton(text=MONITOR_WALLET),
            KeyboardButton(text=CHANGE_WALLET),
            KeyboardButton(text=LOGOUT),
        ],
    ]
    return ReplyKeyboardMarkup(keyboard=keyboard, resize_keyboard=True)


def connect_keyboard() -> ReplyKeyboardMarkup:
    """Only option before a wallet is connected."""
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text=CONNECT_WALLET)]], resize_keyboard=True
    )


def back_to_menu_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(keyboard=[[KeyboardButton(text=MAIN_MENU)]], resize_keyboard=True)


def reconnect_keyboard() -> InlineKeyboardMarkup:
    """Ask whether to replace the connected wallet."""
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(text="Yes, connect new wallet", callback_data="new_wallet"),
                InlineKeyboardButton(text="No, use current wallet", callback_data="use_current"),
            ]
        ]
    )


def asset_selection_keyboard(choices: list[AssetChoice], keys: list[str]) -> InlineKeyboardMarkup:
    """One asset per row; each button carries its selection-cache key."""
    buttons = [
        [InlineKeyboardButton(text=choice.label, callback_data=key)]
        for choice, key in zip(choices, keys)
    ]
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def swap_target_keyboard(tokens: list[KnownToken], keys: list[str]) -> InlineKeyboardMarkup:
    """Known destination tokens plus a custom mint option."""
    buttons = [
        [InlineKeyboardButton(text=f"{token.symbol} ({token.name})", callback_data=key)]
        for token, key in zip(tokens, keys)
    ]
    buttons.append(
        [InlineKeyboardButton(text="Enter custom token address", callback_data="swap_to:custom")]
    )
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def confirm_keyboard(action: str) -> InlineKeyboardMarkup:
    """Confirm/cancel pair for ``send`` or ``swap``."""
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(text="✅ Confirm", callback_data=f"confirm_{action}"),
                InlineKeyboardButton(text="❌ Cancel", callback_data=f"cancel_{action}"),
            ]
        ]
    )


def workspace_keyboard(workspaces: list[Workspace]) -> InlineKeyboardMarkup:
    buttons = [
        [InlineKeyboardButton(text=ws.name, callback_data=f"ws:{ws.id}")] for ws in workspaces
    ]
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def wallet_keyboard(wallets: list[WalletSummary]) -> InlineKeyboardMarkup:
    buttons = []
    for wallet in wallets:
        label = f"{wallet.name} ({wallet.wallet_type})" if wallet.wallet_type else wallet.name
        buttons.append([InlineKeyboardButton(text=label, callback_data=f"wallet:{wallet.id}")])
    return InlineKeyboardMarkup(inline_keyboard=buttons)
