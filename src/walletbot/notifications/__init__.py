"""Chat delivery adapters."""

from walletbot.notifications.telegram import TelegramResponder

__all__ = ["TelegramResponder"]
