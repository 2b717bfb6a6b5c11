"""Utility modules for the wallet bot."""

from walletbot.utils.locks import ChatLocks, LockTimeoutError

__all__ = ["ChatLocks", "LockTimeoutError"]
