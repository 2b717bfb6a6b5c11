"""Per-chat conversation state.

A chat has at most one in-flight operation (send or swap). Its session is
created by a flow start, mutated by step handlers and dropped on completion,
cancellation or fallback. Button payloads never carry descriptors directly:
they carry short keys resolved through the chat's selection cache.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Optional

from walletbot.clients.models import RiskAssessment
from walletbot.utils.locks import ChatLocks

logger = logging.getLogger(__name__)


class Step(str, Enum):
    """Where a chat is within a send or swap flow."""

    SELECT_ASSET = "select_asset"
    ENTER_AMOUNT = "enter_amount"
    ENTER_ADDRESS = "enter_address"
    CONFIRM_SEND = "confirm_send"
    SELECT_SWAP_FROM = "select_swap_from"
    SELECT_SWAP_TO = "select_swap_to"
    ENTER_SWAP_TO_ADDRESS = "enter_swap_to_address"
    ENTER_SWAP_AMOUNT = "enter_swap_amount"
    CONFIRM_SWAP = "confirm_swap"


@dataclass(frozen=True)
class AssetChoice:
    """A wallet asset offered in a selection menu."""

    asset_id: str
    symbol: str
    available: str
    decimals: int
    network: Optional[str] = None

    @property
    def label(self) -> str:
        network = f" ({self.network})" if self.network else ""
        return f"{self.symbol}{network} ({self.available})"


@dataclass(frozen=True)
class TokenTarget:
    """Swap destination token."""

    symbol: str
    name: str
    mint: str
    decimals: int


@dataclass
class Session:
    """Accumulated state of one in-flight send or swap.

    ``step`` may hold a plain string when restored from elsewhere; unknown
    values are handled by the conversation fallback.
    """

    step: Any
    asset: Optional[AssetChoice] = None
    amount: Optional[str] = None
    amount_raw: Optional[int] = None
    recipient_address: Optional[str] = None
    risk: Optional[RiskAssessment] = None
    from_mint: Optional[str] = None
    target: Optional[TokenTarget] = None
    expected_output: Optional[str] = None
    rate: Optional[Decimal] = None


class SelectionCache:
    """Per-chat map from short button keys to the descriptors they stand for."""

    def __init__(self):
        self._entries: dict[int, dict[str, Any]] = {}

    def replace(self, chat_id: int, prefix: str, items: list[Any]) -> list[str]:
        """Forget the chat's previous menu and register a new one.

        Returns:
            Keys ``"{prefix}:{index}"`` in the order of ``items``
        """
        entries = {f"{prefix}:{index}": item for index, item in enumerate(items)}
        self._entries[chat_id] = entries
        return list(entries)

    def resolve(self, chat_id: int, key: str) -> Optional[Any]:
        return self._entries.get(chat_id, {}).get(key)

    def clear(self, chat_id: int) -> None:
        self._entries.pop(chat_id, None)

    def __len__(self) -> int:
        return len(self._entries)


class SessionStore:
    """Sessions, selection menus and locks for every chat."""

    def __init__(self, lock_timeout: Optional[float] = 30.0):
        self._sessions: dict[int, Session] = {}
        self.selections = SelectionCache()
        self.locks = ChatLocks(timeout=lock_timeout)

    @asynccontextmanager
    async def lock(self, chat_id: int, operation: str = "chat_event") -> AsyncIterator[None]:
        """Serialize work for one chat; an idle chat without a session drops its lock."""
        try:
            async with self.locks.hold(chat_id, operation=operation):
                yield
        finally:
            if chat_id not in self._sessions:
                self.locks.discard(chat_id)

    def get(self, chat_id: int) -> Optional[Session]:
        return self._sessions.get(chat_id)

    def start(self, chat_id: int, step: Step, **fields: Any) -> Session:
        """Begin a new flow, replacing whatever the chat was doing."""
        if chat_id in self._sessions:
            logger.debug(f"Replacing session for chat {chat_id}")
        session = Session(step=step, **fields)
        self._sessions[chat_id] = session
        return session

    def clear(self, chat_id: int) -> None:
        """Drop the chat's session and its selection menu."""
        self._sessions.pop(chat_id, None)
        self.selections.clear(chat_id)

    def __contains__(self, chat_id: int) -> bool:
        return chat_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
