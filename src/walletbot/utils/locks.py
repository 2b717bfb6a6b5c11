"""Per-chat locking.

Serializes handling of events for one chat so two overlapping messages can
never read the same session snapshot and both write it back.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

logger = logging.getLogger(__name__)


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class ChatLocks:
    """Registry of one ``asyncio.Lock`` per chat id.

    Example:
        locks = ChatLocks()
        async with locks.hold(chat_id, operation="handle_text"):
            session = store.get(chat_id)
            ...
    """

    def __init__(self, timeout: Optional[float] = 30.0):
        """Initialize the registry.

        Args:
            timeout: Default maximum wait for a lock (None = wait forever)
        """
        self.timeout = timeout
        self._locks: dict[int, asyncio.Lock] = {}
        # Holders plus waiters per chat
        self._users: dict[int, int] = {}

    def get(self, chat_id: int) -> asyncio.Lock:
        """Get or create the lock for a chat."""
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = self._locks[chat_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(
        self,
        chat_id: int,
        timeout: Optional[float] = None,
        operation: str = "chat_event",
    ) -> AsyncIterator[None]:
        """Hold the chat's lock for the duration of the block.

        Raises:
            LockTimeoutError: If the lock is not acquired within the timeout
        """
        lock = self.get(chat_id)
        timeout = self.timeout if timeout is None else timeout
        self._users[chat_id] = self._users.get(chat_id, 0) + 1

        try:
            try:
                if timeout:
                    await asyncio.wait_for(lock.acquire(), timeout=timeout)
                else:
                    await lock.acquire()
            except asyncio.TimeoutError:
                logger.warning(f"Lock timeout for chat {chat_id} after {timeout}s: {operation}")
                raise LockTimeoutError(
                    f"Could not acquire lock for chat {chat_id} within {timeout}s"
                )

            logger.debug(f"Lock acquired for chat {chat_id}: {operation}")
            try:
                yield
            finally:
                lock.release()
                logger.debug(f"Lock released for chat {chat_id}: {operation}")
        finally:
            remaining = self._users[chat_id] - 1
            if remaining:
                self._users[chat_id] = remaining
            else:
                del self._users[chat_id]

    def discard(self, chat_id: int) -> None:
        """Drop a chat's lock once nobody holds or awaits it."""
        if self._users.get(chat_id):
            return
        lock = self._locks.get(chat_id)
        if lock is not None and not lock.locked():
            del self._locks[chat_id]

    def clear(self) -> None:
        """Clear all locks (useful for testing)."""
        self._locks.clear()
        self._users.clear()

    def __len__(self) -> int:
        return len(self._locks)
