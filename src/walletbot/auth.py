"""Authentication handshake with the wallet backend.

Flow:
1. ``start_authentication`` opens a session request carrying the device
   fingerprint and public key; the operator gets a verification code.
2. The operator enters the code on the dashboard and approves.
3. ``poll_for_completion`` watches the request until the backend returns the
   encrypted credential, decrypts it and installs the access token.

Polls run as per-chat background tasks so the chat stays responsive; a new
poll, ``/reset`` or logout cancels the previous one.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from walletbot.clients.backend import WalletBackendClient
from walletbot.clients.models import AuthStatus, WalletSummary, Workspace
from walletbot.config import Settings
from walletbot.crypto import (
    DeviceKeyPair,
    decrypt_token_payload,
    device_fingerprint,
    device_metadata,
)
from walletbot.errors import (
    AuthDecryptError,
    AuthStartError,
    AuthTimeoutError,
    BackendError,
)
from walletbot.identity import Identity

logger = logging.getLogger(__name__)

OnComplete = Callable[[str], Awaitable[None]]
OnTimeout = Callable[[], Awaitable[None]]


class AuthCoordinator:
    """Runs the session-request handshake and owns the identity it produces."""

    def __init__(
        self,
        backend: WalletBackendClient,
        identity: Identity,
        settings: Settings,
        keypair: Optional[DeviceKeyPair] = None,
    ):
        """Initialize the coordinator.

        Args:
            backend: Wallet backend client; receives the token once decrypted
            identity: Identity updated on success and cleared on logout
            settings: Poll interval/timeout, key directory, session duration
            keypair: Preloaded device keypair (tests); loaded lazily otherwise
        """
        self.backend = backend
        self.identity = identity
        self.settings = settings
        self._keypair = keypair
        self._polls: dict[int, asyncio.Task] = {}

    async def _get_keypair(self) -> DeviceKeyPair:
        if self._keypair is None:
            self._keypair = await asyncio.to_thread(
                DeviceKeyPair.load_or_create, self.settings.key_dir
            )
        return self._keypair

    # ======================
    # Handshake
    # ======================

    async def start_authentication(self) -> tuple[str, str]:
        """Open a session request.

        Returns:
            ``(session_request_id, verification_code)``

        Raises:
            AuthStartError: If the backend rejects the request or is unreachable
        """
        keypair = await self._get_keypair()
        fingerprint = device_fingerprint()
        logger.info(f"Device fingerprint: {fingerprint}")

        device = device_metadata()
        payload = {
            "device_fingerprint": fingerprint,
            "device_name": device["device_name"],
            "device_user_name": device["device_user_name"],
            "device_os": device["device_os"],
            "platform": "cli",
            "bot_version": self.settings.bot_version,
            "duration_in_seconds": self.settings.auth_session_duration,
            "public_key": keypair.public_key_base64,
        }

        try:
            request = await self.backend.start_auth_session(payload)
        except BackendError as e:
            logger.error(f"Error starting bot authentication: {e}")
            raise AuthStartError(f"Authentication start failed: {e}", e.status_code) from e

        logger.info(f"Session request {request.session_request_id} opened")
        return request.session_request_id, request.verification_code

    async def _complete(self, status: AuthStatus) -> str:
        keypair = await self._get_keypair()
        token = decrypt_token_payload(keypair, status.encrypted_key, status.access_token)
        self.identity.set_access_token(token)
        self.backend.set_access_token(token)
        if status.wallet_id and not self.identity.wallet_id:
            self.identity.set_wallet(status.wallet_id)
        return token

    async def poll_for_completion(
        self,
        session_request_id: str,
        on_complete: OnComplete,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Poll until the session request is approved.

        Transient backend errors and undecryptable payloads are logged and
        polling continues. Errors raised by ``on_complete`` are logged.

        Returns:
            The decrypted access token

        Raises:
            AuthTimeoutError: If the request is not approved within ``timeout``
        """
        interval = self.settings.auth_poll_interval if interval is None else interval
        timeout = self.settings.auth_poll_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        logger.info(f"Polling for authentication status of {session_request_id}")

        while True:
            try:
                status = await self.backend.get_auth_status(session_request_id)
            except BackendError as e:
                logger.warning(f"Error in polling: {e}")
            else:
                if status.is_complete:
                    try:
                        token = await self._complete(status)
                    except AuthDecryptError as e:
                        logger.error(f"Could not decrypt credential for {session_request_id}: {e}")
                    else:
                        try:
                            await on_complete(token)
                        except Exception as e:
                            logger.error(f"Authentication completion handler failed: {e}")
                        return token
                else:
                    logger.debug(f"Authentication incomplete ({status.status}), waiting...")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise AuthTimeoutError(
                    f"Session request {session_request_id} not approved within {timeout:.0f}s"
                )
            await asyncio.sleep(min(interval, remaining))

    # ======================
    # Per-chat poll tasks
    # ======================

    def begin_polling(
        self,
        chat_id: int,
        session_request_id: str,
        on_complete: OnComplete,
        on_timeout: Optional[OnTimeout] = None,
    ) -> asyncio.Task:
        """Run ``poll_for_completion`` in the background for a chat.

        A poll already running for the chat is cancelled first.
        """
        self.cancel_polling(chat_id)

        async def runner() -> None:
            try:
                await self.poll_for_completion(session_request_id, on_complete)
            except AuthTimeoutError as e:
                logger.warning(f"Chat {chat_id}: {e}")
                if on_timeout is not None:
                    try:
                        await on_timeout()
                    except Exception as err:
                        logger.error(f"Authentication timeout handler failed: {err}")
            finally:
                if self._polls.get(chat_id) is task:
                    del self._polls[chat_id]

        task = asyncio.create_task(runner(), name=f"auth-poll-{chat_id}")
        self._polls[chat_id] = task
        return task

    def cancel_polling(self, chat_id: int) -> bool:
        """Cancel the chat's running poll. Returns whether one was running."""
        task = self._polls.pop(chat_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info(f"Cancelled authentication polling for chat {chat_id}")
        return True

    def is_polling(self, chat_id: int) -> bool:
        task = self._polls.get(chat_id)
        return task is not None and not task.done()

    async def shutdown(self) -> None:
        """Cancel every poll and wait for them to finish."""
        tasks = list(self._polls.values())
        self._polls.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ======================
    # Identity
    # ======================

    def is_authenticated(self) -> bool:
        return self.identity.is_authenticated()

    def get_current_wallet_id(self) -> Optional[str]:
        return self.identity.wallet_id

    def set_current_workspace(self, workspace_id: str) -> None:
        self.identity.set_workspace(workspace_id)

    def set_current_wallet_id(self, wallet_id: str) -> None:
        self.identity.set_wallet(wallet_id)

    def logout_and_clear(self) -> None:
        self.identity.logout_and_clear()
        self.backend.clear_access_token()

    # ======================
    # Workspaces and wallets
    # ======================

    async def get_workspaces(self) -> list[Workspace]:
        return await self.backend.get_workspaces()

    async def get_workspace_wallets(self, workspace_id: str) -> list[WalletSummary]:
        return await self.backend.get_workspace_wallets(workspace_id)
