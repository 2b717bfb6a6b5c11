"""Transaction signing interfaces for swap execution.

Signing flow:
1. DEX builds an unsigned, serialized transaction for the wallet address
2. Signer submits it to the MPC wallet, which collects co-signatures
3. Signer returns the on-chain transaction id

The bot never holds a private key for the wallet.
"""

import logging
from abc import ABC, abstractmethod

from walletbot.clients.backend import WalletBackendClient
from walletbot.errors import BackendError
from walletbot.identity import Identity

logger = logging.getLogger(__name__)


class TransactionSigner(ABC):
    """Abstract signer for serialized Solana transactions."""

    @abstractmethod
    async def get_address(self) -> str:
        """Public address that owns the swapped funds."""
        pass

    @abstractmethod
    async def sign_and_send(self, transaction_b64: str) -> str:
        """Sign and broadcast a base64 transaction, returning its id."""
        pass


class WalletBackendSigner(TransactionSigner):
    """Signs through the wallet backend for the identity's current wallet."""

    def __init__(self, backend: WalletBackendClient, identity: Identity):
        self._backend = backend
        self._identity = identity

    def _wallet_id(self) -> str:
        wallet_id = self._identity.wallet_id
        if not wallet_id:
            raise BackendError("No authenticated wallet available")
        return wallet_id

    async def get_address(self) -> str:
        return await self._backend.get_wallet_address(self._wallet_id())

    async def sign_and_send(self, transaction_b64: str) -> str:
        wallet_id = self._wallet_id()
        logger.info(f"Submitting swap transaction to wallet {wallet_id} for signing")
        return await self._backend.sign_transaction(wallet_id, transaction_b64)
