"""Clients for the wallet backend, the DEX aggregator and the risk service."""

from walletbot.clients.backend import WalletBackendClient
from walletbot.clients.dex import SOLANA_TOKENS, DexAggregatorClient, get_token_mint
from walletbot.clients.risk import AddressRiskChecker, risk_category
from walletbot.clients.signer import TransactionSigner, WalletBackendSigner

__all__ = [
    "AddressRiskChecker",
    "DexAggregatorClient",
    "SOLANA_TOKENS",
    "TransactionSigner",
    "WalletBackendClient",
    "WalletBackendSigner",
    "get_token_mint",
    "risk_category",
]
