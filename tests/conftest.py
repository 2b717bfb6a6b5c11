"""Pytest configuration and fixtures."""

import base64
import os
from dataclasses import dataclass
from typing import Any, Optional
from unittest.mock import MagicMock

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["TELEGRAM_BOT_TOKEN"] = ""

from walletbot.auth import AuthCoordinator
from walletbot.clients.backend import WalletBackendClient
from walletbot.clients.dex import DexAggregatorClient
from walletbot.clients.models import WalletAssetBalance
from walletbot.clients.risk import AddressRiskChecker
from walletbot.config import Settings
from walletbot.conversation import ConversationStateMachine
from walletbot.crypto import DeviceKeyPair
from walletbot.identity import Identity
from walletbot.visuals import Visualizer

CHAT_ID = 4242
WALLET_ID = "wallet-1"


@dataclass
class SentMessage:
    chat_id: int
    text: str
    reply_markup: Any = None
    message_id: int = 0


@dataclass
class SentPhoto:
    chat_id: int
    photo: bytes
    caption: Optional[str] = None


class FakeResponder:
    """Records everything the state machine would have sent."""

    def __init__(self):
        self.messages: list[SentMessage] = []
        self.photos: list[SentPhoto] = []
        self.deleted: list[tuple[int, int]] = []
        self._next_id = 1

    async def send_message(self, chat_id, text, reply_markup=None, parse_mode="HTML"):
        message_id = self._next_id
        self._next_id += 1
        self.messages.append(SentMessage(chat_id, text, reply_markup, message_id))
        return message_id

    async def send_photo(self, chat_id, photo, caption=None, filename="image.png", parse_mode="HTML"):
        self.photos.append(SentPhoto(chat_id, photo, caption))
        return None

    async def delete_message(self, chat_id, message_id):
        if message_id is None:
            return False
        self.deleted.append((chat_id, message_id))
        return True

    @property
    def texts(self) -> list[str]:
        return [m.text for m in self.messages]

    @property
    def last(self) -> SentMessage:
        return self.messages[-1]

    def reset(self) -> None:
        self.messages.clear()
        self.photos.clear()
        self.deleted.clear()


def make_balance(
    symbol: str,
    available: str,
    decimals: int,
    value_usd: str = "0",
    asset_id: Optional[str] = None,
    network: Optional[str] = "Solana",
) -> WalletAssetBalance:
    """Build one wallet overview row the way the backend returns it."""
    payload = {
        "asset": {
            "id": asset_id or f"asset-{symbol.lower()}",
            "symbol": symbol,
            "name": symbol,
            "decimals": decimals,
        },
        "balance": available,
        "availableBalance": available,
        "valueUsd": value_usd,
    }
    if network:
        payload["network"] = {"name": network}
    return WalletAssetBalance.model_validate(payload)


def encrypt_credential(keypair: DeviceKeyPair, token: str, aes_key: Optional[bytes] = None):
    """Produce ``(encrypted_key, access_token)`` as the backend would."""
    aes_key = aes_key or os.urandom(16)
    public_key = serialization.load_pem_public_key(keypair.public_pem())
    encrypted_key = public_key.encrypt(
        aes_key,
        padding.OAEP(
            mgf=padding.MGF1(algorithm=hashes.SHA256()),
            algorithm=hashes.SHA256(),
            label=None,
        ),
    )
    iv = os.urandom(16)
    encryptor = Cipher(algorithms.AES(aes_key), modes.CFB(iv)).encryptor()
    ciphertext = encryptor.update(token.encode()) + encryptor.finalize()
    return (
        base64.b64encode(encrypted_key).decode(),
        base64.b64encode(iv + ciphertext).decode(),
    )


@pytest.fixture(scope="session")
def keypair() -> DeviceKeyPair:
    """One RSA keypair for the whole run (generation is slow)."""
    return DeviceKeyPair.generate()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        telegram_bot_token="",
        api_base_url="https://wallet.test/api/v1",
        key_dir=tmp_path / "keys",
        auth_poll_interval=0.01,
        auth_poll_timeout=0.5,
        chat_lock_timeout=5.0,
        risk_api_url="",
        balance_history_size=5,
    )


@pytest.fixture
def responder() -> FakeResponder:
    return FakeResponder()


@pytest.fixture
def identity() -> Identity:
    return Identity()


@pytest.fixture
def backend() -> MagicMock:
    """Backend double; coroutine methods become AsyncMocks via ``spec=``."""
    return MagicMock(spec=WalletBackendClient)


@pytest.fixture
def dex() -> MagicMock:
    return MagicMock(spec=DexAggregatorClient)


@pytest.fixture
def risk() -> MagicMock:
    return MagicMock(spec=AddressRiskChecker)


@pytest.fixture
def visualizer() -> MagicMock:
    visualizer = MagicMock(spec=Visualizer)
    visualizer.render_balance_series.return_value = b"balance-png"
    visualizer.render_allocation.return_value = b"allocation-png"
    visualizer.render_scannable_code.return_value = b"qr-png"
    return visualizer


@pytest.fixture
def auth(backend, identity, settings, keypair) -> AuthCoordinator:
    return AuthCoordinator(backend, identity, settings, keypair=keypair)


@pytest.fixture
def machine(responder, auth, backend, dex, risk, visualizer, settings) -> ConversationStateMachine:
    return ConversationStateMachine(
        responder=responder,
        auth=auth,
        backend=backend,
        dex=dex,
        risk=risk,
        visualizer=visualizer,
        settings=settings,
    )


@pytest.fixture
def logged_in(identity) -> Identity:
    """Identity with a session token and a selected wallet."""
    identity.set_access_token("session-token")
    identity.set_workspace("ws-1")
    identity.set_wallet(WALLET_ID)
    return identity
