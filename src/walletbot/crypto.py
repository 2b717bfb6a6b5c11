"""Device keypair and credential decryption for the authentication handshake.

The bot proves its identity with an RSA keypair generated once per machine.
When an operator approves the session request, the backend returns:

- ``encrypted_key``: an AES key, RSA-OAEP (SHA-256) encrypted to our public key
- ``access_token``: the bearer token, AES-CFB encrypted with that key,
  base64 of ``iv (16 bytes) || ciphertext``
"""

import base64
import binascii
import getpass
import hashlib
import logging
import platform as platform_module
import socket
import sys
from pathlib import Path
from typing import Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from walletbot.errors import AuthDecryptError

logger = logging.getLogger(__name__)

PRIVATE_KEY_FILE = "rsa_private.pem"
PUBLIC_KEY_FILE = "rsa_public.pem"
RSA_KEY_SIZE = 2048
IV_LENGTH = 16
FINGERPRINT_LENGTH = 32


def current_platform() -> str:
    """Platform identifier in the form the backend expects (linux, darwin, win32)."""
    return sys.platform


def device_fingerprint(
    hostname: Optional[str] = None,
    username: Optional[str] = None,
    platform: Optional[str] = None,
) -> str:
    """Stable 128-bit fingerprint of this machine as 32 hex characters.

    Derived from hostname, OS user and platform so repeated authentications
    from the same machine are recognized as the same device.
    """
    hostname = hostname if hostname is not None else socket.gethostname()
    username = username if username is not None else getpass.getuser()
    platform = platform if platform is not None else current_platform()

    raw = f"{hostname}-{username}-{platform}-bot"
    return hashlib.sha256(raw.encode()).hexdigest()[:FINGERPRINT_LENGTH]


def device_metadata() -> dict:
    """Describe this machine for the session request."""
    return {
        "device_name": socket.gethostname(),
        "device_user_name": getpass.getuser(),
        "device_os": current_platform(),
        "device_release": platform_module.release(),
    }


class DeviceKeyPair:
    """RSA keypair identifying this bot installation.

    Usage:
        keypair = DeviceKeyPair.load_or_create(Path("~/.crypto-wallet-bot"))
        payload["public_key"] = keypair.public_key_base64
        aes_key = keypair.decrypt_session_key(encrypted_key)
    """

    def __init__(self, private_key: rsa.RSAPrivateKey):
        self._private_key = private_key

    @classmethod
    def generate(cls) -> "DeviceKeyPair":
        return cls(rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE))

    @classmethod
    def load_or_create(cls, key_dir: Path) -> "DeviceKeyPair":
        """Load the keypair from ``key_dir``, generating and saving it if missing.

        Args:
            key_dir: Directory for ``rsa_private.pem`` and ``rsa_public.pem``

        Returns:
            The persisted keypair
        """
        key_dir = Path(key_dir).expanduser()
        private_path = key_dir / PRIVATE_KEY_FILE
        public_path = key_dir / PUBLIC_KEY_FILE

        if private_path.exists() and public_path.exists():
            private_key = serialization.load_pem_private_key(
                private_path.read_bytes(), password=None
            )
            if not isinstance(private_key, rsa.RSAPrivateKey):
                raise ValueError(f"{private_path} does not hold an RSA private key")
            return cls(private_key)

        logger.info(f"Generating new RSA key pair for bot authentication in {key_dir}")
        key_dir.mkdir(parents=True, exist_ok=True)

        keypair = cls.generate()
        private_path.write_bytes(keypair.private_pem())
        private_path.chmod(0o600)
        public_path.write_bytes(keypair.public_pem())
        return keypair

    def private_pem(self) -> bytes:
        return self._private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def public_pem(self) -> bytes:
        return self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    @property
    def public_key_base64(self) -> str:
        """SubjectPublicKeyInfo DER as base64: the PEM body without armour or newlines."""
        der = self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return base64.b64encode(der).decode()

    def decrypt_session_key(self, encrypted_key_b64: str) -> bytes:
        """RSA-OAEP (SHA-256) decrypt the symmetric key sent by the backend.

        Raises:
            AuthDecryptError: If the payload is not base64 or not for this key
        """
        try:
            ciphertext = base64.b64decode(encrypted_key_b64, validate=True)
            return self._private_key.decrypt(
                ciphertext,
                padding.OAEP(
                    mgf=padding.MGF1(algorithm=hashes.SHA256()),
                    algorithm=hashes.SHA256(),
                    label=None,
                ),
            )
        except (binascii.Error, ValueError) as e:
            raise AuthDecryptError(f"Could not decrypt session key: {e}") from e


def decrypt_token(payload_b64: str, key: bytes) -> str:
    """AES-CFB decrypt ``iv || ciphertext`` (base64) into a UTF-8 token.

    Raises:
        AuthDecryptError: On malformed payload, bad key size or non-UTF-8 output
    """
    try:
        raw = base64.b64decode(payload_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AuthDecryptError(f"Token payload is not valid base64: {e}") from e

    if len(raw) <= IV_LENGTH:
        raise AuthDecryptError("Token payload is too short")

    iv, ciphertext = raw[:IV_LENGTH], raw[IV_LENGTH:]

    try:
        decryptor = Cipher(algorithms.AES(key), modes.CFB(iv)).decryptor()
        plaintext = decryptor.update(ciphertext) + decryptor.finalize()
    except (ValueError, UnsupportedAlgorithm) as e:
        raise AuthDecryptError(f"Could not decrypt token: {e}") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise AuthDecryptError("Decrypted token is not valid UTF-8") from e


def decrypt_token_payload(keypair: DeviceKeyPair, encrypted_key: str, access_token: str) -> str:
    """Full decrypt chain: RSA-unwrap the AES key, then AES-CFB the token."""
    aes_key = keypair.decrypt_session_key(encrypted_key)
    token = decrypt_token(access_token, aes_key)
    logger.info("Access token successfully decrypted")
    return token
