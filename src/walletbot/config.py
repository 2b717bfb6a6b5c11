"""Application configuration using pydantic-settings.

Covers the Telegram bot, the wallet backend API, the authentication
handshake and the swap/risk collaborators.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ======================
    # Telegram
    # ======================
    telegram_bot_token: str = Field(
        default="",
        description="Telegram bot token from BotFather",
        validation_alias=AliasChoices("telegram_bot_token", "bot_token"),
    )

    # ======================
    # Wallet backend
    # ======================
    api_base_url: str = Field(
        default="https://apex.void.exchange/api/v1", description="Wallet backend base URL"
    )
    api_key: str = Field(default="", description="Bearer key used until a session token exists")
    dashboard_url: str = Field(
        default="https://wallet.example.com/authenticate",
        description="Where the operator enters the verification code",
    )
    request_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")

    # ======================
    # Authentication
    # ======================
    key_dir: Path = Field(
        default=Path.home() / ".crypto-wallet-bot",
        description="Directory holding the device RSA keypair",
    )
    auth_poll_interval: float = Field(default=5.0, description="Seconds between status polls")
    auth_poll_timeout: float = Field(
        default=600.0, description="Give up polling after this many seconds"
    )
    auth_session_duration: int = Field(
        default=86400, description="Requested session lifetime in seconds"
    )
    bot_version: str = Field(default="1.0.0", description="Reported to the backend on auth")
    chat_lock_timeout: float = Field(
        default=120.0, description="Max wait for a chat's previous event to finish"
    )

    # ======================
    # Swaps (Solana)
    # ======================
    swap_api_url: str = Field(
        default="https://transaction-v1.raydium.io", description="Swap compute/transaction API"
    )
    token_api_url: str = Field(
        default="https://lite-api.jup.ag/tokens/v1", description="Token metadata API"
    )
    swap_quote_slippage_bps: int = Field(default=50, description="Slippage for quotes (0.5%)")
    swap_execute_slippage_bps: int = Field(default=100, description="Slippage for execution (1%)")
    swap_compute_unit_price: int = Field(
        default=100_000, description="Priority fee in micro-lamports per compute unit"
    )
    explorer_tx_url: str = Field(
        default="https://solscan.io/tx/", description="Explorer prefix for transaction links"
    )

    # ======================
    # Address risk
    # ======================
    risk_api_url: str = Field(default="", description="Address risk service URL (empty = disabled)")
    risk_api_key: str = Field(default="", description="Address risk service API key")

    # ======================
    # Monitoring
    # ======================
    balance_history_size: int = Field(
        default=30, description="Balance samples kept per wallet for the chart"
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "telegram_bot_token": "***" if self.telegram_bot_token else "(not set)",
            "api": {
                "base_url": self.api_base_url,
                "api_key": "***" if self.api_key else "(not set)",
                "timeout": self.request_timeout,
            },
            "auth": {
                "key_dir": str(self.key_dir),
                "poll_interval": self.auth_poll_interval,
                "poll_timeout": self.auth_poll_timeout,
            },
            "swap": {
                "api": self.swap_api_url,
                "token_api": self.token_api_url,
                "slippage_bps": self.swap_execute_slippage_bps,
            },
            "risk": {
                "url": self.risk_api_url or "(disabled)",
                "api_key": "***" if self.risk_api_key else "(not set)",
            },
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
