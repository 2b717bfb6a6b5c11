"""Payload models for the wallet backend and the swap/risk collaborators.

The backend speaks snake_case JSON; camelCase keys are accepted as aliases
so payloads passed through a camel-casing proxy still validate.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base model accepting both snake_case and camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Network(ApiModel):
    """Network an asset lives on."""

    id: Optional[str] = None
    name: str


class Asset(ApiModel):
    """Asset descriptor from the wallet overview."""

    id: str
    symbol: str
    name: str = ""
    decimals: int = Field(..., ge=0, description="Decimal places of the smallest unit")
    logo_url: Optional[str] = None
    network: Optional[Network] = None


class WalletAssetBalance(ApiModel):
    """One row of ``GET /wallets/{id}/overview``."""

    asset: Asset
    balance: str = "0"
    on_hold: str = "0"
    available_balance: str = "0"
    price_usd: Decimal = Decimal("0")
    value_usd: Decimal = Decimal("0")
    network: Optional[Network] = None

    @property
    def network_name(self) -> Optional[str]:
        network = self.network or self.asset.network
        return network.name if network else None


class Withdrawal(ApiModel):
    """Result of ``POST /wallets/{id}/withdrawal``."""

    id: str
    status: str = "pending"


class Workspace(ApiModel):
    """Workspace the authenticated user belongs to."""

    id: str
    name: str
    slug: Optional[str] = None
    role: Optional[str] = None


class WalletSummary(ApiModel):
    """Wallet listed under a workspace."""

    id: str
    name: str
    wallet_type: str = ""
    value_usd: Optional[Decimal] = None


class AuthSessionRequest(ApiModel):
    """Returned when a session request is opened."""

    session_request_id: str
    verification_code: str


class AuthStatus(ApiModel):
    """Status of a pending session request."""

    status: str
    encrypted_key: Optional[str] = None
    access_token: Optional[str] = None
    wallet_id: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        """Completed and carrying both halves of the encrypted credential."""
        return (
            self.status == "completed"
            and bool(self.encrypted_key)
            and bool(self.access_token)
        )


class TokenMetadata(ApiModel):
    """Fungible token description from the token metadata service."""

    symbol: str
    name: str
    decimals: int = Field(..., ge=0)

    @classmethod
    def unknown(cls, decimals: int = 9) -> "TokenMetadata":
        """Placeholder used when metadata is unavailable (9 decimals on Solana)."""
        return cls(symbol="UNKNOWN", name="Unknown Token", decimals=decimals)


class SwapQuote(ApiModel):
    """Expected output of swapping ``input_amount_raw`` of one mint into another."""

    input_mint: str
    output_mint: str
    input_amount_raw: int
    output_amount_raw: int
    price_impact_pct: Optional[Decimal] = None
    route: Optional[dict] = Field(default=None, description="Raw aggregator response")


class RiskAssessment(ApiModel):
    """Reputation of a recipient address."""

    risk_score: str
    risk_category: str
    evidence_image: Optional[bytes] = None
