"""Address risk service client.

The service scores a recipient address from 0 (clean) to 100 and may attach
a rendered evidence image. Scores map onto three categories shown to the
user before a send is confirmed.
"""

import base64
import binascii
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from walletbot.clients.models import RiskAssessment
from walletbot.errors import BackendError

logger = logging.getLogger(__name__)

LOW_RISK_MAX = 23
MEDIUM_RISK_MAX = 50


def risk_category(score) -> str:
    """Category for a numeric score: Low (<=23), Medium (<=50) or High."""
    try:
        value = Decimal(str(score))
    except (InvalidOperation, ValueError):
        value = Decimal("0")
    if value <= LOW_RISK_MAX:
        return "Low Risk"
    if value <= MEDIUM_RISK_MAX:
        return "Medium Risk"
    return "High Risk"


class AddressRiskChecker:
    """Looks up the reputation of an address before funds are sent to it."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url.rstrip("/")
        headers = {"Accept": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport)

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def close(self) -> None:
        await self._client.aclose()

    async def check_address_risk(self, address: str) -> RiskAssessment:
        """Score an address.

        Raises:
            BackendError: If the service is disabled, unreachable or answers
                with something unusable
        """
        if not self.enabled:
            raise BackendError("Address risk service is not configured")

        try:
            response = await self._client.get(f"{self.url}/address/{address}")
        except httpx.HTTPError as e:
            raise BackendError(f"Risk service unreachable: {e}") from e

        if response.status_code != 200:
            raise BackendError(
                f"Risk service error: {response.status_code}", status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError as e:
            raise BackendError("Risk service returned invalid JSON") from e

        if not isinstance(data, dict) or data.get("risk_score") is None:
            raise BackendError("Risk service returned no score")

        score = str(data["risk_score"])
        image = None
        encoded = data.get("evidence_image")
        if encoded:
            try:
                image = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError):
                logger.warning(f"Ignoring undecodable evidence image for {address[:8]}…")

        assessment = RiskAssessment(
            risk_score=score,
            risk_category=risk_category(score),
            evidence_image=image,
        )
        logger.info(f"Risk score for {address[:8]}…: {score} ({assessment.risk_category})")
        return assessment
