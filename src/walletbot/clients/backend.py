"""Wallet backend REST client.

Every response is wrapped in an envelope ``{"success": bool, "data": ...,
"message": str}``. Transport failures, HTTP errors and ``success: false``
all surface as ``BackendError``.
"""

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from walletbot.clients.models import (
    AuthSessionRequest,
    AuthStatus,
    WalletAssetBalance,
    WalletSummary,
    Withdrawal,
    Workspace,
)
from walletbot.errors import BackendError

logger = logging.getLogger(__name__)


class WalletBackendClient:
    """Async client for the custodial/MPC wallet backend."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: API root, e.g. ``https://host/api/v1``
            api_key: Bearer credential used until a session token is set
            timeout: Per-request timeout in seconds
            transport: Optional transport override (tests)
        """
        self._api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )
        if api_key:
            self._set_bearer(api_key)

    def _set_bearer(self, credential: str) -> None:
        self._client.headers["Authorization"] = f"Bearer {credential}"

    def set_access_token(self, token: str) -> None:
        """Use a freshly obtained session token for all later calls."""
        self._set_bearer(token)
        logger.info("API client authorization header updated with new token")

    def clear_access_token(self) -> None:
        """Fall back to the static API key (or no credential at all)."""
        if self._api_key:
            self._set_bearer(self._api_key)
        else:
            self._client.headers.pop("Authorization", None)

    @property
    def authorization(self) -> Optional[str]:
        return self._client.headers.get("Authorization")

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Perform a request and unwrap the response envelope."""
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Backend request {method} {path} failed: {type(e).__name__}: {e}")
            raise BackendError(f"Backend unreachable: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning(
                f"Backend {method} {path} returned {response.status_code}: "
                f"{message or response.text[:200]}"
            )
            raise BackendError(
                message or f"Backend returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        if not isinstance(body, dict) or not body.get("success"):
            message = body.get("message") if isinstance(body, dict) else None
            raise BackendError(
                message or f"Backend rejected {method} {path}",
                status_code=response.status_code,
            )

        return body.get("data")

    @staticmethod
    def _parse(model, data: Any, what: str):
        try:
            if isinstance(data, list):
                return [model.model_validate(item) for item in data]
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise BackendError(f"Unexpected {what} payload: {e.error_count()} error(s)") from e

    # ======================
    # Wallets
    # ======================

    async def get_wallet_overview(
        self, wallet_id: str, offset: int = 0, limit: int = 10
    ) -> list[WalletAssetBalance]:
        """Balances of every asset held by a wallet."""
        data = await self._request(
            "GET",
            f"/wallets/{wallet_id}/overview",
            params={"offset": offset, "limit": limit},
        )
        return self._parse(WalletAssetBalance, data or [], "wallet overview")

    async def create_withdrawal(
        self, wallet_id: str, asset_id: str, amount: str, recipient_address: str
    ) -> Withdrawal:
        """Submit a withdrawal for co-signer approval.

        Args:
            wallet_id: Wallet to withdraw from
            asset_id: Backend asset id (not the symbol)
            amount: Human decimal amount as entered
            recipient_address: Destination address

        Returns:
            The created withdrawal with its id and status
        """
        logger.info(f"Creating withdrawal of {amount} ({asset_id}) from wallet {wallet_id}")
        data = await self._request(
            "POST",
            f"/wallets/{wallet_id}/withdrawal",
            json={
                "asset_id": asset_id,
                "amount": amount,
                "recipient_address": recipient_address,
            },
        )
        return self._parse(Withdrawal, data, "withdrawal")

    async def get_wallet_address(self, wallet_id: str) -> str:
        """On-chain address of a wallet."""
        data = await self._request("GET", f"/wallets/{wallet_id}/address")
        address = data.get("address") if isinstance(data, dict) else data
        if not address:
            raise BackendError(f"No address for wallet {wallet_id}")
        return address

    async def sign_transaction(self, wallet_id: str, transaction_b64: str) -> str:
        """Have the MPC signers sign and broadcast a serialized transaction.

        Returns:
            Transaction id (signature) on chain
        """
        data = await self._request(
            "POST",
            f"/wallets/{wallet_id}/sign-transaction",
            json={"transaction": transaction_b64},
        )
        if isinstance(data, dict):
            tx_id = data.get("tx_id") or data.get("txId")
        else:
            tx_id = data
        if not tx_id:
            raise BackendError("Signer returned no transaction id")
        return tx_id

    # ======================
    # Workspaces
    # ======================

    async def get_workspaces(self) -> list[Workspace]:
        data = await self._request("GET", "/workspaces")
        return self._parse(Workspace, data or [], "workspaces")

    async def get_workspace_wallets(self, workspace_id: str) -> list[WalletSummary]:
        data = await self._request("GET", f"/workspaces/{workspace_id}/wallets")
        return self._parse(WalletSummary, data or [], "wallets")

    # ======================
    # Authentication
    # ======================

    async def start_auth_session(self, payload: dict) -> AuthSessionRequest:
        """Open a session request the operator approves on the dashboard."""
        data = await self._request(
            "POST", "/authentication/session-requests/start", json=payload
        )
        return self._parse(AuthSessionRequest, data, "session request")

    async def get_auth_status(self, session_request_id: str) -> AuthStatus:
        data = await self._request(
            "GET", f"/authentication/session-requests/status/{session_request_id}"
        )
        return self._parse(AuthStatus, data, "session status")
